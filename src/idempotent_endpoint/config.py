"""Configuration module for the idempotent endpoint.

This module provides the IdempotencyConfig class for configuring the backend
connection, the expiry windows, key extraction and request limits.

Example:
    Basic usage with defaults:

        >>> config = IdempotencyConfig()
        >>> config.in_flight_ttl_seconds
        360

    Custom configuration:

        >>> config = IdempotencyConfig(
        ...     backend="dynamodb",
        ...     table_name="idempotency-prod",
        ...     in_flight_ttl_seconds=120,
        ...     terminal_ttl_seconds=3600,
        ... )

    Loading from environment:

        >>> import os
        >>> os.environ['IDEMPOTENCY_BACKEND'] = 'dynamodb'
        >>> os.environ['TABLE_NAME'] = 'idempotency-prod'
        >>> config = IdempotencyConfig.from_env()
        >>> config.table_name
        'idempotency-prod'
"""

import os
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator

VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}

TRUE_VALUES = {"1", "true", "yes", "on"}
FALSE_VALUES = {"0", "false", "no", "off"}


class IdempotencyConfig(BaseModel):
    """Configuration for the idempotent endpoint.

    Attributes:
        backend: Storage backend, "memory" or "dynamodb". Default is "memory".
        table_name: DynamoDB table holding idempotency records.
        aws_region: AWS region for the DynamoDB client (None uses the SDK default).
        dynamodb_endpoint_url: Override endpoint, e.g. DynamoDB Local.
        in_flight_ttl_seconds: How long an IN_PROGRESS claim is trusted before
            it may be reclaimed. Must be well above the slowest handler run.
            Between 1 and 86400. Default is 360.
        terminal_ttl_seconds: How long a COMPLETED or FAILED outcome is replayed.
            Between 1 and 2592000 (30 days). Default is 86400 (24 hours).
        retry_after_seconds: Backoff suggested to duplicates that arrive while
            the original is in flight. Between 1 and 3600. Default is 5.
        key_header: Request header carrying the idempotency key (case-insensitive).
        key_field: Optional top-level JSON field used as the key when the header
            is absent. When neither is present the key is derived from the body.
        max_body_bytes: Maximum accepted request body size. 0 means unlimited.
        webhook_url: Optional downstream URL the bundled handler forwards to.
        cleanup_interval_seconds: Period of the in-memory expiry sweep.
        log_level: Log level for structured logging.
        json_logs: Emit JSON logs when True, console logs otherwise.

    Note:
        This class is immutable (frozen=True). Create a new instance if you
        need different settings.
    """

    backend: Literal["memory", "dynamodb"] = Field(
        default="memory",
        description="Storage backend for idempotency records",
    )
    table_name: str = Field(
        default="idempotency",
        description="DynamoDB table name",
    )
    aws_region: str | None = Field(
        default=None,
        description="AWS region for the DynamoDB client",
    )
    dynamodb_endpoint_url: str | None = Field(
        default=None,
        description="DynamoDB endpoint override",
    )
    in_flight_ttl_seconds: int = Field(
        default=360,
        description="Seconds an IN_PROGRESS claim is honored (1-86400)",
    )
    terminal_ttl_seconds: int = Field(
        default=86400,
        description="Seconds a terminal outcome is retained for replay (1-2592000)",
    )
    retry_after_seconds: int = Field(
        default=5,
        description="Retry-After hint for in-flight duplicates (1-3600)",
    )
    key_header: str = Field(
        default="idempotency-key",
        description="Header carrying the idempotency key",
    )
    key_field: str | None = Field(
        default=None,
        description="JSON body field used as the key when the header is absent",
    )
    max_body_bytes: int = Field(
        default=1048576,
        description="Maximum request body size in bytes (0=unlimited)",
    )
    webhook_url: str | None = Field(
        default=None,
        description="Downstream URL for the bundled business logic",
    )
    cleanup_interval_seconds: int = Field(
        default=300,
        description="Interval of the in-memory expiry sweep",
    )
    log_level: str = Field(
        default="INFO",
        description="Structured logging level",
    )
    json_logs: bool = Field(
        default=True,
        description="Emit JSON logs",
    )

    model_config = {"frozen": True}

    @field_validator("in_flight_ttl_seconds")
    @classmethod
    def validate_in_flight_ttl_seconds(cls, v: int) -> int:
        """Validate the in-flight TTL is within range.

        Raises:
            ValueError: If TTL is not between 1 and 86400.
        """
        if not (1 <= v <= 86400):
            raise ValueError(f"in_flight_ttl_seconds must be between 1 and 86400, got {v}")
        return v

    @field_validator("terminal_ttl_seconds")
    @classmethod
    def validate_terminal_ttl_seconds(cls, v: int) -> int:
        """Validate the terminal TTL is within range.

        Raises:
            ValueError: If TTL is not between 1 and 2592000 (30 days).
        """
        if not (1 <= v <= 2592000):
            raise ValueError(
                f"terminal_ttl_seconds must be between 1 and 2592000 (30 days), got {v}"
            )
        return v

    @field_validator("retry_after_seconds")
    @classmethod
    def validate_retry_after_seconds(cls, v: int) -> int:
        if not (1 <= v <= 3600):
            raise ValueError(f"retry_after_seconds must be between 1 and 3600, got {v}")
        return v

    @field_validator("max_body_bytes")
    @classmethod
    def validate_max_body_bytes(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"max_body_bytes must be >= 0, got {v}")
        return v

    @field_validator("cleanup_interval_seconds")
    @classmethod
    def validate_cleanup_interval_seconds(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"cleanup_interval_seconds must be >= 1, got {v}")
        return v

    @field_validator("key_header")
    @classmethod
    def validate_key_header(cls, v: str) -> str:
        """Normalize the key header to lowercase for case-insensitive lookup.

        Example:
            >>> IdempotencyConfig(key_header="X-Request-Key").key_header
            'x-request-key'
        """
        v = v.strip().lower()
        if not v:
            raise ValueError("key_header cannot be empty")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in VALID_LOG_LEVELS:
            raise ValueError(
                f"Invalid log level: {v}. Valid levels are: {', '.join(sorted(VALID_LOG_LEVELS))}"
            )
        return level

    @model_validator(mode="after")
    def validate_ttl_ordering(self) -> "IdempotencyConfig":
        """Validate cross-field settings.

        The in-flight window must not outlive the replay window, and the
        DynamoDB backend needs a table.

        Raises:
            ValueError: If the settings are inconsistent.
        """
        if self.in_flight_ttl_seconds > self.terminal_ttl_seconds:
            raise ValueError(
                "in_flight_ttl_seconds must not exceed terminal_ttl_seconds "
                f"({self.in_flight_ttl_seconds} > {self.terminal_ttl_seconds})"
            )
        if self.backend == "dynamodb" and not self.table_name.strip():
            raise ValueError("table_name is required for the dynamodb backend")
        return self

    @classmethod
    def from_env(cls, prefix: str = "IDEMPOTENCY_") -> "IdempotencyConfig":
        """Create configuration from environment variables.

        Variable names are uppercase field names with the prefix. The bare
        ``TABLE_NAME`` variable is honored as a fallback for ``table_name``.

        Args:
            prefix: Prefix for environment variable names. Default is "IDEMPOTENCY_".

        Returns:
            IdempotencyConfig instance populated from environment variables.

        Example:
            >>> os.environ['IDEMPOTENCY_IN_FLIGHT_TTL_SECONDS'] = '60'
            >>> IdempotencyConfig.from_env().in_flight_ttl_seconds
            60
        """
        config_dict: dict[str, Any] = {}

        field_types = {
            "backend": str,
            "table_name": str,
            "aws_region": str,
            "dynamodb_endpoint_url": str,
            "in_flight_ttl_seconds": int,
            "terminal_ttl_seconds": int,
            "retry_after_seconds": int,
            "key_header": str,
            "key_field": str,
            "max_body_bytes": int,
            "webhook_url": str,
            "cleanup_interval_seconds": int,
            "log_level": str,
            "json_logs": bool,
        }

        for field_name, field_type in field_types.items():
            env_var = f"{prefix}{field_name.upper()}"
            env_value = os.environ.get(env_var)

            if env_value is None:
                continue
            if field_type is int:
                config_dict[field_name] = int(env_value)
            elif field_type is bool:
                config_dict[field_name] = _parse_bool(env_var, env_value)
            else:
                config_dict[field_name] = env_value

        if "table_name" not in config_dict and os.environ.get("TABLE_NAME"):
            config_dict["table_name"] = os.environ["TABLE_NAME"]

        return cls(**config_dict)

    @classmethod
    def from_dict(cls, config_dict: dict[str, Any]) -> "IdempotencyConfig":
        """Create configuration from a dictionary.

        Raises:
            ValidationError: If the dictionary contains invalid values.
        """
        return cls(**config_dict)


def _parse_bool(name: str, value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in TRUE_VALUES:
        return True
    if lowered in FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be a boolean, got {value!r}")
