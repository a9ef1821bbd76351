"""Configuration management with validation.

Configuration is process-wide and read-only: it is loaded once at startup
(backoff policy, batch limits, region) and shared by every handler
invocation. Invalid values are rejected at load time.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field, replace


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Configuration constants with documented bounds
DEFAULT_BACKOFF_DELAY_SECONDS = 30
MIN_BACKOFF_DELAY_SECONDS = 1
MAX_BACKOFF_DELAY_SECONDS = 900  # Longest re-invoke delay the caller accepts

DEFAULT_BACKOFF_TIMEOUT_SECONDS = 3 * 3600
MAX_BACKOFF_TIMEOUT_SECONDS = 36 * 3600

# ModifyDBClusterParameterGroup accepts at most 20 parameters per call
DEFAULT_MAX_PARAMETERS_PER_REQUEST = 20
MAX_PARAMETERS_PER_REQUEST = 20

# File size limits
MAX_REQUEST_FILE_SIZE_BYTES = 1024 * 1024  # 1MB max request file
MAX_CONTEXT_FILE_SIZE_BYTES = 256 * 1024  # 256KB max callback context

DEFAULT_REGION = "us-east-1"
DEFAULT_LOG_LEVEL = "INFO"
VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")

VALID_REGION_PATTERN = r"^[a-z]{2}(-[a-z]+)+-\d$"


@dataclass(frozen=True)
class BackoffPolicy:
    """Constant re-invoke delay with an overall timeout ceiling.

    The engine never sleeps: the delay is handed back to the caller, whose
    scheduler waits before re-invoking. The timeout bounds how long a single
    step may stay in stabilization across invocations.
    """

    delay_seconds: int = DEFAULT_BACKOFF_DELAY_SECONDS
    timeout_seconds: int = DEFAULT_BACKOFF_TIMEOUT_SECONDS

    def validate(self) -> list[str]:
        errors: list[str] = []
        if not MIN_BACKOFF_DELAY_SECONDS <= self.delay_seconds <= MAX_BACKOFF_DELAY_SECONDS:
            errors.append(
                f"BACKOFF_DELAY_SECONDS must be between {MIN_BACKOFF_DELAY_SECONDS} "
                f"and {MAX_BACKOFF_DELAY_SECONDS}"
            )
        if self.timeout_seconds < self.delay_seconds:
            errors.append("BACKOFF_TIMEOUT_SECONDS must not be shorter than BACKOFF_DELAY_SECONDS")
        elif self.timeout_seconds > MAX_BACKOFF_TIMEOUT_SECONDS:
            errors.append(f"BACKOFF_TIMEOUT_SECONDS cannot exceed {MAX_BACKOFF_TIMEOUT_SECONDS}")
        return errors


@dataclass(frozen=True)
class HandlerConfig:
    """Per-handler tuning shared by all invocations of one resource type."""

    backoff: BackoffPolicy = field(default_factory=BackoffPolicy)
    max_parameters_per_request: int = DEFAULT_MAX_PARAMETERS_PER_REQUEST

    def __post_init__(self) -> None:
        errors = self.backoff.validate()

        if not 1 <= self.max_parameters_per_request <= MAX_PARAMETERS_PER_REQUEST:
            errors.append(
                f"MAX_PARAMETERS_PER_REQUEST must be between 1 and {MAX_PARAMETERS_PER_REQUEST}"
            )

        if errors:
            error_msg = "Handler configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)


# Custom engine versions take hours to validate
ENGINE_VERSION_HANDLER_CONFIG = HandlerConfig(
    backoff=BackoffPolicy(delay_seconds=30, timeout_seconds=10 * 3600),
)

PARAMETER_GROUP_HANDLER_CONFIG = HandlerConfig(
    backoff=BackoffPolicy(delay_seconds=5, timeout_seconds=3600),
)

# Cluster creation and engine upgrades run for tens of minutes
DB_CLUSTER_HANDLER_CONFIG = HandlerConfig(
    backoff=BackoffPolicy(delay_seconds=30, timeout_seconds=6 * 3600),
)


@dataclass(frozen=True)
class Config:
    """Process configuration loaded from environment variables.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing mid-operation.
    """

    region: str = DEFAULT_REGION
    log_level: str = DEFAULT_LOG_LEVEL

    # Overrides applied on top of each resource type's handler config; None keeps
    # the resource default
    backoff_delay_seconds: int | None = None
    backoff_timeout_seconds: int | None = None
    max_parameters_per_request: int | None = None

    def __post_init__(self) -> None:
        errors: list[str] = []

        if not self.region:
            errors.append("AWS_REGION is required")
        elif not re.match(VALID_REGION_PATTERN, self.region):
            errors.append(f"AWS_REGION must be a valid AWS region: {self.region}")

        if self.log_level.upper() not in VALID_LOG_LEVELS:
            errors.append(f"LOG_LEVEL must be one of {list(VALID_LOG_LEVELS)}: {self.log_level}")

        delay = self.backoff_delay_seconds
        if delay is not None and not (
            MIN_BACKOFF_DELAY_SECONDS <= delay <= MAX_BACKOFF_DELAY_SECONDS
        ):
            errors.append(
                f"BACKOFF_DELAY_SECONDS must be between {MIN_BACKOFF_DELAY_SECONDS} "
                f"and {MAX_BACKOFF_DELAY_SECONDS}"
            )
        timeout = self.backoff_timeout_seconds
        if timeout is not None and not 1 <= timeout <= MAX_BACKOFF_TIMEOUT_SECONDS:
            errors.append(
                f"BACKOFF_TIMEOUT_SECONDS must be between 1 and {MAX_BACKOFF_TIMEOUT_SECONDS}"
            )
        batch = self.max_parameters_per_request
        if batch is not None and not 1 <= batch <= MAX_PARAMETERS_PER_REQUEST:
            errors.append(
                f"MAX_PARAMETERS_PER_REQUEST must be between 1 and {MAX_PARAMETERS_PER_REQUEST}"
            )

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    def handler_config(self, base: HandlerConfig) -> HandlerConfig:
        """Apply the configured overrides to a resource type's handler config.

        Only the fields that were set replace the corresponding defaults.

        Raises:
            ConfigurationError: If the combined config is inconsistent.
        """
        backoff = base.backoff
        if self.backoff_delay_seconds is not None:
            backoff = replace(backoff, delay_seconds=self.backoff_delay_seconds)
        if self.backoff_timeout_seconds is not None:
            backoff = replace(backoff, timeout_seconds=self.backoff_timeout_seconds)

        config = replace(base, backoff=backoff)
        if self.max_parameters_per_request is not None:
            config = replace(config, max_parameters_per_request=self.max_parameters_per_request)
        return config

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        Environment Variables:
            AWS_REGION: Region of the RDS endpoint (default: us-east-1)
            LOG_LEVEL: One of DEBUG, INFO, WARNING, ERROR (default: INFO)
            BACKOFF_DELAY_SECONDS: Re-invoke delay while a step stabilizes
            BACKOFF_TIMEOUT_SECONDS: Ceiling on stabilization time per step
            MAX_PARAMETERS_PER_REQUEST: Parameter batch size

        Unset backoff/batch variables keep each resource type's own default.
        """

        def get_int(key: str) -> int | None:
            value = os.environ.get(key)
            if value is None:
                return None
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        return cls(
            region=os.environ.get("AWS_REGION", DEFAULT_REGION),
            log_level=os.environ.get("LOG_LEVEL", DEFAULT_LOG_LEVEL).upper(),
            backoff_delay_seconds=get_int("BACKOFF_DELAY_SECONDS"),
            backoff_timeout_seconds=get_int("BACKOFF_TIMEOUT_SECONDS"),
            max_parameters_per_request=get_int("MAX_PARAMETERS_PER_REQUEST"),
        )
