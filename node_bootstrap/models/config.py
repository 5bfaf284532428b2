"""
Configuration data models for the node bootstrap.
"""
from dataclasses import dataclass, field
from typing import List, Optional

from .trust import DEFAULT_BUNDLE_FILE_NAME


BACKOFF_STRATEGIES = ("fixed", "exponential")
GENERATOR_BACKENDS = ("certutil", "cryptography")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class Config:
    """Main configuration class containing all bootstrap settings."""

    # Cluster settings
    cluster_name: str = ""
    seed_hosts: List[str] = field(default_factory=list)

    # Paths
    install_dir: str = ""
    config_dir: str = ""
    data_dir: str = ""
    work_dir: str = ""

    # Service account
    service_user: str = "elasticsearch"
    service_group: str = ""

    # Trust material
    bundle_file_name: str = DEFAULT_BUNDLE_FILE_NAME
    bundle_mode: int = 0o640
    generator_backend: str = "certutil"
    bundle_password: str = ""

    # Distribution (authority side)
    distribution_port: int = 8000
    bind_host: str = "0.0.0.0"
    advertise_host: Optional[str] = None
    session_timeout_seconds: int = 900
    stop_after_first_fetch: bool = False

    # Retrieval (follower side)
    max_attempts: int = 50
    backoff_seconds: float = 5.0
    backoff_strategy: str = "fixed"
    max_backoff_seconds: float = 60.0
    request_timeout_seconds: int = 30

    # Application settings
    log_level: str = "INFO"
    log_file_path: str = "logs/node_bootstrap.log"

    def __post_init__(self):
        """Validate configuration after initialization."""
        self._validate_types()

    def _validate_types(self):
        """Ensure all configuration values have correct types."""
        if not isinstance(self.distribution_port, int) or not (0 <= self.distribution_port <= 65535):
            raise ValueError("distribution_port must be an integer between 0 and 65535")

        if not isinstance(self.max_attempts, int) or self.max_attempts <= 0:
            raise ValueError("max_attempts must be a positive integer")

        if not isinstance(self.backoff_seconds, (int, float)) or self.backoff_seconds < 0:
            raise ValueError("backoff_seconds must be a non-negative number")

        if not isinstance(self.max_backoff_seconds, (int, float)) or self.max_backoff_seconds < 0:
            raise ValueError("max_backoff_seconds must be a non-negative number")

        if not isinstance(self.request_timeout_seconds, int) or self.request_timeout_seconds <= 0:
            raise ValueError("request_timeout_seconds must be a positive integer")

        if not isinstance(self.session_timeout_seconds, int) or self.session_timeout_seconds < 0:
            raise ValueError("session_timeout_seconds must be a non-negative integer")

        if not isinstance(self.bundle_mode, int) or not (0 <= self.bundle_mode <= 0o777):
            raise ValueError("bundle_mode must be a permission mode between 0o000 and 0o777")

        if self.backoff_strategy not in BACKOFF_STRATEGIES:
            raise ValueError("backoff_strategy must be one of: " + ", ".join(BACKOFF_STRATEGIES))

        if self.generator_backend not in GENERATOR_BACKENDS:
            raise ValueError("generator_backend must be one of: " + ", ".join(GENERATOR_BACKENDS))

        if self.log_level not in LOG_LEVELS:
            raise ValueError("log_level must be one of: " + ", ".join(LOG_LEVELS))

    @property
    def bundle_install_path(self) -> str:
        """Where every node keeps its copy of the trust bundle."""
        return f"{self.config_dir.rstrip('/')}/{self.bundle_file_name}"


@dataclass
class ConfigValidationError:
    """Represents a configuration validation error."""
    field: str
    message: str
    severity: str = "error"  # error, warning

    def __str__(self):
        return f"{self.severity.upper()}: {self.field} - {self.message}"


@dataclass
class ConfigValidationResult:
    """Result of configuration validation."""
    is_valid: bool
    errors: list[ConfigValidationError]
    warnings: list[ConfigValidationError]

    def __post_init__(self):
        """Separate errors and warnings."""
        all_issues = self.errors + self.warnings
        self.errors = [e for e in all_issues if e.severity == "error"]
        self.warnings = [e for e in all_issues if e.severity == "warning"]

    def has_errors(self) -> bool:
        return len(self.errors) > 0

    def has_warnings(self) -> bool:
        return len(self.warnings) > 0

    def error_fields(self) -> List[str]:
        """Names of every field with an error, in the order found."""
        return [e.field for e in self.errors]

    def get_error_summary(self) -> str:
        """Get a formatted summary of all errors and warnings."""
        lines = []

        if self.errors:
            lines.append("Configuration Errors:")
            for error in self.errors:
                lines.append(f"  - {error}")

        if self.warnings:
            lines.append("Configuration Warnings:")
            for warning in self.warnings:
                lines.append(f"  - {warning}")

        return "\n".join(lines) if lines else "Configuration is valid"
