"""
Configuration service for loading and validating bootstrap settings.
"""
import os
import configparser
from typing import Optional, Dict, Any, List
import logging

from ..models.config import Config, ConfigValidationError, ConfigValidationResult
from ..models.errors import ConfigError


ENV_PREFIX = "NODE_BOOTSTRAP_"

REQUIRED_FIELDS = [
    ("install_dir", "Search engine install directory is required"),
    ("config_dir", "Configuration directory is required"),
    ("data_dir", "Data directory is required"),
    ("seed_hosts", "At least one seed host is required"),
    ("service_user", "Service account name is required"),
]


def _parse_list(value: Any) -> List[str]:
    if isinstance(value, (list, tuple)):
        return [str(v).strip() for v in value if str(v).strip()]
    return [item.strip().strip('"') for item in str(value).split(",") if item.strip()]


def _parse_mode(value: Any) -> int:
    if isinstance(value, int):
        return value
    return int(str(value).strip(), 8)


class ConfigService:
    """Service for loading and validating bootstrap configuration."""

    # Map configuration keys to Config fields
    CONFIG_MAPPING = {
        # Cluster settings
        "cluster.name": ("cluster_name", str),
        "cluster.seed_hosts": ("seed_hosts", list),

        # Paths
        "paths.install_dir": ("install_dir", str),
        "paths.config_dir": ("config_dir", str),
        "paths.data_dir": ("data_dir", str),
        "paths.work_dir": ("work_dir", str),

        # Service account
        "service.user": ("service_user", str),
        "service.group": ("service_group", str),

        # Trust material
        "trust.bundle_file_name": ("bundle_file_name", str),
        "trust.bundle_mode": ("bundle_mode", "mode"),
        "trust.generator": ("generator_backend", str),
        "trust.bundle_password": ("bundle_password", str),

        # Distribution
        "distribution.port": ("distribution_port", int),
        "distribution.bind_host": ("bind_host", str),
        "distribution.advertise_host": ("advertise_host", str),
        "distribution.session_timeout_seconds": ("session_timeout_seconds", int),
        "distribution.stop_after_first_fetch": ("stop_after_first_fetch", bool),

        # Retrieval
        "retrieval.max_attempts": ("max_attempts", int),
        "retrieval.backoff_seconds": ("backoff_seconds", float),
        "retrieval.backoff_strategy": ("backoff_strategy", str),
        "retrieval.max_backoff_seconds": ("max_backoff_seconds", float),
        "retrieval.request_timeout_seconds": ("request_timeout_seconds", int),

        # Application settings
        "app.log_level": ("log_level", str),
        "app.log_file_path": ("log_file_path", str),
    }

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def load_config(self, config_path: str, overrides: Optional[Dict[str, Any]] = None) -> Config:
        """
        Load configuration from a property file.

        Values are layered: file, then NODE_BOOTSTRAP_<SECTION>_<KEY>
        environment variables, then ``overrides`` (Config field names, usually
        from the command line).

        Args:
            config_path: Path to the configuration file
            overrides: Field values that take precedence over file and environment

        Returns:
            Config object with loaded settings

        Raises:
            FileNotFoundError: If config file doesn't exist
            ConfigError: If any required field is missing or any value is invalid
        """
        if not os.path.exists(config_path):
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        config_data = self._load_config_file(config_path)
        config_data.update(self._load_environment())

        config = self._create_config_from_data(config_data, overrides or {})

        validation_result = self.validate_config(config)

        if validation_result.has_errors():
            raise ConfigError(
                validation_result.error_fields(),
                validation_result.get_error_summary()
            )

        if validation_result.has_warnings():
            warning_summary = validation_result.get_error_summary()
            self.logger.warning(f"Configuration warnings:\n{warning_summary}")

        return config

    def _load_config_file(self, config_path: str) -> Dict[str, Any]:
        """Load configuration data from file."""
        config_parser = configparser.ConfigParser(interpolation=None)

        try:
            config_parser.read(config_path)
        except configparser.Error as e:
            raise ConfigError(["<file>"], f"Failed to parse configuration file: {e}")

        # Flatten to section.key
        config_data = {}
        for section in config_parser.sections():
            for key, value in config_parser.items(section):
                config_data[f"{section}.{key}"] = value

        return config_data

    def _load_environment(self) -> Dict[str, Any]:
        """Collect NODE_BOOTSTRAP_* overrides keyed like the file."""
        env_data = {}
        for config_key in self.CONFIG_MAPPING:
            env_name = ENV_PREFIX + config_key.replace(".", "_").upper()
            if env_name in os.environ:
                env_data[config_key] = os.environ[env_name]
        return env_data

    def _create_config_from_data(self, config_data: Dict[str, Any],
                                 overrides: Dict[str, Any]) -> Config:
        """Create Config object from configuration data."""
        config_kwargs = {}
        invalid = []

        for config_key, raw_value in config_data.items():
            if config_key not in self.CONFIG_MAPPING:
                self.logger.debug(f"Ignoring unknown configuration key: {config_key}")
                continue
            field_name, field_type = self.CONFIG_MAPPING[config_key]
            try:
                config_kwargs[field_name] = self._convert(raw_value, field_type)
            except (ValueError, TypeError) as e:
                self.logger.error(f"Invalid value for {config_key}: {raw_value} ({e})")
                invalid.append(field_name)

        if invalid:
            raise ConfigError(invalid, "Values could not be converted to the expected type")

        for field_name, value in overrides.items():
            if value is not None:
                config_kwargs[field_name] = value

        # Empty optional strings mean "unset"
        if config_kwargs.get("advertise_host") == "":
            config_kwargs["advertise_host"] = None

        try:
            return Config(**config_kwargs)
        except ValueError as e:
            field_name = str(e).split(" ", 1)[0]
            raise ConfigError([field_name], str(e))

    def _convert(self, raw_value: Any, field_type: Any) -> Any:
        if field_type == bool:
            return self._parse_bool(raw_value)
        if field_type == int:
            return int(raw_value)
        if field_type == float:
            return float(raw_value)
        if field_type == list:
            return _parse_list(raw_value)
        if field_type == "mode":
            return _parse_mode(raw_value)
        return str(raw_value).strip() if raw_value is not None else None

    def _parse_bool(self, value: Any) -> bool:
        """Parse boolean value from string."""
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return value.lower() in ("true", "yes", "1", "on", "enabled")
        return bool(value)

    def validate_config(self, config: Config) -> ConfigValidationResult:
        """
        Validate configuration settings.

        Every missing required field is reported, not just the first one.
        """
        errors = []
        warnings = []

        for field_name, message in REQUIRED_FIELDS:
            if not getattr(config, field_name):
                errors.append(ConfigValidationError(field_name, message))

        if config.bundle_file_name and ("/" in config.bundle_file_name
                                        or config.bundle_file_name.startswith(".")):
            errors.append(ConfigValidationError(
                "bundle_file_name",
                "Bundle file name must be a plain file name"
            ))

        if config.bundle_mode & 0o007:
            errors.append(ConfigValidationError(
                "bundle_mode",
                f"Bundle mode {oct(config.bundle_mode)} grants world access to a shared secret"
            ))

        if config.install_dir and config.generator_backend == "certutil":
            if not os.path.isdir(config.install_dir):
                warnings.append(ConfigValidationError(
                    "install_dir",
                    f"Install directory does not exist: {config.install_dir}",
                    "warning"
                ))

        if 0 < config.distribution_port < 1024:
            warnings.append(ConfigValidationError(
                "distribution_port",
                "Distribution port is privileged and needs root to bind",
                "warning"
            ))

        if config.session_timeout_seconds == 0:
            warnings.append(ConfigValidationError(
                "session_timeout_seconds",
                "Session timeout disabled; the plaintext bundle server runs until stopped",
                "warning"
            ))

        if config.backoff_strategy == "fixed" and config.max_attempts * config.backoff_seconds > 3600:
            warnings.append(ConfigValidationError(
                "max_attempts",
                "Retrieval may wait over an hour before giving up",
                "warning"
            ))

        if config.log_file_path:
            log_dir = os.path.dirname(config.log_file_path)
            if log_dir and not os.path.exists(log_dir):
                warnings.append(ConfigValidationError(
                    "log_file_path",
                    f"Log directory does not exist: {log_dir}",
                    "warning"
                ))

        all_issues = errors + warnings
        return ConfigValidationResult(
            is_valid=len(errors) == 0,
            errors=all_issues,
            warnings=[]
        )

    def create_default_config_file(self, config_path: str) -> None:
        """
        Create a default configuration file with example settings.

        Args:
            config_path: Path where to create the config file
        """
        config_content = """# Node Bootstrap Configuration File

[cluster]
seed_hosts = 10.0.0.10, 10.0.0.11

[paths]
install_dir = /opt/elasticsearch
config_dir = /opt/elasticsearch/config
data_dir = /data
work_dir =

[service]
user = elasticsearch
group = elasticsearch

[trust]
bundle_file_name = elastic-certificates.p12
bundle_mode = 0640
generator = certutil
bundle_password =

# The bundle is served over plain HTTP without authentication.
# Only run the distribution step on a trusted network segment.
[distribution]
port = 8000
bind_host = 0.0.0.0
advertise_host =
session_timeout_seconds = 900
stop_after_first_fetch = false

[retrieval]
max_attempts = 50
backoff_seconds = 5
backoff_strategy = fixed
max_backoff_seconds = 60
request_timeout_seconds = 30

[app]
log_level = INFO
log_file_path = logs/node_bootstrap.log
"""

        config_dir = os.path.dirname(config_path)
        if config_dir:
            os.makedirs(config_dir, exist_ok=True)

        with open(config_path, 'w') as f:
            f.write(config_content)

        self.logger.info(f"Created default configuration file: {config_path}")
