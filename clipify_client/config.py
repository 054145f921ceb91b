"""
Configuration Management for the Clipify desktop client.

This module resolves the runtime environment (production or development) and
the endpoints, OAuth redirect target, token storage and logging settings that
depend on it, with support for a configuration file and environment variables.
"""

import os
import json
import logging
from pathlib import Path
from typing import Optional, Dict, Any
from configparser import ConfigParser

from clipify_shared.exceptions import ConfigurationError
from clipify_shared.interfaces import IConfigurationManager

logger = logging.getLogger(__name__)

PRODUCTION = "production"
DEVELOPMENT = "development"

ENVIRONMENT_DEFAULTS: Dict[str, Dict[str, Dict[str, Any]]] = {
    PRODUCTION: {
        'frontend': {'base_url': 'https://clipify.space/'},
        'api': {'base_url': 'https://clipify0.el.r.appspot.com', 'timeout': 30.0},
        'logging': {'level': 'WARNING'},
    },
    DEVELOPMENT: {
        'frontend': {'base_url': 'http://localhost:5173/'},
        'api': {'base_url': 'http://localhost:8080', 'timeout': 10.0},
        'logging': {'level': 'DEBUG'},
    },
}


class ClientConfiguration(IConfigurationManager):
    """
    Configuration manager for the Clipify desktop client.

    Supports configuration from:
    1. Runtime overrides (highest priority)
    2. Environment variables
    3. Configuration file
    4. Environment-specific defaults (lowest priority)
    """

    def __init__(self, config_file: Optional[str] = None, create_default: bool = True):
        self._config_file = config_file or self._get_default_config_path(create_default)
        self._config_data: Dict[str, Any] = {}
        self._overrides: Dict[str, Any] = {}

        self._load_configuration()

    def _get_default_config_path(self, create_default: bool) -> str:
        """Get default configuration file path: ~/.clipify/client.conf"""
        config_dir = Path.home() / '.clipify'
        user_config_path = str(config_dir / 'client.conf')

        if create_default and not os.path.exists(user_config_path):
            config_dir.mkdir(parents=True, exist_ok=True)
            self._create_default_config(user_config_path)

        return user_config_path

    def _create_default_config(self, config_path: str) -> None:
        """Create a commented default configuration file."""
        default_config = """# Clipify Desktop Client Configuration
# Configuration file: {config_path}

[environment]
# production or development
name = production

[api]
# API base URL (defaults depend on the environment)
# base_url = https://clipify0.el.r.appspot.com
# timeout = 30

[oauth]
# Custom-scheme target the website redirects to after login
redirect_uri = clipify://auth/callback
scheme = clipify

[storage]
service_name = clipify-desktop
# Seconds before real expiry at which a token is treated as expired
expiry_buffer = 300

[ui]
show_notifications = true

[logging]
# Logging level: DEBUG, INFO, WARNING, ERROR, CRITICAL
# level = WARNING
""".format(config_path=config_path)

        try:
            with open(config_path, 'w') as f:
                f.write(default_config)
            logger.info(f"Created default configuration file: {config_path}")
        except OSError as e:
            logger.warning(f"Failed to create default configuration: {e}")

    def _load_configuration(self) -> None:
        """Load configuration from file, then environment, then defaults."""
        if os.path.exists(self._config_file):
            try:
                self._load_from_file()
                logger.info(f"Configuration loaded from: {self._config_file}")
            except Exception as e:
                logger.warning(f"Failed to load configuration file: {e}")
        else:
            logger.info(f"Configuration file not found: {self._config_file}")

        self._load_from_environment()
        self._set_defaults()

    def _load_from_file(self) -> None:
        """Load configuration from INI file."""
        config = ConfigParser()
        config.read(self._config_file)

        for section_name in config.sections():
            section_data = {}
            for key, value in config[section_name].items():
                try:
                    section_data[key] = json.loads(value)
                except (json.JSONDecodeError, ValueError):
                    section_data[key] = value

            self._config_data[section_name] = section_data

    def _load_from_environment(self) -> None:
        """Load configuration from CLIPIFY_* environment variables."""
        env_mappings = {
            'CLIPIFY_ENVIRONMENT': ('environment', 'name'),
            'CLIPIFY_WEBSITE_BASE_URL': ('frontend', 'base_url'),
            'CLIPIFY_API_BASE_URL': ('api', 'base_url'),
            'CLIPIFY_API_TIMEOUT': ('api', 'timeout'),
            'CLIPIFY_OAUTH_REDIRECT_URI': ('oauth', 'redirect_uri'),
            'CLIPIFY_STORAGE_DIR': ('storage', 'directory'),
            'CLIPIFY_TOKEN_EXPIRY_BUFFER': ('storage', 'expiry_buffer'),
            'CLIPIFY_LOG_LEVEL': ('logging', 'level'),
            'CLIPIFY_LOG_FILE': ('logging', 'file'),
            'CLIPIFY_SHOW_NOTIFICATIONS': ('ui', 'show_notifications'),
        }

        for env_var, (section, key) in env_mappings.items():
            value = os.environ.get(env_var)
            if value is None:
                continue

            section_data = self._config_data.setdefault(section, {})
            if value.lower() in ('true', 'false'):
                section_data[key] = value.lower() == 'true'
            elif value.isdigit():
                section_data[key] = int(value)
            else:
                section_data[key] = value

    def _detect_environment(self) -> str:
        name = str(self._config_data.get('environment', {}).get('name', PRODUCTION)).lower()
        if name not in ENVIRONMENT_DEFAULTS:
            logger.warning(f"Unknown environment '{name}', defaulting to {DEVELOPMENT}")
            return DEVELOPMENT
        return name

    def _set_defaults(self) -> None:
        """Merge environment-specific defaults under the loaded values."""
        environment = self._detect_environment()
        self._config_data.setdefault('environment', {})['name'] = environment

        defaults = {
            'oauth': {
                'redirect_uri': 'clipify://auth/callback',
                'scheme': 'clipify'
            },
            'storage': {
                'service_name': 'clipify-desktop',
                'expiry_buffer': 300,
                'directory': None
            },
            'ui': {
                'show_notifications': True
            },
            'logging': {
                'file': None,
                'format': 'standard'
            }
        }
        for section, section_defaults in ENVIRONMENT_DEFAULTS[environment].items():
            defaults.setdefault(section, {}).update(section_defaults)

        for section, section_defaults in defaults.items():
            section_data = self._config_data.setdefault(section, {})
            for key, default_value in section_defaults.items():
                if key not in section_data:
                    section_data[key] = default_value

    def get_config(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation.

        Args:
            key: Configuration key in format 'section.key'
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        if key in self._overrides:
            return self._overrides[key]

        if '.' not in key:
            return self._config_data.get(key, default)

        section, config_key = key.split('.', 1)
        return self._config_data.get(section, {}).get(config_key, default)

    def set_config(self, key: str, value: Any) -> None:
        """
        Set configuration value using dot notation.

        Args:
            key: Configuration key in format 'section.key'
            value: Value to set
        """
        if '.' not in key:
            self._config_data[key] = value
            return

        section, config_key = key.split('.', 1)
        self._config_data.setdefault(section, {})[config_key] = value

    def set_override(self, key: str, value: Any) -> None:
        """Set a runtime override (highest priority) for a 'section.key'."""
        self._overrides[key] = value

    def save_configuration(self) -> None:
        """Save current configuration to file."""
        config = ConfigParser()

        for section_name, section_data in self._config_data.items():
            config.add_section(section_name)
            for key, value in section_data.items():
                if value is None:
                    continue
                if isinstance(value, (dict, list, bool)):
                    config.set(section_name, key, json.dumps(value))
                else:
                    config.set(section_name, key, str(value))

        config_path = Path(self._config_file)
        config_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            with open(self._config_file, 'w') as f:
                config.write(f)
        except OSError as e:
            logger.error(f"Failed to save configuration: {e}")
            raise ConfigurationError(f"Failed to save configuration: {e}", cause=e)

        logger.info(f"Configuration saved to: {self._config_file}")

    def reload_configuration(self) -> None:
        """Reload configuration from file and environment."""
        self._config_data.clear()
        self._load_configuration()
        logger.info("Configuration reloaded")

    def get_config_file_path(self) -> str:
        return self._config_file

    def get_all_config(self) -> Dict[str, Any]:
        return {section: dict(values) for section, values in self._config_data.items()}

    # Convenience getters

    def get_environment(self) -> str:
        return self.get_config('environment.name', PRODUCTION)

    def is_production(self) -> bool:
        return self.get_environment() == PRODUCTION

    def get_frontend_base_url(self) -> str:
        """Website base URL, without a trailing slash."""
        return str(self.get_config('frontend.base_url')).rstrip('/')

    def get_api_base_url(self) -> str:
        """API base URL, without a trailing slash."""
        return str(self.get_config('api.base_url')).rstrip('/')

    def get_api_timeout(self) -> float:
        """API request timeout in seconds."""
        return self._get_number('api.timeout', minimum=0.001)

    def get_redirect_uri(self) -> str:
        return self.get_config('oauth.redirect_uri')

    def get_app_scheme(self) -> str:
        return self.get_config('oauth.scheme')

    def get_storage_service_name(self) -> str:
        return self.get_config('storage.service_name')

    def get_token_expiry_buffer(self) -> int:
        return int(self._get_number('storage.expiry_buffer', minimum=0))

    def get_storage_dir(self) -> Optional[Path]:
        directory = self.get_config('storage.directory')
        return Path(directory).expanduser() if directory else None

    def get_log_level(self) -> str:
        return str(self.get_config('logging.level', 'INFO')).upper()

    def get_log_file(self) -> Optional[str]:
        return self.get_config('logging.file')

    def get_log_format(self) -> str:
        return self.get_config('logging.format', 'standard')

    def should_show_notifications(self) -> bool:
        return bool(self.get_config('ui.show_notifications', True))

    def _get_number(self, key: str, minimum: float) -> float:
        value = self.get_config(key)
        try:
            number = float(value)
        except (TypeError, ValueError):
            raise ConfigurationError(f"Invalid numeric value for {key}: {value!r}", config_key=key)
        if number < minimum:
            raise ConfigurationError(f"Value for {key} must be at least {minimum}: {value!r}", config_key=key)
        return number
