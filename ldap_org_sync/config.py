"""
Configuration loading and management for LDAP Org Sync.

This module handles loading configuration from YAML files and environment
variables, validation of the user and group queries, and defaults.
"""

import copy
import os
import yaml
import logging
from typing import Dict, Any, List, Optional

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing required fields."""
    pass


VALID_SCOPES = ('base', 'one', 'sub')

DEFAULT_OPTIONS = {
    'scope': 'one',
    'attributes': ['*', '+'],
}

DEFAULT_USER_MAP = {
    'rdn': 'uid',
    'name': 'uid',
    'displayName': 'cn',
    'email': 'mail',
    'memberOf': 'memberOf',
}

DEFAULT_GROUP_MAP = {
    'rdn': 'cn',
    'name': 'cn',
    'description': 'description',
    'displayName': 'cn',
    'type': 'groupType',
    'memberOf': 'memberOf',
    'members': 'member',
}

DEFAULT_MAPS = {
    'users': DEFAULT_USER_MAP,
    'groups': DEFAULT_GROUP_MAP,
}


def _as_query_list(value: Any) -> List[Any]:
    """A query section may be a single mapping or a list of them."""
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


class ConfigLoader:
    """Handles loading and validation of application configuration."""

    # Environment variable mappings for sensitive fields
    ENV_OVERRIDES = {
        'ldap.bind.secret': 'LDAP_BIND_SECRET',
        'notifications.smtp_password': 'SMTP_PASSWORD',
    }

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize config loader.

        Args:
            config_path: Path to config file. If None, uses CONFIG_PATH env var or 'config.yaml'
        """
        self.config_path = config_path or os.getenv('CONFIG_PATH', 'config.yaml')
        self.config = {}

    def load(self) -> Dict[str, Any]:
        """
        Load configuration from file and apply environment overrides.

        Returns:
            Parsed and validated configuration dictionary

        Raises:
            ConfigurationError: If config file not found or validation fails
        """
        try:
            with open(self.config_path, 'r') as f:
                data = yaml.safe_load(f)
        except FileNotFoundError:
            raise ConfigurationError(f"Configuration file not found: {self.config_path}")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}")

        self.load_dict(data)
        logger.info(f"Configuration loaded successfully from {self.config_path}")
        return self.config

    def load_dict(self, data: Any) -> Dict[str, Any]:
        """
        Process an already parsed configuration.

        The input is copied; the returned dictionary is owned by the loader.
        """
        if not isinstance(data, dict):
            raise ConfigurationError("Configuration must be a mapping at the top level")

        self.config = copy.deepcopy(data)
        self._apply_env_overrides()
        self._validate()
        self._apply_defaults()
        return self.config

    def _apply_env_overrides(self):
        """Apply environment variable overrides for sensitive fields."""
        for config_key, env_var in self.ENV_OVERRIDES.items():
            env_value = os.getenv(env_var)
            if env_value:
                self._set_nested_value(self.config, config_key, env_value)
                logger.debug(f"Applied environment override for {config_key}")

    def _set_nested_value(self, config: Dict, key_path: str, value: Any):
        """Set a nested configuration value using dot notation."""
        keys = key_path.split('.')
        current = config
        for key in keys[:-1]:
            if not isinstance(current.get(key), dict):
                current[key] = {}
            current = current[key]
        current[keys[-1]] = value

    def _validate(self):
        """Validate required configuration fields, collecting every problem."""
        errors = []

        ldap_config = self.config.get('ldap')
        if not isinstance(ldap_config, dict):
            raise ConfigurationError("Configuration validation failed:\n  - Missing ldap section")

        if not ldap_config.get('target'):
            errors.append("Missing required LDAP field: target")

        bind = ldap_config.get('bind')
        if bind is not None:
            if not isinstance(bind, dict) or not bind.get('dn'):
                errors.append("ldap.bind must contain a dn")
            elif not bind.get('secret'):
                errors.append("ldap.bind.secret is required when binding (or set LDAP_BIND_SECRET)")

        vendor = ldap_config.get('vendor')
        if vendor is not None and (not isinstance(vendor, str) or not vendor.isidentifier()):
            errors.append(f"ldap.vendor must be a vendor module name, got {vendor!r}")

        users = _as_query_list(ldap_config.get('users'))
        groups = _as_query_list(ldap_config.get('groups'))
        if not users and not groups:
            errors.append("At least one user or group query must be configured")

        for section, queries in (('users', users), ('groups', groups)):
            for i, query in enumerate(queries):
                errors.extend(self._validate_query(f"ldap.{section}[{i}]", query))

        ingest = self.config.get('ingest', {})
        if not isinstance(ingest, dict):
            errors.append("ingest must be a mapping")
        elif 'max_workers' in ingest and (not isinstance(ingest['max_workers'], int) or ingest['max_workers'] < 1):
            errors.append("ingest.max_workers must be a positive integer")

        if errors:
            raise ConfigurationError("Configuration validation failed:\n" + "\n".join(f"  - {error}" for error in errors))

    def _validate_query(self, prefix: str, query: Any) -> List[str]:
        if not isinstance(query, dict):
            return [f"{prefix} must be a mapping"]

        errors = []
        if not query.get('dn') or not isinstance(query['dn'], str):
            errors.append(f"Missing dn for {prefix}")

        options = query.get('options', {})
        if not isinstance(options, dict):
            errors.append(f"{prefix}.options must be a mapping")
        else:
            scope = options.get('scope')
            if scope is not None and scope not in VALID_SCOPES:
                errors.append(f"{prefix}.options.scope must be one of {', '.join(VALID_SCOPES)}, got {scope!r}")
            attributes = options.get('attributes')
            if attributes is not None and (not isinstance(attributes, list) or
                                           not all(isinstance(a, str) for a in attributes)):
                errors.append(f"{prefix}.options.attributes must be a list of attribute names")

        mapping = query.get('map', {})
        if not isinstance(mapping, dict):
            errors.append(f"{prefix}.map must be a mapping")
        else:
            for field, attribute in mapping.items():
                if not isinstance(attribute, str) or not attribute:
                    errors.append(f"{prefix}.map.{field} must be an attribute name")

        overrides = query.get('set')
        if overrides is not None and not isinstance(overrides, dict):
            errors.append(f"{prefix}.set must be a mapping of field paths to values")

        return errors

    def _apply_defaults(self):
        """Apply default values for optional configuration fields."""
        ldap_config = self.config['ldap']
        ldap_defaults = {
            'page_size': 500,
            'connection_timeout': 10,
            'receive_timeout': 10,
        }
        for key, value in ldap_defaults.items():
            ldap_config.setdefault(key, value)

        for section, default_map in DEFAULT_MAPS.items():
            queries = []
            for query in _as_query_list(ldap_config.get(section)):
                options = dict(DEFAULT_OPTIONS)
                options.update(query.get('options') or {})
                mapping = dict(default_map)
                mapping.update(query.get('map') or {})
                queries.append({
                    'dn': query['dn'],
                    'options': options,
                    'map': mapping,
                    'set': query.get('set') or {},
                })
            ldap_config[section] = queries

        # Logging defaults
        logging_defaults = {
            'level': 'INFO',
            'log_dir': 'logs',
            'rotation': 'daily',
            'retention_days': 7
        }
        logging_config = self.config.setdefault('logging', {})
        for key, value in logging_defaults.items():
            logging_config.setdefault(key, value)

        # Error handling defaults
        error_defaults = {
            'max_retries': 3,
            'retry_wait_seconds': 5,
        }
        error_config = self.config.setdefault('error_handling', {})
        for key, value in error_defaults.items():
            error_config.setdefault(key, value)

        ingest_defaults = {
            'max_workers': 4,
            'progress_interval_seconds': 5,
        }
        ingest_config = self.config.setdefault('ingest', {})
        for key, value in ingest_defaults.items():
            ingest_config.setdefault(key, value)

        self.config.setdefault('output', {}).setdefault('path', None)

        # Notification defaults
        notification_defaults = {
            'enable_email': False,
            'email_on_failure': True,
            'email_on_success': False,
            'smtp_port': 587,
            'smtp_tls': True
        }
        notification_config = self.config.setdefault('notifications', {})
        for key, value in notification_defaults.items():
            notification_config.setdefault(key, value)


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Convenience function to load configuration.

    Args:
        config_path: Path to config file

    Returns:
        Loaded configuration dictionary
    """
    loader = ConfigLoader(config_path)
    return loader.load()
