#!/usr/bin/env python3
"""
Configuration Manager for dbshift
Handles environment variables, connection strings and migration policy centrally
"""

import os
import json
import logging
from pathlib import Path
from typing import Dict, Any, Optional, List
from dataclasses import dataclass, field

from core.bypass_policy import BypassPolicy
from core.errors import mask_credentials

logger = logging.getLogger(__name__)

# Integration/credential tables first so dependent rows find their parents
DEFAULT_PRIORITY_TABLES = [
    'integrations',
    'users',
    'team_members',
    'dashboard_tile_instances',
    'cohorts',
    'segments',
    'campaigns',
    'roles',
    'permissions',
    'role_permissions',
    'uploaded_images',
    'slides',
    'presentations',
]

DEFAULT_BYPASS_RULES = {
    'scheduled_reports': 'causes database termination due to complex foreign key dependencies',
}


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def _split_list(value: str) -> List[str]:
    return [item.strip() for item in value.split(',') if item.strip()]


def _parse_bypass(value: str) -> Dict[str, str]:
    """'table:reason;other:reason' -> {table: reason}"""
    rules = {}
    for entry in value.split(';'):
        table, _, reason = entry.partition(':')
        if table.strip():
            rules[table.strip()] = reason.strip() or 'bypassed by policy'
    return rules


@dataclass
class DBShiftConfig:
    """dbshift configuration settings"""

    base_dir: Path = None
    config_file: Optional[Path] = None

    # Connection strings (secrets; never logged unmasked)
    source_url: Optional[str] = None
    target_url: Optional[str] = None

    # Migration policy
    schema: str = "public"
    validation_timeout: int = 10
    priority_tables: List[str] = field(default_factory=lambda: list(DEFAULT_PRIORITY_TABLES))
    bypass_rules: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_BYPASS_RULES))
    copy_unlisted_tables: bool = True
    reset_sequences: bool = True
    verify_counts: bool = True
    order_column: str = "created_at"
    max_recorded_errors: int = 100

    # Server settings
    host: str = "127.0.0.1"
    port: int = 8000
    cors_origins: List[str] = field(default_factory=lambda: ["*"])

    # Runtime settings
    debug_mode: bool = False
    log_level: str = "INFO"

    # Profile settings
    profile: str = "dev"  # dev, prod

    def __post_init__(self):
        """Load the optional JSON file, then environment variables on top"""
        self.profile = os.environ.get('DBSHIFT_PROFILE', self.profile)

        if self.base_dir is None:
            default_root = Path(__file__).parent.parent
            self.base_dir = Path(os.environ.get('DBSHIFT_HOME', default_root))
        else:
            self.base_dir = Path(self.base_dir)

        if self.config_file is None and os.environ.get('DBSHIFT_CONFIG'):
            self.config_file = Path(os.environ['DBSHIFT_CONFIG'])
        if self.config_file is not None:
            self.apply_file(Path(self.config_file))

        # Connection strings
        self.source_url = os.environ.get('DATABASE_URL', self.source_url)
        self.target_url = os.environ.get('TARGET_DATABASE_URL', self.target_url)

        # Migration policy
        self.schema = os.environ.get('DBSHIFT_SCHEMA', self.schema)
        self.validation_timeout = int(os.environ.get('DBSHIFT_VALIDATION_TIMEOUT', str(self.validation_timeout)))
        if os.environ.get('DBSHIFT_PRIORITY_TABLES'):
            self.priority_tables = _split_list(os.environ['DBSHIFT_PRIORITY_TABLES'])
        if os.environ.get('DBSHIFT_BYPASS'):
            self.bypass_rules = _parse_bypass(os.environ['DBSHIFT_BYPASS'])
        self.copy_unlisted_tables = _env_bool('DBSHIFT_COPY_UNLISTED', self.copy_unlisted_tables)
        self.reset_sequences = _env_bool('DBSHIFT_RESET_SEQUENCES', self.reset_sequences)
        self.verify_counts = _env_bool('DBSHIFT_VERIFY_COUNTS', self.verify_counts)
        self.order_column = os.environ.get('DBSHIFT_ORDER_COLUMN', self.order_column)

        # Server settings
        self.host = os.environ.get('DBSHIFT_HOST', self.host)
        self.port = int(os.environ.get('DBSHIFT_PORT', str(self.port)))
        if os.environ.get('DBSHIFT_CORS_ORIGINS'):
            self.cors_origins = _split_list(os.environ['DBSHIFT_CORS_ORIGINS'])

        # Runtime settings
        self.debug_mode = _env_bool('DBSHIFT_DEBUG', self.debug_mode)
        self.log_level = os.environ.get('DBSHIFT_LOG_LEVEL', self.log_level).upper()

        if self.profile == 'prod':
            self.debug_mode = False
            if 'DBSHIFT_LOG_LEVEL' not in os.environ:
                self.log_level = 'WARNING'

    def apply_file(self, path: Path):
        """Overlay settings from a JSON file; unknown keys are ignored with a warning"""
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"Config file {path} must contain a JSON object")

        for key, value in data.items():
            if key == 'bypass_rules' and isinstance(value, list):
                value = {rule.table: rule.reason for rule in BypassPolicy.from_config(value).rules}
            if key in ('base_dir', 'config_file') or not hasattr(self, key):
                logger.warning(f"Ignoring unknown config key '{key}' in {path}")
                continue
            setattr(self, key, value)

    def get_safe_dict(self) -> Dict[str, Any]:
        """Get configuration as dict without sensitive values (side-effect free)"""
        return {
            'base_dir': str(self.base_dir),
            'config_file': str(self.config_file) if self.config_file else None,
            'source_url': mask_credentials(self.source_url) if self.source_url else None,
            'target_url': mask_credentials(self.target_url) if self.target_url else None,
            'schema': self.schema,
            'validation_timeout': self.validation_timeout,
            'priority_tables': list(self.priority_tables),
            'bypass_rules': dict(self.bypass_rules),
            'copy_unlisted_tables': self.copy_unlisted_tables,
            'reset_sequences': self.reset_sequences,
            'verify_counts': self.verify_counts,
            'host': self.host,
            'port': self.port,
            'debug_mode': self.debug_mode,
            'log_level': self.log_level,
            'profile': self.profile,
        }


class ConfigManager:
    """Singleton configuration manager"""

    _instance: Optional['ConfigManager'] = None
    _config: Optional[DBShiftConfig] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if self._config is None:
            self.load_config()

    def load_config(self, config_file: Optional[Path] = None):
        """Load configuration from file and environment.

        Priority (highest to lowest):
        1. Environment variables (DBSHIFT_*, DATABASE_URL, TARGET_DATABASE_URL)
        2. .env file (loaded into os.environ before config creation)
        3. JSON config file (DBSHIFT_CONFIG or config_file)
        4. DBShiftConfig dataclass defaults
        """
        default_base = Path(__file__).parent.parent
        base_dir = Path(os.environ.get('DBSHIFT_HOME', default_base))
        env_file = base_dir / '.env'
        if env_file.exists():
            self._load_env_file(env_file)

        self._config = DBShiftConfig(config_file=config_file)

    def _load_env_file(self, env_file: Path):
        """Load environment variables from .env file.

        Only sets values for keys not already in os.environ,
        ensuring exported env vars take precedence over .env file.
        """
        try:
            with open(env_file, 'r') as f:
                for line in f:
                    line = line.strip()
                    if line and not line.startswith('#'):
                        if '=' in line:
                            key, value = line.split('=', 1)
                            key = key.strip()
                            if key not in os.environ:
                                os.environ[key] = value.strip().strip('"').strip("'")
        except OSError as e:
            logger.warning(f"Could not load .env file: {e}")

    @property
    def config(self) -> DBShiftConfig:
        """Get the current configuration"""
        if self._config is None:
            self.load_config()
        return self._config

    @classmethod
    def reset(cls):
        """Drop the cached configuration (tests, reloads)"""
        if cls._instance is not None:
            cls._instance._config = None


def get_config() -> DBShiftConfig:
    """Get the global configuration instance"""
    return ConfigManager().config


if __name__ == "__main__":
    config = get_config()
    print("dbshift Configuration Status:")
    print("-" * 40)
    for key, value in config.get_safe_dict().items():
        print(f"{key}: {value}")
