"""
Configuration for the folio server
Defaults, then an optional YAML file (FOLIO_CONFIG), then environment variables
"""

import os
import logging
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

DEFAULTS = {
    'admin_secret': '',
    'admin_password_hash': '',
    'backend': 'auto',  # auto | github | local
    'data_dir': os.path.join(os.getcwd(), 'data'),
    'github_token': '',
    'github_owner': '',
    'github_repo': '',
    'github_branch': '',
    'github_data_path': 'data',
    'github_timeout': 10,
    'rate_limit_max': 50,
    'rate_limit_window_seconds': 15 * 60,
    'audit_log_capacity': 1000,
    'max_payload_bytes': 10 * 1024 * 1024,
    'cloudinary_cloud_name': '',
    'cloudinary_upload_preset': 'mathew-yel',
    'firebase_service_account': '',
    'host': '127.0.0.1',
    'port': 8080,
}

# setting name -> environment variable
ENV_VARS = {
    'admin_secret': 'ADMIN_SECRET',
    'admin_password_hash': 'ADMIN_PASSWORD_HASH',
    'backend': 'FOLIO_BACKEND',
    'data_dir': 'FOLIO_DATA_DIR',
    'github_token': 'GITHUB_TOKEN',
    'github_owner': 'GITHUB_OWNER',
    'github_repo': 'GITHUB_REPO',
    'github_branch': 'GITHUB_BRANCH',
    'github_data_path': 'GITHUB_DATA_PATH',
    'github_timeout': 'GITHUB_TIMEOUT',
    'rate_limit_max': 'RATE_LIMIT_MAX',
    'rate_limit_window_seconds': 'RATE_LIMIT_WINDOW_SECONDS',
    'audit_log_capacity': 'AUDIT_LOG_CAPACITY',
    'max_payload_bytes': 'MAX_PAYLOAD_BYTES',
    'cloudinary_cloud_name': 'CLOUDINARY_CLOUD_NAME',
    'cloudinary_upload_preset': 'CLOUDINARY_UPLOAD_PRESET',
    'firebase_service_account': 'FIREBASE_SERVICE_ACCOUNT',
    'host': 'FOLIO_HOST',
    'port': 'FOLIO_PORT',
}

INT_SETTINGS = {
    'github_timeout', 'rate_limit_max', 'rate_limit_window_seconds',
    'audit_log_capacity', 'max_payload_bytes', 'port',
}


class Settings:
    """Resolved configuration values, one attribute per key in DEFAULTS"""

    def __init__(self, **overrides):
        unknown = set(overrides) - set(DEFAULTS)
        if unknown:
            raise ValueError(f"Unknown settings: {', '.join(sorted(unknown))}")

        values = dict(DEFAULTS)
        values.update(overrides)
        for key, value in values.items():
            if key in INT_SETTINGS:
                value = _to_int(key, value)
            setattr(self, key, value)

        if self.backend not in ('auto', 'github', 'local'):
            raise ValueError(f"backend must be auto, github or local, got {self.backend!r}")

    @property
    def github_configured(self) -> bool:
        return bool(self.github_token and self.github_owner and self.github_repo)

    def as_dict(self, redact=True):
        """Settings as a dict, with secrets masked unless redact=False"""
        data = {key: getattr(self, key) for key in DEFAULTS}
        if redact:
            for key in ('admin_secret', 'admin_password_hash', 'github_token'):
                if data[key]:
                    data[key] = '***'
        return data


def _to_int(key, value):
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError(f"{ENV_VARS.get(key, key)} must be an integer, got {value!r}")


def load_config_file(path):
    """Read a YAML mapping of settings; keys may use either setting or env var names"""
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ValueError(f"Config file {config_path} must contain a mapping")

    by_env_name = {env: key for key, env in ENV_VARS.items()}
    settings = {}
    for key, value in data.items():
        name = by_env_name.get(key, key)
        if name not in DEFAULTS:
            logger.warning(f"Ignoring unknown config key '{key}' in {config_path}")
            continue
        settings[name] = value
    return settings


def load_settings(environ=None, config_path=None) -> Settings:
    """Build Settings from defaults, optional YAML file and environment"""
    environ = os.environ if environ is None else environ
    values = {}

    config_path = config_path or environ.get('FOLIO_CONFIG')
    if config_path:
        values.update(load_config_file(config_path))
        logger.info(f"Loaded config file: {config_path}")

    for key, env_name in ENV_VARS.items():
        if env_name in environ and environ[env_name] != '':
            values[key] = environ[env_name]

    return Settings(**values)
