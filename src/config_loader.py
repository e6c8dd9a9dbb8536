"""
Configuration loader for the Chamber Link client
Loads and validates configuration from YAML files
"""

import copy
import os
import re
import yaml
import logging
from typing import Dict, Any
from pathlib import Path
from datetime import datetime
import pytz

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = 'CHAMBER_LINK_CONFIG'
BACKEND_URL_ENV_VAR = 'CHAMBER_BACKEND_URL'

DEFAULTS = {
    'backend': {
        'override_address': None,
        'port': 8000,
        'scheme': 'http',
        'health_path': '/health',
        'stream_path': '/ws/system-status',
    },
    'discovery': {
        'subnets': ['192.168.1', '192.168.0', '10.0.0', '172.16.0'],
        'quick_host': 2,
        'scan_start': 1,
        'scan_end': 254,
        'full_scan': False,
        'max_concurrent': 20,
        'check_timeout': 2,
        'expected_service': 'elixir-backend',
        'version_pattern': r'^\d+\.\d+\.\d+',
        'verify_endpoints': ['/api/status/system'],
        'cache_file': None,
    },
    'connection': {
        'reconnect_interval_seconds': 2,
        'max_reconnect_attempts': 5,
        'rediscover_every': 3,
        'connection_timeout_seconds': 10,
        'heartbeat_seconds': 30,
        'recovery_check_seconds': 10,
        'status_log_seconds': 60,
    },
    'commands': {
        'request_timeout_seconds': 5,
        'confirmation_timeout_seconds': 3,
        'poll_interval_seconds': 0.1,
    },
    'pressure': {
        'step': 0.1,
        'floor': 1.0,
        'ceiling': 1.99,
    },
    'logging': {
        'level': 'INFO',
        'file': None,
        'console_output': True,
        'timezone': 'UTC',
    },
    'dev_backend': {
        'synthetic': False,
        'host': '0.0.0.0',
        'port': 8000,
        'service': 'elixir-backend',
        'version': '1.2.3',
        'error_rate': 0.0,
        'response_delay': 0.0,
    },
}

POSITIVE_FIELDS = [
    ('discovery', 'check_timeout'),
    ('discovery', 'max_concurrent'),
    ('connection', 'reconnect_interval_seconds'),
    ('connection', 'rediscover_every'),
    ('connection', 'connection_timeout_seconds'),
    ('commands', 'request_timeout_seconds'),
    ('commands', 'confirmation_timeout_seconds'),
    ('commands', 'poll_interval_seconds'),
    ('pressure', 'step'),
]


def load_config(config_path: str = None) -> Dict[str, Any]:
    """
    Load configuration from YAML file with validation
    """
    config_path = config_path or os.environ.get(CONFIG_ENV_VAR, 'config/config.yaml')
    try:
        config_file = Path(config_path)
        if not config_file.exists():
            logger.error(f"Configuration file not found: {config_path}")
            raise FileNotFoundError(f"Config file not found: {config_path}")

        with open(config_file, 'r') as f:
            config = yaml.safe_load(f) or {}

        config = build_config(config)
        logger.info(f"Configuration loaded from {config_path}")
        return config

    except Exception as e:
        logger.error(f"Failed to load configuration: {e}")
        raise


def build_config(raw: Dict) -> Dict[str, Any]:
    """Validate a raw config mapping and fill in defaults and environment overrides"""
    if not isinstance(raw, dict):
        raise ValueError("Configuration root must be a mapping")
    _validate_sections(raw)
    config = _apply_defaults(raw)
    config = _apply_env_overrides(config)
    _validate_config(config)
    return config


def _validate_sections(config: Dict) -> None:
    """Validate that required configuration sections exist"""
    required_sections = ['discovery']

    for section in required_sections:
        if section not in config:
            raise ValueError(f"Missing required configuration section: {section}")

    for section, value in config.items():
        if section in DEFAULTS and value is not None and not isinstance(value, dict):
            raise ValueError(f"Configuration section {section} must be a mapping")


def _validate_config(config: Dict) -> None:
    """Validate merged configuration values"""
    discovery = config['discovery']
    if not discovery['subnets'] and not config['backend']['override_address']:
        raise ValueError("discovery.subnets must not be empty unless backend.override_address is set")

    try:
        re.compile(discovery['version_pattern'])
    except re.error as e:
        raise ValueError(f"discovery.version_pattern is not a valid regex: {e}")

    if not 0 <= discovery['quick_host'] <= 255:
        raise ValueError("discovery.quick_host must be between 0 and 255")
    if discovery['scan_start'] > discovery['scan_end']:
        raise ValueError("discovery.scan_start must not exceed discovery.scan_end")

    for section, field in POSITIVE_FIELDS:
        value = config[section][field]
        if not isinstance(value, (int, float)) or value <= 0:
            raise ValueError(f"{section}.{field} must be a positive number")

    if config['connection']['max_reconnect_attempts'] < 0:
        raise ValueError("connection.max_reconnect_attempts must not be negative")

    pressure = config['pressure']
    if pressure['floor'] >= pressure['ceiling']:
        raise ValueError("pressure.floor must be below pressure.ceiling")


def _apply_defaults(config: Dict) -> Dict:
    """Apply default values to configuration"""
    merged = copy.deepcopy(config)
    for section, defaults in DEFAULTS.items():
        if merged.get(section) is None:
            merged[section] = {}
        for key, default_value in defaults.items():
            if key not in merged[section]:
                merged[section][key] = copy.deepcopy(default_value)
    return merged


def _apply_env_overrides(config: Dict) -> Dict:
    """Environment wins over the file for the backend address"""
    override = os.environ.get(BACKEND_URL_ENV_VAR)
    if override:
        logger.info(f"Backend address override from {BACKEND_URL_ENV_VAR}: {override}")
        config['backend']['override_address'] = override
    return config


def discovery_settings(config: Dict) -> Dict[str, Any]:
    """Flat view of the backend + discovery sections used by the discovery components"""
    settings = dict(config['discovery'])
    backend = config['backend']
    settings.update({
        'override_address': backend['override_address'],
        'port': backend['port'],
        'scheme': backend['scheme'],
        'health_path': backend['health_path'],
    })
    return settings


def connection_settings(config: Dict) -> Dict[str, Any]:
    settings = dict(config['connection'])
    settings['stream_path'] = config['backend']['stream_path']
    return settings


class TimezoneFormatter(logging.Formatter):
    """Formatter that renders timestamps in a configured timezone"""

    def __init__(self, fmt=None, tz_name: str = 'UTC'):
        super().__init__(fmt)
        self.tz = pytz.timezone(tz_name)

    def formatTime(self, record, datefmt=None):
        dt = datetime.fromtimestamp(record.created, tz=self.tz)
        if datefmt:
            return dt.strftime(datefmt)
        else:
            # Default format: YYYY-MM-DD HH:MM:SS TZ
            return dt.strftime('%Y-%m-%d %H:%M:%S %Z')


def setup_logging(config: Dict) -> None:
    """Setup logging based on configuration"""
    log_config = config.get('logging', {})
    level = log_config.get('level', 'INFO')
    tz_name = log_config.get('timezone', 'UTC')

    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    formatter = TimezoneFormatter(log_format, tz_name)

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper()))
    for handler in list(root.handlers):
        root.removeHandler(handler)

    if log_config.get('console_output', True):
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        root.addHandler(console_handler)

    log_file = log_config.get('file')
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    logger.info(f"Logging configured: level={level}, timezone={tz_name}, "
                f"console={log_config.get('console_output', True)}, file={log_file}")


def get_sample_config() -> Dict:
    """Return a sample configuration for reference"""
    return {
        "backend": {
            "override_address": None,          # e.g. "192.168.1.50:8000" skips scanning
            "port": 8000,
            "stream_path": "/ws/system-status"
        },
        "discovery": {
            "subnets": ["192.168.1", "192.168.0", "10.0.0", "172.16.0"],
            "quick_host": 2,                   # gateway-adjacent host tried first per subnet
            "full_scan": False,                # scan scan_start..scan_end when quick scan fails
            "scan_start": 1,
            "scan_end": 254,
            "max_concurrent": 20,
            "check_timeout": 2,
            "expected_service": "elixir-backend",
            "version_pattern": r"^\d+\.\d+\.\d+",
            "verify_endpoints": ["/api/status/system"],
            "cache_file": "cache/last_backend.json"
        },
        "connection": {
            "reconnect_interval_seconds": 2,
            "max_reconnect_attempts": 5,
            "rediscover_every": 3,
            "connection_timeout_seconds": 10,
            "recovery_check_seconds": 10,
            "status_log_seconds": 60
        },
        "commands": {
            "request_timeout_seconds": 5,
            "confirmation_timeout_seconds": 3,
            "poll_interval_seconds": 0.1
        },
        "pressure": {
            "step": 0.1,
            "floor": 1.0,
            "ceiling": 1.99
        },
        "logging": {
            "level": "INFO",
            "file": "logs/chamber_link.log",
            "console_output": True,
            "timezone": "UTC"
        },
        "dev_backend": {
            "synthetic": False,            # in-process backend double instead of the network
            "host": "0.0.0.0",
            "port": 8000,
            "error_rate": 0.0
        }
    }
