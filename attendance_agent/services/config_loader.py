import copy
import os

import yaml
from pathlib import Path

DEFAULT_CONFIG = {
    "backend": {
        "url": "",
        "timeout_seconds": 15,
        "retry_count": 3,
        "backoff_base_seconds": 1.0,
        "backoff_max_seconds": 8.0,
    },
    "storage": {
        "backend": "sqlite",
        "path": ".attendance/state.db",
    },
    "lock": {
        "ttl_seconds": 60,
    },
    "polling": {
        "interval_minutes": 15,
        "budget_seconds": 30,
        "working_hours_only": False,
    },
    "geofence": {
        "enabled": True,
        "radius_meters": 50,
        "sample_interval_seconds": 60,
    },
    "working_hours": {
        "weekdays": [0, 1, 2, 3, 4],
        "start_hour": 8,
        "end_hour": 11,
    },
    "location_tracking": {
        "enabled": True,
        "interval_minutes": 30,
        "working_hours": {
            "weekdays": [0, 1, 2, 3, 4],
            "start_hour": 10,
            "end_hour": 18,
        },
    },
    "location": {
        "low_confidence_meters": 100,
        "fixed": {
            "latitude": None,
            "longitude": None,
            "accuracy": 10.0,
            "foreground": True,
            "background": True,
            "services_enabled": True,
        },
    },
    "slack": {
        "enabled": False,
        "notify_channel": "",
    },
    "logging": {
        "level": "INFO",
        "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    },
}

# 環境変数 -> (セクション, キー)
ENV_OVERRIDES = {
    "ATTENDANCE_BACKEND_URL": ("backend", "url"),
    "ATTENDANCE_STORAGE_PATH": ("storage", "path"),
}


def _deep_merge(base: dict, override: dict) -> dict:
    """ベース設定にオーバーライドをマージする"""
    result = copy.deepcopy(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _apply_env(config: dict) -> dict:
    for env_name, (section, key) in ENV_OVERRIDES.items():
        value = os.getenv(env_name)
        if value:
            config[section][key] = value
    return config


def load_config(path: str = "config.yaml") -> dict:
    """YAML設定ファイルをロードし、デフォルト設定・環境変数とマージして返す"""
    config_path = Path(path)
    if config_path.exists():
        with open(config_path, "r", encoding="utf-8") as f:
            user_config = yaml.safe_load(f) or {}
        return _apply_env(_deep_merge(DEFAULT_CONFIG, user_config))
    return _apply_env(copy.deepcopy(DEFAULT_CONFIG))
