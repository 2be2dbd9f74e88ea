import copy
from functools import lru_cache
from typing import Any

import yaml

from .lib import paths

DEFAULTS: dict[str, Any] = {
    "logging": {"level": "INFO"},
    "timeouts": {"read": 10.0, "upload": 30.0},
    "chat": {
        "page_size": 50,
        "preview_length": 50,
        "attachments_bucket": "chat-attachments",
        "max_attachment_bytes": 10 * 1024 * 1024,
    },
    "notifications": {"limit": 50},
    "storage": {"signed_url_ttl": 3600, "signing_secret": None},
    "auth": {"session_ttl_hours": 168, "min_password_length": 6},
    "realtime": {"enabled": True, "poll_interval": 0.5},
    "push": {
        "vapid_public_key": None,
        "vapid_private_key": None,
        "vapid_subject": "mailto:admin@example.com",
        "ttl": 86400,
    },
}


def _validate_config(cfg: dict) -> None:
    """Validate config structure. Fail fast on invalid types."""
    if not isinstance(cfg, dict):
        raise ValueError(f"Config must be a dict, got {type(cfg).__name__}")

    for section, value in cfg.items():
        if section in DEFAULTS and not isinstance(value, dict):
            raise ValueError(f"Config '{section}' must be a dict")


def _merge(base: dict, override: dict) -> dict:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _clear_cache():
    load_config.cache_clear()


@lru_cache(maxsize=1)
def load_config() -> dict:
    """Load config.yaml merged over defaults. Missing file means defaults only."""
    path = paths.config_file()
    if not path.exists():
        return copy.deepcopy(DEFAULTS)
    with open(path) as f:
        cfg = yaml.safe_load(f) or {}
    _validate_config(cfg)
    return _merge(DEFAULTS, cfg)


def get(section: str, key: str) -> Any:
    return load_config()[section][key]
