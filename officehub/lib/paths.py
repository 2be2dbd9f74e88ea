import os
from pathlib import Path


def data_dir() -> Path:
    override = os.environ.get("OFFICEHUB_HOME")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".officehub"


def package_root() -> Path:
    return Path(__file__).resolve().parent.parent


def config_file() -> Path:
    return data_dir() / "config.yaml"


def database_file() -> Path:
    return data_dir() / "officehub.db"


def storage_dir() -> Path:
    return data_dir() / "storage"


def bucket_dir(bucket: str) -> Path:
    return storage_dir() / bucket


def signing_key_file() -> Path:
    return data_dir() / "storage.key"


def session_file() -> Path:
    """Saved CLI session token."""
    return data_dir() / "session.json"
