"""File storage buckets on local disk with HMAC-signed, expiring URLs."""

import hashlib
import hmac
import logging
import secrets
import time
from pathlib import Path, PurePosixPath
from urllib.parse import quote

from officehub import config
from officehub.errors import BackendUnavailable, Conflict, Forbidden, NotFound, ValidationError
from officehub.lib import paths

log = logging.getLogger(__name__)

URL_PREFIX = "/storage"


def _resolve(bucket: str, path: str) -> Path:
    if not bucket or "/" in bucket or bucket.startswith("."):
        raise ValidationError(f"Invalid bucket: {bucket!r}")
    parts = PurePosixPath(path).parts
    if not parts or path.startswith("/") or any(part in ("..", ".") for part in parts):
        raise ValidationError(f"Invalid storage path: {path!r}")
    return paths.bucket_dir(bucket).joinpath(*parts)


def upload(bucket: str, path: str, data: bytes, upsert: bool = False) -> str:
    """Store bytes at ``bucket/path``. Returns the path."""
    target = _resolve(bucket, path)
    if target.exists() and not upsert:
        raise Conflict(f"Object already exists: {bucket}/{path}")
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
    except OSError as e:
        raise BackendUnavailable(f"Upload failed for {bucket}/{path}: {e}") from e
    log.debug(f"Stored {len(data)} bytes at {bucket}/{path}")
    return path


def download(bucket: str, path: str) -> bytes:
    target = _resolve(bucket, path)
    if not target.is_file():
        raise NotFound(f"Object not found: {bucket}/{path}")
    return target.read_bytes()


def remove(bucket: str, paths_: list[str]) -> int:
    removed = 0
    for path in paths_:
        target = _resolve(bucket, path)
        if target.is_file():
            target.unlink()
            removed += 1
    return removed


def exists(bucket: str, path: str) -> bool:
    return _resolve(bucket, path).is_file()


def _secret() -> bytes:
    configured = config.get("storage", "signing_secret")
    if configured:
        return str(configured).encode()

    key_file = paths.signing_key_file()
    if key_file.exists():
        return key_file.read_text().strip().encode()

    key_file.parent.mkdir(parents=True, exist_ok=True)
    key = secrets.token_hex(32)
    key_file.write_text(key)
    key_file.chmod(0o600)
    log.info("Generated storage signing key")
    return key.encode()


def _signature(bucket: str, path: str, expires: int) -> str:
    message = f"{bucket}/{path}:{expires}".encode()
    return hmac.new(_secret(), message, hashlib.sha256).hexdigest()


def signed_url(bucket: str, path: str, expires_in: int | None = None) -> str:
    """Time-limited URL for an object. The object must exist."""
    if not exists(bucket, path):
        raise NotFound(f"Object not found: {bucket}/{path}")
    ttl = int(expires_in if expires_in is not None else config.get("storage", "signed_url_ttl"))
    expires = int(time.time()) + ttl
    token = _signature(bucket, path, expires)
    return f"{URL_PREFIX}/{quote(bucket)}/{quote(path)}?expires={expires}&token={token}"


def verify(bucket: str, path: str, expires: int, token: str) -> None:
    """Raise Forbidden unless the token signs this object and has not expired."""
    if int(expires) < int(time.time()):
        raise Forbidden("Signed URL expired")
    expected = _signature(bucket, path, int(expires))
    if not hmac.compare_digest(expected, token):
        raise Forbidden("Invalid signature")
