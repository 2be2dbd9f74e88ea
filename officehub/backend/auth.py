"""Identity and session service.

Sessions are opaque bearer tokens stored in ``auth_sessions``. ``get_session``
verifies a token against the store; ``require`` is the cheap local check the
core uses on an already-resolved ``Session``.
"""

import hashlib
import hmac
import logging
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from officehub import config
from officehub.backend import tables
from officehub.core.models import Profile, Session
from officehub.errors import Conflict, NoOrganization, NotAuthenticated, NotFound, ValidationError
from officehub.lib.store import from_row

log = logging.getLogger(__name__)

SIGNED_IN = "SIGNED_IN"
SIGNED_OUT = "SIGNED_OUT"

_ITERATIONS = 200_000

AuthListener = Callable[[str, Session], None]
_listeners: list[AuthListener] = []


def _hash_password(password: str, salt: str | None = None) -> str:
    salt = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), _ITERATIONS)
    return f"pbkdf2_sha256${_ITERATIONS}${salt}${digest.hex()}"


def _check_password(password: str, stored: str) -> bool:
    try:
        _, iterations, salt, expected = stored.split("$")
    except ValueError:
        return False
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), int(iterations))
    return hmac.compare_digest(digest.hex(), expected)


def _emit(event: str, session: Session) -> None:
    for listener in list(_listeners):
        try:
            listener(event, session)
        except Exception as e:
            log.warning(f"Auth listener failed on {event}: {e}")


def on_auth_state_change(listener: AuthListener) -> Callable[[], None]:
    """Register for SIGNED_IN/SIGNED_OUT. Returns an unsubscribe callable."""
    _listeners.append(listener)

    def unsubscribe() -> None:
        if listener in _listeners:
            _listeners.remove(listener)

    return unsubscribe


def create_organization(name: str) -> str:
    if not name or not name.strip():
        raise ValidationError("Organization name is required")
    return tables.insert("organizations", {"name": name.strip()})[0]["id"]


def _start_session(user_id: str) -> Session:
    profile = get_profile(user_id)
    ttl = timedelta(hours=config.get("auth", "session_ttl_hours"))
    expires_at = (datetime.now(timezone.utc) + ttl).isoformat(timespec="microseconds")
    token = secrets.token_urlsafe(32)
    tables.insert("auth_sessions", {"token": token, "user_id": user_id, "expires_at": expires_at})
    session = Session(
        token=token,
        user_id=user_id,
        email=profile.email,
        expires_at=expires_at,
        organization_id=profile.organization_id,
    )
    _emit(SIGNED_IN, session)
    return session


def sign_up(email: str, password: str, name: str, organization_id: str | None = None) -> Session:
    email = (email or "").strip().lower()
    if "@" not in email:
        raise ValidationError(f"Invalid email: {email!r}")
    if len(password or "") < config.get("auth", "min_password_length"):
        raise ValidationError("Password too short")
    if not name or not name.strip():
        raise ValidationError("Name is required")
    if organization_id and not tables.select_one("organizations", eq={"id": organization_id}):
        raise NotFound(f"Organization not found: {organization_id}")

    try:
        with tables.transaction():
            user = tables.insert("auth_users", {"email": email, "password_hash": _hash_password(password)})[0]
            tables.insert(
                "profiles",
                {
                    "id": user["id"],
                    "email": email,
                    "name": name.strip(),
                    "organization_id": organization_id,
                },
            )
            tables.insert("user_settings", {"user_id": user["id"]})
    except Conflict as e:
        raise Conflict(f"Email already registered: {email}") from e

    log.info(f"Signed up {email}")
    return _start_session(user["id"])


def sign_in(email: str, password: str) -> Session:
    email = (email or "").strip().lower()
    user = tables.select_one("auth_users", eq={"email": email})
    if not user or not _check_password(password, user["password_hash"]):
        raise NotAuthenticated("Invalid email or password")
    return _start_session(user["id"])


def sign_out(session: Session) -> None:
    tables.delete("auth_sessions", eq={"token": session.token})
    _emit(SIGNED_OUT, session)


def _expired(expires_at: str) -> bool:
    return datetime.fromisoformat(expires_at) <= datetime.now(timezone.utc)


def get_session(token: str | None) -> Session:
    """Resolve a bearer token. Raises NotAuthenticated if unknown or expired."""
    if not token:
        raise NotAuthenticated("No session")
    row = tables.select_one("auth_sessions", eq={"token": token})
    if not row:
        raise NotAuthenticated("Unknown session")
    if _expired(row["expires_at"]):
        tables.delete("auth_sessions", eq={"token": token})
        raise NotAuthenticated("Session expired")

    profile = get_profile(row["user_id"])
    return Session(
        token=token,
        user_id=profile.id,
        email=profile.email,
        expires_at=row["expires_at"],
        organization_id=profile.organization_id,
    )


def require(session: Session | None) -> Session:
    if session is None or not session.token or not session.user_id:
        raise NotAuthenticated("Please sign in")
    if _expired(session.expires_at):
        raise NotAuthenticated("Session expired")
    return session


def require_organization(session: Session | None) -> str:
    session = require(session)
    if not session.organization_id:
        raise NoOrganization(f"User {session.user_id} has no organization")
    return session.organization_id


def get_profile(user_id: str) -> Profile:
    row = tables.select_one("profiles", eq={"id": user_id})
    if not row:
        raise NotFound(f"Profile not found: {user_id}")
    return from_row(row, Profile)


def get_profiles(user_ids) -> dict[str, Profile]:
    rows = tables.select("profiles", in_={"id": list(set(user_ids))})
    return {row["id"]: from_row(row, Profile) for row in rows}


def list_members(organization_id: str) -> list[Profile]:
    rows = tables.select("profiles", eq={"organization_id": organization_id}, order_by="created_at")
    return [from_row(row, Profile) for row in rows]


def set_organization(user_id: str, organization_id: str | None) -> Profile:
    rows = tables.update("profiles", {"organization_id": organization_id}, eq={"id": user_id})
    if not rows:
        raise NotFound(f"Profile not found: {user_id}")
    return from_row(rows[0], Profile)


def _reset_for_testing() -> None:
    _listeners.clear()
