from dataclasses import fields

from officehub.backend import auth, tables
from officehub.core.models import Session, UserSettings
from officehub.errors import ValidationError
from officehub.lib.ids import now_iso

_FLAGS = {"sound_enabled", "push_notifications", "email_notifications", "dark_mode", "compact_mode"}
_LANGUAGES = {"NL", "EN"}


def _row_to_settings(row: dict) -> UserSettings:
    values = {f.name: row[f.name] for f in fields(UserSettings) if f.name in row}
    for flag in _FLAGS:
        values[flag] = bool(values[flag])
    return UserSettings(**values)


def settings_for(user_id: str) -> UserSettings:
    row = tables.select_one("user_settings", eq={"user_id": user_id})
    if row is None:
        row = tables.upsert("user_settings", {"user_id": user_id}, on_conflict=["user_id"])
    return _row_to_settings(row)


def get_settings(session: Session) -> UserSettings:
    auth.require(session)
    return settings_for(session.user_id)


def update_settings(session: Session, **values) -> UserSettings:
    auth.require(session)
    unknown = set(values) - _FLAGS - {"language"}
    if unknown:
        raise ValidationError(f"Unknown settings: {sorted(unknown)}")

    row = {"user_id": session.user_id, "updated_at": now_iso()}
    for key, value in values.items():
        if key == "language":
            language = str(value).upper()
            if language not in _LANGUAGES:
                raise ValidationError(f"Unsupported language: {value!r}")
            row[key] = language
        else:
            row[key] = 1 if value else 0
    return _row_to_settings(tables.upsert("user_settings", row, on_conflict=["user_id"]))
