"""FastAPI surface over the chat and notification core."""

import asyncio
import json
import logging
import mimetypes
import time
from collections.abc import AsyncGenerator
from queue import Empty, Queue

from fastapi import Depends, FastAPI, Header, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response, StreamingResponse
from pydantic import BaseModel

from officehub import chat, config, notify
from officehub.backend import auth, feed, storage
from officehub.core.models import Message, Session, to_dict
from officehub.errors import (
    BackendUnavailable,
    Conflict,
    Forbidden,
    NoOrganization,
    NotAuthenticated,
    NotFound,
    OfficeError,
    ValidationError,
)

log = logging.getLogger(__name__)

app = FastAPI(title="Officehub API")
START_TIME = time.time()

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://localhost:5173"],
    allow_methods=["*"],
    allow_headers=["*"],
)

_STATUS = [
    (NotAuthenticated, 401),
    (NoOrganization, 409),
    (Conflict, 409),
    (ValidationError, 422),
    (NotFound, 404),
    (Forbidden, 403),
    (BackendUnavailable, 503),
]


def _http_error(e: OfficeError) -> HTTPException:
    for error_type, status in _STATUS:
        if isinstance(e, error_type):
            return HTTPException(status_code=status, detail=str(e))
    return HTTPException(status_code=500, detail=str(e))


class SignUp(BaseModel):
    email: str
    password: str
    name: str
    organization_id: str | None = None
    organization_name: str | None = None


class Login(BaseModel):
    email: str
    password: str


class CreateChannel(BaseModel):
    name: str
    kind: str = "group"
    color: str | None = None
    member_ids: list[str] | None = None


class OpenDirect(BaseModel):
    user_id: str


class AddMembers(BaseModel):
    member_ids: list[str]


class AttachmentIn(BaseModel):
    kind: str
    file_path: str
    name: str | None = None
    file_size: int | None = None


class SendMessage(BaseModel):
    text: str = ""
    attachments: list[AttachmentIn] = []


class EditMessage(BaseModel):
    text: str


class UpdateSettings(BaseModel):
    sound_enabled: bool | None = None
    push_notifications: bool | None = None
    email_notifications: bool | None = None
    dark_mode: bool | None = None
    compact_mode: bool | None = None
    language: str | None = None


class PushKeys(BaseModel):
    p256dh: str
    auth: str


class RegisterPush(BaseModel):
    endpoint: str
    keys: PushKeys
    user_agent: str | None = None


class UnregisterPush(BaseModel):
    endpoint: str


def current_session(authorization: str | None = Header(default=None)) -> Session:
    scheme, _, token = (authorization or "").partition(" ")
    try:
        if scheme.lower() != "bearer":
            raise NotAuthenticated("Bearer token required")
        return auth.get_session(token.strip())
    except OfficeError as e:
        raise _http_error(e) from e


def _message_dict(message: Message) -> dict:
    data = to_dict(message)
    for attachment, out in zip(message.attachments, data["attachments"], strict=True):
        try:
            out["url"] = chat.attachment_url(attachment)
        except OfficeError:
            out["url"] = None
    return data


@app.get("/api/health")
async def health():
    return {"ok": True, "uptime": round(time.time() - START_TIME, 1)}


@app.post("/api/auth/signup")
async def signup(body: SignUp):
    try:
        organization_id = body.organization_id
        if organization_id is None and body.organization_name:
            organization_id = auth.create_organization(body.organization_name)
        session = auth.sign_up(body.email, body.password, body.name, organization_id)
        return to_dict(session)
    except OfficeError as e:
        raise _http_error(e) from e


@app.post("/api/auth/login")
async def login(body: Login):
    try:
        return to_dict(auth.sign_in(body.email, body.password))
    except OfficeError as e:
        raise _http_error(e) from e


@app.post("/api/auth/logout")
async def logout(session: Session = Depends(current_session)):
    auth.sign_out(session)
    return {"ok": True}


@app.get("/api/channels")
async def get_channels(session: Session = Depends(current_session)):
    try:
        return [to_dict(ch) for ch in chat.list_channels(session)]
    except OfficeError as e:
        raise _http_error(e) from e


@app.post("/api/channels")
async def create_channel(body: CreateChannel, session: Session = Depends(current_session)):
    try:
        channel = chat.create_channel(session, body.name, body.kind, body.color, body.member_ids)
        return to_dict(channel)
    except OfficeError as e:
        raise _http_error(e) from e


@app.post("/api/channels/direct")
async def open_direct(body: OpenDirect, session: Session = Depends(current_session)):
    try:
        return to_dict(chat.get_or_create_direct(session, body.user_id))
    except OfficeError as e:
        raise _http_error(e) from e


@app.post("/api/channels/{channel_id}/members")
async def add_members(channel_id: str, body: AddMembers, session: Session = Depends(current_session)):
    try:
        return to_dict(chat.add_members(session, channel_id, body.member_ids))
    except OfficeError as e:
        raise _http_error(e) from e


@app.get("/api/channels/{channel_id}/messages")
async def get_messages(
    channel_id: str,
    limit: int | None = None,
    offset: int = 0,
    session: Session = Depends(current_session),
):
    try:
        messages = chat.get_messages(session, channel_id, limit=limit, offset=offset)
        return [_message_dict(m) for m in messages]
    except OfficeError as e:
        raise _http_error(e) from e


@app.post("/api/channels/{channel_id}/messages")
async def send_message(channel_id: str, body: SendMessage, session: Session = Depends(current_session)):
    try:
        attachments = [a.model_dump() for a in body.attachments]
        message = chat.send_message(session, channel_id, body.text, attachments)
        return _message_dict(message)
    except OfficeError as e:
        raise _http_error(e) from e


@app.post("/api/channels/{channel_id}/attachments")
async def upload_attachment(channel_id: str, file: UploadFile, session: Session = Depends(current_session)):
    try:
        content = await file.read()
        uploaded = chat.upload_attachment(session, channel_id, file.filename or "", content)
        return {"attachment": to_dict(uploaded.attachment), "url": uploaded.url}
    except OfficeError as e:
        raise _http_error(e) from e


@app.patch("/api/messages/{message_id}")
async def edit_message(message_id: str, body: EditMessage, session: Session = Depends(current_session)):
    try:
        return _message_dict(chat.edit_message(session, message_id, body.text))
    except OfficeError as e:
        raise _http_error(e) from e


@app.delete("/api/messages/{message_id}")
async def delete_message(message_id: str, session: Session = Depends(current_session)):
    try:
        chat.delete_message(session, message_id)
        return {"ok": True}
    except OfficeError as e:
        raise _http_error(e) from e


@app.get("/api/notifications")
async def get_notifications(
    limit: int | None = None,
    unread: bool = False,
    session: Session = Depends(current_session),
):
    try:
        if unread:
            items = notify.list_unread(session)
        else:
            items = notify.list_notifications(session, limit=limit)
        return [to_dict(n) for n in items]
    except OfficeError as e:
        raise _http_error(e) from e


@app.get("/api/notifications/unread-count")
async def get_unread_count(session: Session = Depends(current_session)):
    try:
        return {"count": notify.unread_count(session)}
    except OfficeError as e:
        raise _http_error(e) from e


@app.get("/api/notifications/stream")
async def stream_notifications(request: Request, session: Session = Depends(current_session)):
    queue: Queue = Queue()
    try:
        subscription = notify.subscribe_to_own(session, queue.put)
    except OfficeError as e:
        raise _http_error(e) from e

    return StreamingResponse(
        stream_notification_events(request, subscription, queue),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


async def stream_notification_events(
    request: Request, subscription: feed.Subscription, queue: Queue
) -> AsyncGenerator[str, None]:
    interval = float(config.get("realtime", "poll_interval"))
    try:
        while not await request.is_disconnected():
            try:
                feed.pump()
            except Exception as e:
                log.warning(f"Notification stream poll failed: {e}")
            while True:
                try:
                    notification = queue.get_nowait()
                except Empty:
                    break
                yield f"data: {json.dumps(to_dict(notification))}\n\n"
            await asyncio.sleep(interval)
    finally:
        subscription.cancel()


@app.post("/api/notifications/read-all")
async def read_all(session: Session = Depends(current_session)):
    try:
        return {"ok": True, "updated": notify.mark_all_read(session)}
    except OfficeError as e:
        raise _http_error(e) from e


@app.post("/api/notifications/{notification_id}/read")
async def read_one(notification_id: str, session: Session = Depends(current_session)):
    try:
        notify.mark_read(session, notification_id)
        return {"ok": True}
    except OfficeError as e:
        raise _http_error(e) from e


@app.delete("/api/notifications/{notification_id}")
async def delete_notification(notification_id: str, session: Session = Depends(current_session)):
    try:
        notify.delete_notification(session, notification_id)
        return {"ok": True}
    except OfficeError as e:
        raise _http_error(e) from e


@app.get("/api/settings")
async def get_settings(session: Session = Depends(current_session)):
    try:
        return to_dict(notify.get_settings(session))
    except OfficeError as e:
        raise _http_error(e) from e


@app.patch("/api/settings")
async def update_settings(body: UpdateSettings, session: Session = Depends(current_session)):
    try:
        values = body.model_dump(exclude_none=True)
        return to_dict(notify.update_settings(session, **values))
    except OfficeError as e:
        raise _http_error(e) from e


@app.post("/api/push/subscriptions")
async def register_push(body: RegisterPush, session: Session = Depends(current_session)):
    try:
        subscription = notify.register_push_endpoint(
            session, body.endpoint, body.keys.p256dh, body.keys.auth, body.user_agent
        )
        return to_dict(subscription)
    except OfficeError as e:
        raise _http_error(e) from e


@app.delete("/api/push/subscriptions")
async def unregister_push(body: UnregisterPush, session: Session = Depends(current_session)):
    try:
        return {"ok": notify.unregister_push_endpoint(session, body.endpoint)}
    except OfficeError as e:
        raise _http_error(e) from e


@app.get("/storage/{bucket}/{path:path}")
async def download(bucket: str, path: str, expires: int, token: str):
    try:
        storage.verify(bucket, path, expires, token)
        content = storage.download(bucket, path)
    except OfficeError as e:
        raise _http_error(e) from e
    media_type = mimetypes.guess_type(path)[0] or "application/octet-stream"
    return Response(content=content, media_type=media_type)


def main():
    import uvicorn

    uvicorn.run("officehub.api.main:app", host="0.0.0.0", port=8000, access_log=False)


if __name__ == "__main__":
    main()
