"""Push endpoint registry and the Web Push relay.

The relay consumes notification inserts. For each it looks up the owner's
registered endpoints, delivers an encrypted Web Push message to each, and
deletes endpoints that answer 404 or 410. Nothing here is awaited by the
code that created the notification.
"""

import base64
import json
import logging
import os
import struct
import time
from dataclasses import dataclass
from urllib.parse import urlsplit

import httpx
import jwt
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from officehub import config
from officehub.backend import auth as identity
from officehub.backend import feed, tables
from officehub.backend.feed import INSERT, ChangeEvent, Subscription
from officehub.core.models import Notification, NotificationType, PushSubscription, Session
from officehub.errors import EndpointGone, PushDeliveryError, ValidationError
from officehub.lib.ids import now_iso
from officehub.lib.store import from_row

from . import notifications, settings

log = logging.getLogger(__name__)

RECORD_SIZE = 4096
ICON = "/icons/icon-192x192.png"
BADGE = "/icons/badge-72x72.png"


def register_push_endpoint(
    session: Session,
    endpoint: str,
    p256dh: str,
    auth: str,
    user_agent: str | None = None,
) -> PushSubscription:
    identity.require(session)
    if urlsplit(endpoint or "").scheme not in ("https", "http"):
        raise ValidationError(f"Invalid push endpoint: {endpoint!r}")
    if not p256dh or not auth:
        raise ValidationError("Push subscription keys are required")
    row = tables.upsert(
        "push_subscriptions",
        {
            "user_id": session.user_id,
            "endpoint": endpoint,
            "p256dh": p256dh,
            "auth": auth,
            "user_agent": user_agent,
            "updated_at": now_iso(),
        },
        on_conflict=["user_id", "endpoint"],
    )
    return from_row(row, PushSubscription)


def unregister_push_endpoint(session: Session, endpoint: str) -> bool:
    identity.require(session)
    return bool(tables.delete("push_subscriptions", eq={"user_id": session.user_id, "endpoint": endpoint}))


def list_push_endpoints(user_id: str) -> list[PushSubscription]:
    return [from_row(row, PushSubscription) for row in tables.select("push_subscriptions", eq={"user_id": user_id})]


@dataclass(frozen=True)
class PushPayload:
    user_id: str
    title: str
    body: str
    type: str
    link: str
    notification_id: str

    def to_message(self) -> dict:
        return {
            "title": self.title,
            "body": self.body,
            "icon": ICON,
            "badge": BADGE,
            "tag": self.notification_id,
            "data": {
                "url": self.link or "/",
                "type": self.type,
                "notificationId": self.notification_id,
            },
            "requireInteraction": self.type == NotificationType.TASK_DUE.value,
        }


def payload_for(notification: Notification) -> PushPayload:
    return PushPayload(
        user_id=notification.user_id,
        title=notification.title,
        body=notification.body or "",
        type=NotificationType(notification.type).value,
        link=notification.link or "",
        notification_id=notification.notification_id,
    )


@dataclass
class RelayResult:
    successful: int = 0
    failed: int = 0
    pruned: int = 0


def _b64decode(value: str) -> bytes:
    return base64.urlsafe_b64decode(value + "=" * (-len(value) % 4))


def _hkdf(salt: bytes, info: bytes, length: int, key: bytes) -> bytes:
    return HKDF(algorithm=hashes.SHA256(), length=length, salt=salt, info=info).derive(key)


def encrypt(plaintext: bytes, p256dh: str, auth_secret: str) -> bytes:
    """aes128gcm content encoding for Web Push (RFC 8188, RFC 8291)."""
    ua_public = _b64decode(p256dh)
    ua_key = ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256R1(), ua_public)
    as_private = ec.generate_private_key(ec.SECP256R1())
    as_public = as_private.public_key().public_bytes(
        serialization.Encoding.X962, serialization.PublicFormat.UncompressedPoint
    )

    shared = as_private.exchange(ec.ECDH(), ua_key)
    ikm = _hkdf(_b64decode(auth_secret), b"WebPush: info\x00" + ua_public + as_public, 32, shared)
    salt = os.urandom(16)
    cek = _hkdf(salt, b"Content-Encoding: aes128gcm\x00", 16, ikm)
    nonce = _hkdf(salt, b"Content-Encoding: nonce\x00", 12, ikm)

    ciphertext = AESGCM(cek).encrypt(nonce, plaintext + b"\x02", None)
    header = salt + struct.pack("!IB", RECORD_SIZE, len(as_public)) + as_public
    return header + ciphertext


class WebPushSender:
    """POSTs encrypted messages to push services with a VAPID signature."""

    def __init__(
        self,
        public_key: str | None = None,
        private_key: str | None = None,
        subject: str | None = None,
        ttl: int | None = None,
        client: httpx.Client | None = None,
    ):
        self.public_key = public_key or config.get("push", "vapid_public_key")
        self.private_key = private_key or config.get("push", "vapid_private_key")
        self.subject = subject or config.get("push", "vapid_subject")
        self.ttl = ttl if ttl is not None else config.get("push", "ttl")
        self._client = client or httpx.Client(timeout=config.get("timeouts", "upload"))

    @property
    def configured(self) -> bool:
        return bool(self.public_key and self.private_key)

    def vapid_header(self, endpoint: str) -> str:
        parts = urlsplit(endpoint)
        claims = {
            "aud": f"{parts.scheme}://{parts.netloc}",
            "exp": int(time.time()) + 12 * 3600,
            "sub": self.subject,
        }
        token = jwt.encode(claims, self.private_key, algorithm="ES256")
        return f"vapid t={token}, k={self.public_key}"

    def send(self, subscription: PushSubscription, message: dict) -> None:
        body = encrypt(json.dumps(message).encode(), subscription.p256dh or "", subscription.auth or "")
        headers = {
            "Content-Type": "application/octet-stream",
            "Content-Encoding": "aes128gcm",
            "TTL": str(self.ttl),
            "Authorization": self.vapid_header(subscription.endpoint),
        }
        try:
            response = self._client.post(subscription.endpoint, content=body, headers=headers)
        except httpx.HTTPError as e:
            raise PushDeliveryError(f"Push transport failed: {e}") from e

        if response.status_code in (404, 410):
            raise EndpointGone(f"Push service responded with {response.status_code}")
        if response.status_code >= 400:
            raise PushDeliveryError(f"Push service responded with {response.status_code}: {response.text}")

    def close(self) -> None:
        self._client.close()


class PushRelay:
    def __init__(self, sender: WebPushSender | None = None):
        self.sender = sender or WebPushSender()

    def relay(self, payload: PushPayload) -> RelayResult:
        result = RelayResult()
        if not self.sender.configured:
            log.warning("VAPID keys not configured, skipping push")
            return result
        if not settings.settings_for(payload.user_id).push_notifications:
            log.debug(f"Push disabled for {payload.user_id}")
            return result

        endpoints = list_push_endpoints(payload.user_id)
        if not endpoints:
            log.debug(f"No push subscriptions for {payload.user_id}")
            return result

        message = payload.to_message()
        for subscription in endpoints:
            try:
                self.sender.send(subscription, message)
                result.successful += 1
            except EndpointGone as e:
                result.failed += 1
                tables.delete("push_subscriptions", eq={"id": subscription.id})
                result.pruned += 1
                log.info(f"Deleted invalid push subscription {subscription.id}: {e}")
            except Exception as e:
                result.failed += 1
                log.warning(f"Push failed for {subscription.endpoint}: {e}")

        log.info(f"Push sent: {result.successful} successful, {result.failed} failed")
        return result

    def handle(self, notification: Notification) -> None:
        try:
            self.relay(payload_for(notification))
        except Exception as e:
            log.warning(f"Push relay failed for notification {notification.notification_id}: {e}")


def watch(relay: PushRelay) -> Subscription:
    """Relay every new notification row."""

    def on_insert(event: ChangeEvent) -> None:
        relay.handle(notifications.row_to_notification(event.new))

    return feed.subscribe("notifications", on_insert, events={INSERT})
