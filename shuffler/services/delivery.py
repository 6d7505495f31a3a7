"""
Email delivery providers.

Every provider exposes the same `send(message) -> DeliveryResult` call and
reports failures in the result instead of raising, so one bad address never
stops a batch.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Mapping, Optional, Protocol

import httpx


logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"


@dataclass(frozen=True)
class EmailMessage:
    to: str
    subject: str
    text: str
    from_address: str = ""
    tags: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class DeliveryResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


class DeliveryProvider(Protocol):
    name: str

    def send(self, message: EmailMessage) -> DeliveryResult:
        ...


class ConsoleProvider:
    """Development provider: writes the email to the log and reports success."""

    name = "console"

    def send(self, message: EmailMessage) -> DeliveryResult:
        message_id = f"console-{uuid.uuid4().hex[:12]}"
        logger.info(
            "EMAIL (not sent) id=%s from=%s to=%s subject=%r tags=%s\n%s",
            message_id,
            message.from_address,
            message.to,
            message.subject,
            dict(message.tags),
            message.text,
        )
        return DeliveryResult(success=True, message_id=message_id)


class ResendProvider:
    name = "resend"

    def __init__(self, api_key: str, client: Optional[httpx.Client] = None, timeout: float = 10.0):
        self.api_key = api_key
        self._client = client or httpx.Client(timeout=timeout)

    def send(self, message: EmailMessage) -> DeliveryResult:
        payload = {
            "from": message.from_address,
            "to": [message.to],
            "subject": message.subject,
            "text": message.text,
        }
        if message.tags:
            payload["tags"] = [{"name": k, "value": v} for k, v in message.tags.items()]

        try:
            resp = self._client.post(
                RESEND_API_URL,
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
        except httpx.HTTPError as e:
            logger.warning("Resend request to %s failed: %s", message.to, e)
            return DeliveryResult(success=False, error=f"Transport error: {e}")

        if resp.status_code >= 400:
            try:
                detail = resp.json().get("message") or resp.text
            except ValueError:
                detail = resp.text
            logger.warning("Resend rejected email to %s (%s): %s", message.to, resp.status_code, detail)
            return DeliveryResult(success=False, error=f"Resend API error {resp.status_code}: {detail}")

        data = resp.json()
        return DeliveryResult(success=True, message_id=data.get("id"))


def format_sender(config: Mapping) -> str:
    email = config.get("EMAIL_FROM") or "santa@example.com"
    name = config.get("EMAIL_FROM_NAME")
    return f"{name} <{email}>" if name else email


def create_provider(config: Mapping) -> DeliveryProvider:
    """Pick the provider named by EMAIL_PROVIDER."""
    kind = (config.get("EMAIL_PROVIDER") or "console").strip().lower()
    if kind == "resend":
        api_key = (config.get("RESEND_API_KEY") or "").strip()
        if api_key:
            return ResendProvider(api_key)
        logger.warning("EMAIL_PROVIDER=resend but RESEND_API_KEY is not set; using console provider")
        return ConsoleProvider()
    if kind != "console":
        logger.warning("Unknown EMAIL_PROVIDER %r; using console provider", kind)
    return ConsoleProvider()
