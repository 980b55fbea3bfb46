"""Turns mailbox notifications into normalized inbound email records."""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from email import policy
from email.message import EmailMessage
from email.parser import BytesParser
from email.utils import parseaddr, parsedate_to_datetime
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from services.email_templates import html_to_text

logger = logging.getLogger(__name__)


class MessageDecodeError(ValueError):
    """Raised when raw bytes cannot be decoded into an email record."""


@dataclass(frozen=True)
class InboundEmail:
    raw_sender: str
    sender_address: Optional[str]
    sender_name: Optional[str]
    subject: str
    body: str
    html: Optional[str] = None
    message_id: Optional[str] = None
    received_at: Optional[datetime] = None
    attachments: List[Dict[str, Any]] = field(default_factory=list)
    mailbox_key: Optional[str] = None


def _parse_sender(raw_sender: str) -> Tuple[Optional[str], Optional[str]]:
    name, address = parseaddr(raw_sender)
    address = address.strip().lower()
    if "@" not in address:
        address = ""
    return (name.strip() or None), (address or None)


def _message_received_at(message: EmailMessage) -> Optional[datetime]:
    raw_date = message.get("Date")
    if not raw_date:
        return None
    try:
        parsed = parsedate_to_datetime(str(raw_date))
    except (TypeError, ValueError, IndexError):
        return None
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _extract_bodies(message: EmailMessage) -> Tuple[str, Optional[str]]:
    text_content: Optional[str] = None
    html_content: Optional[str] = None

    if message.is_multipart():
        for part in message.walk():
            if part.is_multipart():
                continue
            ctype = part.get_content_type()
            disp = (part.get("Content-Disposition") or "").lower()
            if "attachment" in disp:
                continue
            if ctype == "text/plain" and text_content is None:
                candidate = part.get_content()
                if isinstance(candidate, str) and candidate.strip():
                    text_content = candidate.strip()
            elif ctype == "text/html" and html_content is None:
                candidate_html = part.get_content()
                if isinstance(candidate_html, str) and candidate_html.strip():
                    html_content = candidate_html
    else:
        payload = message.get_content()
        if isinstance(payload, str):
            if message.get_content_type() == "text/html":
                html_content = payload
            else:
                text_content = payload.strip()

    if text_content is None and html_content:
        text_content = html_to_text(html_content)
    return text_content or "", html_content


def _extract_attachments(message: EmailMessage) -> List[Dict[str, Any]]:
    if not message.is_multipart():
        return []
    attachments: List[Dict[str, Any]] = []
    for part in message.iter_attachments():
        content = part.get_payload(decode=True) or b""
        attachments.append(
            {
                "filename": part.get_filename(),
                "contentType": part.get_content_type(),
                "size": len(content),
                "content": base64.b64encode(content).decode("ascii"),
            }
        )
    return attachments


def decode_message(raw: Optional[bytes]) -> InboundEmail:
    """Decode RFC 822 bytes into an :class:`InboundEmail`."""

    if not raw or not isinstance(raw, (bytes, bytearray)):
        raise MessageDecodeError("empty message payload")
    try:
        message = BytesParser(policy=policy.default).parsebytes(bytes(raw))
        if not message.keys():
            raise MessageDecodeError("message carries no headers")
        raw_sender = str(message.get("From") or "").strip()
        subject = str(message.get("Subject") or "").strip()
        message_id = str(message.get("Message-ID") or "").strip() or None
        body, html = _extract_bodies(message)
        attachments = _extract_attachments(message)
    except MessageDecodeError:
        raise
    except (LookupError, ValueError, TypeError, AttributeError, IndexError) as exc:
        raise MessageDecodeError(str(exc)) from exc

    sender_name, sender_address = _parse_sender(raw_sender)
    return InboundEmail(
        raw_sender=raw_sender,
        sender_address=sender_address,
        sender_name=sender_name,
        subject=subject,
        body=body,
        html=html,
        message_id=message_id,
        received_at=_message_received_at(message),
        attachments=attachments,
    )


class MessageFetcher:
    """Searches the session for recent unread mail and decodes it lazily."""

    def __init__(
        self,
        session,
        *,
        lookback_days: int = 7,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.session = session
        self.lookback_days = max(1, int(lookback_days))
        self._now = now

    def fetch_new(self) -> Iterator[InboundEmail]:
        """Yield decoded messages for ``UNSEEN SINCE <now - lookback>``.

        A message that fails to decode is logged and skipped.  Each yielded
        record carries ``mailbox_key`` (``<uidvalidity>:<uid>``), which stays
        stable across searches while the mailbox keeps its UIDVALIDITY.
        """

        since = (self._now() - timedelta(days=self.lookback_days)).date()
        uids = self.session.search_unseen_since(since)
        logger.info(
            "Found %s unread message(s) since %s", len(uids), since.isoformat()
        )
        validity = self.session.uid_validity or ""
        for uid, raw in self.session.fetch_raw(uids):
            try:
                email = decode_message(raw)
            except MessageDecodeError as exc:
                logger.warning("Skipping undecodable message uid=%r: %s", uid, exc)
                continue
            yield replace(email, mailbox_key=mailbox_key(validity, uid))


def mailbox_key(uid_validity: str, uid: bytes) -> str:
    text = uid.decode("ascii") if isinstance(uid, bytes) else str(uid)
    return f"{uid_validity}:{text}"


__all__ = [
    "InboundEmail",
    "MessageDecodeError",
    "MessageFetcher",
    "decode_message",
    "mailbox_key",
]
