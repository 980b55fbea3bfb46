"""Long-lived IMAP session with IDLE push notifications and a polling fallback."""

from __future__ import annotations

import contextlib
import imaplib
import logging
import select
import ssl
import threading
import time
from datetime import date
from typing import Callable, Iterator, List, Optional, Sequence, Tuple

from services.errors import MailboxConnectionError

logger = logging.getLogger(__name__)

STATUS_CONNECTING = "connecting"
STATUS_LISTENING = "listening"
STATUS_FAILED = "failed"
STATUS_STOPPED = "stopped"

_IMAP_ERRORS = (imaplib.IMAP4.error, OSError)
_READ_TICK_SECONDS = 1.0


def imap_date(value: date) -> str:
    """Format ``value`` the way IMAP SEARCH expects (``07-Mar-2025``)."""

    return value.strftime("%d-%b-%Y")


class MailboxSession:
    """One authenticated, read-only connection to a mailbox.

    The mailbox is selected read-only and bodies are fetched with
    ``BODY.PEEK[]`` so discovery never sets ``\\Seen``.  Any protocol or
    socket error is fatal: the session records it, moves to ``failed`` and
    raises :class:`MailboxConnectionError`.
    """

    def __init__(
        self,
        *,
        host: str,
        username: str,
        password: str,
        mailbox: str = "INBOX",
        port: int = 993,
        use_ssl: bool = True,
        idle_timeout: int = 300,
        poll_interval: int = 60,
        client_factory: Optional[Callable[[], imaplib.IMAP4]] = None,
    ) -> None:
        self.host = host
        self.username = username
        self.password = password
        self.mailbox = mailbox
        self.port = port
        self.use_ssl = use_ssl
        self.idle_timeout = max(5, int(idle_timeout))
        self.poll_interval = max(1, int(poll_interval))
        self._client_factory = client_factory
        self._client: Optional[imaplib.IMAP4] = None
        self._idle_supported = False
        self._lock = threading.Lock()
        self.status = STATUS_STOPPED
        self.last_error: Optional[str] = None
        self.uid_validity: Optional[str] = None

    @classmethod
    def from_settings(cls, settings) -> "MailboxSession":
        return cls(
            host=settings.imap_host,
            username=settings.imap_user,
            password=settings.imap_password,
            mailbox=settings.imap_mailbox,
            port=settings.imap_port,
            use_ssl=settings.imap_use_ssl,
            idle_timeout=settings.imap_idle_timeout_seconds,
            poll_interval=settings.imap_poll_interval_seconds,
        )

    @property
    def idle_supported(self) -> bool:
        return self._idle_supported

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------
    def connect(self) -> None:
        self.status = STATUS_CONNECTING
        try:
            if self._client_factory is not None:
                client = self._client_factory()
            elif self.use_ssl:
                client = imaplib.IMAP4_SSL(self.host, self.port)
            else:
                client = imaplib.IMAP4(self.host, self.port)
            client.login(self.username, self.password)
            status, _ = client.select(self.mailbox, readonly=True)
            if status != "OK":
                raise imaplib.IMAP4.error(f"Unable to select mailbox {self.mailbox}")
            _, validity = client.response("UIDVALIDITY")
        except _IMAP_ERRORS as exc:
            self._fail(exc)
        self._client = client
        self.uid_validity = _first_text(validity)
        capabilities = getattr(client, "capabilities", ()) or ()
        self._idle_supported = any(
            (cap.decode() if isinstance(cap, bytes) else str(cap)).upper() == "IDLE"
            for cap in capabilities
        )
        self.status = STATUS_LISTENING
        logger.info(
            "Connected to IMAP mailbox %s on %s (idle=%s)",
            self.mailbox,
            self.host,
            self._idle_supported,
        )

    def close(self) -> None:
        client = self._client
        self._client = None
        if self.status != STATUS_FAILED:
            self.status = STATUS_STOPPED
        if client is None:
            return
        with contextlib.suppress(*_IMAP_ERRORS):
            client.close()
        with contextlib.suppress(*_IMAP_ERRORS):
            client.logout()

    def _fail(self, exc: BaseException) -> None:
        self.status = STATUS_FAILED
        self.last_error = str(exc) or exc.__class__.__name__
        raise MailboxConnectionError(f"IMAP session failed: {self.last_error}") from exc

    def _require_client(self) -> imaplib.IMAP4:
        if self._client is None:
            raise MailboxConnectionError("IMAP session is not connected")
        return self._client

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def search_unseen_since(self, since: date) -> List[bytes]:
        """Return UIDs of unread messages received on or after ``since``."""

        client = self._require_client()
        with self._lock:
            try:
                status, data = client.uid("SEARCH", None, "UNSEEN", "SINCE", imap_date(since))
            except _IMAP_ERRORS as exc:
                self._fail(exc)
        if status != "OK":
            self._fail(imaplib.IMAP4.error(f"SEARCH returned {status}"))
        return (data[0] or b"").split() if data else []

    def fetch_raw(self, uids: Sequence[bytes]) -> Iterator[Tuple[bytes, Optional[bytes]]]:
        """Yield ``(uid, rfc822_bytes)`` for each UID, one fetch per message.

        ``rfc822_bytes`` is ``None`` when the server returned no body for
        the UID; decoding decides what to do with it.
        """

        client = self._require_client()
        for uid in uids:
            with self._lock:
                try:
                    status, payload = client.uid("FETCH", uid, "(BODY.PEEK[])")
                except _IMAP_ERRORS as exc:
                    self._fail(exc)
            if status != "OK":
                self._fail(imaplib.IMAP4.error(f"FETCH {uid!r} returned {status}"))
            raw: Optional[bytes] = None
            for part in payload or ():
                if isinstance(part, tuple) and len(part) >= 2:
                    raw = part[1]
                    break
            yield uid, raw

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------
    def wait_for_signal(self, stop_event: threading.Event) -> bool:
        """Block until new mail is likely, the IDLE round ends or ``stop_event`` is set.

        Returns ``True`` when a fetch should follow.  Without IDLE support the
        session sleeps ``poll_interval`` seconds and always asks for a fetch.
        """

        if not self._idle_supported:
            stop_event.wait(self.poll_interval)
            return not stop_event.is_set()
        client = self._require_client()
        with self._lock:
            try:
                return self._idle(client, stop_event)
            except _IMAP_ERRORS as exc:
                self._fail(exc)
        return False

    def _idle(self, client: imaplib.IMAP4, stop_event: threading.Event) -> bool:
        tag = client._new_tag()  # type: ignore[attr-defined]
        client.send(tag + b" IDLE\r\n")  # type: ignore[attr-defined]
        continuation = client.readline()  # type: ignore[attr-defined]
        if not continuation.startswith(b"+"):
            raise imaplib.IMAP4.error(f"IDLE rejected: {continuation!r}")

        signalled = False
        deadline = time.monotonic() + self.idle_timeout
        while not stop_event.is_set():
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            if not self._input_buffered(client) and not self._wait_readable(
                client, min(_READ_TICK_SECONDS, remaining)
            ):
                continue
            line = client.readline()  # type: ignore[attr-defined]
            if not line:
                raise imaplib.IMAP4.abort("connection closed during IDLE")
            if _is_new_mail(line):
                signalled = True
                break

        client.send(b"DONE\r\n")  # type: ignore[attr-defined]
        while True:
            line = client.readline()  # type: ignore[attr-defined]
            if not line:
                raise imaplib.IMAP4.abort("connection closed while ending IDLE")
            if line.startswith(tag):
                if b" OK" not in line.upper():
                    raise imaplib.IMAP4.error(f"IDLE completed with {line!r}")
                break
            signalled = signalled or _is_new_mail(line)
        return signalled

    def _input_buffered(self, client: imaplib.IMAP4) -> bool:
        """Report data already read off the socket but not yet consumed.

        imaplib reads through a buffered file, so a line that arrived with
        the IDLE continuation never makes the socket readable again.
        """

        reader = getattr(client, "file", None)
        if reader is None:
            return False
        sock = client.socket()
        if isinstance(sock, ssl.SSLSocket) and sock.pending():
            return True
        previous = sock.gettimeout()
        sock.settimeout(0.0)
        try:
            return bool(reader.peek(1))
        except (BlockingIOError, ssl.SSLWantReadError):
            return False
        finally:
            sock.settimeout(previous)

    def _wait_readable(self, client: imaplib.IMAP4, timeout: float) -> bool:
        readable, _, _ = select.select([client.socket()], [], [], timeout)
        return bool(readable)


def _first_text(data) -> Optional[str]:
    for item in data or ():
        if item:
            return item.decode("ascii") if isinstance(item, bytes) else str(item)
    return None


def _is_new_mail(line: bytes) -> bool:
    upper = line.upper()
    return upper.startswith(b"*") and (b"EXISTS" in upper or b"RECENT" in upper)


__all__ = [
    "MailboxSession",
    "STATUS_CONNECTING",
    "STATUS_FAILED",
    "STATUS_LISTENING",
    "STATUS_STOPPED",
    "imap_date",
]
