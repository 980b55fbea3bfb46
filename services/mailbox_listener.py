"""Background listener that feeds new mail into the inbound pipeline."""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Dict, Optional, Set

from services.errors import MailboxConnectionError
from services.inbound_pipeline import InboundPipeline, PipelineResult
from services.mailbox_session import STATUS_FAILED, STATUS_STOPPED, MailboxSession
from services.message_fetcher import InboundEmail, MessageFetcher

logger = logging.getLogger(__name__)

STATUS_DISABLED = "disabled"


class MailboxListener:
    """Owns the mailbox session thread and the pipeline worker pool.

    The listener thread is the only user of the IMAP connection; it runs an
    initial fetch, then fetches again on every session signal.  Each decoded
    message is handed to a worker so a slow oracle call never blocks the
    mailbox.  A fatal session error stops the listener without reconnecting.

    The mailbox is read-only, so every search returns the same unread
    messages again.  A message is claimed by its mailbox key (falling back to
    its Message-ID) before it is submitted and stays claimed for the lookback
    window; only an unexpected pipeline error releases it for another try.
    """

    def __init__(
        self,
        pipeline: InboundPipeline,
        *,
        settings,
        session_factory: Optional[Callable[[], MailboxSession]] = None,
        max_workers: Optional[int] = None,
    ) -> None:
        self.pipeline = pipeline
        self.settings = settings
        self._session_factory = session_factory or (lambda: MailboxSession.from_settings(settings))
        self._max_workers = max(1, int(max_workers or settings.email_listener_workers))
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._session: Optional[MailboxSession] = None
        self._disabled = False
        self._pending: Set[Future] = set()
        self._pending_lock = threading.Lock()
        self._handled: Dict[str, float] = {}
        self._handled_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self) -> bool:
        """Start the listener thread; returns ``False`` when it stays disabled."""

        if self._thread and self._thread.is_alive():
            return True
        if not self.settings.email_listener_enabled:
            logger.warning("Email listener disabled by configuration")
            self._disabled = True
            return False
        if not self.settings.imap_configured:
            logger.warning("IMAP credentials missing; email listener disabled")
            self._disabled = True
            return False

        self._disabled = False
        self._stop_event.clear()
        self._executor = ThreadPoolExecutor(
            max_workers=self._max_workers, thread_name_prefix="proposal-worker"
        )
        self._session = self._session_factory()
        self._thread = threading.Thread(target=self._run, name="MailboxListener", daemon=True)
        self._thread.start()
        logger.info("Mailbox listener started (workers=%s)", self._max_workers)
        return True

    def stop(self, timeout: float = 5.0) -> None:
        self._stop_event.set()
        thread = self._thread
        if thread and thread.is_alive():
            thread.join(timeout=timeout)
        self._thread = None
        executor = self._executor
        self._executor = None
        if executor is not None:
            executor.shutdown(wait=True)
        logger.info("Mailbox listener stopped")

    def wait_idle(self, timeout: Optional[float] = None) -> None:
        """Block until every submitted message has been processed."""

        with self._pending_lock:
            pending = list(self._pending)
        for future in pending:
            future.exception(timeout=timeout)

    @property
    def status(self) -> str:
        if self._disabled:
            return STATUS_DISABLED
        if self._session is None:
            return STATUS_STOPPED
        return self._session.status

    def snapshot(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "lastError": self._session.last_error if self._session else None,
        }

    # ------------------------------------------------------------------
    # Listener thread
    # ------------------------------------------------------------------
    def _run(self) -> None:
        session = self._session
        fetcher = MessageFetcher(session, lookback_days=self.settings.imap_lookback_days)
        try:
            session.connect()
            self._fetch_and_submit(fetcher)
            while not self._stop_event.is_set():
                if session.wait_for_signal(self._stop_event):
                    logger.info("New mail signal received")
                    self._fetch_and_submit(fetcher)
        except MailboxConnectionError:
            logger.exception("Mailbox listener terminated after a connection error")
        finally:
            session.close()
            if session.status == STATUS_FAILED:
                logger.error("Mailbox listener is down: %s", session.last_error)

    def _fetch_and_submit(self, fetcher: MessageFetcher) -> int:
        self._prune_handled()
        submitted = 0
        for email in fetcher.fetch_new():
            if self._stop_event.is_set():
                break
            executor = self._executor
            if executor is None:
                break
            if not self._claim(email):
                continue
            future = executor.submit(self._process, email)
            with self._pending_lock:
                self._pending.add(future)
            future.add_done_callback(self._discard_pending)
            submitted += 1
        if submitted:
            logger.info("Submitted %s message(s) for processing", submitted)
        return submitted

    def _discard_pending(self, future: Future) -> None:
        with self._pending_lock:
            self._pending.discard(future)

    def _claim(self, email: InboundEmail) -> bool:
        key = _dedup_key(email)
        if key is None:
            return True
        with self._handled_lock:
            if key in self._handled:
                return False
            self._handled[key] = time.monotonic()
        return True

    def _release(self, email: InboundEmail) -> None:
        key = _dedup_key(email)
        if key is None:
            return
        with self._handled_lock:
            self._handled.pop(key, None)

    def _prune_handled(self) -> None:
        cutoff = time.monotonic() - self.settings.imap_lookback_days * 86400
        with self._handled_lock:
            expired = [key for key, claimed in self._handled.items() if claimed < cutoff]
            for key in expired:
                del self._handled[key]

    def _process(self, email: InboundEmail) -> Optional[PipelineResult]:
        try:
            return self.pipeline.process(email)
        except Exception:
            logger.exception("Failed to process email %s", email.message_id)
            self._release(email)
            return None


def _dedup_key(email: InboundEmail) -> Optional[str]:
    return email.mailbox_key or email.message_id


__all__ = ["MailboxListener", "STATUS_DISABLED"]
