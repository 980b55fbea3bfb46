"""Processes one inbound email end to end.

Correlate, extract, create the proposal, analyze it, then write the
ledger entry.  Work for a single vendor is serialized so the duplicate
check and the insert cannot interleave; the unique pair index on
``proposals`` backs this up across processes.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Iterator, Optional

from config.settings import settings
from repositories import email_log_repo
from repositories.solicitation_repo import SolicitationRow
from repositories.vendor_repo import VendorRow
from services.correlation import UNKNOWN_SENDER, CorrelationEngine
from services.db import DatabaseBackend
from services.errors import ExtractionError, InvalidSenderError
from services.extraction_service import ExtractionService
from services.message_fetcher import InboundEmail
from services.proposal_lifecycle import ProposalLifecycle

logger = logging.getLogger(__name__)

OUTCOME_CREATED = "created"
OUTCOME_DUPLICATE = "duplicate"
OUTCOME_EXTRACTION_FAILED = "extraction_failed"
OUTCOME_FAILED = "failed"


@dataclass(frozen=True)
class PipelineResult:
    outcome: str
    proposal_id: Optional[str] = None
    proposal_status: Optional[str] = None
    error: Optional[str] = None


class InboundPipeline:
    def __init__(
        self,
        db: DatabaseBackend,
        *,
        extraction_service: Optional[ExtractionService] = None,
        lifecycle: Optional[ProposalLifecycle] = None,
        correlator: Optional[CorrelationEngine] = None,
        mailbox_address: Optional[str] = None,
    ) -> None:
        self.db = db
        self.extraction_service = extraction_service or ExtractionService()
        self.lifecycle = lifecycle or ProposalLifecycle(db)
        self.correlator = correlator or CorrelationEngine(db)
        self.mailbox_address = mailbox_address or settings.app_email
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def _vendor_lock(self, vendor_id: str) -> Iterator[None]:
        with self._locks_guard:
            lock = self._locks.setdefault(vendor_id, threading.Lock())
        with lock:
            yield

    def process(self, email: InboundEmail) -> PipelineResult:
        vendor: Optional[VendorRow] = None
        solicitation: Optional[SolicitationRow] = None
        try:
            vendor = self.correlator.resolve_vendor(email)
            if vendor is None:
                logger.info("Email not from a known vendor: %s", email.sender_address)
                return PipelineResult(outcome=UNKNOWN_SENDER)

            with self._vendor_lock(vendor.id):
                correlation = self.correlator.correlate(email, vendor=vendor)
                if not correlation.is_candidate:
                    return PipelineResult(outcome=correlation.outcome)
                solicitation = correlation.solicitation

                parsed_data = self.extraction_service.extract_proposal(
                    email.body, solicitation.context()
                )
                proposal = self.lifecycle.create_parsed(
                    solicitation=solicitation,
                    vendor=vendor,
                    email=email,
                    parsed_data=parsed_data,
                )
                if proposal is None:
                    return PipelineResult(outcome=OUTCOME_DUPLICATE)

            proposal = self.lifecycle.analyze(proposal, solicitation)
            self._record(email, vendor=vendor, solicitation=solicitation, outcome="success")
            logger.info("Successfully processed proposal from %s", vendor.name)
            return PipelineResult(
                outcome=OUTCOME_CREATED,
                proposal_id=proposal.id,
                proposal_status=proposal.status,
            )
        except ExtractionError as exc:
            logger.error(
                "Extraction failed for email %s from %s: %s",
                email.message_id,
                email.sender_address,
                exc,
            )
            self._record(
                email, vendor=vendor, solicitation=solicitation, outcome="failed", error=str(exc)
            )
            return PipelineResult(outcome=OUTCOME_EXTRACTION_FAILED, error=str(exc))
        except InvalidSenderError as exc:
            logger.warning("Rejecting email %s: %s", email.message_id, exc)
            self._record(email, vendor=None, solicitation=None, outcome="failed", error=str(exc))
            return PipelineResult(outcome=OUTCOME_FAILED, error=str(exc))
        except Exception as exc:
            logger.exception("Error processing email %s", email.message_id)
            self._record(
                email, vendor=vendor, solicitation=solicitation, outcome="failed", error=str(exc)
            )
            return PipelineResult(outcome=OUTCOME_FAILED, error=str(exc))

    def _record(
        self,
        email: InboundEmail,
        *,
        vendor: Optional[VendorRow],
        solicitation: Optional[SolicitationRow],
        outcome: str,
        error: Optional[str] = None,
    ) -> None:
        email_log_repo.append(
            self.db,
            direction="received",
            outcome=outcome,
            solicitation_id=solicitation.id if solicitation else None,
            vendor_id=vendor.id if vendor else None,
            subject=email.subject,
            body=email.body,
            from_address=email.sender_address or email.raw_sender,
            to_address=self.mailbox_address,
            message_id=email.message_id,
            error=error,
        )


__all__ = [
    "InboundPipeline",
    "OUTCOME_CREATED",
    "OUTCOME_DUPLICATE",
    "OUTCOME_EXTRACTION_FAILED",
    "OUTCOME_FAILED",
    "PipelineResult",
]
