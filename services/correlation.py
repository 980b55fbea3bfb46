"""Matches an inbound email to the (vendor, solicitation) pair it answers."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from repositories import email_log_repo, proposal_repo, solicitation_repo, vendor_repo
from repositories.solicitation_repo import SolicitationRow
from repositories.vendor_repo import VendorRow
from services.db import DatabaseBackend
from services.errors import InvalidSenderError
from services.message_fetcher import InboundEmail

logger = logging.getLogger(__name__)

UNKNOWN_SENDER = "unknown_sender"
NO_ACTIVE_SOLICITATION = "no_active_solicitation"
DUPLICATE = "duplicate"
CANDIDATE = "candidate"


@dataclass(frozen=True)
class CorrelationResult:
    outcome: str
    vendor: Optional[VendorRow] = None
    solicitation: Optional[SolicitationRow] = None

    @property
    def is_candidate(self) -> bool:
        return self.outcome == CANDIDATE


class CorrelationEngine:
    """Applies the ordered correlation rules.

    1. the sender must be a known vendor;
    2. the vendor's latest successful ``sent`` ledger entry names the
       active solicitation;
    3. no proposal may exist yet for that pair.
    """

    def __init__(self, db: DatabaseBackend) -> None:
        self.db = db

    def resolve_vendor(self, email: InboundEmail) -> Optional[VendorRow]:
        if not email.sender_address:
            raise InvalidSenderError(email.raw_sender)
        return vendor_repo.get_by_email(self.db, email.sender_address)

    def correlate(
        self, email: InboundEmail, *, vendor: Optional[VendorRow] = None
    ) -> CorrelationResult:
        if vendor is None:
            vendor = self.resolve_vendor(email)
        if vendor is None:
            logger.info("Ignoring email from unknown sender %s", email.sender_address)
            return CorrelationResult(UNKNOWN_SENDER)

        entry = email_log_repo.latest_active_context(self.db, vendor.id)
        solicitation = (
            solicitation_repo.get(self.db, entry.solicitation_id) if entry else None
        )
        if solicitation is None:
            logger.info("No outstanding solicitation for vendor %s", vendor.name)
            return CorrelationResult(NO_ACTIVE_SOLICITATION, vendor=vendor)

        if proposal_repo.exists_for(self.db, solicitation.id, vendor.id):
            logger.info(
                "Proposal already exists for %s on solicitation %s",
                vendor.name,
                solicitation.title,
            )
            return CorrelationResult(DUPLICATE, vendor=vendor, solicitation=solicitation)

        return CorrelationResult(CANDIDATE, vendor=vendor, solicitation=solicitation)


__all__ = [
    "CANDIDATE",
    "DUPLICATE",
    "NO_ACTIVE_SOLICITATION",
    "UNKNOWN_SENDER",
    "CorrelationEngine",
    "CorrelationResult",
]
