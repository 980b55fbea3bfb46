"""Sends a solicitation to a list of vendors, one at a time."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from repositories import email_log_repo, solicitation_repo, vendor_repo
from repositories.solicitation_repo import SolicitationRow
from repositories.vendor_repo import VendorRow
from services.db import DatabaseBackend
from services.email_service import EmailService
from services.email_templates import html_to_text, render_rfp_email, rfp_subject
from services.errors import NotFoundError

logger = logging.getLogger(__name__)


@dataclass
class DispatchOutcome:
    solicitation: SolicitationRow
    results: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def sent_count(self) -> int:
        return sum(1 for entry in self.results if entry["success"])


class RfpDispatchService:
    """Emails a solicitation to vendors and records every attempt in the ledger.

    A failure for one vendor is recorded and does not stop the loop; the
    solicitation moves to ``sent`` once at least one send succeeded.
    """

    def __init__(
        self,
        db: DatabaseBackend,
        email_service: Optional[EmailService] = None,
        *,
        sender: Optional[str] = None,
    ) -> None:
        self.db = db
        self.email_service = email_service or EmailService()
        self.sender = sender or self.email_service.settings.app_email

    def dispatch(self, solicitation_id: str, vendor_ids: Iterable[str]) -> DispatchOutcome:
        solicitation = solicitation_repo.get(self.db, solicitation_id)
        if solicitation is None:
            raise NotFoundError(f"RFP {solicitation_id} not found")
        vendors = vendor_repo.get_by_ids(self.db, vendor_ids)
        if not vendors:
            raise NotFoundError("No valid vendors found")

        results = [self._send_to_vendor(solicitation, vendor) for vendor in vendors]
        delivered = [entry["vendorId"] for entry in results if entry["success"]]
        if delivered:
            updated = solicitation_repo.mark_sent(self.db, solicitation.id, delivered)
            if updated is not None:
                solicitation = updated

        logger.info(
            "Dispatched solicitation %s: %s of %s vendor(s) succeeded",
            solicitation.id,
            len(delivered),
            len(results),
        )
        return DispatchOutcome(solicitation=solicitation, results=results)

    def _send_to_vendor(self, solicitation: SolicitationRow, vendor: VendorRow) -> Dict[str, Any]:
        subject = rfp_subject(solicitation.title)
        html_body = render_rfp_email(solicitation.context(), vendor.name)
        result = self.email_service.send_email(
            subject,
            html_body,
            vendor.email,
            text_body=html_to_text(html_body),
            sender=self.sender,
        )

        email_log_repo.append(
            self.db,
            direction="sent",
            outcome="success" if result.success else "failed",
            solicitation_id=solicitation.id,
            vendor_id=vendor.id,
            subject=subject,
            body=html_body,
            from_address=self.sender,
            to_address=vendor.email,
            message_id=result.message_id,
            error=None if result.success else result.error,
        )

        entry: Dict[str, Any] = {
            "vendorId": vendor.id,
            "vendor": vendor.name,
            "success": result.success,
        }
        if not result.success:
            entry["error"] = result.error or "Unknown transport error"
            logger.warning("Failed to send solicitation %s to %s", solicitation.id, vendor.email)
        return entry


__all__ = ["DispatchOutcome", "RfpDispatchService"]
