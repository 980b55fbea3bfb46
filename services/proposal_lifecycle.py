"""Proposal state machine: creation in ``parsed`` and the move to ``analyzed``.

``received`` remains a valid stored status but nothing in the ingestion
flow produces it; a proposal is only created once extraction succeeded.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from repositories import proposal_repo
from repositories.proposal_repo import ProposalRow
from repositories.solicitation_repo import SolicitationRow
from repositories.vendor_repo import VendorRow
from services.analysis_service import AnalysisService
from services.db import DatabaseBackend
from services.errors import AnalysisError
from services.message_fetcher import InboundEmail

logger = logging.getLogger(__name__)


class ProposalLifecycle:
    def __init__(self, db: DatabaseBackend, analysis_service: Optional[AnalysisService] = None) -> None:
        self.db = db
        self.analysis_service = analysis_service or AnalysisService()

    def create_parsed(
        self,
        *,
        solicitation: SolicitationRow,
        vendor: VendorRow,
        email: InboundEmail,
        parsed_data: Dict[str, Any],
    ) -> Optional[ProposalRow]:
        """Persist a ``parsed`` proposal; ``None`` when the pair already has one."""

        proposal = proposal_repo.insert_if_absent(
            self.db,
            solicitation_id=solicitation.id,
            vendor_id=vendor.id,
            raw_content=email.body,
            parsed_data=parsed_data,
            status="parsed",
            message_id=email.message_id,
            received_at=email.received_at,
            email_subject=email.subject,
            email_from=email.sender_address,
            attachments=email.attachments,
        )
        if proposal is not None:
            logger.info(
                "Created proposal %s for %s on solicitation %s",
                proposal.id,
                vendor.name,
                solicitation.id,
            )
        return proposal

    def analyze(self, proposal: ProposalRow, solicitation: SolicitationRow) -> ProposalRow:
        """Score ``proposal``; on analysis failure it is returned unchanged."""

        if proposal.status != "parsed":
            return proposal
        try:
            analysis = self.analysis_service.analyze_proposal(
                solicitation.context(), proposal.parsed_data or {}
            )
        except AnalysisError as exc:
            logger.warning("Analysis of proposal %s failed: %s", proposal.id, exc)
            return proposal

        if not proposal_repo.set_analysis(self.db, proposal.id, analysis):
            return proposal_repo.get(self.db, proposal.id) or proposal
        logger.info("Proposal %s analyzed, score %s/100", proposal.id, analysis.get("score"))
        return proposal_repo.get(self.db, proposal.id) or proposal


__all__ = ["ProposalLifecycle"]
