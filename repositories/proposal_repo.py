"""Persistence for vendor proposals.

At most one proposal exists per ``(solicitation_id, vendor_id)``: the
``uq_proposals_solicitation_vendor`` index backs :func:`insert_if_absent`,
which reports a lost race by returning ``None`` rather than raising.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from services.db import DatabaseBackend, coerce_datetime, dump_json, load_json, utcnow

logger = logging.getLogger(__name__)

STATUSES = ("received", "parsed", "analyzed")

_SELECT = """
    SELECT id, solicitation_id, vendor_id, raw_content, parsed_data,
           ai_analysis, message_id, received_at, email_subject, email_from,
           attachments, status, created_at, updated_at
    FROM proposals
"""


@dataclass
class ProposalRow:
    id: str
    solicitation_id: str
    vendor_id: str
    raw_content: str
    parsed_data: Optional[Dict[str, Any]] = None
    ai_analysis: Optional[Dict[str, Any]] = None
    message_id: Optional[str] = None
    received_at: Optional[datetime] = None
    email_subject: Optional[str] = None
    email_from: Optional[str] = None
    attachments: List[Dict[str, Any]] = field(default_factory=list)
    status: str = "received"
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "rfpId": self.solicitation_id,
            "vendorId": self.vendor_id,
            "rawContent": self.raw_content,
            "parsedData": self.parsed_data,
            "aiAnalysis": self.ai_analysis,
            "emailMetadata": {
                "messageId": self.message_id,
                "receivedAt": self.received_at.isoformat() if self.received_at else None,
                "subject": self.email_subject,
                "from": self.email_from,
            },
            "attachments": list(self.attachments),
            "status": self.status,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }


def _from_row(row: Dict[str, Any]) -> ProposalRow:
    return ProposalRow(
        id=row["id"],
        solicitation_id=row["solicitation_id"],
        vendor_id=row["vendor_id"],
        raw_content=row["raw_content"],
        parsed_data=load_json(row.get("parsed_data"), None),
        ai_analysis=load_json(row.get("ai_analysis"), None),
        message_id=row.get("message_id"),
        received_at=coerce_datetime(row.get("received_at")),
        email_subject=row.get("email_subject"),
        email_from=row.get("email_from"),
        attachments=load_json(row.get("attachments"), []),
        status=row.get("status") or "received",
        created_at=coerce_datetime(row.get("created_at")),
        updated_at=coerce_datetime(row.get("updated_at")),
    )


def insert_if_absent(
    db: DatabaseBackend,
    *,
    solicitation_id: str,
    vendor_id: str,
    raw_content: str,
    parsed_data: Optional[Dict[str, Any]],
    status: str,
    message_id: Optional[str] = None,
    received_at: Optional[datetime] = None,
    email_subject: Optional[str] = None,
    email_from: Optional[str] = None,
    attachments: Optional[List[Dict[str, Any]]] = None,
) -> Optional[ProposalRow]:
    """Insert a proposal unless one already exists for the pair."""

    if status not in STATUSES:
        raise ValueError(f"Unsupported proposal status {status!r}")
    now = utcnow()
    proposal_id = uuid.uuid4().hex
    inserted = db.execute(
        """
        INSERT INTO proposals (
            id, solicitation_id, vendor_id, raw_content, parsed_data,
            ai_analysis, message_id, received_at, email_subject, email_from,
            attachments, status, created_at, updated_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT (solicitation_id, vendor_id) DO NOTHING
        """,
        (
            proposal_id,
            solicitation_id,
            vendor_id,
            raw_content,
            dump_json(parsed_data),
            None,
            message_id,
            received_at,
            email_subject,
            email_from,
            dump_json(list(attachments or [])),
            status,
            now,
            now,
        ),
    )
    if not inserted:
        logger.info(
            "Proposal for solicitation %s and vendor %s already exists",
            solicitation_id,
            vendor_id,
        )
        return None
    return get(db, proposal_id)


def exists_for(db: DatabaseBackend, solicitation_id: str, vendor_id: str) -> bool:
    row = db.fetchone(
        "SELECT 1 AS present FROM proposals WHERE solicitation_id = ? AND vendor_id = ?",
        (solicitation_id, vendor_id),
    )
    return row is not None


def get(db: DatabaseBackend, proposal_id: str) -> Optional[ProposalRow]:
    row = db.fetchone(_SELECT + " WHERE id = ?", (proposal_id,))
    return _from_row(row) if row else None


def list_for_solicitation(db: DatabaseBackend, solicitation_id: str) -> List[ProposalRow]:
    rows = db.fetchall(
        _SELECT + " WHERE solicitation_id = ? ORDER BY created_at ASC",
        (solicitation_id,),
    )
    return [_from_row(row) for row in rows]


def set_analysis(
    db: DatabaseBackend, proposal_id: str, analysis: Dict[str, Any]
) -> bool:
    """Attach ``analysis`` and move a ``parsed`` proposal to ``analyzed``."""

    updated = db.execute(
        """
        UPDATE proposals
        SET ai_analysis = ?, status = 'analyzed', updated_at = ?
        WHERE id = ? AND status = 'parsed'
        """,
        (dump_json(analysis), utcnow(), proposal_id),
    )
    return bool(updated)


__all__ = [
    "STATUSES",
    "ProposalRow",
    "exists_for",
    "get",
    "insert_if_absent",
    "list_for_solicitation",
    "set_analysis",
]
