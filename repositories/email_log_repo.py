"""Append-only ledger of outbound and inbound email attempts.

Two kinds of readers use this table.  Audit callers list entries per
solicitation or direction; the correlation step asks for the latest
successful ``sent`` entry of a vendor (:func:`latest_active_context`).
Entries are never updated; they disappear only with their solicitation.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from services.db import DatabaseBackend, coerce_datetime, utcnow

logger = logging.getLogger(__name__)

DIRECTIONS = ("sent", "received")
OUTCOMES = ("success", "failed")

_SELECT = """
    SELECT seq, id, solicitation_id, vendor_id, direction, subject, body,
           from_address, to_address, message_id, outcome, error, created_at
    FROM email_logs
"""


@dataclass(frozen=True)
class EmailLogEntry:
    id: str
    direction: str
    outcome: str
    created_at: datetime
    solicitation_id: Optional[str] = None
    vendor_id: Optional[str] = None
    subject: Optional[str] = None
    body: Optional[str] = None
    from_address: Optional[str] = None
    to_address: Optional[str] = None
    message_id: Optional[str] = None
    error: Optional[str] = None
    seq: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "rfpId": self.solicitation_id,
            "vendorId": self.vendor_id,
            "direction": self.direction,
            "subject": self.subject,
            "body": self.body,
            "from": self.from_address,
            "to": self.to_address,
            "messageId": self.message_id,
            "status": self.outcome,
            "error": self.error,
            "createdAt": self.created_at.isoformat(),
        }


def _from_row(row: Dict[str, Any]) -> EmailLogEntry:
    return EmailLogEntry(
        seq=row.get("seq"),
        id=row["id"],
        solicitation_id=row.get("solicitation_id"),
        vendor_id=row.get("vendor_id"),
        direction=row["direction"],
        subject=row.get("subject"),
        body=row.get("body"),
        from_address=row.get("from_address"),
        to_address=row.get("to_address"),
        message_id=row.get("message_id"),
        outcome=row["outcome"],
        error=row.get("error"),
        created_at=coerce_datetime(row.get("created_at")),
    )


def append(
    db: DatabaseBackend,
    *,
    direction: str,
    outcome: str,
    solicitation_id: Optional[str] = None,
    vendor_id: Optional[str] = None,
    subject: Optional[str] = None,
    body: Optional[str] = None,
    from_address: Optional[str] = None,
    to_address: Optional[str] = None,
    message_id: Optional[str] = None,
    error: Optional[str] = None,
    created_at: Optional[datetime] = None,
) -> EmailLogEntry:
    if direction not in DIRECTIONS:
        raise ValueError(f"Unsupported ledger direction {direction!r}")
    if outcome not in OUTCOMES:
        raise ValueError(f"Unsupported ledger outcome {outcome!r}")

    entry = EmailLogEntry(
        id=uuid.uuid4().hex,
        solicitation_id=solicitation_id,
        vendor_id=vendor_id,
        direction=direction,
        subject=subject,
        body=body,
        from_address=from_address,
        to_address=to_address,
        message_id=message_id,
        outcome=outcome,
        error=error,
        created_at=coerce_datetime(created_at) or utcnow(),
    )
    db.execute(
        """
        INSERT INTO email_logs (
            id, solicitation_id, vendor_id, direction, subject, body,
            from_address, to_address, message_id, outcome, error, created_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            entry.id,
            entry.solicitation_id,
            entry.vendor_id,
            entry.direction,
            entry.subject,
            entry.body,
            entry.from_address,
            entry.to_address,
            entry.message_id,
            entry.outcome,
            entry.error,
            entry.created_at,
        ),
    )
    logger.debug(
        "Ledger %s/%s entry %s for solicitation=%s vendor=%s",
        direction,
        outcome,
        entry.id,
        solicitation_id,
        vendor_id,
    )
    return entry


def latest_active_context(
    db: DatabaseBackend, vendor_id: str
) -> Optional[EmailLogEntry]:
    """Return the most recent successful ``sent`` entry for ``vendor_id``.

    Ties on ``created_at`` resolve to the entry inserted last.
    """

    row = db.fetchone(
        _SELECT
        + """
        WHERE vendor_id = ?
          AND direction = 'sent'
          AND outcome = 'success'
          AND solicitation_id IS NOT NULL
        ORDER BY created_at DESC, seq DESC
        LIMIT 1
        """,
        (vendor_id,),
    )
    return _from_row(row) if row else None


def list_for_solicitation(
    db: DatabaseBackend, solicitation_id: str
) -> List[EmailLogEntry]:
    rows = db.fetchall(
        _SELECT + " WHERE solicitation_id = ? ORDER BY created_at ASC, seq ASC",
        (solicitation_id,),
    )
    return [_from_row(row) for row in rows]


def list_by_direction(db: DatabaseBackend, direction: str) -> List[EmailLogEntry]:
    if direction not in DIRECTIONS:
        raise ValueError(f"Unsupported ledger direction {direction!r}")
    rows = db.fetchall(
        _SELECT + " WHERE direction = ? ORDER BY created_at ASC, seq ASC",
        (direction,),
    )
    return [_from_row(row) for row in rows]


__all__ = [
    "DIRECTIONS",
    "OUTCOMES",
    "EmailLogEntry",
    "append",
    "latest_active_context",
    "list_by_direction",
    "list_for_solicitation",
]
