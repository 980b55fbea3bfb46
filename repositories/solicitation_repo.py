from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from services.db import DatabaseBackend, coerce_datetime, dump_json, load_json, utcnow

logger = logging.getLogger(__name__)

STATUSES = ("draft", "sent", "closed")

# Attribute name -> column name for fields callers may update.
_UPDATABLE = {
    "title": "title",
    "description": "description",
    "budget": "budget",
    "delivery_timeline": "delivery_timeline",
    "items": "items",
    "payment_terms": "payment_terms",
    "warranty_requirements": "warranty_requirements",
    "additional_requirements": "additional_requirements",
    "status": "status",
}
_JSON_COLUMNS = {"items", "sent_to"}

_SELECT = """
    SELECT id, title, description, budget, delivery_timeline, items,
           payment_terms, warranty_requirements, additional_requirements,
           status, sent_to, created_at, updated_at
    FROM solicitations
"""


@dataclass
class SolicitationRow:
    id: str
    title: str
    description: str
    budget: float
    delivery_timeline: str
    items: List[Dict[str, Any]] = field(default_factory=list)
    payment_terms: Optional[str] = None
    warranty_requirements: Optional[str] = None
    additional_requirements: Optional[str] = None
    status: str = "draft"
    sent_to: List[str] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def context(self) -> Dict[str, Any]:
        """Fields handed to the oracles as the solicitation context."""

        return {
            "title": self.title,
            "description": self.description,
            "budget": self.budget,
            "deliveryTimeline": self.delivery_timeline,
            "items": self.items,
            "paymentTerms": self.payment_terms,
            "warrantyRequirements": self.warranty_requirements,
            "additionalRequirements": self.additional_requirements,
        }

    def to_dict(self) -> Dict[str, Any]:
        payload = {"id": self.id}
        payload.update(self.context())
        payload.update(
            {
                "status": self.status,
                "sentTo": list(self.sent_to),
                "createdAt": self.created_at.isoformat() if self.created_at else None,
                "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
            }
        )
        return payload


def _from_row(row: Dict[str, Any]) -> SolicitationRow:
    return SolicitationRow(
        id=row["id"],
        title=row["title"],
        description=row["description"],
        budget=float(row["budget"]),
        delivery_timeline=row["delivery_timeline"],
        items=load_json(row.get("items"), []),
        payment_terms=row.get("payment_terms"),
        warranty_requirements=row.get("warranty_requirements"),
        additional_requirements=row.get("additional_requirements"),
        status=row.get("status") or "draft",
        sent_to=load_json(row.get("sent_to"), []),
        created_at=coerce_datetime(row.get("created_at")),
        updated_at=coerce_datetime(row.get("updated_at")),
    )


def create(
    db: DatabaseBackend,
    *,
    title: str,
    description: str,
    budget: float,
    delivery_timeline: str,
    items: Optional[List[Dict[str, Any]]] = None,
    payment_terms: Optional[str] = None,
    warranty_requirements: Optional[str] = None,
    additional_requirements: Optional[str] = None,
    status: str = "draft",
) -> SolicitationRow:
    if status not in STATUSES:
        raise ValueError(f"Unsupported solicitation status {status!r}")
    now = utcnow()
    row = SolicitationRow(
        id=uuid.uuid4().hex,
        title=title,
        description=description,
        budget=float(budget),
        delivery_timeline=delivery_timeline,
        items=list(items or []),
        payment_terms=payment_terms,
        warranty_requirements=warranty_requirements,
        additional_requirements=additional_requirements,
        status=status,
        sent_to=[],
        created_at=now,
        updated_at=now,
    )
    db.execute(
        """
        INSERT INTO solicitations (
            id, title, description, budget, delivery_timeline, items,
            payment_terms, warranty_requirements, additional_requirements,
            status, sent_to, created_at, updated_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            row.id,
            row.title,
            row.description,
            row.budget,
            row.delivery_timeline,
            dump_json(row.items),
            row.payment_terms,
            row.warranty_requirements,
            row.additional_requirements,
            row.status,
            dump_json(row.sent_to),
            now,
            now,
        ),
    )
    logger.info("Created solicitation %s (%s)", row.id, row.title)
    return row


def get(db: DatabaseBackend, solicitation_id: str) -> Optional[SolicitationRow]:
    row = db.fetchone(_SELECT + " WHERE id = ?", (solicitation_id,))
    return _from_row(row) if row else None


def list_all(db: DatabaseBackend) -> List[SolicitationRow]:
    rows = db.fetchall(_SELECT + " ORDER BY created_at DESC")
    return [_from_row(row) for row in rows]


def update(
    db: DatabaseBackend, solicitation_id: str, changes: Dict[str, Any]
) -> Optional[SolicitationRow]:
    """Apply ``changes`` to the solicitation and return the refreshed row."""

    assignments: List[str] = []
    params: List[Any] = []
    for key, value in changes.items():
        column = _UPDATABLE.get(key)
        if column is None:
            continue
        if column == "status" and value not in STATUSES:
            raise ValueError(f"Unsupported solicitation status {value!r}")
        if column == "budget" and value is not None:
            value = float(value)
        assignments.append(f"{column} = ?")
        params.append(dump_json(value) if column in _JSON_COLUMNS else value)

    if not assignments:
        return get(db, solicitation_id)

    assignments.append("updated_at = ?")
    params.extend([utcnow(), solicitation_id])
    updated = db.execute(
        f"UPDATE solicitations SET {', '.join(assignments)} WHERE id = ?",
        params,
    )
    if not updated:
        return None
    return get(db, solicitation_id)


def mark_sent(
    db: DatabaseBackend, solicitation_id: str, vendor_ids: Iterable[str]
) -> Optional[SolicitationRow]:
    """Flag the solicitation as sent and merge ``vendor_ids`` into ``sent_to``."""

    current = get(db, solicitation_id)
    if current is None:
        return None
    merged = list(current.sent_to)
    for vendor_id in vendor_ids:
        if vendor_id not in merged:
            merged.append(vendor_id)
    db.execute(
        "UPDATE solicitations SET status = ?, sent_to = ?, updated_at = ? WHERE id = ?",
        ("sent", dump_json(merged), utcnow(), solicitation_id),
    )
    return get(db, solicitation_id)


def delete(db: DatabaseBackend, solicitation_id: str) -> bool:
    """Delete the solicitation together with its proposals and ledger entries."""

    with db.get_conn() as conn:
        cursor = conn.cursor()
        try:
            cursor.execute(
                db.sql("DELETE FROM proposals WHERE solicitation_id = ?"),
                (solicitation_id,),
            )
            removed_proposals = cursor.rowcount
            cursor.execute(
                db.sql("DELETE FROM email_logs WHERE solicitation_id = ?"),
                (solicitation_id,),
            )
            cursor.execute(
                db.sql("DELETE FROM solicitations WHERE id = ?"),
                (solicitation_id,),
            )
            deleted = cursor.rowcount
        finally:
            cursor.close()
    if deleted:
        logger.info(
            "Deleted solicitation %s and %s proposal(s)",
            solicitation_id,
            removed_proposals,
        )
    return bool(deleted)


__all__ = [
    "STATUSES",
    "SolicitationRow",
    "create",
    "delete",
    "get",
    "list_all",
    "mark_sent",
    "update",
]
