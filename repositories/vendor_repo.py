from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from services.db import DatabaseBackend, coerce_datetime, utcnow
from services.errors import DuplicateVendorError

logger = logging.getLogger(__name__)

_UPDATABLE = ("name", "email", "phone", "address", "category", "rating", "notes")

_SELECT = """
    SELECT id, name, email, phone, address, category, rating, notes,
           created_at, updated_at
    FROM vendors
"""


@dataclass
class VendorRow:
    id: str
    name: str
    email: str
    phone: Optional[str] = None
    address: Optional[str] = None
    category: Optional[str] = None
    rating: float = 0.0
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "address": self.address,
            "category": self.category,
            "rating": self.rating,
            "notes": self.notes,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }


def normalise_email(value: Optional[str]) -> str:
    return (value or "").strip().lower()


def _validate_rating(value: Any) -> float:
    rating = float(value if value is not None else 0)
    if rating < 0 or rating > 5:
        raise ValueError("rating must be between 0 and 5")
    return rating


def _from_row(row: Dict[str, Any]) -> VendorRow:
    return VendorRow(
        id=row["id"],
        name=row["name"],
        email=row["email"],
        phone=row.get("phone"),
        address=row.get("address"),
        category=row.get("category"),
        rating=float(row.get("rating") or 0),
        notes=row.get("notes"),
        created_at=coerce_datetime(row.get("created_at")),
        updated_at=coerce_datetime(row.get("updated_at")),
    )


def create(
    db: DatabaseBackend,
    *,
    name: str,
    email: str,
    phone: Optional[str] = None,
    address: Optional[str] = None,
    category: Optional[str] = None,
    rating: float = 0.0,
    notes: Optional[str] = None,
) -> VendorRow:
    now = utcnow()
    row = VendorRow(
        id=uuid.uuid4().hex,
        name=name.strip(),
        email=normalise_email(email),
        phone=phone,
        address=address,
        category=category,
        rating=_validate_rating(rating),
        notes=notes,
        created_at=now,
        updated_at=now,
    )
    if not row.email:
        raise ValueError("email is required")
    try:
        db.execute(
            """
            INSERT INTO vendors (
                id, name, email, phone, address, category, rating, notes,
                created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                row.id,
                row.name,
                row.email,
                row.phone,
                row.address,
                row.category,
                row.rating,
                row.notes,
                now,
                now,
            ),
        )
    except Exception as exc:
        if db.is_unique_violation(exc):
            raise DuplicateVendorError(
                f"Vendor with email {row.email} already exists"
            ) from exc
        raise
    logger.info("Created vendor %s <%s>", row.id, row.email)
    return row


def get(db: DatabaseBackend, vendor_id: str) -> Optional[VendorRow]:
    row = db.fetchone(_SELECT + " WHERE id = ?", (vendor_id,))
    return _from_row(row) if row else None


def get_by_email(db: DatabaseBackend, email: Optional[str]) -> Optional[VendorRow]:
    """Resolve a vendor by address, ignoring case and surrounding whitespace."""

    address = normalise_email(email)
    if not address:
        return None
    row = db.fetchone(_SELECT + " WHERE LOWER(email) = ?", (address,))
    return _from_row(row) if row else None


def get_by_ids(db: DatabaseBackend, vendor_ids: Iterable[str]) -> List[VendorRow]:
    """Return vendors for ``vendor_ids`` in the order the identifiers were given."""

    ids = [vid for vid in dict.fromkeys(vendor_ids) if vid]
    if not ids:
        return []
    placeholders = ", ".join("?" for _ in ids)
    rows = db.fetchall(_SELECT + f" WHERE id IN ({placeholders})", ids)
    by_id = {row["id"]: _from_row(row) for row in rows}
    return [by_id[vid] for vid in ids if vid in by_id]


def list_all(db: DatabaseBackend) -> List[VendorRow]:
    rows = db.fetchall(_SELECT + " ORDER BY created_at DESC")
    return [_from_row(row) for row in rows]


def update(
    db: DatabaseBackend, vendor_id: str, changes: Dict[str, Any]
) -> Optional[VendorRow]:
    assignments: List[str] = []
    params: List[Any] = []
    for key in _UPDATABLE:
        if key not in changes:
            continue
        value = changes[key]
        if key == "email":
            value = normalise_email(value)
            if not value:
                raise ValueError("email is required")
        elif key == "rating":
            value = _validate_rating(value)
        assignments.append(f"{key} = ?")
        params.append(value)

    if not assignments:
        return get(db, vendor_id)

    assignments.append("updated_at = ?")
    params.extend([utcnow(), vendor_id])
    try:
        updated = db.execute(
            f"UPDATE vendors SET {', '.join(assignments)} WHERE id = ?", params
        )
    except Exception as exc:
        if db.is_unique_violation(exc):
            raise DuplicateVendorError(
                f"Vendor with email {changes.get('email')} already exists"
            ) from exc
        raise
    if not updated:
        return None
    return get(db, vendor_id)


def delete(db: DatabaseBackend, vendor_id: str) -> bool:
    deleted = db.execute("DELETE FROM vendors WHERE id = ?", (vendor_id,))
    return bool(deleted)


__all__ = [
    "VendorRow",
    "create",
    "delete",
    "get",
    "get_by_email",
    "get_by_ids",
    "list_all",
    "normalise_email",
    "update",
]
