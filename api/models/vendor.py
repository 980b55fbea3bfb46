"""Request payloads for the vendor endpoints."""

from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator


class VendorCreateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str = Field(..., min_length=1)
    email: EmailStr
    phone: Optional[str] = None
    address: Optional[str] = None
    category: Optional[str] = None
    rating: float = Field(default=0, ge=0, le=5)
    notes: Optional[str] = None

    @field_validator("name", mode="before")
    @classmethod
    def _strip_name(cls, value: Any) -> str:
        if value is None:
            raise ValueError("name is required")
        name = str(value).strip()
        if not name:
            raise ValueError("name must not be empty")
        return name


class VendorIdRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: Optional[str] = None


class VendorUpdateRequest(VendorIdRequest):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    category: Optional[str] = None
    rating: Optional[float] = Field(default=None, ge=0, le=5)
    notes: Optional[str] = None

    def changes(self) -> Dict[str, Any]:
        data = self.model_dump(exclude_unset=True, exclude={"id"})
        return {
            key: value
            for key, value in data.items()
            if value is not None or key not in {"name", "email", "rating"}
        }
