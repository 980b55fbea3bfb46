"""Request payloads for the solicitation (RFP) endpoints."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


_NULLABLE_FIELDS = {"payment_terms", "warranty_requirements", "additional_requirements"}


class _RequestModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class RfpIdRequest(_RequestModel):
    id: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def _strip(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        text = str(value).strip()
        return text or None


class RfpCreateRequest(_RequestModel):
    natural_language_input: Optional[str] = Field(default=None, alias="naturalLanguageInput")


class RfpItemPayload(_RequestModel):
    name: str
    quantity: Optional[float] = None
    specifications: Optional[str] = None


class RfpUpdateRequest(RfpIdRequest):
    title: Optional[str] = None
    description: Optional[str] = None
    budget: Optional[float] = Field(default=None, ge=0)
    delivery_timeline: Optional[str] = Field(default=None, alias="deliveryTimeline")
    items: Optional[List[RfpItemPayload]] = None
    payment_terms: Optional[str] = Field(default=None, alias="paymentTerms")
    warranty_requirements: Optional[str] = Field(default=None, alias="warrantyRequirements")
    additional_requirements: Optional[str] = Field(default=None, alias="additionalRequirements")
    status: Optional[str] = None

    def changes(self) -> Dict[str, Any]:
        """Return only the fields the caller actually supplied."""

        data = self.model_dump(exclude_unset=True, exclude={"id"})
        return {
            key: value
            for key, value in data.items()
            if value is not None or key in _NULLABLE_FIELDS
        }


class RfpSendRequest(RfpIdRequest):
    vendor_ids: List[str] = Field(default_factory=list, alias="vendorIds")
