from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class _OracleModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class BreakdownItem(_OracleModel):
    item: str
    unit_price: Optional[float] = Field(None, alias='unitPrice')
    quantity: Optional[float] = None
    total_price: Optional[float] = Field(None, alias='totalPrice')


class ProposalExtraction(_OracleModel):
    """Commercial terms extracted from a vendor reply."""

    total_price: float = Field(..., alias='totalPrice')
    breakdown: List[BreakdownItem] = Field(default_factory=list)
    delivery_timeline: Optional[str] = Field(None, alias='deliveryTimeline')
    payment_terms: Optional[str] = Field(None, alias='paymentTerms')
    warranty: Optional[str] = None
    additional_terms: Optional[str] = Field(None, alias='additionalTerms')


class ProposalAnalysis(_OracleModel):
    score: float = Field(..., ge=0, le=100)
    strengths: List[str] = Field(default_factory=list)
    weaknesses: List[str] = Field(default_factory=list)
    summary: str = ""
    recommendation: str = ""


class VendorAnalysis(_OracleModel):
    vendor_name: str = Field(..., alias='vendorName')
    score: float = Field(..., ge=0, le=100)
    strengths: List[str] = Field(default_factory=list)
    weaknesses: List[str] = Field(default_factory=list)
    summary: str = ""


class ProposalComparison(_OracleModel):
    overall_recommendation: str = Field(..., alias='overallRecommendation')
    comparison_summary: str = Field("", alias='comparisonSummary')
    vendor_analyses: List[VendorAnalysis] = Field(default_factory=list, alias='vendorAnalyses')
    key_considerations: List[str] = Field(default_factory=list, alias='keyConsiderations')


class SolicitationItem(_OracleModel):
    name: str
    quantity: Optional[float] = None
    specifications: Optional[str] = None


class ParsedSolicitation(_OracleModel):
    """Structured solicitation derived from a buyer's free-text request."""

    title: str
    description: str
    budget: float
    delivery_timeline: str = Field(..., alias='deliveryTimeline')
    items: List[SolicitationItem] = Field(default_factory=list)
    payment_terms: Optional[str] = Field(None, alias='paymentTerms')
    warranty_requirements: Optional[str] = Field(None, alias='warrantyRequirements')
    additional_requirements: Optional[str] = Field(None, alias='additionalRequirements')
