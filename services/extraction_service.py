"""Structured extraction of vendor proposals and buyer requests."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Mapping, Optional

from pydantic import ValidationError

from config.settings import settings
from models.schemas import ParsedSolicitation, ProposalExtraction
from services.errors import ExtractionError
from services.llm_client import LLMClient, LLMClientError, get_llm_client

logger = logging.getLogger(__name__)

PROPOSAL_SYSTEM_PROMPT = """You are an expert at extracting structured data from vendor proposals.
Parse the vendor's email response and extract pricing, terms, and other details.
Return ONLY valid JSON with this structure:
{
  "totalPrice": number,
  "breakdown": [{"item": "name", "unitPrice": number, "quantity": number, "totalPrice": number}],
  "deliveryTimeline": "timeline",
  "paymentTerms": "terms",
  "warranty": "warranty info",
  "additionalTerms": "other terms or conditions"
}"""

SOLICITATION_SYSTEM_PROMPT = """You are an expert procurement assistant. Parse the user's natural language description into a structured RFP.
Return ONLY valid JSON with this exact structure:
{
  "title": "Brief descriptive title",
  "description": "Full description of what needs to be procured",
  "budget": number (extract numerical value only),
  "deliveryTimeline": "timeline string",
  "items": [{"name": "item name", "quantity": number, "specifications": "specs"}],
  "paymentTerms": "payment terms",
  "warrantyRequirements": "warranty info",
  "additionalRequirements": "any other requirements"
}"""


class ExtractionService:
    """Turns free text into validated structured payloads via the LLM endpoint."""

    def __init__(
        self,
        client: Optional[LLMClient] = None,
        *,
        temperature: Optional[float] = None,
    ) -> None:
        self._client = client
        self.temperature = (
            temperature if temperature is not None else settings.llm_temperature_extraction
        )

    @property
    def client(self) -> LLMClient:
        if self._client is None:
            self._client = get_llm_client()
        return self._client

    def extract_proposal(
        self, raw_text: str, solicitation_context: Mapping[str, Any]
    ) -> Dict[str, Any]:
        """Return the commercial terms of ``raw_text`` as a camelCase dict.

        Raises :class:`ExtractionError` when the endpoint fails or the payload
        does not match :class:`ProposalExtraction`.
        """

        user_prompt = (
            f"RFP Context: {json.dumps(dict(solicitation_context), default=str)}"
            f"\n\nVendor Response:\n{raw_text}"
        )
        try:
            payload = self.client.complete_json(
                system=PROPOSAL_SYSTEM_PROMPT,
                user=user_prompt,
                temperature=self.temperature,
            )
            extraction = ProposalExtraction.model_validate(payload)
        except (LLMClientError, ValidationError) as exc:
            raise ExtractionError(f"Proposal extraction failed: {exc}") from exc
        return extraction.model_dump(by_alias=True)

    def parse_solicitation(self, natural_language_input: str) -> ParsedSolicitation:
        try:
            payload = self.client.complete_json(
                system=SOLICITATION_SYSTEM_PROMPT,
                user=natural_language_input,
                temperature=self.temperature,
            )
            return ParsedSolicitation.model_validate(payload)
        except (LLMClientError, ValidationError) as exc:
            raise ExtractionError(f"Solicitation parsing failed: {exc}") from exc


__all__ = ["ExtractionService", "PROPOSAL_SYSTEM_PROMPT", "SOLICITATION_SYSTEM_PROMPT"]
