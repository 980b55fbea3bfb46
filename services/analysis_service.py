from __future__ import annotations

import json
import logging
from typing import Any, Dict, Iterable, Mapping, Optional

from pydantic import ValidationError

from config.settings import settings
from models.schemas import ProposalAnalysis, ProposalComparison
from services.errors import AnalysisError
from services.llm_client import LLMClient, LLMClientError, get_llm_client

logger = logging.getLogger(__name__)

ANALYSIS_SYSTEM_PROMPT = """Analyze this vendor proposal against the RFP requirements.
Return ONLY valid JSON:
{
  "score": number (0-100),
  "strengths": ["strength1", "strength2"],
  "weaknesses": ["weakness1", "weakness2"],
  "summary": "brief summary",
  "recommendation": "recommendation text"
}"""

COMPARISON_SYSTEM_PROMPT = """You are a procurement expert analyzing vendor proposals.
Provide a comprehensive comparison and recommendation.
Return ONLY valid JSON with this structure:
{
  "overallRecommendation": "Which vendor to choose and why",
  "comparisonSummary": "Brief comparison of all vendors",
  "vendorAnalyses": [
    {
      "vendorName": "name",
      "score": number (0-100),
      "strengths": ["strength1", "strength2"],
      "weaknesses": ["weakness1", "weakness2"],
      "summary": "brief summary"
    }
  ],
  "keyConsiderations": ["consideration1", "consideration2"]
}"""


class AnalysisService:
    """Scores individual proposals and compares all proposals of a solicitation."""

    def __init__(
        self,
        client: Optional[LLMClient] = None,
        *,
        temperature: Optional[float] = None,
    ) -> None:
        self._client = client
        self.temperature = (
            temperature if temperature is not None else settings.llm_temperature_analysis
        )

    @property
    def client(self) -> LLMClient:
        if self._client is None:
            self._client = get_llm_client()
        return self._client

    def _complete(self, system: str, user: str) -> Dict[str, Any]:
        try:
            return self.client.complete_json(
                system=system, user=user, temperature=self.temperature
            )
        except LLMClientError as exc:
            raise AnalysisError(f"Analysis request failed: {exc}") from exc

    def analyze_proposal(
        self,
        solicitation_context: Mapping[str, Any],
        parsed_data: Mapping[str, Any],
    ) -> Dict[str, Any]:
        user_prompt = (
            f"RFP: {json.dumps(dict(solicitation_context), default=str)}"
            f"\n\nProposal: {json.dumps(dict(parsed_data), default=str)}"
        )
        payload = self._complete(ANALYSIS_SYSTEM_PROMPT, user_prompt)
        try:
            analysis = ProposalAnalysis.model_validate(payload)
        except ValidationError as exc:
            raise AnalysisError(f"Analysis payload rejected: {exc}") from exc
        return analysis.model_dump(by_alias=True)

    def compare_proposals(
        self,
        solicitation_context: Mapping[str, Any],
        summaries: Iterable[Mapping[str, Any]],
    ) -> Dict[str, Any]:
        """Compare proposal ``summaries`` (vendor, price and terms per entry)."""

        summary_list = [dict(entry) for entry in summaries]
        if not summary_list:
            raise AnalysisError("No proposals provided")
        user_prompt = (
            f"RFP Details: {json.dumps(dict(solicitation_context), default=str)}"
            f"\n\nProposals: {json.dumps(summary_list, default=str)}"
        )
        payload = self._complete(COMPARISON_SYSTEM_PROMPT, user_prompt)
        try:
            comparison = ProposalComparison.model_validate(payload)
        except ValidationError as exc:
            raise AnalysisError(f"Comparison payload rejected: {exc}") from exc
        return comparison.model_dump(by_alias=True)


__all__ = ["AnalysisService", "ANALYSIS_SYSTEM_PROMPT", "COMPARISON_SYSTEM_PROMPT"]
