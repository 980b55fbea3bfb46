"""HTTP client for the OpenAI-compatible chat completions endpoint."""

from __future__ import annotations

import json
import logging
import threading
from typing import Any, Dict, List, Mapping, Optional

import requests

from config.settings import settings

logger = logging.getLogger(__name__)

COMPLETIONS_PATH = "/v1/chat/completions"


class LLMClientError(RuntimeError):
    """Raised when the completion endpoint fails or returns unusable content."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class LLMClient:
    """Posts chat requests and hands back the first assistant message."""

    def __init__(
        self,
        *,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        endpoint = base_url or settings.llm_base_url
        if "://" not in endpoint:
            endpoint = f"https://{endpoint}"
        self.base_url = endpoint.rstrip("/")
        self.timeout = timeout or settings.llm_timeout_seconds
        self.api_key = api_key or settings.llm_api_key
        self.model = model or settings.llm_model
        self._session = session or requests.Session()

    def _post(self, path: str, body: Mapping[str, Any]) -> Dict[str, Any]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        try:
            response = self._session.request(
                "POST",
                f"{self.base_url}{path}",
                json=dict(body),
                headers=headers,
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.HTTPError as exc:
            failed = exc.response
            raise LLMClientError(
                failed.text if failed is not None else str(exc),
                status_code=failed.status_code if failed is not None else None,
            ) from exc
        except requests.RequestException as exc:
            raise LLMClientError(f"Completion request failed: {exc}") from exc

        if not response.content:
            return {}
        try:
            data = response.json()
        except ValueError as exc:
            raise LLMClientError("Completion endpoint returned a non-JSON body") from exc
        return data if isinstance(data, dict) else {}

    @staticmethod
    def _assistant_text(data: Mapping[str, Any]) -> str:
        for choice in data.get("choices") or []:
            message = (choice or {}).get("message")
            if isinstance(message, dict) and isinstance(message.get("content"), str):
                return message["content"]
            break
        return ""

    def chat(
        self,
        messages: List[Dict[str, str]],
        *,
        temperature: Optional[float] = None,
        json_mode: bool = False,
    ) -> str:
        """Send ``messages`` and return the assistant text ('' when absent)."""

        body: Dict[str, Any] = {"model": self.model, "messages": list(messages)}
        if temperature is not None:
            body["temperature"] = temperature
        if json_mode:
            body["response_format"] = {"type": "json_object"}
        logger.debug("Requesting completion from %s (model=%s)", self.base_url, self.model)
        return self._assistant_text(self._post(COMPLETIONS_PATH, body))

    def complete_json(
        self,
        *,
        system: str,
        user: str,
        temperature: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Request a JSON object completion and return it decoded."""

        content = self.chat(
            [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            temperature=temperature,
            json_mode=True,
        )
        if not content.strip():
            raise LLMClientError("Completion endpoint returned empty content")
        try:
            decoded = json.loads(content)
        except ValueError as exc:
            raise LLMClientError(f"Completion content is not valid JSON: {exc}") from exc
        if not isinstance(decoded, dict):
            raise LLMClientError("Completion content is not a JSON object")
        return decoded


_client_lock = threading.Lock()
_client: Optional[LLMClient] = None


def get_llm_client() -> LLMClient:
    """Return the process-wide completion client, creating it on first use."""

    global _client
    with _client_lock:
        if _client is None:
            _client = LLMClient()
        return _client


__all__ = ["LLMClient", "LLMClientError", "get_llm_client"]
