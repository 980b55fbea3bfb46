import json

import pytest
import requests

from helpers import ANALYSIS, EXTRACTED, StubLLMClient
from services.analysis_service import AnalysisService
from services.errors import AnalysisError, ExtractionError
from services.extraction_service import ExtractionService
from services.llm_client import LLMClient, LLMClientError


def _response(status_code=200, body=None, text=None):
    response = requests.Response()
    response.status_code = status_code
    if text is not None:
        response._content = text.encode()
    else:
        response._content = json.dumps(body or {}).encode()
    response.url = "http://llm.test/v1/chat/completions"
    return response


class FakeSession:
    def __init__(self, response):
        self.response = response
        self.requests = []

    def request(self, method, url, **kwargs):
        self.requests.append((method, url, kwargs))
        if isinstance(self.response, Exception):
            raise self.response
        return self.response


def _completion(content):
    return _response(body={"choices": [{"message": {"role": "assistant", "content": content}}]})


def _client(response):
    session = FakeSession(response)
    client = LLMClient(
        base_url="http://llm.test/",
        api_key="token",
        model="gpt-test",
        timeout=5,
        session=session,
    )
    return client, session


CONTEXT = {"title": "Office laptops", "budget": 50000}


def test_complete_json_posts_chat_request_and_decodes_object():
    client, session = _client(_completion(json.dumps({"totalPrice": 10})))

    result = client.complete_json(system="sys", user="hello", temperature=0.3)

    assert result == {"totalPrice": 10}
    method, url, kwargs = session.requests[0]
    assert method == "POST"
    assert url == "http://llm.test/v1/chat/completions"
    assert kwargs["headers"]["Authorization"] == "Bearer token"
    assert kwargs["timeout"] == 5
    assert kwargs["json"]["model"] == "gpt-test"
    assert kwargs["json"]["temperature"] == 0.3
    assert kwargs["json"]["response_format"] == {"type": "json_object"}
    assert [m["role"] for m in kwargs["json"]["messages"]] == ["system", "user"]
    assert set(kwargs["json"]) == {"model", "messages", "temperature", "response_format"}


@pytest.mark.parametrize("content", ["", "not json", "[1, 2]"])
def test_complete_json_rejects_unusable_content(content):
    client, _ = _client(_completion(content))

    with pytest.raises(LLMClientError):
        client.complete_json(system="sys", user="hello")


def test_http_error_carries_status_code():
    client, _ = _client(_response(status_code=429, text="rate limited"))

    with pytest.raises(LLMClientError) as excinfo:
        client.complete_json(system="sys", user="hello")

    assert excinfo.value.status_code == 429
    assert "rate limited" in str(excinfo.value)


def test_transport_error_is_wrapped():
    client, _ = _client(requests.ConnectionError("refused"))

    with pytest.raises(LLMClientError) as excinfo:
        client.complete_json(system="sys", user="hello")

    assert excinfo.value.status_code is None


def test_extract_proposal_returns_camel_case_terms():
    llm = StubLLMClient(dict(EXTRACTED))
    service = ExtractionService(llm, temperature=0.3)

    result = service.extract_proposal("Total $48,000", CONTEXT)

    assert result["totalPrice"] == 48000
    assert result["breakdown"][0]["unitPrice"] == 1200
    assert result["paymentTerms"] == "Net 30"
    assert llm.calls[0]["temperature"] == 0.3
    assert llm.calls[0]["user"].startswith('RFP Context: {"title": "Office laptops"')
    assert llm.calls[0]["user"].endswith("Vendor Response:\nTotal $48,000")


def test_extract_proposal_without_total_price_fails():
    service = ExtractionService(StubLLMClient({"breakdown": []}))

    with pytest.raises(ExtractionError):
        service.extract_proposal("no prices here", CONTEXT)


def test_extract_proposal_wraps_client_errors():
    service = ExtractionService(StubLLMClient(error=LLMClientError("boom", status_code=500)))

    with pytest.raises(ExtractionError) as excinfo:
        service.extract_proposal("anything", CONTEXT)

    assert "boom" in str(excinfo.value)


def test_parse_solicitation_builds_structured_request():
    service = ExtractionService(
        StubLLMClient(
            {
                "title": "Office laptops",
                "description": "20 laptops",
                "budget": 50000,
                "deliveryTimeline": "30 days",
                "items": [{"name": "Laptop", "quantity": 20, "specifications": "16GB"}],
                "paymentTerms": "Net 30",
            }
        )
    )

    parsed = service.parse_solicitation("I need 20 laptops within 30 days, budget $50k")

    assert parsed.title == "Office laptops"
    assert parsed.delivery_timeline == "30 days"
    assert parsed.items[0].name == "Laptop"
    assert parsed.warranty_requirements is None


def test_analysis_score_must_be_within_range():
    service = AnalysisService(StubLLMClient(dict(ANALYSIS, score=140)))

    with pytest.raises(AnalysisError):
        service.analyze_proposal(CONTEXT, EXTRACTED)


def test_analysis_returns_validated_payload():
    llm = StubLLMClient(dict(ANALYSIS))
    result = AnalysisService(llm, temperature=0.4).analyze_proposal(CONTEXT, EXTRACTED)

    assert result["score"] == 82
    assert result["strengths"] == ["Within budget"]
    assert llm.calls[0]["temperature"] == 0.4
    assert "\n\nProposal: " in llm.calls[0]["user"]


def test_compare_proposals_requires_at_least_one_summary():
    service = AnalysisService(StubLLMClient())

    with pytest.raises(AnalysisError):
        service.compare_proposals(CONTEXT, [])


def test_compare_proposals_returns_recommendation():
    llm = StubLLMClient(
        {
            "overallRecommendation": "Acme",
            "comparisonSummary": "Acme is cheaper",
            "vendorAnalyses": [{"vendorName": "Acme", "score": 90}],
            "keyConsiderations": ["price"],
        }
    )

    result = AnalysisService(llm).compare_proposals(
        CONTEXT, [{"vendor": "Acme", "totalPrice": 48000}]
    )

    assert result["overallRecommendation"] == "Acme"
    assert result["vendorAnalyses"][0]["vendorName"] == "Acme"
    assert result["vendorAnalyses"][0]["score"] == 90
    assert '"vendor": "Acme"' in llm.calls[0]["user"]
