"""Builders and stubs shared by the test modules."""

from datetime import datetime, timezone
from email.message import EmailMessage
from email.utils import format_datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from repositories import email_log_repo, solicitation_repo, vendor_repo
from services.errors import AnalysisError, ExtractionError
from services.message_fetcher import InboundEmail, decode_message

EXTRACTED = {
    "totalPrice": 48000,
    "breakdown": [
        {"item": "Laptop", "unitPrice": 1200, "quantity": 20, "totalPrice": 24000},
        {"item": "Monitor", "unitPrice": 400, "quantity": 60, "totalPrice": 24000},
    ],
    "deliveryTimeline": "21 days",
    "paymentTerms": "Net 30",
    "warranty": "2 years",
    "additionalTerms": "Free shipping",
}

ANALYSIS = {
    "score": 82,
    "strengths": ["Within budget"],
    "weaknesses": ["Long delivery"],
    "summary": "Solid offer",
    "recommendation": "Shortlist",
}


def build_email(
    *,
    sender: str = "Acme Sales <sales@acme.test>",
    to: str = "procurement@example.com",
    subject: str = "Re: RFP: Office laptops",
    body: Optional[str] = "We can supply 20 laptops for $48,000 total.",
    html: Optional[str] = None,
    message_id: Optional[str] = "<reply-1@acme.test>",
    date: Optional[datetime] = None,
    attachments: Iterable[Tuple[bytes, str, str]] = (),
) -> bytes:
    msg = EmailMessage()
    if sender is not None:
        msg["From"] = sender
    msg["To"] = to
    msg["Subject"] = subject
    if message_id:
        msg["Message-ID"] = message_id
    msg["Date"] = format_datetime(date or datetime(2025, 3, 7, 9, 30, tzinfo=timezone.utc))
    if body is not None:
        msg.set_content(body)
        if html is not None:
            msg.add_alternative(html, subtype="html")
    elif html is not None:
        msg.set_content(html, subtype="html")
    for content, filename, mime in attachments:
        maintype, subtype = mime.split("/", 1)
        msg.add_attachment(content, maintype=maintype, subtype=subtype, filename=filename)
    return msg.as_bytes()


def inbound(**kwargs) -> InboundEmail:
    return decode_message(build_email(**kwargs))


def seed_vendor(db, name="Acme Supplies", email="sales@acme.test", **kwargs):
    return vendor_repo.create(db, name=name, email=email, **kwargs)


def seed_solicitation(db, title="Office laptops", **kwargs):
    defaults = {
        "description": "20 laptops and 60 monitors",
        "budget": 50000,
        "delivery_timeline": "30 days",
        "items": [{"name": "Laptop", "quantity": 20, "specifications": "16GB RAM"}],
    }
    defaults.update(kwargs)
    return solicitation_repo.create(db, title=title, **defaults)


def record_sent(db, solicitation, vendor, *, created_at=None, outcome="success"):
    return email_log_repo.append(
        db,
        direction="sent",
        outcome=outcome,
        solicitation_id=solicitation.id,
        vendor_id=vendor.id,
        subject=f"RFP: {solicitation.title}",
        from_address="procurement@example.com",
        to_address=vendor.email,
        created_at=created_at,
    )


class StubExtractionService:
    def __init__(self, result: Optional[Dict[str, Any]] = None, error: Optional[str] = None):
        self.result = dict(result or EXTRACTED)
        self.error = error
        self.calls: List[Tuple[str, Dict[str, Any]]] = []

    def extract_proposal(self, raw_text, solicitation_context):
        self.calls.append((raw_text, dict(solicitation_context)))
        if self.error:
            raise ExtractionError(self.error)
        return dict(self.result)


class StubAnalysisService:
    def __init__(self, result: Optional[Dict[str, Any]] = None, error: Optional[str] = None):
        self.result = dict(result or ANALYSIS)
        self.error = error
        self.calls: List[Tuple[Dict[str, Any], Dict[str, Any]]] = []

    def analyze_proposal(self, solicitation_context, parsed_data):
        self.calls.append((dict(solicitation_context), dict(parsed_data)))
        if self.error:
            raise AnalysisError(self.error)
        return dict(self.result)

    def compare_proposals(self, solicitation_context, summaries):
        self.calls.append((dict(solicitation_context), {"summaries": list(summaries)}))
        if self.error:
            raise AnalysisError(self.error)
        return {
            "overallRecommendation": "Choose Acme Supplies",
            "comparisonSummary": "Acme is cheapest",
            "vendorAnalyses": [],
            "keyConsiderations": ["price"],
        }


class StubLLMClient:
    """Returns queued JSON payloads from ``complete_json``."""

    def __init__(self, *payloads, error: Optional[Exception] = None):
        self.payloads = list(payloads)
        self.error = error
        self.calls: List[Dict[str, Any]] = []

    def complete_json(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return self.payloads.pop(0)
