import json
from types import SimpleNamespace

import pytest

from config.settings import Settings
from helpers import seed_solicitation, seed_vendor
from repositories import email_log_repo, solicitation_repo
from services import email_service as email_service_module
from services.email_service import EmailSendResult, EmailService
from services.email_templates import html_to_text, render_rfp_email, rfp_subject
from services.errors import NotFoundError
from services.rfp_dispatch_service import RfpDispatchService


def _settings(**overrides):
    values = {"smtp_host": "smtp.example.com", "smtp_port": 587, "app_email": "procurement@example.com"}
    values.update(overrides)
    return Settings(_env_file=None, **values)


class RecordingEmailService:
    def __init__(self, failing=()):
        self.failing = set(failing)
        self.sent = []
        self.settings = _settings()

    def send_email(self, subject, html_body, recipients, *, text_body=None, sender=None, message_id=None):
        self.sent.append(SimpleNamespace(subject=subject, html=html_body, to=recipients, text=text_body, sender=sender))
        if recipients in self.failing:
            return EmailSendResult(False, "<m@example.com>", "550 mailbox unavailable")
        return EmailSendResult(True, f"<{len(self.sent)}@example.com>")


class FakeSMTP:
    instances = []

    def __init__(self, host, port, timeout=None, **kwargs):
        self.host = host
        self.port = port
        self.timeout = timeout
        self.calls = []
        FakeSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def ehlo(self):
        self.calls.append("ehlo")

    def starttls(self, context=None):
        self.calls.append("starttls")

    def login(self, user, password):
        self.calls.append(("login", user, password))

    def sendmail(self, sender, recipients, payload):
        self.calls.append(("sendmail", sender, list(recipients)))
        self.payload = payload


@pytest.fixture
def fake_smtp(monkeypatch):
    FakeSMTP.instances = []
    monkeypatch.setattr(email_service_module.smtplib, "SMTP", FakeSMTP)
    return FakeSMTP


def test_dispatch_records_every_attempt_and_continues_after_failure(db):
    rfp = seed_solicitation(db)
    vendors = [
        seed_vendor(db, name="Acme", email="acme@example.com"),
        seed_vendor(db, name="Bolt", email="bolt@example.com"),
        seed_vendor(db, name="Crane", email="crane@example.com"),
    ]
    mailer = RecordingEmailService(failing={"bolt@example.com"})

    outcome = RfpDispatchService(db, mailer).dispatch(rfp.id, [v.id for v in vendors])

    assert [r["success"] for r in outcome.results] == [True, False, True]
    assert outcome.results[1] == {
        "vendorId": vendors[1].id,
        "vendor": "Bolt",
        "success": False,
        "error": "550 mailbox unavailable",
    }
    assert outcome.sent_count == 2

    entries = email_log_repo.list_for_solicitation(db, rfp.id)
    assert len(entries) == 3
    assert sorted(e.outcome for e in entries) == ["failed", "success", "success"]
    assert {e.direction for e in entries} == {"sent"}

    stored = solicitation_repo.get(db, rfp.id)
    assert stored.status == "sent"
    assert stored.sent_to == [vendors[0].id, vendors[2].id]
    assert mailer.sent[0].subject == "RFP: Office laptops"
    assert mailer.sent[0].sender == "procurement@example.com"


def test_dispatch_keeps_draft_when_every_send_fails(db):
    rfp = seed_solicitation(db)
    vendor = seed_vendor(db)
    mailer = RecordingEmailService(failing={vendor.email})

    outcome = RfpDispatchService(db, mailer).dispatch(rfp.id, [vendor.id])

    assert outcome.sent_count == 0
    assert solicitation_repo.get(db, rfp.id).status == "draft"
    assert email_log_repo.latest_active_context(db, vendor.id) is None


def test_dispatch_unknown_solicitation_or_vendors(db):
    rfp = seed_solicitation(db)
    service = RfpDispatchService(db, RecordingEmailService())

    with pytest.raises(NotFoundError, match="not found"):
        service.dispatch("missing", ["v1"])
    with pytest.raises(NotFoundError, match="No valid vendors found"):
        service.dispatch(rfp.id, ["nobody"])


def test_rendered_email_escapes_values_and_lists_checklist():
    html = render_rfp_email(
        {
            "title": "Desks <b>now</b>",
            "description": "Standing & sitting",
            "budget": 12000,
            "deliveryTimeline": "2 weeks",
            "items": [{"name": "Desk", "quantity": 10, "specifications": "<script>x</script>"}],
            "paymentTerms": "Net 45",
        },
        "Acme & Sons",
    )

    assert "<b>now</b>" not in html
    assert "Desks &lt;b&gt;now&lt;/b&gt;" in html
    assert "Acme &amp; Sons" in html
    assert "<script>x</script>" not in html
    assert "Net 45" in html
    assert "Warranty Requirements" not in html
    text = html_to_text(html)
    assert "Detailed pricing breakdown" in text
    assert "body {" not in text
    assert rfp_subject("Desks") == "RFP: Desks"


def test_send_email_uses_starttls_and_timeout(fake_smtp):
    service = EmailService(_settings(smtp_user="mailer", smtp_password="pw", smtp_timeout_seconds=12))

    result = service.send_email("RFP: Desks", "<p>Hello</p>", "acme@example.com", text_body="Hello")

    assert result.success
    assert result.message_id.endswith("@example.com>")
    smtp = fake_smtp.instances[0]
    assert (smtp.host, smtp.port, smtp.timeout) == ("smtp.example.com", 587, 12.0)
    assert smtp.calls[:3] == ["ehlo", "starttls", "ehlo"]
    assert ("login", "mailer", "pw") in smtp.calls
    assert ("sendmail", "procurement@example.com", ["acme@example.com"]) in smtp.calls
    assert "Subject: RFP: Desks" in smtp.payload


def test_send_email_without_host_reports_failure(fake_smtp):
    result = EmailService(_settings(smtp_host=None)).send_email("s", "<p>x</p>", ["a@example.com"])

    assert not result.success
    assert result.error == "SMTP host is not configured"
    assert fake_smtp.instances == []


def test_send_email_reports_smtp_errors(monkeypatch):
    class RefusingSMTP(FakeSMTP):
        def sendmail(self, sender, recipients, payload):
            raise email_service_module.smtplib.SMTPRecipientsRefused({recipients[0]: (550, b"no")})

    monkeypatch.setattr(email_service_module.smtplib, "SMTP", RefusingSMTP)

    result = EmailService(_settings()).send_email("s", "<p>x</p>", "a@example.com")

    assert not result.success
    assert result.error


def test_smtp_credentials_from_secrets_manager(monkeypatch, fake_smtp):
    requested = {}

    class FakeSecrets:
        def get_secret_value(self, SecretId):
            requested["secret"] = SecretId
            return {"SecretString": json.dumps({"SMTP_USERNAME": " ses-user ", "SMTP_PASSWORD": "ses-pw"})}

    def fake_client(service_name, region_name=None):
        requested["client"] = (service_name, region_name)
        return FakeSecrets()

    monkeypatch.setattr(email_service_module.boto3, "client", fake_client)
    service = EmailService(_settings(smtp_secret_name="smtp/creds", smtp_secret_region="us-east-1"))

    assert service.send_email("s", "<p>x</p>", "a@example.com").success
    assert requested == {"client": ("secretsmanager", "us-east-1"), "secret": "smtp/creds"}
    assert ("login", "ses-user", "ses-pw") in fake_smtp.instances[0].calls
