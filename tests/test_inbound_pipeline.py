import threading
from datetime import datetime, timedelta, timezone

from helpers import (
    EXTRACTED,
    StubAnalysisService,
    StubExtractionService,
    inbound,
    record_sent,
    seed_solicitation,
    seed_vendor,
)
from repositories import email_log_repo, proposal_repo
from services.correlation import (
    CANDIDATE,
    DUPLICATE,
    NO_ACTIVE_SOLICITATION,
    UNKNOWN_SENDER,
    CorrelationEngine,
)
from services.inbound_pipeline import (
    OUTCOME_CREATED,
    OUTCOME_DUPLICATE,
    OUTCOME_EXTRACTION_FAILED,
    OUTCOME_FAILED,
    InboundPipeline,
)
from services.message_fetcher import decode_message
from services.proposal_lifecycle import ProposalLifecycle


def _pipeline(db, extraction=None, analysis=None):
    extraction = extraction or StubExtractionService()
    analysis = analysis or StubAnalysisService()
    return InboundPipeline(
        db,
        extraction_service=extraction,
        lifecycle=ProposalLifecycle(db, analysis),
        mailbox_address="procurement@example.com",
    )


def _received(db):
    return email_log_repo.list_by_direction(db, "received")


def test_correlation_rules_in_order(db):
    engine = CorrelationEngine(db)
    email = inbound()

    assert engine.correlate(email).outcome == UNKNOWN_SENDER

    vendor = seed_vendor(db)
    assert engine.correlate(email).outcome == NO_ACTIVE_SOLICITATION

    rfp = seed_solicitation(db)
    record_sent(db, rfp, vendor)
    result = engine.correlate(email)
    assert result.outcome == CANDIDATE
    assert result.solicitation.id == rfp.id

    proposal_repo.insert_if_absent(
        db,
        solicitation_id=rfp.id,
        vendor_id=vendor.id,
        raw_content="x",
        parsed_data=EXTRACTED,
        status="parsed",
    )
    assert engine.correlate(email).outcome == DUPLICATE


def test_successful_reply_creates_analyzed_proposal(db):
    vendor = seed_vendor(db)
    rfp = seed_solicitation(db)
    record_sent(db, rfp, vendor)
    extraction = StubExtractionService()
    pipeline = _pipeline(db, extraction=extraction)

    result = pipeline.process(inbound())

    assert result.outcome == OUTCOME_CREATED
    assert result.proposal_status == "analyzed"
    proposal = proposal_repo.get(db, result.proposal_id)
    assert proposal.solicitation_id == rfp.id
    assert proposal.vendor_id == vendor.id
    assert proposal.parsed_data == EXTRACTED
    assert 0 <= proposal.ai_analysis["score"] <= 100
    assert proposal.message_id == "<reply-1@acme.test>"
    assert proposal.received_at == datetime(2025, 3, 7, 9, 30, tzinfo=timezone.utc)

    raw_text, context = extraction.calls[0]
    assert raw_text == "We can supply 20 laptops for $48,000 total."
    assert context["title"] == "Office laptops"

    entries = _received(db)
    assert len(entries) == 1
    assert entries[0].outcome == "success"
    assert entries[0].solicitation_id == rfp.id
    assert entries[0].from_address == "sales@acme.test"
    assert entries[0].to_address == "procurement@example.com"


def test_same_message_twice_yields_one_proposal(db):
    vendor = seed_vendor(db)
    rfp = seed_solicitation(db)
    record_sent(db, rfp, vendor)
    pipeline = _pipeline(db)

    first = pipeline.process(inbound())
    second = pipeline.process(inbound())

    assert first.outcome == OUTCOME_CREATED
    assert second.outcome == DUPLICATE
    assert len(proposal_repo.list_for_solicitation(db, rfp.id)) == 1
    assert len(_received(db)) == 1


def test_reply_attaches_to_most_recent_solicitation(db):
    vendor = seed_vendor(db)
    older = seed_solicitation(db, title="Chairs")
    newer = seed_solicitation(db, title="Laptops")
    t1 = datetime(2025, 3, 1, tzinfo=timezone.utc)
    record_sent(db, older, vendor, created_at=t1)
    record_sent(db, newer, vendor, created_at=t1 + timedelta(days=1))

    result = _pipeline(db).process(inbound())

    assert proposal_repo.get(db, result.proposal_id).solicitation_id == newer.id
    assert proposal_repo.list_for_solicitation(db, older.id) == []


def test_unknown_sender_is_ignored_without_ledger_entry(db):
    seed_vendor(db)
    extraction = StubExtractionService()

    result = _pipeline(db, extraction=extraction).process(
        inbound(sender="Stranger <someone@elsewhere.test>")
    )

    assert result.outcome == UNKNOWN_SENDER
    assert extraction.calls == []
    assert _received(db) == []


def test_vendor_without_active_solicitation_is_a_no_op(db):
    seed_vendor(db)
    extraction = StubExtractionService()

    result = _pipeline(db, extraction=extraction).process(inbound())

    assert result.outcome == NO_ACTIVE_SOLICITATION
    assert extraction.calls == []
    assert _received(db) == []


def test_extraction_failure_records_failed_entry_and_no_proposal(db):
    vendor = seed_vendor(db)
    rfp = seed_solicitation(db)
    record_sent(db, rfp, vendor)

    result = _pipeline(db, extraction=StubExtractionService(error="model timed out")).process(
        inbound()
    )

    assert result.outcome == OUTCOME_EXTRACTION_FAILED
    assert proposal_repo.list_for_solicitation(db, rfp.id) == []
    entries = _received(db)
    assert len(entries) == 1
    assert entries[0].outcome == "failed"
    assert entries[0].error == "model timed out"
    assert entries[0].vendor_id == vendor.id


def test_analysis_failure_leaves_proposal_parsed(db):
    vendor = seed_vendor(db)
    rfp = seed_solicitation(db)
    record_sent(db, rfp, vendor)

    result = _pipeline(db, analysis=StubAnalysisService(error="bad score")).process(inbound())

    assert result.outcome == OUTCOME_CREATED
    assert result.proposal_status == "parsed"
    proposal = proposal_repo.get(db, result.proposal_id)
    assert proposal.status == "parsed"
    assert proposal.ai_analysis is None
    assert [e.outcome for e in _received(db)] == ["success"]


def test_unparseable_sender_records_failure_with_raw_from(db):
    raw = b"From: undisclosed-recipients:;\r\nSubject: Offer\r\nMessage-ID: <x@acme.test>\r\n\r\nPrice 10\r\n"

    result = _pipeline(db).process(decode_message(raw))

    assert result.outcome == OUTCOME_FAILED
    entries = _received(db)
    assert len(entries) == 1
    assert entries[0].outcome == "failed"
    assert entries[0].vendor_id is None
    assert entries[0].from_address == "undisclosed-recipients:;"


def test_concurrent_replies_from_one_vendor_create_one_proposal(db):
    vendor = seed_vendor(db)
    rfp = seed_solicitation(db)
    record_sent(db, rfp, vendor)
    pipeline = _pipeline(db)
    emails = [inbound(message_id=f"<reply-{n}@acme.test>") for n in range(4)]
    results = []
    start = threading.Barrier(len(emails))

    def worker(email):
        start.wait()
        results.append(pipeline.process(email))

    threads = [threading.Thread(target=worker, args=(email,)) for email in emails]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    outcomes = sorted(result.outcome for result in results)
    assert outcomes.count(OUTCOME_CREATED) == 1
    assert set(outcomes) <= {OUTCOME_CREATED, DUPLICATE, OUTCOME_DUPLICATE}
    assert len(proposal_repo.list_for_solicitation(db, rfp.id)) == 1
