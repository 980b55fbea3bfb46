"""Solicitation (RFP) API routes."""

from __future__ import annotations

import logging
from typing import Any, Dict, List

from fastapi import APIRouter, HTTPException, Request, status
from starlette.concurrency import run_in_threadpool

from api.dependencies import get_dependency_or_503
from api.models.rfp import RfpCreateRequest, RfpIdRequest, RfpSendRequest, RfpUpdateRequest
from repositories import proposal_repo, solicitation_repo, vendor_repo
from repositories.proposal_repo import ProposalRow
from services.errors import AnalysisError, ExtractionError, NotFoundError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/rfps", tags=["RFPs"])


def _require_id(payload: RfpIdRequest) -> str:
    if not payload.id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="RFP ID is required")
    return payload.id


def _server_error(message: str, exc: Exception) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={"error": message, "details": str(exc)},
    )


def _proposals_with_vendors(db, proposals: List[ProposalRow]) -> List[Dict[str, Any]]:
    vendors = {v.id: v for v in vendor_repo.get_by_ids(db, [p.vendor_id for p in proposals])}
    payload = []
    for proposal in proposals:
        entry = proposal.to_dict()
        vendor = vendors.get(proposal.vendor_id)
        entry["vendor"] = (
            {"id": vendor.id, "name": vendor.name, "email": vendor.email} if vendor else None
        )
        payload.append(entry)
    return payload


@router.post("/create", status_code=status.HTTP_201_CREATED)
async def create_rfp(payload: RfpCreateRequest, request: Request) -> Dict[str, Any]:
    text = (payload.natural_language_input or "").strip()
    if not text:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Natural language input is required",
        )
    db = get_dependency_or_503(request, "db")
    extraction = get_dependency_or_503(request, "extraction_service")

    try:
        parsed = await run_in_threadpool(extraction.parse_solicitation, text)
    except ExtractionError as exc:
        logger.error("Failed to parse RFP: %s", exc)
        raise _server_error("Failed to parse RFP", exc) from exc

    rfp = await run_in_threadpool(
        solicitation_repo.create,
        db,
        title=parsed.title,
        description=parsed.description,
        budget=parsed.budget,
        delivery_timeline=parsed.delivery_timeline,
        items=[item.model_dump() for item in parsed.items],
        payment_terms=parsed.payment_terms,
        warranty_requirements=parsed.warranty_requirements,
        additional_requirements=parsed.additional_requirements,
    )
    return {"success": True, "message": "RFP created successfully", "data": rfp.to_dict()}


@router.post("/getAll")
def get_all_rfps(request: Request) -> Dict[str, Any]:
    db = get_dependency_or_503(request, "db")
    return {"success": True, "data": [rfp.to_dict() for rfp in solicitation_repo.list_all(db)]}


@router.post("/getById")
def get_rfp_by_id(payload: RfpIdRequest, request: Request) -> Dict[str, Any]:
    rfp_id = _require_id(payload)
    db = get_dependency_or_503(request, "db")
    rfp = solicitation_repo.get(db, rfp_id)
    if rfp is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="RFP not found")
    return {"success": True, "data": rfp.to_dict()}


@router.put("/update")
def update_rfp(payload: RfpUpdateRequest, request: Request) -> Dict[str, Any]:
    rfp_id = _require_id(payload)
    db = get_dependency_or_503(request, "db")
    try:
        rfp = solicitation_repo.update(db, rfp_id, payload.changes())
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    if rfp is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="RFP not found")
    return {"success": True, "message": "RFP updated successfully", "data": rfp.to_dict()}


@router.put("/delete")
def delete_rfp(payload: RfpIdRequest, request: Request) -> Dict[str, Any]:
    rfp_id = _require_id(payload)
    db = get_dependency_or_503(request, "db")
    if not solicitation_repo.delete(db, rfp_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="RFP not found")
    return {"success": True, "message": "RFP deleted successfully"}


@router.post("/send")
async def send_rfp(payload: RfpSendRequest, request: Request) -> Dict[str, Any]:
    rfp_id = _require_id(payload)
    if not payload.vendor_ids:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Vendor IDs are required")
    dispatcher = get_dependency_or_503(request, "dispatch_service")

    try:
        outcome = await run_in_threadpool(dispatcher.dispatch, rfp_id, payload.vendor_ids)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc

    return {
        "success": True,
        "message": "RFP sent to vendors",
        "results": outcome.results,
        "data": outcome.solicitation.to_dict(),
    }


@router.post("/getProposals")
def get_rfp_proposals(payload: RfpIdRequest, request: Request) -> Dict[str, Any]:
    rfp_id = _require_id(payload)
    db = get_dependency_or_503(request, "db")
    proposals = proposal_repo.list_for_solicitation(db, rfp_id)
    return {"success": True, "data": _proposals_with_vendors(db, proposals)}


@router.post("/compare")
async def compare_proposals(payload: RfpIdRequest, request: Request) -> Dict[str, Any]:
    rfp_id = _require_id(payload)
    db = get_dependency_or_503(request, "db")
    analysis = get_dependency_or_503(request, "analysis_service")

    rfp = await run_in_threadpool(solicitation_repo.get, db, rfp_id)
    if rfp is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="RFP not found")
    proposals = await run_in_threadpool(proposal_repo.list_for_solicitation, db, rfp_id)
    if not proposals:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No proposals found for this RFP",
        )

    enriched = await run_in_threadpool(_proposals_with_vendors, db, proposals)
    summaries = []
    for entry in enriched:
        parsed = entry.get("parsedData") or {}
        summaries.append(
            {
                "vendor": (entry.get("vendor") or {}).get("name") or "Unknown Vendor",
                "totalPrice": parsed.get("totalPrice", "N/A"),
                "deliveryTimeline": parsed.get("deliveryTimeline") or "N/A",
                "paymentTerms": parsed.get("paymentTerms") or "N/A",
                "warranty": parsed.get("warranty") or "N/A",
            }
        )

    try:
        comparison = await run_in_threadpool(
            analysis.compare_proposals, rfp.context(), summaries
        )
    except AnalysisError as exc:
        logger.error("Failed to analyze proposals for %s: %s", rfp_id, exc)
        raise _server_error("Failed to analyze proposals", exc) from exc

    return {
        "success": True,
        "data": {"rfp": rfp.to_dict(), "proposals": enriched, "comparison": comparison},
    }
