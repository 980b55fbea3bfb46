"""Vendor API routes."""

from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import APIRouter, HTTPException, Request, status

from api.dependencies import get_dependency_or_503
from api.models.vendor import VendorCreateRequest, VendorIdRequest, VendorUpdateRequest
from repositories import vendor_repo
from services.errors import DuplicateVendorError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/vendors", tags=["Vendors"])


def _require_id(payload: VendorIdRequest) -> str:
    vendor_id = (payload.id or "").strip()
    if not vendor_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Vendor ID is required")
    return vendor_id


@router.post("/create", status_code=status.HTTP_201_CREATED)
def create_vendor(payload: VendorCreateRequest, request: Request) -> Dict[str, Any]:
    db = get_dependency_or_503(request, "db")
    try:
        vendor = vendor_repo.create(db, **payload.model_dump())
    except DuplicateVendorError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return {"success": True, "message": "Vendor created successfully", "data": vendor.to_dict()}


@router.post("/getAll")
def get_all_vendors(request: Request) -> Dict[str, Any]:
    db = get_dependency_or_503(request, "db")
    return {"success": True, "data": [vendor.to_dict() for vendor in vendor_repo.list_all(db)]}


@router.post("/getById")
def get_vendor_by_id(payload: VendorIdRequest, request: Request) -> Dict[str, Any]:
    vendor_id = _require_id(payload)
    db = get_dependency_or_503(request, "db")
    vendor = vendor_repo.get(db, vendor_id)
    if vendor is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Vendor not found")
    return {"success": True, "data": vendor.to_dict()}


@router.put("/update")
def update_vendor(payload: VendorUpdateRequest, request: Request) -> Dict[str, Any]:
    vendor_id = _require_id(payload)
    db = get_dependency_or_503(request, "db")
    try:
        vendor = vendor_repo.update(db, vendor_id, payload.changes())
    except DuplicateVendorError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    if vendor is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Vendor not found")
    return {"success": True, "message": "Vendor updated successfully", "data": vendor.to_dict()}


@router.put("/delete")
def delete_vendor(payload: VendorIdRequest, request: Request) -> Dict[str, Any]:
    vendor_id = _require_id(payload)
    db = get_dependency_or_503(request, "db")
    if not vendor_repo.delete(db, vendor_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Vendor not found")
    return {"success": True, "message": "Vendor deleted successfully"}
