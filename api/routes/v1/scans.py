"""
api/routes/v1/scans.py -- Security scan REST endpoints.

Routes:
  POST   /api/v1/scans            -- start a scan; 202 with the scan_id
  GET    /api/v1/scans            -- scan history, newest first
  GET    /api/v1/scans/{scan_id}  -- one scan record, result included
  DELETE /api/v1/scans/{scan_id}  -- cancel a running scan

POST returns as soon as the record exists; clients poll GET /scans/{scan_id}
until status leaves "running". Validation failures (unknown provider,
unsupported scan type, no active connection) are reported synchronously by
the orchestrator and never create a record.

The history listing omits result payloads; fetch a single record for them.
"""

from __future__ import annotations

from typing import Annotated, Optional

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import ErrorDetail, ScanRecordResponse, ScanRequest, ScanStartedResponse

router = APIRouter()


def _scan_not_found(scan_id: str) -> HTTPException:
    return HTTPException(
        status_code=404,
        detail=ErrorDetail(code="scan_not_found", message=f"Scan {scan_id} not found.").model_dump(),
    )


@limiter.limit("10/minute")
@router.post("/scans", response_model=ScanStartedResponse, status_code=202)
async def start_scan(request: Request, body: ScanRequest) -> JSONResponse:
    orchestrator = request.app.state.orchestrator
    scan_id = orchestrator.run_scan(body.provider_id, body.scan_type, body.options)
    return JSONResponse(
        status_code=202,
        content=ScanStartedResponse(scan_id=scan_id).model_dump(mode="json"),
    )


@limiter.limit("60/minute")
@router.get("/scans", response_model=list[ScanRecordResponse])
async def list_scans(
    request: Request,
    provider_id: Annotated[Optional[str], Query(max_length=30)] = None,
    active_only: bool = False,
    limit: Annotated[int, Query(ge=1, le=500)] = 100,
) -> list[ScanRecordResponse]:
    orchestrator = request.app.state.orchestrator
    if active_only:
        records = orchestrator.list_active(provider_id, limit=limit)
    else:
        records = orchestrator.list_scans(provider_id, limit=limit)
    return [ScanRecordResponse.from_record(r, include_result=False) for r in records]


@limiter.limit("120/minute")
@router.get("/scans/{scan_id}", response_model=ScanRecordResponse)
async def get_scan(request: Request, scan_id: str) -> ScanRecordResponse:
    record = request.app.state.orchestrator.get_status(scan_id)
    if record is None:
        raise _scan_not_found(scan_id)
    return ScanRecordResponse.from_record(record)


@limiter.limit("30/minute")
@router.delete("/scans/{scan_id}", response_model=ScanRecordResponse)
async def cancel_scan(request: Request, scan_id: str) -> ScanRecordResponse:
    """Cancel a running scan and return its final record.

    409 if the scan exists but already finished.
    """
    orchestrator = request.app.state.orchestrator
    if orchestrator.get_status(scan_id) is None:
        raise _scan_not_found(scan_id)
    if not orchestrator.cancel(scan_id):
        raise HTTPException(
            status_code=409,
            detail=ErrorDetail(code="scan_not_running", message=f"Scan {scan_id} is not running.").model_dump(),
        )
    record = await orchestrator.wait(scan_id)
    return ScanRecordResponse.from_record(record)
