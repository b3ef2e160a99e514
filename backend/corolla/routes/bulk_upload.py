"""Bulk access-grant upload API routes."""

from __future__ import annotations

import os

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy.orm import Session

from .. import models, schemas
from ..auth import get_current_user
from ..database import get_db
from ..repository import GrantConflict, SqlGrantRepository
from ..services import bulk_upload
from ..services.csv_rows import generate_csv_template

# purpose: expose preview and all-or-nothing commit of spreadsheet grant uploads
# status: active
# depends_on: corolla.services.bulk_upload

limiter = Limiter(key_func=get_remote_address)
testing = os.getenv("TESTING") == "1"


def rate_limit(limit: str):
    if testing:
        def wrapper(func):
            return func
        return wrapper
    return limiter.limit(limit)


router = APIRouter(prefix="/api/access-grants/bulk", tags=["bulk-upload"], responses=schemas.ERROR_RESPONSES)


def _bad_request(code: str, message: str, status_code: int = status.HTTP_400_BAD_REQUEST) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"error": code, "message": message})


async def _evaluate_request(
    request: Request,
    coordinator: bulk_upload.BulkUploadCoordinator,
) -> bulk_upload.BulkEvaluation:
    content_type = request.headers.get("content-type", "")
    if "multipart/form-data" in content_type:
        form = await request.form()
        upload = form.get("file")
        if upload is None or isinstance(upload, str):
            raise _bad_request("MISSING_FILE", "No CSV file provided. Include a file field in form data.")
        if not (upload.filename or "").lower().endswith(".csv"):
            raise _bad_request("INVALID_FILE_TYPE", "File must be a CSV file (.csv extension)")
        raw = await upload.read()
        try:
            text = raw.decode("utf-8-sig")
        except UnicodeDecodeError:
            raise _bad_request("INVALID_ENCODING", "CSV file must be UTF-8 encoded")
        return coordinator.evaluate_csv(text)
    if "application/json" in content_type or not content_type:
        try:
            body = await request.json()
        except ValueError:
            raise _bad_request("INVALID_JSON", "Request body must be valid JSON")
        try:
            payload = schemas.BulkUploadRequest.model_validate(body)
        except ValidationError as exc:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={
                    "error": "VALIDATION_ERROR",
                    "message": "Invalid request body",
                    "details": [
                        {"field": ".".join(str(part) for part in err["loc"]), "message": err["msg"]}
                        for err in exc.errors()
                    ],
                },
            ) from exc
        return coordinator.evaluate_rows(row.model_dump() for row in payload.rows)
    raise _bad_request(
        "UNSUPPORTED_CONTENT_TYPE",
        "Content-Type must be multipart/form-data (for CSV) or application/json",
        status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
    )


def _report(
    evaluation: bulk_upload.BulkEvaluation,
    *,
    success: bool,
    message: str,
    inserted_count: int = 0,
) -> schemas.BulkUploadResponse:
    return schemas.BulkUploadResponse(
        success=success,
        message=message,
        summary=schemas.BulkUploadSummary(
            total_rows=evaluation.total_rows,
            valid_rows=len(evaluation.valid_rows),
            error_rows=len(evaluation.error_rows),
            inserted_count=inserted_count,
        ),
        valid_rows=[schemas.BulkValidRowOut.model_validate(row) for row in evaluation.valid_rows],
        error_rows=[schemas.BulkErrorRowOut.model_validate(row) for row in evaluation.error_rows],
        parse_errors=evaluation.parse_errors,
        parse_warnings=evaluation.parse_warnings,
    )


def _preview_message(evaluation: bulk_upload.BulkEvaluation) -> str:
    if evaluation.parse_errors and not evaluation.total_rows:
        return "Upload could not be parsed"
    if evaluation.error_rows:
        return f"{len(evaluation.error_rows)} of {evaluation.total_rows} row(s) have errors"
    return f"All {evaluation.total_rows} row(s) are ready to insert"


def _storage_failure(exc: bulk_upload.BulkUploadInfrastructureError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail={"error": exc.code, "message": str(exc)},
    )


@router.get("/template")
async def download_template():
    headers = {"Content-Disposition": 'attachment; filename="access_grants_template.csv"'}
    return Response(content=generate_csv_template(), media_type="text/csv", headers=headers)


@router.post("/preview", response_model=schemas.BulkUploadResponse)
@rate_limit("30/minute")
async def preview_bulk_upload(
    request: Request,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    coordinator = bulk_upload.BulkUploadCoordinator(SqlGrantRepository(db))
    try:
        evaluation = await _evaluate_request(request, coordinator)
    except bulk_upload.BulkUploadInfrastructureError as exc:
        raise _storage_failure(exc) from exc
    return _report(evaluation, success=evaluation.is_committable, message=_preview_message(evaluation))


@router.post(
    "",
    response_model=schemas.BulkUploadResponse,
    status_code=status.HTTP_201_CREATED,
    responses={422: {"model": schemas.BulkUploadResponse}},
)
@rate_limit("10/minute")
async def commit_bulk_upload(
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    coordinator = bulk_upload.BulkUploadCoordinator(SqlGrantRepository(db))
    try:
        evaluation = await _evaluate_request(request, coordinator)
        inserted = coordinator.commit(evaluation, user.id)
    except bulk_upload.BatchNotCommittable as exc:
        report = _report(exc.evaluation, success=False, message=str(exc))
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=report.model_dump(mode="json"),
        )
    except GrantConflict as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"error": "DUPLICATE_ACTIVE_GRANT", "message": str(exc)},
        ) from exc
    except bulk_upload.BulkUploadInfrastructureError as exc:
        raise _storage_failure(exc) from exc
    if not inserted:
        response.status_code = status.HTTP_200_OK
    return _report(
        evaluation,
        success=True,
        message=f"Successfully created {inserted} access grant(s)",
        inserted_count=inserted,
    )
