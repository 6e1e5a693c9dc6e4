"""Upload endpoints: ingest one or more scanner exports as an atomic batch, and poll its progress."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from fastapi.concurrency import run_in_threadpool

from vulntrail.api.v1.deps import get_operation_registry, get_orchestrator
from vulntrail.schemas.upload import OperationStatus, UploadResponse
from vulntrail.services.errors import InputValidationError, SystemIngestError
from vulntrail.services.ingest import IngestionOrchestrator
from vulntrail.services.operations import IngestOperation, OperationRegistry

logger = logging.getLogger(__name__)

router = APIRouter()

RETRY_AFTER_SECONDS = 5

OPERATION_ID_PATTERN = r"^[A-Za-z0-9_-]{1,64}$"


def _error_detail(error: InputValidationError | SystemIngestError, operation: IngestOperation) -> dict:
    return {
        "error": type(error).__name__,
        "message": error.message,
        "filename": error.filename,
        "retryable": error.retryable,
        "operation_id": operation.id,
    }


@router.post("", response_model=UploadResponse, status_code=201)
async def upload_reports(
    files: Annotated[list[UploadFile], File(description="One or more .json or .csv exports.")],
    orchestrator: Annotated[IngestionOrchestrator, Depends(get_orchestrator)],
    registry: Annotated[OperationRegistry, Depends(get_operation_registry)],
    account_id: Annotated[str | None, Form()] = None,
    operation_id: Annotated[
        str | None,
        Form(
            pattern=OPERATION_ID_PATTERN,
            description="Optional client-chosen id, usable with the status and cancel routes while the upload runs.",
        ),
    ] = None,
) -> UploadResponse:
    """
    Ingest a batch of scanner exports.

    - Files are processed in report-date order (derived from a `MM-DD-YYYY` filename, or
      from dates embedded in the export) and committed together, or not at all.
    - `account_id` is required only when the files carry no account id of their own.
    - Malformed individual findings are skipped and reported in `diagnostics`.
    - Send `operation_id` to poll `GET /uploads/{operation_id}` or cancel while the batch
      is still validating; otherwise one is generated and returned.

    Input problems return 422 with nothing stored. Lock timeouts and database
    failures return 503; the batch was rolled back and may be retried.
    """
    payload: list[tuple[str, bytes]] = []
    for upload in files:
        payload.append((upload.filename or "", await upload.read()))
    try:
        operation = registry.create(files_total=len(payload), operation_id=operation_id)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    try:
        result = await run_in_threadpool(
            orchestrator.run,
            payload,
            account_id=(account_id or "").strip() or None,
            operation=operation,
        )
    except InputValidationError as e:
        raise HTTPException(status_code=422, detail=_error_detail(e, operation)) from e
    except SystemIngestError as e:
        raise HTTPException(
            status_code=503,
            detail=_error_detail(e, operation),
            headers={"Retry-After": str(RETRY_AFTER_SECONDS)},
        ) from e
    return UploadResponse(operation_id=result.operation_id, state=result.state, files=result.files)


def _get_operation(operation_id: str, registry: OperationRegistry) -> IngestOperation:
    operation = registry.get(operation_id)
    if operation is None:
        raise HTTPException(status_code=404, detail=f"Unknown operation {operation_id}.")
    return operation


@router.get("/{operation_id}", response_model=OperationStatus)
def get_upload_status(
    operation_id: str,
    registry: Annotated[OperationRegistry, Depends(get_operation_registry)],
) -> OperationStatus:
    """Best-effort progress of an upload: state, files done / total, current file."""
    return _get_operation(operation_id, registry).to_status()


@router.post("/{operation_id}/cancel", response_model=OperationStatus, status_code=202)
def cancel_upload(
    operation_id: str,
    registry: Annotated[OperationRegistry, Depends(get_operation_registry)],
) -> OperationStatus:
    """Cancel an upload that is still validating. Once writing has started the batch runs to completion."""
    operation = _get_operation(operation_id, registry)
    if not operation.cancel():
        raise HTTPException(
            status_code=409,
            detail=f"Operation {operation_id} is {operation.state.value} and can no longer be cancelled.",
        )
    logger.info("Upload cancellation requested", extra={"operation_id": operation_id})
    return operation.to_status()
