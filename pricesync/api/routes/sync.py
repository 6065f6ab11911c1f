"""Sync trigger routes."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status
from fastapi.responses import JSONResponse

from pricesync.api.deps import get_task_runner, require_admin_api_key
from pricesync.config import settings
from pricesync.ingest.extract_parser import decode_extract
from pricesync.worker.tasks import (
    EmptyExtractError,
    SyncInProgressError,
    SyncRunError,
    SyncTaskRunner,
)

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/sync",
    tags=["sync"],
    dependencies=[Depends(require_admin_api_key)],
)


def _is_csv(upload: UploadFile) -> bool:
    filename = (upload.filename or "").lower()
    return filename.endswith(".csv") or upload.content_type == "text/csv"


@router.post("")
async def sync_extract(
    file: UploadFile = File(...),
    markup: Optional[float] = Form(None),
    runner: SyncTaskRunner = Depends(get_task_runner),
):
    """Ingest a price-list extract and reconcile it with the remote store."""
    if not _is_csv(file):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Only CSV files are accepted",
        )

    data = await file.read(settings.max_upload_bytes + 1)
    if len(data) > settings.max_upload_bytes:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"File too large (max {settings.max_upload_bytes // (1024 * 1024)}MB)",
        )
    if markup is not None and markup < 0:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Markup must not be negative",
        )

    logger.info(f"Received extract {file.filename!r} ({len(data)} bytes), markup={markup}")

    try:
        report = await runner.run_sync(decode_extract(data), markup=markup)
    except EmptyExtractError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except SyncInProgressError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except SyncRunError as e:
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=e.to_dict())

    return report.to_dict()


@router.post("/aggregate")
async def sync_aggregate(runner: SyncTaskRunner = Depends(get_task_runner)):
    """Recompute product aggregates and best-price flags from current quotes."""
    try:
        report = await runner.run_aggregation()
    except SyncInProgressError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except SyncRunError as e:
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=e.to_dict())

    return report.to_dict()
