#=======================================================================================
# app/routes.py
# FastAPI routes for the listings sheet: export, upload preview, backup, apply
# (background job with progress), checkpoint housekeeping and the audit trail.
#
# Every route requires HTTP Basic (admin).
# In main_app.py, include with NO extra prefix to avoid /api/api duplication.
#=======================================================================================

import json
import secrets
import asyncio
import uuid
import time
from typing import Any, Dict, List, Optional
import logging

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials
from fastapi.responses import JSONResponse, Response

logger = logging.getLogger("uvicorn.error")

from app.config import settings
from app.db import get_sessionmaker
from app.catalog.catalog_api import CatalogClient
from app.models.audit_log import get_audit_log
from app.upload.apply import apply_upload
from app.upload.backup import create_backup
from app.upload.csv_export import encode_listings
from app.upload.preview import preview_upload
from app.upload.progress_store import ProgressStore

router = APIRouter(prefix="/api", tags=["Listings Upload API"])

# ---------------------------
# HTTP Basic
# ---------------------------
security = HTTPBasic()

def verify_admin(credentials: HTTPBasicCredentials = Depends(security)):
    ok_user = secrets.compare_digest(credentials.username or "", settings.ADMIN_USER or "")
    ok_pass = secrets.compare_digest(credentials.password or "", settings.ADMIN_PASS or "")
    if not (ok_user and ok_pass):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Basic"},
        )

# ---------------------------
# Dependencies (overridable in tests)
# ---------------------------
def get_catalog_client() -> CatalogClient:
    return CatalogClient()

def get_progress_store() -> ProgressStore:
    return ProgressStore(get_sessionmaker())

# ---------------------------
# Helpers
# ---------------------------
def _normalize_change_ids(raw: Any) -> List[str]:
    """Accepts a JSON list, or a comma / newline / semicolon separated string."""
    if raw is None:
        return []
    if isinstance(raw, str):
        s = raw.strip()
        if s.startswith("["):
            try:
                raw = json.loads(s)
            except ValueError:
                raise HTTPException(status_code=400, detail="accepted_change_ids is not valid JSON")
        else:
            return [p.strip() for p in s.replace("\n", ",").replace(";", ",").split(",") if p.strip()]
    if isinstance(raw, list):
        return [str(p).strip() for p in raw if str(p).strip()]
    return []

async def _read_upload(file: UploadFile) -> bytes:
    content = await file.read()
    if not content:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")
    if len(content) > settings.MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail=f"File exceeds {settings.MAX_UPLOAD_BYTES} bytes")
    return content

def _now_ts() -> int:
    return int(time.time())

# ---------------------------
# Background job store (in-memory)
# ---------------------------
_JOBS: Dict[str, Dict[str, Any]] = {}
_JOBS_LOCK = asyncio.Lock()
_JOBS_TTL_SECONDS = 60 * 60  # keep finished jobs 1 hour

async def _cleanup_jobs_now():
    """Remove finished jobs older than TTL."""
    cutoff = _now_ts() - _JOBS_TTL_SECONDS
    async with _JOBS_LOCK:
        to_del = [jid for jid, rec in _JOBS.items()
                  if rec.get("finished") and rec.get("finished") < cutoff]
        for jid in to_del:
            _JOBS.pop(jid, None)

async def _run_apply_job(job_id: str, content: bytes, accepted: List[str], filename: str,
                         client: CatalogClient, store: ProgressStore):
    """Background runner for an apply."""
    logger.info(f"[JOB][RUN] Job {job_id} starting ({len(accepted)} accepted changes, file={filename!r})")
    async with _JOBS_LOCK:
        rec = _JOBS.get(job_id) or {}
        rec.update({"status": "running", "started": rec.get("started") or _now_ts()})
        _JOBS[job_id] = rec

    async def _on_progress(processed: int, total: int, failed: int):
        async with _JOBS_LOCK:
            _JOBS[job_id]["progress"] = {"processed": processed, "total": total, "failed": failed}

    try:
        result = await apply_upload(content, accepted, client, store, filename=filename, on_progress=_on_progress)
        async with _JOBS_LOCK:
            _JOBS[job_id].update({
                "status": "done",
                "finished": _now_ts(),
                "result": result.model_dump(mode="json"),
            })
        logger.info(f"[JOB][COMPLETE] Job {job_id} finished ({len(result.failed_listings)} failed)")
    except Exception as e:
        async with _JOBS_LOCK:
            _JOBS[job_id].update({
                "status": "error",
                "finished": _now_ts(),
                "error": str(e),
            })
        logger.error(f"[JOB][ERROR] Job {job_id} failed: {e}")

    await _cleanup_jobs_now()

# ----------------------------------------------------------------------
# Export
# ----------------------------------------------------------------------
@router.get("/listings/export", dependencies=[Depends(verify_admin)])
async def api_export_listings(
    state: Optional[str] = Query(None, description="active | inactive | draft | sold_out | expired"),
    client: CatalogClient = Depends(get_catalog_client),
):
    """Download the shop's listings as an editable CSV sheet."""
    shop_id = await client.get_shop_id()
    listings = await client.fetch_all_listings(shop_id, state=state)
    body = encode_listings(listings)
    fname = f"listings-{state or 'all'}-{time.strftime('%Y-%m-%d')}.csv"
    return Response(
        content=body,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{fname}"'},
    )

# ----------------------------------------------------------------------
# Upload: preview / backup / apply
# ----------------------------------------------------------------------
@router.post("/upload/preview", dependencies=[Depends(verify_admin)])
async def api_upload_preview(
    file: UploadFile = File(...),
    client: CatalogClient = Depends(get_catalog_client),
):
    """Dry-run: what applying this sheet would change. Nothing is written."""
    content = await _read_upload(file)
    preview = await preview_upload(content, client, file.filename)
    return JSONResponse(content=preview.model_dump(mode="json"))

@router.post("/upload/backup", dependencies=[Depends(verify_admin)])
async def api_upload_backup(
    file: UploadFile = File(...),
    accepted_change_ids: str = Form(""),
    client: CatalogClient = Depends(get_catalog_client),
):
    """Save the live state of every listing the accepted changes will touch."""
    content = await _read_upload(file)
    accepted = _normalize_change_ids(accepted_change_ids)
    preview = await preview_upload(content, client, file.filename)
    backup = await create_backup(preview, accepted, client)
    if backup is None:
        return JSONResponse(content={"path": None, "listing_count": 0})
    return JSONResponse(content={"path": backup.path, "listing_count": backup.listing_count})

@router.post("/upload/apply", dependencies=[Depends(verify_admin)])
async def api_upload_apply(
    file: UploadFile = File(...),
    accepted_change_ids: str = Form(""),
    blocking: bool = Form(False),
    client: CatalogClient = Depends(get_catalog_client),
    store: ProgressStore = Depends(get_progress_store),
):
    """
    Apply the accepted changes of an uploaded sheet.

    Default is **non-blocking**: returns { job_id, status } (202 Accepted);
    poll GET /api/upload/jobs/{job_id}. With blocking=true the ApplyResult is returned.
    Re-uploading the same file resumes from its checkpoint.
    """
    content = await _read_upload(file)
    accepted = _normalize_change_ids(accepted_change_ids)
    if not accepted:
        raise HTTPException(status_code=400, detail="No accepted_change_ids given")
    filename = file.filename or ""

    if blocking:
        logger.info("[JOB][SYNC] Running blocking apply")
        result = await apply_upload(content, accepted, client, store, filename=filename)
        return JSONResponse(content=result.model_dump(mode="json"))

    job_id = uuid.uuid4().hex
    logger.info(f"[JOB][REGISTER] Registering apply job {job_id}")
    async with _JOBS_LOCK:
        _JOBS[job_id] = {
            "id": job_id,
            "status": "queued",
            "started": None,
            "finished": None,
            "progress": {"processed": 0, "total": 0, "failed": 0},
            "request": {"file_name": filename, "accepted_change_ids": accepted},
        }

    asyncio.create_task(_run_apply_job(job_id, content, accepted, filename, client, store))
    return JSONResponse(
        status_code=202,
        content={"job_id": job_id, "status": "queued"},
        headers={"Location": f"/api/upload/jobs/{job_id}"},
    )

@router.get("/upload/jobs", dependencies=[Depends(verify_admin)])
async def api_upload_jobs():
    async with _JOBS_LOCK:
        jobs = list(_JOBS.values())
    jobs.sort(key=lambda j: j.get("started") or 0, reverse=True)
    return JSONResponse(content={"jobs": jobs})

@router.get("/upload/jobs/{job_id}", dependencies=[Depends(verify_admin)])
async def api_upload_job_status(job_id: str):
    async with _JOBS_LOCK:
        rec = _JOBS.get(job_id)
    if not rec:
        raise HTTPException(status_code=404, detail="job not found")
    return JSONResponse(content=rec)

# ----------------------------------------------------------------------
# Checkpoints
# ----------------------------------------------------------------------
@router.get("/upload/progress", dependencies=[Depends(verify_admin)])
async def api_progress_list(store: ProgressStore = Depends(get_progress_store)):
    items = await store.list_all()
    return JSONResponse(content={"progress": [p.model_dump(mode="json") for p in items]})

@router.get("/upload/progress/{file_hash}", dependencies=[Depends(verify_admin)])
async def api_progress_get(file_hash: str, store: ProgressStore = Depends(get_progress_store)):
    progress = await store.load(file_hash)
    if progress is None:
        raise HTTPException(status_code=404, detail="no checkpoint for this file")
    return JSONResponse(content=progress.model_dump(mode="json"))

@router.delete("/upload/progress/{file_hash}", dependencies=[Depends(verify_admin)])
async def api_progress_delete(file_hash: str, store: ProgressStore = Depends(get_progress_store)):
    removed = await store.clear(file_hash)
    return JSONResponse(content={"removed": removed})

@router.post("/upload/progress/cleanup", dependencies=[Depends(verify_admin)])
async def api_progress_cleanup(
    days: Optional[int] = Query(None, ge=0),
    store: ProgressStore = Depends(get_progress_store),
):
    removed = await store.cleanup_older_than(days)
    return JSONResponse(content={"removed": removed})

# ----------------------------------------------------------------------
# Audit
# ----------------------------------------------------------------------
@router.get("/audit", dependencies=[Depends(verify_admin)])
async def api_audit(listing_id: Optional[int] = Query(None)):
    return JSONResponse(content={"entries": get_audit_log(listing_id)})
