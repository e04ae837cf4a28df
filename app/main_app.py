#=================================================================
# app/main_app.py
# FastAPI application entry-point for the listings sheet service.
#=================================================================

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from app import logging_filters
from app.routes import router as api_router, get_progress_store
from app.catalog.catalog_api import CatalogApiError
from app.upload.errors import CsvParseError, MissingPrerequisiteError
from app.db import init_db
from app.config import settings

# --- FastAPI instance ---
app = FastAPI(
    title="Listings Bulk Edit Service",
    description="Export listings to a sheet, preview an edited upload and apply the accepted changes.",
)

# --- Logging setup (console, INFO level) ---
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s | %(message)s"
)
logger = logging.getLogger("uvicorn.error")
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging_filters.install()

# --- CORS ---
origins = settings.CORS_ORIGINS
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------- Include routers ----------------
app.include_router(api_router)           # /api/*

# --- Root endpoint ---
@app.get("/")
async def home():
    return {"status": "running", "service": "Listings Bulk Edit Service"}

# --- Error mapping ---
@app.exception_handler(CsvParseError)
async def csv_parse_error_handler(request: Request, exc: CsvParseError):
    logger.warning(f"[CSV] Rejected upload: {exc}")
    return JSONResponse(status_code=400, content={"detail": str(exc)})

@app.exception_handler(MissingPrerequisiteError)
async def missing_prerequisite_handler(request: Request, exc: MissingPrerequisiteError):
    logger.error(f"[APPLY] Run aborted before any write: {exc}")
    return JSONResponse(status_code=422, content={"detail": str(exc)})

@app.exception_handler(CatalogApiError)
async def catalog_error_handler(request: Request, exc: CatalogApiError):
    logger.error(f"[CATALOG] Request failed ({exc.status_code}): {exc.message}")
    return JSONResponse(status_code=502, content={"detail": exc.message, "upstream_status": exc.status_code})

# --- Global error handler (keeps full stack trace in logs) ---
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error("Unhandled error", exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={"detail": f"Request failed: {str(exc)}"},
    )

# ---- Lifecycle ----
@app.on_event("startup")
async def _startup():
    await init_db()
    if settings.CLEANUP_ON_STARTUP:
        try:
            await get_progress_store().cleanup_older_than(settings.PROGRESS_TTL_DAYS)
        except Exception as e:
            # best-effort
            logger.warning(f"[PROGRESS] Startup cleanup failed: {e}")

#if __name__ == "__main__":
#    import uvicorn
#
#    uvicorn.run(app, host="0.0.0.0", port=8000)
