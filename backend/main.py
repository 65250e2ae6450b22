import logging
import secrets
from typing import Optional, Type

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from backend.app import config
from backend.app.dispatch import Dispatcher, make_dispatcher
from backend.app.jobs import JobStore, get_job_store
from backend.app.models import (
    EssayJobRequest,
    GradeSearchRequest,
    PastPaperSearchRequest,
    dump_input,
    validation_message,
)
from backend.app.state import JobKind
from backend.app.storage import describe

logging.basicConfig(level=config.LOG_LEVEL)
logger = logging.getLogger("essaygen-backend")

app = FastAPI(title="Essay config generator")

# Endpoints that don't require API key auth
_PUBLIC_PATHS = frozenset(["/healthz"])


async def verify_api_key(request: Request):
    """Dependency that verifies API key for protected endpoints."""
    if not config.BACKEND_API_KEY:
        # Auth disabled (dev mode)
        return

    if request.url.path in _PUBLIC_PATHS:
        return

    api_key = request.headers.get("x-api-key")
    if not api_key:
        raise HTTPException(status_code=401, detail="Missing API key")

    # Timing-safe comparison
    if not secrets.compare_digest(api_key, config.BACKEND_API_KEY):
        raise HTTPException(status_code=401, detail="Invalid API key")


app.add_middleware(
    CORSMiddleware,
    allow_origins=[config.APP_ORIGIN, "http://127.0.0.1:3000", "http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "X-API-Key"],
)


@app.exception_handler(StarletteHTTPException)
async def http_error(request: Request, exc: StarletteHTTPException):
    return JSONResponse({"error": exc.detail}, status_code=exc.status_code, headers=exc.headers)


@app.exception_handler(Exception)
async def unhandled_error(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse({"error": str(exc) or type(exc).__name__}, status_code=500)


def get_dispatcher(
    background_tasks: BackgroundTasks,
    jobs: JobStore = Depends(get_job_store),
) -> Dispatcher:
    return make_dispatcher(background_tasks, jobs)


@app.get("/healthz")
def healthz(jobs: JobStore = Depends(get_job_store)):
    return {
        "ok": True,
        "storage": describe(jobs.store),
        "dispatch": config.DISPATCH_MODE,
        "generation": "configured" if config.ANTHROPIC_API_KEY else "missing_api_key",
    }


async def _start(
    request: Request,
    model: Type[BaseModel],
    kind: JobKind,
    jobs: JobStore,
    dispatcher: Dispatcher,
):
    try:
        body = await request.json()
    except ValueError:
        return JSONResponse({"error": "Invalid JSON body"}, status_code=400)
    if not isinstance(body, dict):
        return JSONResponse({"error": "Request body must be a JSON object"}, status_code=400)

    try:
        req = model.model_validate(body)
    except ValidationError as e:
        return JSONResponse({"error": validation_message(e)}, status_code=400)

    try:
        job_id = jobs.create_job(dump_input(req), kind)
    except Exception as e:
        logger.exception("Failed to create %s job", kind.value)
        return JSONResponse({"error": str(e)}, status_code=500)

    # Clients poll regardless of whether the hand-off succeeds.
    dispatcher.enqueue(job_id)
    return JSONResponse({"jobId": job_id, "status": "processing"}, status_code=202)


@app.post("/start-job", dependencies=[Depends(verify_api_key)])
async def start_job(
    request: Request,
    jobs: JobStore = Depends(get_job_store),
    dispatcher: Dispatcher = Depends(get_dispatcher),
):
    return await _start(request, EssayJobRequest, JobKind.essay, jobs, dispatcher)


@app.post("/start-search", dependencies=[Depends(verify_api_key)])
async def start_search(
    request: Request,
    jobs: JobStore = Depends(get_job_store),
    dispatcher: Dispatcher = Depends(get_dispatcher),
):
    return await _start(request, PastPaperSearchRequest, JobKind.search, jobs, dispatcher)


@app.post("/start-grade-search", dependencies=[Depends(verify_api_key)])
async def start_grade_search(
    request: Request,
    jobs: JobStore = Depends(get_job_store),
    dispatcher: Dispatcher = Depends(get_dispatcher),
):
    return await _start(request, GradeSearchRequest, JobKind.grades, jobs, dispatcher)


def _poll(job_id: Optional[str], jobs: JobStore, missing: dict):
    if not job_id:
        return JSONResponse({"error": "Missing jobId"}, status_code=400)
    try:
        record = jobs.get_record(job_id)
    except Exception as e:
        logger.exception("Failed to read job %s", job_id)
        return JSONResponse({"error": str(e)}, status_code=500)
    if record is None:
        # Not written yet, or not visible yet; the client keeps polling.
        return missing
    logger.info("Job %s status: %s", job_id, record.get("status"))
    return record


@app.get("/check-job", dependencies=[Depends(verify_api_key)])
def check_job(jobId: Optional[str] = None, jobs: JobStore = Depends(get_job_store)):
    return _poll(jobId, jobs, {"status": "processing"})


@app.get("/check-status", dependencies=[Depends(verify_api_key)])
def check_status(jobId: Optional[str] = None, jobs: JobStore = Depends(get_job_store)):
    return _poll(jobId, jobs, {"completed": False})
