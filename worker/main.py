import logging
from typing import Any, Dict, Optional

from fastapi import BackgroundTasks, Depends, FastAPI
from pydantic import ValidationError

from backend.app import config
from backend.app.jobs import JobStore, get_job_store
from backend.app.models import ProcessRequest
from backend.app.processing import process_job

app = FastAPI()
logging.basicConfig(level=config.LOG_LEVEL)
logger = logging.getLogger("essaygen-worker")


@app.get("/healthz")
def healthz():
    return {"worker": "ok"}


def _run_job(job_id: str, jobs: JobStore):
    logger.info("Processing job %s", job_id)
    # Reads the key at run time so a redeploy with a new key takes effect.
    process_job(job_id, jobs, config.ANTHROPIC_API_KEY)


@app.post("/process", status_code=202)
def process(
    req: ProcessRequest,
    background_tasks: BackgroundTasks,
    jobs: JobStore = Depends(get_job_store),
):
    # Run after responding; generation outlasts the trigger's timeout.
    background_tasks.add_task(_run_job, req.jobId, jobs)
    return {"ok": True, "jobId": req.jobId, "status": "processing"}


def handle_sqs_event(event: Dict[str, Any], context: Optional[Any] = None) -> Dict[str, Any]:
    """Lambda entry point for queue-dispatched jobs; each record body is {"jobId": ...}."""
    jobs = get_job_store()
    processed = 0
    skipped = 0
    for record in event.get("Records", []):
        try:
            req = ProcessRequest.model_validate_json(record.get("body") or "")
        except ValidationError as e:
            logger.error("Skipping malformed message %s: %s", record.get("messageId"), e)
            skipped += 1
            continue
        _run_job(req.jobId, jobs)
        processed += 1
    return {"processed": processed, "skipped": skipped}
