import logging
from typing import Any, Callable, Dict, Optional

from .boundaries import scale_boundaries
from .generation import GenerationClient, extract_config, extract_structured, inject_content
from .jobs import JobStore
from .prompts import (
    build_essay_prompt,
    build_grade_search_prompt,
    build_search_prompt,
    content_replacements,
    essay_boundaries,
)
from .state import Job, JobKind

logger = logging.getLogger(__name__)

ClientFactory = Callable[[str], GenerationClient]

MISSING_API_KEY = "ANTHROPIC_API_KEY not configured"


def _run_essay(job: Job, client: GenerationClient, jobs: JobStore) -> None:
    data = job.input
    logger.info("Generating essay config for job %s subject=%s", job.id, data.get("subject"))
    table = essay_boundaries(data)
    generated = client.generate(build_essay_prompt(data, table))
    if not generated.ok:
        jobs.fail_job(job.id, generated.error, loaded=job)
        return
    extraction = extract_config(generated.text)
    config = inject_content(extraction.value, content_replacements(data))
    logger.info("Config generated for job %s, length=%d format=%s", job.id, len(config), extraction.kind)
    jobs.complete_job(
        job.id,
        result={
            "format": extraction.kind,
            "gradeBoundaries": [b.to_dict() for b in table] if table else None,
        },
        config=config,
        loaded=job,
    )


def _run_search(job: Job, client: GenerationClient, jobs: JobStore) -> None:
    data = job.input
    generated = client.generate(build_search_prompt(data))
    if not generated.ok:
        jobs.fail_job(job.id, generated.error, loaded=job)
        return
    extraction = extract_structured(generated.text, ("questions",))
    if extraction.structured:
        result = dict(extraction.value, format="structured")
    else:
        logger.warning("No structured questions in search job %s; storing raw text", job.id)
        result = {
            "questions": [],
            "rawResponse": extraction.value,
            "examInfo": {
                "examBoard": data.get("examBoard"),
                "subject": data.get("subject"),
                "paper": data.get("paper") or "Not specified",
                "questionNumber": data.get("questionNumber") or "Not specified",
            },
            "format": "unstructured",
        }
    jobs.complete_job(job.id, result=result, loaded=job)


def _run_grade_search(job: Job, client: GenerationClient, jobs: JobStore) -> None:
    data = job.input
    total_marks = data.get("totalMarks")
    generated = client.generate(build_grade_search_prompt(data))
    if not generated.ok:
        jobs.fail_job(job.id, generated.error, loaded=job)
        return
    extraction = extract_structured(generated.text, ("boundaries",))
    if not extraction.structured:
        logger.warning("No grade boundaries in job %s; storing raw text", job.id)
        result: Dict[str, Any] = {
            "boundaries": [],
            "message": "No grade boundaries found",
            "rawResponse": extraction.value,
            "format": "unstructured",
        }
    else:
        result = dict(extraction.value, format="structured")
    boundaries = result.get("boundaries")
    if not isinstance(boundaries, list):
        boundaries = []
    scaled = None
    if boundaries and total_marks:
        scaled = scale_boundaries(boundaries, result.get("maxMark"), float(total_marks))
    result["scaledBoundaries"] = scaled
    result["targetMarks"] = total_marks
    jobs.complete_job(job.id, result=result, loaded=job)


HANDLERS = {
    JobKind.essay: _run_essay,
    JobKind.search: _run_search,
    JobKind.grades: _run_grade_search,
}


def process_job(
    job_id: str,
    jobs: JobStore,
    api_key: Optional[str],
    client_factory: ClientFactory = GenerationClient,
) -> None:
    """Run one job to a terminal state. Never raises.

    A missing record is a no-op; a job that is already finished is left alone.
    """
    job = None
    try:
        job = jobs.get_job(job_id)
        if job is None:
            logger.error("Job not found: %s", job_id)
            return
        if job.is_terminal:
            logger.info("Job %s already %s; skipping", job_id, job.status.value)
            return
        if not api_key:
            jobs.fail_job(job_id, MISSING_API_KEY, loaded=job)
            return
        HANDLERS[job.kind](job, client_factory(api_key), jobs)
    except Exception as e:
        logger.exception("Job %s failed: %s", job_id, e)
        try:
            jobs.fail_job(job_id, {"message": str(e) or type(e).__name__}, loaded=job)
        except Exception as nested:
            logger.error("Failed to save error state for job %s: %s", job_id, nested)
