import json
import logging
from functools import lru_cache
from typing import Optional

import boto3
import httpx
from fastapi import BackgroundTasks

from . import config
from .jobs import JobStore
from .processing import process_job

logger = logging.getLogger(__name__)


class Dispatcher:
    """Hands a created job to a worker. ``enqueue`` never raises."""

    def enqueue(self, job_id: str) -> None:
        raise NotImplementedError


class HttpDispatcher(Dispatcher):
    """Fire-and-forget POST to the worker service's /process endpoint."""

    def __init__(self, worker_url: str, timeout: float = 10.0, transport: Optional[httpx.BaseTransport] = None):
        self.worker_url = worker_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    def enqueue(self, job_id: str) -> None:
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                r = client.post(f"{self.worker_url}/process", json={"jobId": job_id})
            logger.info("Triggered worker for %s -> %s", job_id, r.status_code)
        except Exception as e:
            # Clients poll regardless; a lost trigger leaves the job processing.
            logger.warning("Failed to trigger worker for %s: %s", job_id, e)


@lru_cache(maxsize=1)
def get_sqs_client():
    return boto3.client("sqs", region_name=config.SQS_REGION)


class SqsDispatcher(Dispatcher):
    def __init__(self, queue_url: str, client=None):
        self.queue_url = queue_url
        self._sqs = client

    def enqueue(self, job_id: str) -> None:
        try:
            sqs = self._sqs or get_sqs_client()
            sqs.send_message(QueueUrl=self.queue_url, MessageBody=json.dumps({"jobId": job_id}))
            logger.info("Queued job %s", job_id)
        except Exception as e:
            logger.warning("Failed to queue job %s: %s", job_id, e)


class InlineDispatcher(Dispatcher):
    """Runs the job in the API process after the response is sent (dev mode)."""

    def __init__(self, background_tasks: BackgroundTasks, jobs: JobStore):
        self.background_tasks = background_tasks
        self.jobs = jobs

    def enqueue(self, job_id: str) -> None:
        logger.info("DISPATCH_MODE=inline; processing %s in-process", job_id)
        self.background_tasks.add_task(process_job, job_id, self.jobs, config.ANTHROPIC_API_KEY)


def make_dispatcher(background_tasks: BackgroundTasks, jobs: JobStore) -> Dispatcher:
    mode = config.DISPATCH_MODE
    if mode == "sqs" and config.SQS_QUEUE_URL:
        return SqsDispatcher(config.SQS_QUEUE_URL)
    if mode == "http" and config.WORKER_URL:
        return HttpDispatcher(config.WORKER_URL)
    return InlineDispatcher(background_tasks, jobs)
