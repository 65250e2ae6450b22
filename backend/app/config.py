import os
from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


APP_ORIGIN = os.getenv("APP_ORIGIN", "http://localhost:3000")
BACKEND_API_KEY = os.getenv("BACKEND_API_KEY")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Job record storage (S3 / R2 or local SQLite)
USE_S3 = _flag("USE_S3")
S3_BUCKET = os.getenv("S3_BUCKET")
S3_ENDPOINT = os.getenv("S3_ENDPOINT")
S3_ACCESS_KEY = os.getenv("S3_ACCESS_KEY")
S3_SECRET_KEY = os.getenv("S3_SECRET_KEY")
S3_REGION = os.getenv("S3_REGION", "auto")
S3_PREFIX = os.getenv("S3_PREFIX", "essay-jobs")
STATIC_DIR = os.getenv("STATIC_DIR") or os.path.join(os.getcwd(), "data")
SQLITE_PATH = os.getenv("SQLITE_PATH") or os.path.join(STATIC_DIR, "jobs.sqlite")

# Worker hand-off: inline | http | sqs
WORKER_URL = os.getenv("WORKER_URL")
SQS_QUEUE_URL = os.getenv("SQS_QUEUE_URL")
# Unset: boto3 resolves the region from AWS_REGION / AWS_DEFAULT_REGION.
SQS_REGION = os.getenv("SQS_REGION")
DISPATCH_MODE = os.getenv(
    "DISPATCH_MODE", "sqs" if SQS_QUEUE_URL else ("http" if WORKER_URL else "inline")
).lower()

# Text generation provider
ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY")
ANTHROPIC_API_URL = os.getenv("ANTHROPIC_API_URL", "https://api.anthropic.com/v1/messages")
ANTHROPIC_VERSION = os.getenv("ANTHROPIC_VERSION", "2023-06-01")
ANTHROPIC_MODEL = os.getenv("ANTHROPIC_MODEL", "claude-sonnet-4-20250514")
GENERATION_TIMEOUT_SECONDS = float(os.getenv("GENERATION_TIMEOUT_SECONDS", "600"))

DEFAULT_TEACHER_PASSWORD = os.getenv("DEFAULT_TEACHER_PASSWORD", "teacher123")
