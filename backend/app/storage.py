import json
import logging
import os
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Optional

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError
from sqlalchemy import Column, DateTime, String, Text, create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker

from . import config

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Raised when the blob store cannot be read or written."""


class BlobStore:
    """Get/set JSON documents by key."""

    def get_json(self, key: str) -> Optional[dict]:
        raise NotImplementedError

    def set_json(self, key: str, value: dict) -> None:
        raise NotImplementedError


def make_key(*parts: str) -> str:
    return "/".join([p.strip("/") for p in parts if p])


class S3BlobStore(BlobStore):
    def __init__(self, client, bucket: str, prefix: str = ""):
        self._s3 = client
        self.bucket = bucket
        self.prefix = prefix

    def _key(self, key: str) -> str:
        return make_key(self.prefix, f"{key}.json")

    def get_json(self, key: str) -> Optional[dict]:
        try:
            obj = self._s3.get_object(Bucket=self.bucket, Key=self._key(key))
            raw = obj["Body"].read()
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            if code in ("NoSuchKey", "404", "NotFound"):
                return None
            raise StoreError(f"S3 get_object failed for {key}: {code}") from e
        except BotoCoreError as e:
            raise StoreError(f"S3 get_object failed for {key}: {e}") from e
        try:
            return json.loads(raw)
        except ValueError as e:
            raise StoreError(f"Corrupt JSON blob for {key}") from e

    def set_json(self, key: str, value: dict) -> None:
        try:
            self._s3.put_object(
                Bucket=self.bucket,
                Key=self._key(key),
                Body=json.dumps(value).encode("utf-8"),
                ContentType="application/json",
            )
        except (BotoCoreError, ClientError) as e:
            raise StoreError(f"S3 put_object failed for {key}: {e}") from e


Base = declarative_base()


class BlobORM(Base):
    __tablename__ = "job_blobs"
    key = Column(String, primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime, nullable=False)


class SqlBlobStore(BlobStore):
    def __init__(self, url: str):
        connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
        self.engine = create_engine(url, connect_args=connect_args)
        # Keep attributes available after commit, outside the session block.
        self.SessionLocal = sessionmaker(
            bind=self.engine,
            autoflush=False,
            autocommit=False,
            expire_on_commit=False,
        )
        Base.metadata.create_all(self.engine)

    def get_json(self, key: str) -> Optional[dict]:
        try:
            with self.SessionLocal() as db:
                row = db.get(BlobORM, key)
        except SQLAlchemyError as e:
            raise StoreError(f"Blob read failed for {key}: {e}") from e
        if not row:
            return None
        try:
            return json.loads(row.value)
        except ValueError as e:
            raise StoreError(f"Corrupt JSON blob for {key}") from e

    def set_json(self, key: str, value: dict) -> None:
        try:
            with self.SessionLocal() as db:
                db.merge(
                    BlobORM(
                        key=key,
                        value=json.dumps(value),
                        updated_at=datetime.now(timezone.utc),
                    )
                )
                db.commit()
        except SQLAlchemyError as e:
            raise StoreError(f"Blob write failed for {key}: {e}") from e


def make_blob_store() -> BlobStore:
    if config.USE_S3 and config.S3_BUCKET and config.S3_ACCESS_KEY and config.S3_SECRET_KEY:
        client = boto3.client(
            "s3",
            endpoint_url=config.S3_ENDPOINT,
            aws_access_key_id=config.S3_ACCESS_KEY,
            aws_secret_access_key=config.S3_SECRET_KEY,
            region_name=config.S3_REGION,
            config=Config(signature_version="s3v4"),
        )
        logger.info("Using S3 blob store bucket=%s prefix=%s", config.S3_BUCKET, config.S3_PREFIX)
        return S3BlobStore(client, config.S3_BUCKET, config.S3_PREFIX)
    os.makedirs(os.path.dirname(config.SQLITE_PATH) or ".", exist_ok=True)
    logger.info("Using SQLite blob store at %s", config.SQLITE_PATH)
    return SqlBlobStore(f"sqlite:///{config.SQLITE_PATH}")


@lru_cache(maxsize=1)
def get_blob_store() -> BlobStore:
    """Process-wide store reuse; callers still receive it by injection."""
    return make_blob_store()


def describe(store: Any) -> str:
    return "s3" if isinstance(store, S3BlobStore) else "sqlite"
