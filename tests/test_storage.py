import io
import json

import boto3
import pytest
from botocore.response import StreamingBody
from botocore.stub import ANY, Stubber

from backend.app.storage import S3BlobStore, StoreError, make_key


@pytest.fixture
def s3():
    client = boto3.client(
        "s3",
        region_name="us-east-1",
        aws_access_key_id="test",
        aws_secret_access_key="test",
    )
    with Stubber(client) as stubber:
        yield client, stubber


def test_sql_store_round_trip(sql_store):
    sql_store.set_json("job_1", {"status": "processing", "input": {"subject": "English"}})

    assert sql_store.get_json("job_1") == {"status": "processing", "input": {"subject": "English"}}


def test_sql_store_overwrites(sql_store):
    sql_store.set_json("job_1", {"status": "processing"})
    sql_store.set_json("job_1", {"status": "completed"})

    assert sql_store.get_json("job_1") == {"status": "completed"}


def test_sql_store_missing_key(sql_store):
    assert sql_store.get_json("job_nope") is None


def test_make_key_strips_slashes():
    assert make_key("/essay-jobs/", "job_1.json") == "essay-jobs/job_1.json"
    assert make_key("", "job_1.json") == "job_1.json"


def test_s3_get_json(s3):
    client, stubber = s3
    data = json.dumps({"status": "completed"}).encode()
    stubber.add_response(
        "get_object",
        {"Body": StreamingBody(io.BytesIO(data), len(data))},
        {"Bucket": "jobs-bucket", "Key": "essay-jobs/job_1.json"},
    )

    store = S3BlobStore(client, "jobs-bucket", "essay-jobs")

    assert store.get_json("job_1") == {"status": "completed"}


def test_s3_missing_key_is_none(s3):
    client, stubber = s3
    stubber.add_client_error("get_object", service_error_code="NoSuchKey", http_status_code=404)

    assert S3BlobStore(client, "jobs-bucket").get_json("job_1") is None


def test_s3_access_failure_raises_store_error(s3):
    client, stubber = s3
    stubber.add_client_error("get_object", service_error_code="AccessDenied", http_status_code=403)

    with pytest.raises(StoreError):
        S3BlobStore(client, "jobs-bucket").get_json("job_1")


def test_s3_set_json(s3):
    client, stubber = s3
    stubber.add_response(
        "put_object",
        {},
        {
            "Bucket": "jobs-bucket",
            "Key": "essay-jobs/job_1.json",
            "Body": ANY,
            "ContentType": "application/json",
        },
    )

    S3BlobStore(client, "jobs-bucket", "essay-jobs").set_json("job_1", {"status": "processing"})

    stubber.assert_no_pending_responses()


def test_s3_put_failure_raises_store_error(s3):
    client, stubber = s3
    stubber.add_client_error("put_object", service_error_code="InternalError", http_status_code=500)

    with pytest.raises(StoreError):
        S3BlobStore(client, "jobs-bucket").set_json("job_1", {})
