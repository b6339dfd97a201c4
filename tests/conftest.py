"""
Pytest configuration and fixtures for the remediation backend tests.
"""

import hashlib
import io
import os
import shutil
import tempfile
from datetime import datetime, timedelta, timezone

import boto3
import pytest
from botocore.config import Config
from botocore.exceptions import ClientError
from fastapi.testclient import TestClient

# Set test environment variables before importing the app
_DB_DIR = tempfile.mkdtemp(prefix="a11y_test_db_")
os.environ["A11Y_DB_PATH"] = os.path.join(_DB_DIR, "audits.db")
os.environ["ACCOUNT_ID"] = "testaccount"
os.environ["R2_ACCESS_KEY_ID"] = "AKIDTESTKEY"
os.environ["R2_SECRET_ACCESS_KEY"] = "test-secret-key"
os.environ["BUCKET_NAME"] = "documents"

from a11y_remediation_backend.database import AuditRepository
from a11y_remediation_backend.main import app, get_gateway, get_repository
from a11y_remediation_backend.storage import ObjectStoreGateway

TEST_BUCKET = "documents"
TEST_ENDPOINT = "https://testaccount.r2.cloudflarestorage.com"


class FrozenClock:
    """Deterministic clock that only moves when told to."""

    def __init__(self, start: datetime = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def make_signing_client():
    """Real boto3 client with dummy credentials; presigning needs no network."""
    return boto3.client(
        "s3",
        endpoint_url=TEST_ENDPOINT,
        aws_access_key_id="AKIDTESTKEY",
        aws_secret_access_key="test-secret-key",
        region_name="auto",
        config=Config(signature_version="s3v4", s3={"addressing_style": "path"}),
    )


class InMemoryS3Client:
    """
    Minimal stand-in for the boto3 S3 client used by the API tests.

    Objects live in a dict; presigning is delegated to a real client.
    """

    def __init__(self):
        self.objects = {}
        self._signer = make_signing_client()

    def put_object(self, Bucket, Key, Body, ContentType):
        etag = hashlib.md5(Body).hexdigest()
        self.objects[(Bucket, Key)] = {
            "body": bytes(Body),
            "etag": etag,
            "content_type": ContentType,
            "last_modified": datetime.now(timezone.utc),
        }
        return {"ETag": f'"{etag}"'}

    def get_object(self, Bucket, Key):
        stored = self.objects.get((Bucket, Key))
        if stored is None:
            raise ClientError(
                {"Error": {"Code": "NoSuchKey", "Message": "The specified key does not exist."}},
                "GetObject",
            )
        return {
            "Body": io.BytesIO(stored["body"]),
            "ContentLength": len(stored["body"]),
            "ETag": f'"{stored["etag"]}"',
            "ContentType": stored["content_type"],
            "LastModified": stored["last_modified"],
        }

    def generate_presigned_url(self, ClientMethod, Params, ExpiresIn):
        return self._signer.generate_presigned_url(ClientMethod, Params=Params, ExpiresIn=ExpiresIn)


@pytest.fixture(scope="session", autouse=True)
def test_dirs():
    """Cleanup the database directory used by the module-level app wiring."""
    yield {"db": _DB_DIR}
    shutil.rmtree(_DB_DIR, ignore_errors=True)


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def repository(tmp_path, clock):
    return AuditRepository(tmp_path / "audits.db", clock=clock)


@pytest.fixture
def signing_client():
    return make_signing_client()


@pytest.fixture
def s3_client():
    return InMemoryS3Client()


@pytest.fixture
def gateway(s3_client, clock):
    return ObjectStoreGateway(s3_client, TEST_BUCKET, clock=clock)


@pytest.fixture
def client(repository, gateway):
    """Create a test client wired to a fresh database and in-memory bucket."""
    app.dependency_overrides[get_repository] = lambda: repository
    app.dependency_overrides[get_gateway] = lambda: gateway
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def sample_pdf_bytes():
    """Minimal PDF header and trailer; content is opaque to the service."""
    return b"%PDF-1.4\n1 0 obj\n<< /Type /Catalog >>\nendobj\ntrailer\n<< /Root 1 0 R >>\n%%EOF"
