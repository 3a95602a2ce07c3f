"""
Pytest fixtures: in-memory MongoDB (mongomock) and S3 (moto) behind the
real gateway classes, plus a TestClient over the full app.
"""

import boto3
import mongomock
import pytest
from fastapi.testclient import TestClient
from moto import mock_aws

from config import Settings
from database import Database
from main import create_app
from services import ImageService
from storage import BlobStore

TEST_BUCKET = "growtracker-test"


@pytest.fixture
def settings():
    return Settings(mongodb_db="growtracker_test", s3_bucket=TEST_BUCKET, log_level="WARNING")


@pytest.fixture
def database(settings):
    db = Database(mongomock.MongoClient(), settings.mongodb_db)
    db.ensure_indexes()
    return db


@pytest.fixture
def aws_credentials(monkeypatch):
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")


@pytest.fixture
def blobs(aws_credentials):
    with mock_aws():
        client = boto3.client("s3", region_name="us-east-1")
        store = BlobStore(client, TEST_BUCKET)
        store.ensure_bucket()
        yield store


@pytest.fixture
def image_service(database, blobs):
    return ImageService(database, blobs)


@pytest.fixture
def client(settings, database, blobs):
    app = create_app(settings, database=database, blobs=blobs)
    with TestClient(app) as test_client:
        yield test_client
