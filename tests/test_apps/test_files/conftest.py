"""Shared fixtures for files app tests."""

import boto3
import pytest
from django.core.files.base import ContentFile
from moto import mock_aws
from storages.backends.s3 import S3Storage

from server.apps.files.infrastructure.storage import NetworkObjectStore
from server.apps.files.logic.trash_operations import TrashManager
from server.apps.files.logic.upload_operations import UploadCoordinator

BUCKET_NAME = 'drive'


@pytest.fixture
def mock_s3():
    """Mock S3 service with drive bucket.

    Yields:
        boto3 S3 resource with drive bucket created.
    """
    with mock_aws():
        # Create S3 resource
        conn = boto3.resource('s3', region_name='us-east-1')

        # Create bucket
        conn.create_bucket(Bucket=BUCKET_NAME)

        yield conn


@pytest.fixture
def network_store(mock_s3):
    """S3-backed object store talking to the mocked bucket."""
    return NetworkObjectStore(
        S3Storage(
            bucket_name=BUCKET_NAME,
            access_key='testing',
            secret_key='testing',
            region_name='us-east-1',
        ),
        handle_ttl=600,
    )


@pytest.fixture
def coordinator(object_store):
    """Upload coordinator over the local test store."""
    return UploadCoordinator(object_store)


@pytest.fixture
def trash_manager(object_store):
    """Trash manager over the local test store."""
    return TrashManager(object_store)


@pytest.fixture
def sample_file_content():
    """Sample file content for testing.

    Returns:
        ContentFile with test data.
    """
    return ContentFile(b'test file content', name='test.txt')
