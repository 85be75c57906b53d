"""Fixtures shared by all app tests."""

import pytest
from django.apps import apps
from django.contrib.auth import get_user_model
from django.core.files.base import ContentFile
from django.core.files.storage import FileSystemStorage
from rest_framework.test import APIClient

from server.apps.files.infrastructure.metadata import (
    derive_storage_key,
    detect_mime_type,
    split_filename,
)
from server.apps.files.infrastructure.storage import LocalObjectStore
from server.apps.files.logic.upload_operations import UploadCoordinator
from server.apps.files.models import File

User = get_user_model()


@pytest.fixture(autouse=True)
def _fast_password_hasher(settings):
    """Use a cheap hasher, share link passwords are hashed in many tests."""
    settings.PASSWORD_HASHERS = [
        'django.contrib.auth.hashers.MD5PasswordHasher',
    ]


@pytest.fixture
def user(db):
    """Create test user.

    Returns:
        User instance for testing.
    """
    return User.objects.create_user(
        username='testuser',
        password='testpass123',
        email='test@example.com',
    )


@pytest.fixture
def other_user(db):
    """Create second test user for isolation tests.

    Returns:
        Second user instance.
    """
    return User.objects.create_user(
        username='otheruser',
        password='testpass123',
        email='other@example.com',
    )


@pytest.fixture
def local_store(tmp_path):
    """Local object store rooted in a temporary directory."""
    return LocalObjectStore(FileSystemStorage(location=str(tmp_path)))


@pytest.fixture(autouse=True)
def object_store(local_store, monkeypatch):
    """Make the local store the one the files app hands out.

    Returns:
        The store views and commands will use.
    """
    monkeypatch.setattr(
        apps.get_app_config('files'),
        'object_store',
        local_store,
    )
    return local_store


@pytest.fixture
def api_client(user):
    """API client logged in as `user`."""
    client = APIClient()
    client.force_authenticate(user=user)
    return client


@pytest.fixture
def anonymous_client():
    """API client without credentials."""
    return APIClient()


@pytest.fixture
def make_file(object_store):
    """Factory storing a finalized file through the upload coordinator.

    Returns:
        Callable `(owner, filename, content, folder) -> File`.
    """
    coordinator = UploadCoordinator(object_store)

    def factory(owner, filename='test.txt', content=b'test file content', folder=None):
        result = coordinator.upload_direct(
            owner,
            filename,
            ContentFile(content, name=filename),
            folder_id=folder.id if folder else None,
        )
        return result.file

    return factory


@pytest.fixture
def make_provisional_file():
    """Factory for a file record whose upload has not completed.

    Returns:
        Callable `(owner, filename, size, folder) -> File`.
    """
    def factory(owner, filename='pending.bin', size=10, folder=None):
        name, ext = split_filename(filename)
        return File.objects.create(
            name=name,
            ext=ext,
            mime=detect_mime_type(filename),
            size=size,
            storage_key=derive_storage_key(owner.id, filename),
            folder=folder,
            owner=owner,
        )

    return factory
