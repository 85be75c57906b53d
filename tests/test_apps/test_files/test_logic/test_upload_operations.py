"""Tests for the upload coordinator."""

from datetime import timedelta
from unittest import mock

import pytest
from django.core.files.base import ContentFile
from django.utils import timezone

from server.apps.audit.models import AuditLogEntry
from server.apps.files.exceptions import (
    ConflictError,
    InvalidInputError,
    ResourceNotFoundError,
    StorageUnavailableError,
    UnauthorizedError,
)
from server.apps.files.infrastructure.metadata import checksum_bytes
from server.apps.files.infrastructure.storage import PartTag
from server.apps.files.logic.upload_operations import (
    MIN_PART_SIZE,
    UploadCoordinator,
)
from server.apps.files.models import File, Folder, Upload, UploadState

MiB = 1024 * 1024


def _transfer(store, init, data):
    """Write `data` as the single part of `init`, as a client would."""
    tag = store.write_part(init.upload_id, 1, data)
    return [PartTag(1, tag)]


def _complete_with_storage_outage(coordinator, store, user):
    """Assemble the parts of a new upload, then fail while finalizing."""
    init = coordinator.initialize_upload(user, 'report.pdf', 5)
    parts = _transfer(store, init, b'hello')
    with mock.patch.object(
        store,
        'size',
        side_effect=StorageUnavailableError('storage down'),
    ):
        with pytest.raises(StorageUnavailableError):
            coordinator.complete_upload(user, init.file_id, init.upload_id, parts)
    return init, parts


class TestPlanParts:
    """Tests for part size and count planning."""

    def test_small_file_single_part(self, object_store):
        """Test files below the part size need one part."""
        coordinator = UploadCoordinator(object_store, part_size=8 * MiB)

        assert coordinator.plan_parts(1) == (8 * MiB, 1)
        assert coordinator.plan_parts(8 * MiB) == (8 * MiB, 1)

    def test_part_count_rounds_up(self, object_store):
        """Test a partial last part counts as a part."""
        coordinator = UploadCoordinator(object_store, part_size=8 * MiB)

        assert coordinator.plan_parts(8 * MiB + 1) == (8 * MiB, 2)

    def test_part_size_grows_past_max_parts(self, object_store):
        """Test huge files get bigger parts instead of more parts."""
        coordinator = UploadCoordinator(
            object_store,
            part_size=MIN_PART_SIZE,
            max_parts=10,
        )

        part_size, part_count = coordinator.plan_parts(100 * MiB)

        assert part_count <= 10
        assert part_size * part_count >= 100 * MiB

    def test_part_size_has_floor(self, object_store):
        """Test configured part sizes below the store minimum are raised."""
        coordinator = UploadCoordinator(object_store, part_size=1024)

        assert coordinator.plan_parts(MIN_PART_SIZE + 1) == (MIN_PART_SIZE, 2)


@pytest.mark.django_db
class TestInitializeUpload:
    """Tests for multipart upload initialization."""

    def test_report_pdf_metadata(self, user, coordinator):
        """Test init registers a provisional file for report.pdf."""
        init = coordinator.initialize_upload(user, 'report.pdf', 1024)

        file_instance = File.objects.get(id=init.file_id)
        assert file_instance.name == 'report'
        assert file_instance.ext == 'pdf'
        assert file_instance.mime == 'application/pdf'
        assert file_instance.size == 1024
        assert file_instance.checksum is None
        assert file_instance.folder is None
        assert file_instance.storage_key.startswith(f'{user.id}/')
        assert file_instance.storage_key.endswith('.pdf')

        upload = Upload.objects.get(upload_id=init.upload_id)
        assert upload.state == UploadState.INITIATED
        assert upload.file == file_instance
        assert upload.declared_size == 1024
        assert init.part_count == 1
        assert len(init.handles) == 1

        assert AuditLogEntry.objects.filter(
            action='file_upload_initiated',
            target_id=str(file_instance.id),
        ).exists()

    def test_into_folder(self, user, coordinator):
        """Test the provisional file is placed in the folder."""
        folder = Folder.objects.create(name='Docs', owner=user)

        init = coordinator.initialize_upload(
            user,
            'report.pdf',
            10,
            folder_id=folder.id,
        )

        assert File.objects.get(id=init.file_id).folder == folder

    def test_same_name_twice(self, user, coordinator):
        """Test two report.pdf uploads coexist with distinct ids and keys."""
        first = coordinator.initialize_upload(user, 'report.pdf', 10)
        second = coordinator.initialize_upload(user, 'report.pdf', 10)

        first_file = File.objects.get(id=first.file_id)
        second_file = File.objects.get(id=second.file_id)
        assert first_file.id != second_file.id
        assert first_file.storage_key != second_file.storage_key
        assert first.upload_id != second.upload_id

    def test_rejects_non_positive_size(self, user, coordinator):
        """Test zero-byte declarations are invalid."""
        with pytest.raises(InvalidInputError) as exc_info:
            coordinator.initialize_upload(user, 'report.pdf', 0)

        assert 'size' in exc_info.value.errors
        assert not File.objects.exists()

    def test_rejects_foreign_folder(self, user, other_user, coordinator):
        """Test uploading into another user's folder is invalid."""
        folder = Folder.objects.create(name='Theirs', owner=other_user)

        with pytest.raises(InvalidInputError):
            coordinator.initialize_upload(
                user,
                'report.pdf',
                10,
                folder_id=folder.id,
            )
        assert not File.objects.exists()

    def test_storage_failure_leaves_no_record(self, user, object_store):
        """Test nothing is registered when the store is unavailable."""
        coordinator = UploadCoordinator(object_store)

        with mock.patch.object(
            object_store,
            'begin_multipart',
            side_effect=StorageUnavailableError(),
        ):
            with pytest.raises(StorageUnavailableError):
                coordinator.initialize_upload(user, 'report.pdf', 10)

        assert not File.all_objects.exists()
        assert not Upload.objects.exists()


@pytest.mark.django_db
class TestCompleteUpload:
    """Tests for multipart upload completion."""

    def test_complete_finalizes_file(self, user, coordinator, object_store):
        """Test completion sets size and checksum from the stored bytes."""
        init = coordinator.initialize_upload(user, 'report.pdf', 11)
        parts = _transfer(object_store, init, b'hello world')

        result = coordinator.complete_upload(user, init.file_id, init.upload_id, parts)

        file_instance = File.objects.get(id=init.file_id)
        assert result.file.id == file_instance.id
        assert result.storage_key == file_instance.storage_key
        assert file_instance.size == 11
        assert file_instance.checksum == checksum_bytes(b'hello world')
        assert object_store.get(file_instance.storage_key) == b'hello world'
        assert Upload.objects.get(upload_id=init.upload_id).state == UploadState.COMPLETED
        assert AuditLogEntry.objects.filter(
            action='file_uploaded',
            target_id=str(file_instance.id),
        ).exists()

    def test_second_completion_conflicts(self, user, coordinator, object_store):
        """Test an upload cannot be completed twice."""
        init = coordinator.initialize_upload(user, 'report.pdf', 5)
        parts = _transfer(object_store, init, b'hello')
        coordinator.complete_upload(user, init.file_id, init.upload_id, parts)

        with pytest.raises(ConflictError):
            coordinator.complete_upload(user, init.file_id, init.upload_id, parts)

    def test_size_mismatch_discards_upload(self, user, coordinator, object_store):
        """Test fewer bytes than declared drop the file and the object."""
        init = coordinator.initialize_upload(user, 'report.pdf', 10)
        parts = _transfer(object_store, init, b'hello')
        storage_key = File.objects.get(id=init.file_id).storage_key

        with pytest.raises(InvalidInputError, match='declared 10'):
            coordinator.complete_upload(user, init.file_id, init.upload_id, parts)

        assert not File.all_objects.filter(id=init.file_id).exists()
        assert not object_store.exists(storage_key)
        assert Upload.objects.get(upload_id=init.upload_id).state == UploadState.ABORTED

    def test_wrong_tag_keeps_upload_open(self, user, coordinator, object_store):
        """Test a rejected completion can be retried."""
        init = coordinator.initialize_upload(user, 'report.pdf', 5)
        good_parts = _transfer(object_store, init, b'hello')

        with pytest.raises(InvalidInputError):
            coordinator.complete_upload(
                user,
                init.file_id,
                init.upload_id,
                [PartTag(1, 'f' * 32)],
            )

        upload = Upload.objects.get(upload_id=init.upload_id)
        assert upload.state == UploadState.PARTS_IN_FLIGHT

        coordinator.complete_upload(user, init.file_id, init.upload_id, good_parts)
        assert File.objects.get(id=init.file_id).is_finalized

    def test_part_beyond_count_rejected(self, user, coordinator):
        """Test parts past the planned count are invalid."""
        init = coordinator.initialize_upload(user, 'report.pdf', 5)

        with pytest.raises(InvalidInputError, match='exceeds part count'):
            coordinator.complete_upload(
                user,
                init.file_id,
                init.upload_id,
                [PartTag(1, 'a'), PartTag(2, 'b')],
            )

    def test_empty_tag_rejected(self, user, coordinator):
        """Test parts need a tag."""
        init = coordinator.initialize_upload(user, 'report.pdf', 5)

        with pytest.raises(InvalidInputError, match='empty tag'):
            coordinator.complete_upload(
                user,
                init.file_id,
                init.upload_id,
                [PartTag(1, '  ')],
            )

    def test_unknown_upload(self, user, coordinator):
        """Test completing an upload id the file does not have."""
        init = coordinator.initialize_upload(user, 'report.pdf', 5)

        with pytest.raises(ResourceNotFoundError):
            coordinator.complete_upload(
                user,
                init.file_id,
                'unknown',
                [PartTag(1, 'a')],
            )

    def test_other_user_cannot_complete(self, user, other_user, coordinator):
        """Test completion is restricted to the owner."""
        init = coordinator.initialize_upload(user, 'report.pdf', 5)

        with pytest.raises(UnauthorizedError):
            coordinator.complete_upload(
                other_user,
                init.file_id,
                init.upload_id,
                [PartTag(1, 'a')],
            )

    def test_failed_finalize_can_be_retried(self, user, coordinator, object_store):
        """Test a storage outage after assembly does not strand the file."""
        init, parts = _complete_with_storage_outage(coordinator, object_store, user)

        assert File.objects.get(id=init.file_id).checksum is None

        result = coordinator.complete_upload(user, init.file_id, init.upload_id, parts)

        assert result.file.checksum == checksum_bytes(b'hello')
        assert result.file.size == 5
        assert Upload.objects.get(upload_id=init.upload_id).state == UploadState.COMPLETED
        assert AuditLogEntry.objects.filter(action='file_uploaded').count() == 1
        with pytest.raises(ConflictError):
            coordinator.complete_upload(user, init.file_id, init.upload_id, parts)


@pytest.mark.django_db
class TestAbortUpload:
    """Tests for upload abort."""

    def test_abort_removes_file_and_parts(self, user, coordinator, object_store):
        """Test abort drops the provisional record and staged parts."""
        init = coordinator.initialize_upload(user, 'report.pdf', 5)
        _transfer(object_store, init, b'hello')

        coordinator.abort_upload(user, init.file_id, init.upload_id)

        assert not File.all_objects.filter(id=init.file_id).exists()
        assert Upload.objects.get(upload_id=init.upload_id).state == UploadState.ABORTED
        with pytest.raises(ResourceNotFoundError):
            object_store.write_part(init.upload_id, 1, b'late')
        assert AuditLogEntry.objects.filter(action='upload_aborted').exists()

    def test_completed_upload_cannot_be_aborted(self, user, coordinator, object_store):
        """Test abort after completion conflicts and keeps the file."""
        init = coordinator.initialize_upload(user, 'report.pdf', 5)
        parts = _transfer(object_store, init, b'hello')
        coordinator.complete_upload(user, init.file_id, init.upload_id, parts)

        with pytest.raises(ConflictError):
            coordinator.abort_upload(user, init.file_id, init.upload_id)

        assert File.objects.filter(id=init.file_id).exists()

    def test_abort_after_failed_finalize(self, user, coordinator, object_store):
        """Test an assembled but unfinalized upload can still be aborted."""
        init, _ = _complete_with_storage_outage(coordinator, object_store, user)
        storage_key = File.objects.get(id=init.file_id).storage_key

        coordinator.abort_upload(user, init.file_id, init.upload_id)

        assert not File.all_objects.filter(id=init.file_id).exists()
        assert not object_store.exists(storage_key)
        assert Upload.objects.get(upload_id=init.upload_id).state == UploadState.ABORTED

    def test_other_user_cannot_abort(self, user, other_user, coordinator):
        """Test abort is restricted to the owner."""
        init = coordinator.initialize_upload(user, 'report.pdf', 5)

        with pytest.raises(UnauthorizedError):
            coordinator.abort_upload(other_user, init.file_id, init.upload_id)

        assert File.objects.filter(id=init.file_id).exists()


@pytest.mark.django_db
class TestUploadDirect:
    """Tests for single request uploads."""

    def test_upload_direct(self, user, coordinator, object_store, sample_file_content):
        """Test the file is stored and finalized at once."""
        result = coordinator.upload_direct(user, 'test.txt', sample_file_content)

        file_instance = result.file
        assert file_instance.full_name == 'test.txt'
        assert file_instance.mime == 'text/plain'
        assert file_instance.size == len(b'test file content')
        assert file_instance.checksum == checksum_bytes(b'test file content')
        assert object_store.get(result.storage_key) == b'test file content'

    def test_empty_file_rejected(self, user, coordinator):
        """Test empty uploads are invalid."""
        with pytest.raises(InvalidInputError) as exc_info:
            coordinator.upload_direct(user, 'empty.txt', ContentFile(b''))

        assert 'file' in exc_info.value.errors

    def test_database_failure_removes_object(self, user, coordinator, tmp_path):
        """Test the stored object is rolled back if the record fails."""
        with mock.patch.object(
            File.objects,
            'create',
            side_effect=RuntimeError('database down'),
        ):
            with pytest.raises(RuntimeError):
                coordinator.upload_direct(
                    user,
                    'test.txt',
                    ContentFile(b'content'),
                )

        assert not any(path.is_file() for path in tmp_path.rglob('*'))


@pytest.mark.django_db
class TestAbortStaleUploads:
    """Tests for the stale upload sweep."""

    def test_stale_uploads_aborted(self, user, coordinator):
        """Test uploads idle past the cutoff are aborted."""
        stale = coordinator.initialize_upload(user, 'old.pdf', 5)
        fresh = coordinator.initialize_upload(user, 'new.pdf', 5)
        Upload.objects.filter(upload_id=stale.upload_id).update(
            updated_at=timezone.now() - timedelta(days=2),
        )

        aborted = coordinator.abort_stale_uploads(timezone.now() - timedelta(days=1))

        assert aborted == 1
        assert Upload.objects.get(upload_id=stale.upload_id).state == UploadState.ABORTED
        assert not File.all_objects.filter(id=stale.file_id).exists()
        assert Upload.objects.get(upload_id=fresh.upload_id).state == UploadState.INITIATED
        assert File.objects.filter(id=fresh.file_id).exists()

        entry = AuditLogEntry.objects.get(action='upload_aborted')
        assert entry.actor is None
        assert entry.meta['reason'] == 'stale'

    def test_completed_uploads_untouched(self, user, coordinator, object_store):
        """Test finished uploads are never swept."""
        init = coordinator.initialize_upload(user, 'report.pdf', 5)
        parts = _transfer(object_store, init, b'hello')
        coordinator.complete_upload(user, init.file_id, init.upload_id, parts)
        Upload.objects.update(updated_at=timezone.now() - timedelta(days=2))

        assert coordinator.abort_stale_uploads(timezone.now()) == 0
        assert File.objects.get(id=init.file_id).is_finalized

    def test_unfinalized_uploads_swept(self, user, coordinator, object_store):
        """Test uploads stuck after assembly are released by the sweep."""
        init, _ = _complete_with_storage_outage(coordinator, object_store, user)
        storage_key = File.objects.get(id=init.file_id).storage_key
        Upload.objects.update(updated_at=timezone.now() - timedelta(days=2))

        assert coordinator.abort_stale_uploads(timezone.now() - timedelta(days=1)) == 1

        assert not File.all_objects.filter(id=init.file_id).exists()
        assert not object_store.exists(storage_key)
        assert Upload.objects.get(upload_id=init.upload_id).state == UploadState.ABORTED
