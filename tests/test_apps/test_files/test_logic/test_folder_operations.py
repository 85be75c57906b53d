"""Tests for folder operations."""

import uuid
from unittest import mock

import pytest

from server.apps.audit.models import AuditLogEntry
from server.apps.files.exceptions import (
    InvalidInputError,
    ResourceNotFoundError,
    UnauthorizedError,
)
from server.apps.files.logic.folder_operations import (
    create_folder,
    get_folder,
    list_children,
    list_folders,
    update_folder,
    validate_name,
)
from server.apps.files.logic.trash_operations import TrashManager
from server.apps.files.models import Folder, ResourceType


class TestValidateName:
    """Tests for display name validation."""

    def test_strips_whitespace(self):
        """Test surrounding whitespace is removed."""
        assert validate_name('  Docs ') == 'Docs'

    @pytest.mark.parametrize('name', ['', '   ', 'a/b', 'a\\b', 'x' * 256])
    def test_rejects_invalid(self, name):
        """Test empty, slashed and overlong names."""
        with pytest.raises(InvalidInputError) as exc_info:
            validate_name(name, field='title')

        assert 'title' in exc_info.value.errors


@pytest.mark.django_db
class TestCreateFolder:
    """Tests for create_folder."""

    def test_create_root_folder(self, user):
        """Test a folder without parent lives in the root."""
        folder = create_folder(user, 'Docs')

        assert folder.name == 'Docs'
        assert folder.parent is None
        assert folder.owner == user
        assert AuditLogEntry.objects.filter(
            action='folder_created',
            target_id=str(folder.id),
        ).exists()

    def test_create_nested_folder(self, user):
        """Test a folder can be created under another."""
        parent = create_folder(user, 'Docs')

        child = create_folder(user, 'Reports', parent_id=parent.id)

        assert child.parent == parent

    def test_cross_owner_nesting_rejected(self, user, other_user):
        """Test a folder cannot be created in another user's folder."""
        parent = create_folder(other_user, 'Theirs')

        with pytest.raises(InvalidInputError) as exc_info:
            create_folder(user, 'Mine', parent_id=parent.id)

        assert 'parentId' in exc_info.value.errors

    def test_missing_parent_rejected(self, user):
        """Test the parent must exist."""
        with pytest.raises(InvalidInputError):
            create_folder(user, 'Orphan', parent_id=uuid.uuid4())

    def test_trashed_parent_rejected(self, user, object_store):
        """Test a trashed folder cannot receive new folders."""
        parent = create_folder(user, 'Docs')
        TrashManager(object_store).soft_delete(user, parent.id, ResourceType.FOLDER)

        with pytest.raises(InvalidInputError):
            create_folder(user, 'Reports', parent_id=parent.id)


@pytest.mark.django_db
class TestGetFolder:
    """Tests for get_folder."""

    def test_other_user_denied(self, user, other_user):
        """Test another user's folder is unauthorized."""
        folder = create_folder(other_user, 'Theirs')

        with pytest.raises(UnauthorizedError):
            get_folder(user, folder.id)

    def test_missing_folder(self, user):
        """Test unknown ids are not found."""
        with pytest.raises(ResourceNotFoundError):
            get_folder(user, uuid.uuid4())


@pytest.mark.django_db
class TestUpdateFolder:
    """Tests for update_folder."""

    def test_rename(self, user):
        """Test renaming keeps the parent."""
        parent = create_folder(user, 'Docs')
        folder = create_folder(user, 'Old', parent_id=parent.id)

        updated = update_folder(user, folder.id, name='New')

        assert updated.name == 'New'
        assert updated.parent == parent
        assert AuditLogEntry.objects.get(action='folder_updated').meta == {
            'updates': {'name': 'New'},
        }

    def test_move_to_root(self, user):
        """Test a None parent moves the folder to the root."""
        parent = create_folder(user, 'Docs')
        folder = create_folder(user, 'Reports', parent_id=parent.id)

        assert update_folder(user, folder.id, parent_id=None).parent is None

    def test_move_into_itself(self, user):
        """Test a folder cannot become its own parent."""
        folder = create_folder(user, 'Docs')

        with pytest.raises(InvalidInputError):
            update_folder(user, folder.id, parent_id=folder.id)

    def test_move_into_descendant(self, user):
        """Test a folder cannot move below its own subtree."""
        top = create_folder(user, 'Top')
        middle = create_folder(user, 'Middle', parent_id=top.id)
        bottom = create_folder(user, 'Bottom', parent_id=middle.id)

        with pytest.raises(InvalidInputError):
            update_folder(user, top.id, parent_id=bottom.id)

    def test_move_into_foreign_folder(self, user, other_user):
        """Test cross-owner moves are invalid input."""
        folder = create_folder(user, 'Mine')
        foreign = create_folder(other_user, 'Theirs')

        with pytest.raises(InvalidInputError):
            update_folder(user, folder.id, parent_id=foreign.id)

    def test_other_user_denied(self, user, other_user):
        """Test another user cannot rename the folder."""
        folder = create_folder(user, 'Mine')

        with pytest.raises(UnauthorizedError):
            update_folder(other_user, folder.id, name='Stolen')

    def test_rename_keeps_concurrent_trash(self, user, object_store):
        """Test a folder trashed during a rename stays in the trash."""
        folder = create_folder(user, 'Docs')

        def trash_first(name, field='name'):
            TrashManager(object_store).soft_delete(user, folder.id, ResourceType.FOLDER)
            return name

        with mock.patch(
            'server.apps.files.logic.folder_operations.validate_name',
            side_effect=trash_first,
        ):
            update_folder(user, folder.id, name='Archive')

        stored = Folder.all_objects.get(id=folder.id)
        assert stored.is_trashed
        assert stored.name == 'Archive'


@pytest.mark.django_db
class TestListFolders:
    """Tests for list_folders and list_children."""

    def test_root_listing_ordered_and_isolated(self, user, other_user):
        """Test root listing has only the user's root folders, by name."""
        create_folder(user, 'b')
        create_folder(user, 'a')
        parent = create_folder(user, 'c')
        create_folder(user, 'nested', parent_id=parent.id)
        create_folder(other_user, 'theirs')

        assert [folder.name for folder in list_folders(user)] == ['a', 'b', 'c']

    def test_listing_skips_trashed(self, user, object_store):
        """Test trashed folders are never listed."""
        create_folder(user, 'kept')
        trashed = create_folder(user, 'trashed')
        TrashManager(object_store).soft_delete(user, trashed.id, ResourceType.FOLDER)

        assert [folder.name for folder in list_folders(user)] == ['kept']

    def test_foreign_parent_is_empty(self, user, other_user):
        """Test listing under another user's folder leaks nothing."""
        parent = create_folder(other_user, 'Theirs')
        create_folder(other_user, 'secret', parent_id=parent.id)

        assert not list_folders(user, parent.id).exists()

    def test_trashed_parent_is_empty(self, user, object_store):
        """Test children of a trashed folder are not listed under it."""
        parent = create_folder(user, 'Docs')
        create_folder(user, 'Reports', parent_id=parent.id)
        TrashManager(object_store).soft_delete(user, parent.id, ResourceType.FOLDER)

        assert not list_folders(user, parent.id).exists()

    def test_children(self, user, make_file):
        """Test children lists both kinds of direct children."""
        parent = create_folder(user, 'Docs')
        sub = create_folder(user, 'Reports', parent_id=parent.id)
        file_instance = make_file(user, 'notes.txt', folder=parent)
        make_file(user, 'root.txt')

        listing = list_children(user, parent.id)

        assert listing.folders == [sub]
        assert listing.files == [file_instance]
