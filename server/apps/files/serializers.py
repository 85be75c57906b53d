"""REST API serializers for files app.

Field names are camelCase to match the JSON the web client speaks.
"""

from typing import ClassVar

from rest_framework import serializers

from server.apps.files.models import File, Folder, ResourceType

_FILENAME_MAX_LENGTH = 1024


class FolderSerializer(serializers.ModelSerializer):
    """Folder metadata."""

    parentId = serializers.UUIDField(source='parent_id', read_only=True)  # noqa: N815
    ownerId = serializers.IntegerField(source='owner_id', read_only=True)  # noqa: N815
    isDeleted = serializers.BooleanField(source='is_trashed', read_only=True)  # noqa: N815
    deletedAt = serializers.DateTimeField(source='deleted_at', read_only=True)  # noqa: N815
    createdAt = serializers.DateTimeField(source='created_at', read_only=True)  # noqa: N815
    updatedAt = serializers.DateTimeField(source='updated_at', read_only=True)  # noqa: N815

    class Meta:
        model = Folder
        fields: ClassVar[list[str]] = [
            'id',
            'name',
            'parentId',
            'ownerId',
            'isDeleted',
            'deletedAt',
            'createdAt',
            'updatedAt',
        ]
        read_only_fields = fields


class FileSerializer(serializers.ModelSerializer):
    """File metadata. `checksum` is null while an upload is in progress."""

    fullName = serializers.CharField(source='full_name', read_only=True)  # noqa: N815
    storageKey = serializers.CharField(source='storage_key', read_only=True)  # noqa: N815
    folderId = serializers.UUIDField(source='folder_id', read_only=True)  # noqa: N815
    ownerId = serializers.IntegerField(source='owner_id', read_only=True)  # noqa: N815
    isDeleted = serializers.BooleanField(source='is_trashed', read_only=True)  # noqa: N815
    deletedAt = serializers.DateTimeField(source='deleted_at', read_only=True)  # noqa: N815
    createdAt = serializers.DateTimeField(source='created_at', read_only=True)  # noqa: N815
    updatedAt = serializers.DateTimeField(source='updated_at', read_only=True)  # noqa: N815

    class Meta:
        model = File
        fields: ClassVar[list[str]] = [
            'id',
            'name',
            'ext',
            'fullName',
            'mime',
            'size',
            'storageKey',
            'checksum',
            'folderId',
            'ownerId',
            'isDeleted',
            'deletedAt',
            'createdAt',
            'updatedAt',
        ]
        read_only_fields = fields


class UploadInitSerializer(serializers.Serializer):
    """Request body of `POST /api/upload/init`."""

    filename = serializers.CharField(max_length=_FILENAME_MAX_LENGTH)
    size = serializers.IntegerField(min_value=1)
    folderId = serializers.UUIDField(required=False, allow_null=True)  # noqa: N815


class PartSerializer(serializers.Serializer):
    """One uploaded part: its number and the tag the store returned."""

    partNumber = serializers.IntegerField(min_value=1)  # noqa: N815
    partTag = serializers.CharField()  # noqa: N815


class UploadCompleteSerializer(serializers.Serializer):
    """Request body of `POST /api/upload/complete`."""

    fileId = serializers.UUIDField()  # noqa: N815
    uploadId = serializers.CharField()  # noqa: N815
    parts = PartSerializer(many=True, allow_empty=False)


class UploadAbortSerializer(serializers.Serializer):
    """Request body of `POST /api/upload/abort`."""

    fileId = serializers.UUIDField()  # noqa: N815
    uploadId = serializers.CharField()  # noqa: N815


class DirectUploadSerializer(serializers.Serializer):
    """Multipart form of `POST /api/upload/local`."""

    file = serializers.FileField(allow_empty_file=False)
    folderId = serializers.UUIDField(required=False, allow_null=True)  # noqa: N815


class FileUpdateSerializer(serializers.Serializer):
    """Rename and/or move a file. Omitted fields stay unchanged."""

    name = serializers.CharField(required=False, max_length=255)
    folderId = serializers.UUIDField(required=False, allow_null=True)  # noqa: N815


class FolderCreateSerializer(serializers.Serializer):
    """Request body of `POST /api/folders`."""

    name = serializers.CharField(max_length=255)
    parentId = serializers.UUIDField(required=False, allow_null=True)  # noqa: N815


class FolderUpdateSerializer(serializers.Serializer):
    """Rename and/or move a folder. Omitted fields stay unchanged."""

    name = serializers.CharField(required=False, max_length=255)
    parentId = serializers.UUIDField(required=False, allow_null=True)  # noqa: N815


class SearchQuerySerializer(serializers.Serializer):
    """Query string of `GET /api/search`."""

    q = serializers.CharField()
    type = serializers.CharField(required=False)
    ext = serializers.CharField(required=False)


class BatchDownloadSerializer(serializers.Serializer):
    """Request body of `POST /api/download/batch`."""

    fileIds = serializers.ListField(  # noqa: N815
        child=serializers.UUIDField(),
        allow_empty=False,
    )


class TrashActionSerializer(serializers.Serializer):
    """Request body of the restore and purge endpoints."""

    ids = serializers.ListField(
        child=serializers.UUIDField(),
        allow_empty=False,
    )
    type = serializers.ChoiceField(choices=ResourceType.choices)
