"""REST API serializers for sharing app."""

from typing import ClassVar

from rest_framework import serializers

from server.apps.files.models import File, Folder, ResourceType
from server.apps.sharing.logic.share_operations import build_share_url
from server.apps.sharing.models import ShareLink


class ShareLinkSerializer(serializers.ModelSerializer):
    """Share link as shown to its creator."""

    url = serializers.SerializerMethodField()
    resourceType = serializers.CharField(source='resource_type', read_only=True)  # noqa: N815
    resourceId = serializers.UUIDField(source='resource_id', read_only=True)  # noqa: N815
    expiresAt = serializers.DateTimeField(source='expires_at', read_only=True)  # noqa: N815
    allowDownload = serializers.BooleanField(source='allow_download', read_only=True)  # noqa: N815
    hasPassword = serializers.BooleanField(source='has_password', read_only=True)  # noqa: N815
    createdAt = serializers.DateTimeField(source='created_at', read_only=True)  # noqa: N815

    class Meta:
        model = ShareLink
        fields: ClassVar[list[str]] = [
            'id',
            'url',
            'resourceType',
            'resourceId',
            'expiresAt',
            'allowDownload',
            'hasPassword',
            'createdAt',
        ]
        read_only_fields = fields

    def get_url(self, link: ShareLink) -> str:
        return build_share_url(link)


class ShareCreateSerializer(serializers.Serializer):
    """Request body of `POST /api/shares`."""

    resourceType = serializers.ChoiceField(choices=ResourceType.choices)  # noqa: N815
    resourceId = serializers.UUIDField()  # noqa: N815
    expiresAt = serializers.DateTimeField(required=False, allow_null=True)  # noqa: N815
    password = serializers.CharField(
        required=False,
        allow_blank=True,
        write_only=True,
        trim_whitespace=False,
    )
    allowDownload = serializers.BooleanField(default=True)  # noqa: N815


class ShareListQuerySerializer(serializers.Serializer):
    """Query string of `GET /api/shares`."""

    resourceType = serializers.ChoiceField(choices=ResourceType.choices)  # noqa: N815
    resourceId = serializers.UUIDField()  # noqa: N815


class SharedFileSerializer(serializers.ModelSerializer):
    """File metadata visible to link holders."""

    fullName = serializers.CharField(source='full_name', read_only=True)  # noqa: N815
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
            'createdAt',
            'updatedAt',
        ]
        read_only_fields = fields


class SharedFolderSerializer(serializers.ModelSerializer):
    """Folder metadata visible to link holders."""

    createdAt = serializers.DateTimeField(source='created_at', read_only=True)  # noqa: N815
    updatedAt = serializers.DateTimeField(source='updated_at', read_only=True)  # noqa: N815

    class Meta:
        model = Folder
        fields: ClassVar[list[str]] = [
            'id',
            'name',
            'createdAt',
            'updatedAt',
        ]
        read_only_fields = fields
