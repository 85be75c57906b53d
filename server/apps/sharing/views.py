"""REST API views for share links."""

import logging
from typing import Any

from django.http import HttpResponseRedirect, StreamingHttpResponse
from django.utils.http import content_disposition_header
from rest_framework import status
from rest_framework.decorators import (
    api_view,
    authentication_classes,
    permission_classes,
)
from rest_framework.permissions import AllowAny
from rest_framework.request import Request
from rest_framework.response import Response

from server.apps.audit.logic import record
from server.apps.files.exceptions import UnauthorizedError
from server.apps.files.infrastructure.storage import get_object_store
from server.apps.files.logic.archive_operations import stream_archive
from server.apps.files.logic.folder_operations import list_children
from server.apps.files.models import File, Folder, ResourceType
from server.apps.sharing import serializers
from server.apps.sharing.logic import share_operations

_PASSWORD_HEADER = 'X-Share-Password'

logger = logging.getLogger(__name__)


@api_view(['GET', 'POST'])
def share_collection(request: Request) -> Response:
    """Create a share link, or list links of a resource."""
    if request.method == 'POST':
        serializer = serializers.ShareCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        link = share_operations.create_link(
            request.user,
            data['resourceType'],
            data['resourceId'],
            expires_at=data.get('expiresAt'),
            password=data.get('password'),
            allow_download=data['allowDownload'],
        )
        return Response(
            serializers.ShareLinkSerializer(link).data,
            status=status.HTTP_201_CREATED,
        )

    query = serializers.ShareListQuerySerializer(data=request.query_params)
    query.is_valid(raise_exception=True)
    links = share_operations.list_links(
        request.user,
        query.validated_data['resourceType'],
        query.validated_data['resourceId'],
    )
    return Response(serializers.ShareLinkSerializer(links, many=True).data)


@api_view(['DELETE'])
def share_detail(request: Request, link_id: str) -> Response:
    """Revoke a share link."""
    share_operations.revoke_link(request.user, link_id)
    return Response(status=status.HTTP_204_NO_CONTENT)


@api_view(['GET'])
@authentication_classes([])
@permission_classes([AllowAny])
def resolve_share(request: Request, link_id: str) -> Any:
    """Open a share link.

    The password comes from the ``X-Share-Password`` header or the
    ``password`` query parameter. With ``?download=1`` a file link
    redirects to the bytes and a folder link streams a zip archive.
    """
    password = (
        request.headers.get(_PASSWORD_HEADER)
        or request.query_params.get('password')
    )
    shared = share_operations.resolve_link(link_id, password)
    link = shared.link
    resource = shared.resource

    if request.query_params.get('download') in {'1', 'true'}:
        if not link.allow_download:
            raise UnauthorizedError('Downloads are disabled for this link')
        return _download(resource)

    body: dict[str, Any] = {
        'id': str(link.id),
        'resourceType': link.resource_type,
        'allowDownload': link.allow_download,
        'expiresAt': link.expires_at,
    }
    if isinstance(resource, File):
        body['resource'] = serializers.SharedFileSerializer(resource).data
    else:
        listing = list_children(resource.owner, resource.pk)
        body['resource'] = serializers.SharedFolderSerializer(resource).data
        body['children'] = {
            'folders': serializers.SharedFolderSerializer(
                listing.folders,
                many=True,
            ).data,
            'files': serializers.SharedFileSerializer(
                listing.files,
                many=True,
            ).data,
        }
    return Response(body)


def _download(resource: File | Folder) -> HttpResponseRedirect | StreamingHttpResponse:
    store = get_object_store()
    if isinstance(resource, File):
        handle = store.issue_get_access(
            resource.storage_key,
            filename=resource.full_name,
            content_type=resource.mime,
        )
        record(None, 'file_downloaded', ResourceType.FILE, resource.pk, via='share')
        return HttpResponseRedirect(handle.url)

    files = list(
        File.objects.filter(folder=resource, checksum__isnull=False).order_by('name'),
    )
    response = StreamingHttpResponse(
        stream_archive(store, files),
        content_type='application/zip',
    )
    response['Content-Disposition'] = content_disposition_header(
        as_attachment=True,
        filename=f'{resource.name}.zip',
    )
    logger.info('Streaming shared folder %s (%d files)', resource.pk, len(files))
    return response
