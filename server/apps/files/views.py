"""REST API views for files, folders, uploads and trash.

Views only translate HTTP to calls into ``logic`` and back; every
business rule lives there. Errors are rendered by
:func:`server.apps.files.exceptions.api_exception_handler`.
"""

import hashlib
import logging
from typing import Any

from django.http import HttpResponseRedirect, StreamingHttpResponse
from django.utils import timezone
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

from server.apps.files import serializers
from server.apps.files.exceptions import ResourceNotFoundError
from server.apps.files.infrastructure.storage import (
    LocalObjectStore,
    PartTag,
    TransferHandle,
    get_object_store,
)
from server.apps.files.logic import (
    file_operations,
    folder_operations,
    quota_operations,
)
from server.apps.files.logic.archive_operations import stream_archive
from server.apps.files.logic.trash_operations import TrashManager
from server.apps.files.logic.upload_operations import UploadCoordinator
from server.apps.files.models import File, ResourceType

logger = logging.getLogger(__name__)


def _validated(serializer_class: type, data: Any) -> dict[str, Any]:
    serializer = serializer_class(data=data)
    serializer.is_valid(raise_exception=True)
    return serializer.validated_data


def _handle_url(request: Request, handle: TransferHandle) -> str:
    # Local handles are paths on this server
    return request.build_absolute_uri(handle.url)


def _coordinator() -> UploadCoordinator:
    return UploadCoordinator.from_settings(get_object_store())


# Uploads


@api_view(['POST'])
def upload_init(request: Request) -> Response:
    """Start a multipart upload and return one URL per part."""
    data = _validated(serializers.UploadInitSerializer, request.data)
    init = _coordinator().initialize_upload(
        request.user,
        data['filename'],
        data['size'],
        folder_id=data.get('folderId'),
    )
    return Response({
        'uploadId': init.upload_id,
        'fileId': str(init.file_id),
        'partSize': init.part_size,
        'partCount': init.part_count,
        'presignedUrls': [_handle_url(request, handle) for handle in init.handles],
        'expiresAt': init.handles[0].expires_at if init.handles else None,
    })


@api_view(['POST'])
def upload_complete(request: Request) -> Response:
    """Assemble uploaded parts and finalize the file."""
    data = _validated(serializers.UploadCompleteSerializer, request.data)
    parts = [
        PartTag(part['partNumber'], part['partTag'])
        for part in data['parts']
    ]
    result = _coordinator().complete_upload(
        request.user,
        data['fileId'],
        data['uploadId'],
        parts,
    )
    return Response({
        'fileId': str(result.file.id),
        'storageKey': result.storage_key,
    })


@api_view(['POST'])
def upload_abort(request: Request) -> Response:
    """Abort a multipart upload and drop its provisional file."""
    data = _validated(serializers.UploadAbortSerializer, request.data)
    _coordinator().abort_upload(request.user, data['fileId'], data['uploadId'])
    return Response(status=status.HTTP_204_NO_CONTENT)


@api_view(['POST'])
def upload_local(request: Request) -> Response:
    """Upload a whole file in one multipart form request."""
    data = _validated(serializers.DirectUploadSerializer, request.data)
    uploaded = data['file']
    result = _coordinator().upload_direct(
        request.user,
        uploaded.name,
        uploaded,
        folder_id=data.get('folderId'),
    )
    return Response(
        {
            'fileId': str(result.file.id),
            'storageKey': result.storage_key,
        },
        status=status.HTTP_201_CREATED,
    )


# Files


@api_view(['GET'])
def file_collection(request: Request) -> Response:
    """List files directly in `?folder=`, or in the root."""
    folder_id = request.query_params.get('folder') or None
    files = file_operations.list_files(request.user, folder_id)
    return Response(serializers.FileSerializer(files, many=True).data)


@api_view(['GET', 'PATCH', 'DELETE'])
def file_detail(request: Request, file_id: str) -> Response:
    """Get, rename/move, or trash a file."""
    if request.method == 'DELETE':
        TrashManager(get_object_store()).soft_delete(
            request.user,
            file_id,
            ResourceType.FILE,
        )
        return Response(status=status.HTTP_204_NO_CONTENT)

    if request.method == 'PATCH':
        data = _validated(serializers.FileUpdateSerializer, request.data)
        file_instance = file_operations.update_file(
            request.user,
            file_id,
            name=data.get('name'),
            folder_id=data.get('folderId', folder_operations.UNCHANGED),
        )
    else:
        file_instance = file_operations.get_file(request.user, file_id)
    return Response(serializers.FileSerializer(file_instance).data)


@api_view(['GET'])
def file_download(request: Request, file_id: str) -> HttpResponseRedirect:
    """Redirect to a short-lived download URL for the file."""
    handle = file_operations.issue_download(
        get_object_store(),
        request.user,
        file_id,
    )
    return HttpResponseRedirect(_handle_url(request, handle))


@api_view(['POST'])
def batch_download(request: Request) -> StreamingHttpResponse:
    """Stream several files as one zip archive.

    Ids that are unknown, trashed, provisional or owned by someone else
    are skipped.
    """
    data = _validated(serializers.BatchDownloadSerializer, request.data)
    files = list(
        File.objects.filter(
            id__in=data['fileIds'],
            owner=request.user,
            checksum__isnull=False,
        ).order_by('name'),
    )
    if not files:
        raise ResourceNotFoundError('No valid files found')

    archive_name = f'files-{timezone.now():%Y%m%d%H%M%S}.zip'
    response = StreamingHttpResponse(
        stream_archive(get_object_store(), files),
        content_type='application/zip',
    )
    response['Content-Disposition'] = content_disposition_header(
        as_attachment=True,
        filename=archive_name,
    )
    logger.info(
        'Streaming archive of %d files for user %s',
        len(files),
        request.user.pk,
    )
    return response


@api_view(['GET'])
def search(request: Request) -> Response:
    """Search the user's files by name, category and extension."""
    data = _validated(serializers.SearchQuerySerializer, request.query_params)
    files = file_operations.search_files(
        request.user,
        data['q'],
        file_type=data.get('type'),
        ext=data.get('ext'),
    )
    return Response(serializers.FileSerializer(files, many=True).data)


# Folders


@api_view(['GET', 'POST'])
def folder_collection(request: Request) -> Response:
    """List folders under `?parent=` or create a folder."""
    if request.method == 'POST':
        data = _validated(serializers.FolderCreateSerializer, request.data)
        folder = folder_operations.create_folder(
            request.user,
            data['name'],
            parent_id=data.get('parentId'),
        )
        return Response(
            serializers.FolderSerializer(folder).data,
            status=status.HTTP_201_CREATED,
        )

    parent_id = request.query_params.get('parent') or None
    folders = folder_operations.list_folders(request.user, parent_id)
    return Response(serializers.FolderSerializer(folders, many=True).data)


@api_view(['GET', 'PATCH', 'DELETE'])
def folder_detail(request: Request, folder_id: str) -> Response:
    """Get, rename/move, or trash a folder."""
    if request.method == 'DELETE':
        TrashManager(get_object_store()).soft_delete(
            request.user,
            folder_id,
            ResourceType.FOLDER,
        )
        return Response(status=status.HTTP_204_NO_CONTENT)

    if request.method == 'PATCH':
        data = _validated(serializers.FolderUpdateSerializer, request.data)
        folder = folder_operations.update_folder(
            request.user,
            folder_id,
            name=data.get('name'),
            parent_id=data.get('parentId', folder_operations.UNCHANGED),
        )
    else:
        folder = folder_operations.get_folder(request.user, folder_id)
    return Response(serializers.FolderSerializer(folder).data)


@api_view(['GET'])
def folder_children(request: Request, folder_id: str) -> Response:
    """List folders and files directly inside a folder."""
    folder_operations.get_folder(request.user, folder_id)
    listing = folder_operations.list_children(request.user, folder_id)
    return Response({
        'folders': serializers.FolderSerializer(listing.folders, many=True).data,
        'files': serializers.FileSerializer(listing.files, many=True).data,
    })


# Trash


@api_view(['GET', 'DELETE'])
def trash(request: Request) -> Response:
    """List the trash, or empty it."""
    manager = TrashManager(get_object_store())
    if request.method == 'DELETE':
        purged = manager.empty_trash(request.user)
        return Response({'purged': purged})

    listing = manager.list_trash(request.user)
    return Response({
        'files': serializers.FileSerializer(listing.files, many=True).data,
        'folders': serializers.FolderSerializer(listing.folders, many=True).data,
    })


@api_view(['POST'])
def trash_restore(request: Request) -> Response:
    """Restore files or folders from trash."""
    data = _validated(serializers.TrashActionSerializer, request.data)
    manager = TrashManager(get_object_store())
    for resource_id in data['ids']:
        manager.restore(request.user, resource_id, data['type'])
    return Response(status=status.HTTP_204_NO_CONTENT)


@api_view(['POST'])
def trash_purge(request: Request) -> Response:
    """Permanently delete files or folders."""
    data = _validated(serializers.TrashActionSerializer, request.data)
    manager = TrashManager(get_object_store())
    for resource_id in data['ids']:
        manager.purge(request.user, resource_id, data['type'])
    return Response(status=status.HTTP_204_NO_CONTENT)


# Account


@api_view(['GET'])
def usage(request: Request) -> Response:
    """Report the user's storage usage."""
    report = quota_operations.get_usage(request.user)
    return Response({
        'totalSize': report.total_bytes,
        'totalFiles': report.total_files,
        'quota': report.quota_bytes,
        'percentage': report.percentage,
    })


# Local object store transfer handles


@api_view(['GET', 'PUT'])
@authentication_classes([])
@permission_classes([AllowAny])
def local_transfer(request: Request, token: str) -> Any:
    """Serve transfer handles issued by the local object store.

    The signed token is the only credential, as with presigned URLs.
    """
    store = get_object_store()
    if not isinstance(store, LocalObjectStore):
        raise ResourceNotFoundError('Unknown transfer handle')
    grant = store.resolve_handle(token)

    if request.method == 'GET':
        if grant.operation != 'get':
            raise ResourceNotFoundError('Unknown transfer handle')
        size = store.size(grant.key)
        response = StreamingHttpResponse(
            store.iter_chunks(grant.key),
            content_type=grant.content_type or 'application/octet-stream',
        )
        response['Content-Length'] = str(size)
        if grant.filename:
            response['Content-Disposition'] = content_disposition_header(
                as_attachment=True,
                filename=grant.filename,
            )
        return response

    body = request.body
    if grant.operation == 'put':
        store.put(grant.key, body, grant.content_type)
        tag = hashlib.md5(body, usedforsecurity=False).hexdigest()
    elif grant.operation == 'part':
        tag = store.write_part(grant.upload_id, grant.part_number, body)
        _coordinator().mark_parts_in_flight(grant.upload_id)
    else:
        raise ResourceNotFoundError('Unknown transfer handle')

    return Response(status=status.HTTP_200_OK, headers={'ETag': f'"{tag}"'})
