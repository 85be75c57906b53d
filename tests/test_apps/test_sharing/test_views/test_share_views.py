"""Tests for the share link REST API."""

import io
import uuid
import zipfile
from datetime import timedelta

import pytest
from django.utils import timezone
from rest_framework import status

from server.apps.files.models import Folder, ResourceType
from server.apps.sharing.logic.share_operations import create_link
from server.apps.sharing.models import ShareLink


@pytest.mark.django_db
class TestShareManagementApi:
    """Tests for creating, listing and revoking links."""

    def test_create_link(self, api_client, user, make_file, settings):
        """Test a link is created with its public URL."""
        settings.SHARE_BASE_URL = 'https://drive.example.com'
        file_instance = make_file(user)

        response = api_client.post(
            '/api/shares',
            {
                'resourceType': 'file',
                'resourceId': str(file_instance.id),
                'password': 's3cret',
                'allowDownload': False,
            },
            format='json',
        )

        assert response.status_code == status.HTTP_201_CREATED
        body = response.json()
        assert body['url'] == f'https://drive.example.com/s/{body["id"]}'
        assert body['hasPassword'] is True
        assert body['allowDownload'] is False
        assert body['resourceId'] == str(file_instance.id)
        assert 'password' not in body

    def test_create_requires_login(self, anonymous_client):
        """Test anonymous users cannot create links."""
        response = anonymous_client.post(
            '/api/shares',
            {'resourceType': 'file', 'resourceId': str(uuid.uuid4())},
            format='json',
        )

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_create_invalid_body(self, api_client):
        """Test a malformed body is rejected with field errors."""
        response = api_client.post(
            '/api/shares',
            {'resourceType': 'album', 'resourceId': 'nope'},
            format='json',
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()['code'] == 'invalid_input'
        assert set(response.json()['errors']) == {'resourceType', 'resourceId'}

    def test_create_past_expiry(self, api_client, user, make_file):
        """Test an expiry in the past is rejected."""
        file_instance = make_file(user)

        response = api_client.post(
            '/api/shares',
            {
                'resourceType': 'file',
                'resourceId': str(file_instance.id),
                'expiresAt': (timezone.now() - timedelta(hours=1)).isoformat(),
            },
            format='json',
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert 'expiresAt' in response.json()['errors']

    def test_create_foreign_resource(self, api_client, other_user, make_file):
        """Test sharing another user's file is forbidden."""
        file_instance = make_file(other_user)

        response = api_client.post(
            '/api/shares',
            {'resourceType': 'file', 'resourceId': str(file_instance.id)},
            format='json',
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_list_links(self, api_client, user, make_file):
        """Test links of a resource are listed."""
        file_instance = make_file(user)
        link = create_link(user, ResourceType.FILE, file_instance.id)

        response = api_client.get(
            '/api/shares',
            {'resourceType': 'file', 'resourceId': str(file_instance.id)},
        )

        assert response.status_code == status.HTTP_200_OK
        assert [item['id'] for item in response.json()] == [str(link.id)]

    def test_revoke_link(self, api_client, user, make_file):
        """Test the creator can revoke a link."""
        file_instance = make_file(user)
        link = create_link(user, ResourceType.FILE, file_instance.id)

        response = api_client.delete(f'/api/shares/{link.id}')

        assert response.status_code == status.HTTP_204_NO_CONTENT
        assert not ShareLink.objects.exists()

    def test_revoke_unknown_link(self, api_client):
        """Test revoking an unknown link is not found."""
        response = api_client.delete(f'/api/shares/{uuid.uuid4()}')

        assert response.status_code == status.HTTP_404_NOT_FOUND


@pytest.mark.django_db
class TestResolveShareApi:
    """Tests for opening links anonymously."""

    def test_open_file_link(self, anonymous_client, user, make_file):
        """Test a file link shows the file metadata."""
        file_instance = make_file(user, 'report.pdf')
        link = create_link(user, ResourceType.FILE, file_instance.id)

        response = anonymous_client.get(f'/s/{link.id}')

        assert response.status_code == status.HTTP_200_OK
        body = response.json()
        assert body['resourceType'] == 'file'
        assert body['resource']['fullName'] == 'report.pdf'
        assert 'storage_key' not in body['resource']

    def test_open_folder_link(self, anonymous_client, user, make_file):
        """Test a folder link lists the folder contents."""
        folder = Folder.objects.create(name='Docs', owner=user)
        Folder.objects.create(name='Sub', owner=user, parent=folder)
        make_file(user, 'a.txt', folder=folder)
        link = create_link(user, ResourceType.FOLDER, folder.id)

        response = anonymous_client.get(f'/s/{link.id}')

        body = response.json()
        assert body['resource']['name'] == 'Docs'
        assert [item['name'] for item in body['children']['folders']] == ['Sub']
        assert [item['fullName'] for item in body['children']['files']] == ['a.txt']

    def test_unknown_link(self, anonymous_client):
        """Test unknown links answer 404."""
        response = anonymous_client.get(f'/s/{uuid.uuid4()}')

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.json()['code'] == 'not_found'

    def test_expired_link(self, anonymous_client, user, make_file):
        """Test expired links answer 410."""
        file_instance = make_file(user)
        link = create_link(user, ResourceType.FILE, file_instance.id, password='s3cret')
        ShareLink.objects.filter(id=link.id).update(
            expires_at=timezone.now() - timedelta(seconds=1),
        )

        response = anonymous_client.get(
            f'/s/{link.id}',
            HTTP_X_SHARE_PASSWORD='s3cret',
        )

        assert response.status_code == status.HTTP_410_GONE
        assert response.json()['code'] == 'expired'

    def test_password_required(self, anonymous_client, user, make_file):
        """Test protected links need the right password."""
        file_instance = make_file(user)
        link = create_link(user, ResourceType.FILE, file_instance.id, password='s3cret')

        missing = anonymous_client.get(f'/s/{link.id}')
        wrong = anonymous_client.get(f'/s/{link.id}', {'password': 'guess'})
        header = anonymous_client.get(
            f'/s/{link.id}',
            HTTP_X_SHARE_PASSWORD='s3cret',
        )
        query = anonymous_client.get(f'/s/{link.id}', {'password': 's3cret'})

        assert missing.status_code == status.HTTP_401_UNAUTHORIZED
        assert missing.json()['code'] == 'wrong_password'
        assert wrong.status_code == status.HTTP_401_UNAUTHORIZED
        assert header.status_code == status.HTTP_200_OK
        assert query.status_code == status.HTTP_200_OK

    def test_download_file(self, anonymous_client, user, make_file):
        """Test a file link redirects to the bytes."""
        file_instance = make_file(user, 'report.pdf', b'pdf bytes')
        link = create_link(user, ResourceType.FILE, file_instance.id)

        response = anonymous_client.get(f'/s/{link.id}', {'download': '1'})

        assert response.status_code == status.HTTP_302_FOUND
        transfer = anonymous_client.get(response['Location'])
        assert b''.join(transfer.streaming_content) == b'pdf bytes'

    def test_download_folder(self, anonymous_client, user, make_file):
        """Test a folder link streams its finalized files as a zip."""
        folder = Folder.objects.create(name='Docs', owner=user)
        make_file(user, 'b.txt', b'second', folder=folder)
        make_file(user, 'a.txt', b'first', folder=folder)
        make_file(user, 'outside.txt')
        link = create_link(user, ResourceType.FOLDER, folder.id)

        response = anonymous_client.get(f'/s/{link.id}', {'download': 'true'})

        assert response.status_code == status.HTTP_200_OK
        assert response['Content-Type'] == 'application/zip'
        assert 'Docs.zip' in response['Content-Disposition']
        archive = zipfile.ZipFile(
            io.BytesIO(b''.join(response.streaming_content)),
        )
        assert archive.namelist() == ['a.txt', 'b.txt']
        assert archive.read('a.txt') == b'first'

    def test_download_disabled(self, anonymous_client, user, make_file):
        """Test links can show metadata but refuse downloads."""
        file_instance = make_file(user)
        link = create_link(
            user,
            ResourceType.FILE,
            file_instance.id,
            allow_download=False,
        )

        metadata = anonymous_client.get(f'/s/{link.id}')
        download = anonymous_client.get(f'/s/{link.id}', {'download': '1'})

        assert metadata.status_code == status.HTTP_200_OK
        assert download.status_code == status.HTTP_403_FORBIDDEN

    def test_trashed_target(self, api_client, anonymous_client, user, make_file):
        """Test links to trashed files answer 404."""
        file_instance = make_file(user)
        link = create_link(user, ResourceType.FILE, file_instance.id)
        api_client.delete(f'/api/files/{file_instance.id}')

        response = anonymous_client.get(f'/s/{link.id}')

        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_provisional_file(self, anonymous_client, user, make_provisional_file):
        """Test links to unfinished uploads answer 404 for metadata and bytes."""
        file_instance = make_provisional_file(user, 'pending.bin', size=10)
        link = create_link(user, ResourceType.FILE, file_instance.id)

        metadata = anonymous_client.get(f'/s/{link.id}')
        download = anonymous_client.get(f'/s/{link.id}', {'download': '1'})

        assert metadata.status_code == status.HTTP_404_NOT_FOUND
        assert 'size' not in metadata.json()
        assert download.status_code == status.HTTP_404_NOT_FOUND
