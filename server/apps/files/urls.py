"""URL patterns for files app."""

from django.urls import path

from server.apps.files import views

app_name = 'files'

urlpatterns = [
    # Uploads
    path('api/upload/init', views.upload_init, name='upload-init'),
    path('api/upload/complete', views.upload_complete, name='upload-complete'),
    path('api/upload/abort', views.upload_abort, name='upload-abort'),
    path('api/upload/local', views.upload_local, name='upload-local'),

    # Files
    path('api/files', views.file_collection, name='file-list'),
    path('api/files/<str:file_id>', views.file_detail, name='file-detail'),
    path(
        'api/files/<str:file_id>/download',
        views.file_download,
        name='file-download',
    ),
    path('api/download/batch', views.batch_download, name='batch-download'),
    path('api/search', views.search, name='search'),

    # Folders
    path('api/folders', views.folder_collection, name='folder-list'),
    path('api/folders/<str:folder_id>', views.folder_detail, name='folder-detail'),
    path(
        'api/folders/<str:folder_id>/children',
        views.folder_children,
        name='folder-children',
    ),

    # Trash
    path('api/trash', views.trash, name='trash'),
    path('api/trash/restore', views.trash_restore, name='trash-restore'),
    path('api/trash/purge', views.trash_purge, name='trash-purge'),

    # Account
    path('api/me/usage', views.usage, name='usage'),

    # Local object store transfer handles
    path(
        'storage/local/<str:token>',
        views.local_transfer,
        name='local-transfer',
    ),
]
