"""Business logic layer for files app.

This package contains all business logic for files and folders:
- Multipart and direct uploads (upload coordinator)
- Folder tree and file metadata queries and updates
- Trash, restore and purge (lifecycle manager)
- Usage reporting and batch zip downloads

All business logic should be implemented here, separate from
models (data layer) and infrastructure (external systems).

Reference: https://github.com/dry-python
for decoupling business logic from Django views.
"""
