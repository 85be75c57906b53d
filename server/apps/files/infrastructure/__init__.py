"""Infrastructure layer for files app.

This package contains integrations with external systems:
- Object store backends (S3-compatible storage, local filesystem)
- Content addressing (storage keys, MIME type, checksum)

Keep infrastructure concerns separate from business logic.
"""
