"""Chunked large-file uploads with interchangeable local and S3 storage."""
