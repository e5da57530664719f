"""Thin boto3 wrappers for S3 multipart uploads and presigned URLs."""
