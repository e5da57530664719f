"""
Adapter layer for the Uploads API.

Contains the storage backend contract and its local filesystem and S3
implementations, selected once from settings.
"""
