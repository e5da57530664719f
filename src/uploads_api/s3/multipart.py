"""Functions for S3 multipart uploads and presigned URLs."""

from typing import Dict, List, Optional, Tuple

from botocore.exceptions import ClientError

try:
    from mypy_boto3_s3 import S3Client
except ImportError:
    ...

MISSING_UPLOAD_CODES = {"NoSuchUpload", "NoSuchKey", "404"}


def is_missing_error(err: ClientError) -> bool:
    """True when S3 reports that the upload or object does not exist."""
    return err.response.get("Error", {}).get("Code") in MISSING_UPLOAD_CODES


def create_multipart_upload(
    bucket_name: str,
    object_key: str,
    s3_client: "S3Client",
    content_type: Optional[str] = None,
) -> str:
    """
    Start a multipart upload and return its upload id.

    :param bucket_name: The name of the S3 bucket.
    :param object_key: path to the object in the S3 bucket.
    :param s3_client: A boto3 S3 client.
    :param content_type: The MIME type of the assembled object.
    """
    response = s3_client.create_multipart_upload(
        Bucket=bucket_name,
        Key=object_key,
        ContentType=content_type or "application/octet-stream",
    )
    return response["UploadId"]


def generate_upload_part_url(
    bucket_name: str,
    object_key: str,
    upload_id: str,
    part_number: int,
    expires_in: int,
    s3_client: "S3Client",
) -> str:
    """Presign a PUT for exactly one part of one multipart upload."""
    return s3_client.generate_presigned_url(
        ClientMethod="upload_part",
        Params={
            "Bucket": bucket_name,
            "Key": object_key,
            "UploadId": upload_id,
            "PartNumber": part_number,
        },
        ExpiresIn=expires_in,
        HttpMethod="PUT",
    )


def list_uploaded_parts(
    bucket_name: str,
    object_key: str,
    upload_id: str,
    s3_client: "S3Client",
) -> Dict[int, str]:
    """Return ``{part_number: etag}`` for every part S3 has received."""
    parts: Dict[int, str] = {}
    kwargs = {"Bucket": bucket_name, "Key": object_key, "UploadId": upload_id}
    while True:
        response = s3_client.list_parts(**kwargs)
        for part in response.get("Parts", []):
            parts[part["PartNumber"]] = part["ETag"]
        if not response.get("IsTruncated"):
            return parts
        kwargs["PartNumberMarker"] = response["NextPartNumberMarker"]


def complete_multipart_upload(
    bucket_name: str,
    object_key: str,
    upload_id: str,
    parts: List[Tuple[int, str]],
    s3_client: "S3Client",
) -> Optional[str]:
    """
    Complete a multipart upload and return the object's location.

    :param parts: ``(part_number, etag)`` pairs, already in ascending order.
    """
    response = s3_client.complete_multipart_upload(
        Bucket=bucket_name,
        Key=object_key,
        UploadId=upload_id,
        MultipartUpload={
            "Parts": [{"PartNumber": part_number, "ETag": etag} for part_number, etag in parts]
        },
    )
    return response.get("Location")


def abort_multipart_upload(
    bucket_name: str,
    object_key: str,
    upload_id: str,
    s3_client: "S3Client",
) -> bool:
    """Abort a multipart upload. Returns False if S3 no longer knows it."""
    try:
        s3_client.abort_multipart_upload(Bucket=bucket_name, Key=object_key, UploadId=upload_id)
        return True
    except ClientError as err:
        if is_missing_error(err):
            return False
        raise


def fetch_object_size(bucket_name: str, object_key: str, s3_client: "S3Client") -> Optional[int]:
    """Return the object's size in bytes, or None if it does not exist."""
    try:
        response = s3_client.head_object(Bucket=bucket_name, Key=object_key)
    except ClientError as err:
        if is_missing_error(err):
            return None
        raise
    return response["ContentLength"]


def generate_download_url(
    bucket_name: str,
    object_key: str,
    expires_in: int,
    s3_client: "S3Client",
    file_name: Optional[str] = None,
) -> str:
    """Presign a GET for a completed object."""
    params = {"Bucket": bucket_name, "Key": object_key}
    if file_name:
        params["ResponseContentDisposition"] = f'attachment; filename="{file_name}"'
    return s3_client.generate_presigned_url(
        ClientMethod="get_object",
        Params=params,
        ExpiresIn=expires_in,
    )
