"""
Storage Service

S3-compatible object storage client for the uploads and outputs buckets.
"""

import io
import logging

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from ..config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()


class StorageError(Exception):
    """Raised when an object storage operation fails."""


class StorageService:
    """
    S3-compatible storage service.

    Handles uploads, downloads, listings and presigned URL generation.
    Every call names its bucket; originals live in the uploads bucket and
    generated previews/models in the outputs bucket.
    """

    def __init__(self, client=None):
        """Initialize S3 client."""
        if client is None:
            endpoint_url = f"{'https' if settings.s3_secure else 'http'}://{settings.s3_endpoint}"
            client = boto3.client(
                "s3",
                endpoint_url=endpoint_url,
                aws_access_key_id=settings.s3_access_key,
                aws_secret_access_key=settings.s3_secret_key,
                config=Config(signature_version="s3v4"),
                region_name=settings.s3_region,
            )
        self.client = client
        self.uploads_bucket = settings.uploads_bucket
        self.outputs_bucket = settings.outputs_bucket

    def ensure_buckets(self):
        """Create the uploads and outputs buckets if they don't exist."""
        for bucket in (self.uploads_bucket, self.outputs_bucket):
            try:
                self.client.head_bucket(Bucket=bucket)
                logger.info("Bucket '%s' exists", bucket)
            except ClientError as e:
                error_code = e.response.get("Error", {}).get("Code")
                if error_code in ("404", "NoSuchBucket"):
                    logger.info("Creating bucket '%s'", bucket)
                    self.client.create_bucket(Bucket=bucket)
                else:
                    logger.error("Error checking bucket %s: %s", bucket, e)
                    raise StorageError(str(e)) from e

    def upload_bytes(
        self,
        bucket: str,
        key: str,
        data: bytes,
        content_type: str = "application/octet-stream",
    ) -> str:
        """
        Upload bytes, overwriting any existing object.

        Args:
            bucket: Target bucket
            key: Object key (path)
            data: Bytes to upload
            content_type: MIME type

        Returns:
            The key of the uploaded object
        """
        try:
            self.client.upload_fileobj(
                io.BytesIO(data),
                bucket,
                key,
                ExtraArgs={"ContentType": content_type},
            )
        except (BotoCoreError, ClientError) as e:
            logger.error("Failed to upload s3://%s/%s: %s", bucket, key, e)
            raise StorageError(str(e)) from e

        logger.info("Uploaded %d bytes to s3://%s/%s", len(data), bucket, key)
        return key

    def download_bytes(self, bucket: str, key: str) -> bytes:
        """Download an object as bytes."""
        try:
            response = self.client.get_object(Bucket=bucket, Key=key)
            return response["Body"].read()
        except (BotoCoreError, ClientError) as e:
            logger.error("Failed to download s3://%s/%s: %s", bucket, key, e)
            raise StorageError(str(e)) from e

    def get_presigned_url(
        self,
        bucket: str,
        key: str,
        expires_in: int | None = None,
    ) -> str:
        """
        Generate a presigned GET URL for temporary access.

        Args:
            bucket: Bucket holding the object
            key: Object key
            expires_in: URL lifetime in seconds (defaults to sign_seconds)

        Returns:
            Presigned URL string
        """
        try:
            return self.client.generate_presigned_url(
                "get_object",
                Params={"Bucket": bucket, "Key": key},
                ExpiresIn=expires_in or settings.sign_seconds,
            )
        except (BotoCoreError, ClientError) as e:
            logger.error("Failed to generate presigned URL: %s", e)
            raise StorageError(str(e)) from e

    def signed_url_or_none(self, bucket: str, key: str | None) -> str | None:
        """Presigned URL for a key, or None when the key is empty or signing fails."""
        if not key:
            return None
        try:
            return self.get_presigned_url(bucket, key)
        except StorageError:
            return None

    def list_files(self, bucket: str, prefix: str = "") -> list[str]:
        """
        List object keys under a prefix.

        Returns:
            List of keys (empty on error)
        """
        try:
            response = self.client.list_objects_v2(Bucket=bucket, Prefix=prefix)
            return [obj["Key"] for obj in response.get("Contents", [])]
        except (BotoCoreError, ClientError) as e:
            logger.error("Failed to list s3://%s/%s: %s", bucket, prefix, e)
            return []

    def health_check(self) -> bool:
        """Check the outputs bucket is reachable."""
        try:
            self.client.head_bucket(Bucket=self.outputs_bucket)
            return True
        except (BotoCoreError, ClientError):
            return False


# Singleton instance
_storage_service: StorageService | None = None


def get_storage_service() -> StorageService:
    """Get or create storage service singleton."""
    global _storage_service
    if _storage_service is None:
        _storage_service = StorageService()
    return _storage_service
