"""
Storage handlers for backup artifacts.

Supports:
- LocalStorage: artifacts kept in the local backup directory
- S3Storage: artifacts uploaded to an S3-compatible object store
"""

import os
from pathlib import Path
from typing import List, Optional

import boto3
from botocore.exceptions import ClientError, BotoCoreError

from .compression import is_backup_artifact


# Files above this size are sent with a multipart upload
MULTIPART_THRESHOLD = 100 * 1024 * 1024  # 100MB
MULTIPART_CHUNK_SIZE = 10 * 1024 * 1024  # 10MB


class StorageError(Exception):
    """Raised when storage operation fails."""
    pass


def _error_code(error: ClientError) -> str:
    return error.response.get('Error', {}).get('Code', 'Unknown')


class S3Storage:
    """
    Handler for S3-compatible object storage.

    Keys are used as given; the caller composes '{prefix}{filename}'.
    """

    def __init__(
        self,
        bucket_name: str,
        region: str,
        endpoint_url: Optional[str] = None,
        access_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        multipart_threshold: int = MULTIPART_THRESHOLD
    ):
        """
        Initialize S3 storage handler.

        Args:
            bucket_name: S3 bucket name
            region: Bucket region
            endpoint_url: Custom endpoint (Hetzner, MinIO, Wasabi...)
            access_key: Access key ID (None = boto3 default credential chain)
            secret_key: Secret access key
            multipart_threshold: Size in bytes above which multipart upload is used
        """
        self.bucket_name = bucket_name
        self.region = region
        self.endpoint_url = endpoint_url or None
        self.multipart_threshold = multipart_threshold

        try:
            self.s3_client = boto3.client(
                's3',
                aws_access_key_id=access_key or None,
                aws_secret_access_key=secret_key or None,
                region_name=region,
                endpoint_url=self.endpoint_url
            )
        except (BotoCoreError, ValueError) as e:
            raise StorageError(f"Failed to initialize S3 client: {e}")

    def put(self, key: str, data: bytes):
        """
        Store bytes under a key.

        Raises:
            StorageError: If the put fails
        """
        try:
            self.s3_client.put_object(
                Bucket=self.bucket_name,
                Key=key,
                Body=data
            )
        except ClientError as e:
            raise StorageError(f"S3 upload failed ({_error_code(e)}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"S3 upload failed: {e}")

    def upload(self, local_path: str, key: str) -> str:
        """
        Upload an artifact file.

        Args:
            local_path: Path to local artifact
            key: Destination object key

        Returns:
            Object key of uploaded file

        Raises:
            StorageError: If upload fails
        """
        if not os.path.exists(local_path):
            raise StorageError(f"Local file not found: {local_path}")

        try:
            file_size = os.path.getsize(local_path)

            if file_size > self.multipart_threshold:
                self._multipart_upload(local_path, key)
            else:
                with open(local_path, 'rb') as f:
                    data = f.read()
                self.put(key, data)

            return key

        except StorageError:
            raise
        except ClientError as e:
            raise StorageError(f"S3 upload failed ({_error_code(e)}): {e}")
        except (BotoCoreError, OSError) as e:
            raise StorageError(f"S3 upload failed: {e}")

    def _multipart_upload(self, local_path: str, key: str):
        """
        Upload a large file in MULTIPART_CHUNK_SIZE parts.

        The upload is aborted if any part fails.
        """
        response = self.s3_client.create_multipart_upload(
            Bucket=self.bucket_name,
            Key=key
        )
        upload_id = response['UploadId']

        parts = []

        try:
            with open(local_path, 'rb') as f:
                part_number = 1

                while True:
                    data = f.read(MULTIPART_CHUNK_SIZE)
                    if not data:
                        break

                    response = self.s3_client.upload_part(
                        Bucket=self.bucket_name,
                        Key=key,
                        PartNumber=part_number,
                        UploadId=upload_id,
                        Body=data
                    )

                    parts.append({
                        'PartNumber': part_number,
                        'ETag': response['ETag']
                    })

                    part_number += 1

            self.s3_client.complete_multipart_upload(
                Bucket=self.bucket_name,
                Key=key,
                UploadId=upload_id,
                MultipartUpload={'Parts': parts}
            )

        except Exception:
            try:
                self.s3_client.abort_multipart_upload(
                    Bucket=self.bucket_name,
                    Key=key,
                    UploadId=upload_id
                )
            except (ClientError, BotoCoreError):
                pass
            raise

    def delete(self, key: str):
        """
        Delete an object.

        Raises:
            StorageError: If deletion fails
        """
        try:
            self.s3_client.delete_object(
                Bucket=self.bucket_name,
                Key=key
            )
        except ClientError as e:
            raise StorageError(f"S3 delete failed ({_error_code(e)}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"Failed to delete from S3: {e}")

    def list_objects(self, prefix: str) -> list:
        """
        List objects with given prefix.

        Args:
            prefix: Key prefix to filter by

        Returns:
            List of dicts with 'Key', 'LastModified', and 'Size' keys

        Raises:
            StorageError: If listing fails
        """
        try:
            objects = []
            paginator = self.s3_client.get_paginator('list_objects_v2')

            for page in paginator.paginate(Bucket=self.bucket_name, Prefix=prefix):
                for obj in page.get('Contents', []):
                    objects.append({
                        'Key': obj['Key'],
                        'LastModified': obj['LastModified'],
                        'Size': obj['Size']
                    })

            return objects

        except ClientError as e:
            raise StorageError(f"S3 list failed ({_error_code(e)}): {e}")
        except BotoCoreError as e:
            raise StorageError(f"Failed to list S3 objects: {e}")


class LocalStorage:
    """
    Handler for the local backup directory.

    Artifacts live flat in the directory: {base_path}/{filename}
    """

    def __init__(self, base_path: str):
        """
        Initialize local storage handler.

        Args:
            base_path: Backup directory (created if missing)

        Raises:
            StorageError: If the directory cannot be created
        """
        self.base_path = Path(base_path)

        try:
            self.base_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to create backup directory: {e}")

    def get_full_path(self, filename: str) -> str:
        """Full filesystem path for an artifact name."""
        return str(self.base_path / filename)

    def list_files(self) -> List[str]:
        """
        List backup artifact names in the directory.

        Raises:
            StorageError: If listing fails
        """
        try:
            return [
                entry.name for entry in self.base_path.glob('backup_*')
                if entry.is_file() and is_backup_artifact(entry.name)
            ]
        except OSError as e:
            raise StorageError(f"Failed to list local files: {e}")

    def delete(self, filename: str):
        """
        Delete an artifact from the directory.

        Raises:
            StorageError: If deletion fails
        """
        full_path = self.base_path / filename

        try:
            if full_path.exists():
                full_path.unlink()
        except PermissionError as e:
            raise StorageError(f"Permission denied deleting {full_path}: {e}")
        except OSError as e:
            raise StorageError(f"Failed to delete local file: {e}")
