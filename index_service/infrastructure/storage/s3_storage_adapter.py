# File: index_service/infrastructure/storage/s3_storage_adapter.py
import boto3
from botocore.exceptions import ClientError
import structlog
from typing import Any, Optional

from index_service.application.ports.storage_port import StoragePort, StorageError, ObjectNotFoundError
from index_service.core.config import settings

log = structlog.get_logger(__name__)

_NOT_FOUND_CODES = ("404", "NoSuchKey", "NotFound")

class S3StorageAdapter(StoragePort):
    """Adapter over Amazon S3 (or any S3-compatible endpoint)."""

    def __init__(self, client: Optional[Any] = None):
        # Credenciales desde el entorno (IAM role en ECS)
        self.s3_client = client or boto3.client(
            "s3",
            region_name=settings.AWS_REGION,
            endpoint_url=settings.AWS_S3_ENDPOINT_URL,
        )
        self.log = log.bind(component="S3StorageAdapter", aws_region=settings.AWS_REGION)

    def get_object(self, bucket: str, key: str) -> bytes:
        self.log.debug("Downloading object from S3", bucket=bucket, key=key)
        try:
            response = self.s3_client.get_object(Bucket=bucket, Key=key)
            data = response["Body"].read()
            self.log.debug("Object downloaded", bucket=bucket, key=key, size=len(data))
            return data
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            if code in _NOT_FOUND_CODES:
                raise ObjectNotFoundError(f"s3://{bucket}/{key} not found") from e
            self.log.error("S3 download failed", bucket=bucket, key=key, error_code=code, error=str(e))
            raise StorageError(f"S3 error downloading {key}") from e

    def put_object(self, bucket: str, key: str, data: bytes, content_type: Optional[str] = None) -> str:
        self.log.debug("Uploading object to S3", bucket=bucket, key=key, size=len(data), content_type=content_type)
        params = {"Bucket": bucket, "Key": key, "Body": data}
        if content_type:
            params["ContentType"] = content_type
        try:
            self.s3_client.put_object(**params)
            return key
        except ClientError as e:
            self.log.error("S3 upload failed", bucket=bucket, key=key,
                           error_code=e.response.get("Error", {}).get("Code"), error=str(e))
            raise StorageError(f"S3 error uploading {key}") from e

    def object_exists(self, bucket: str, key: str) -> bool:
        try:
            self.s3_client.head_object(Bucket=bucket, Key=key)
            return True
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            if code in _NOT_FOUND_CODES:
                return False
            self.log.error("Error checking S3 object existence", bucket=bucket, key=key, error=str(e))
            raise StorageError(f"S3 error checking {key}") from e

    def delete_object(self, bucket: str, key: str) -> None:
        self.log.info("Deleting object from S3", bucket=bucket, key=key)
        try:
            self.s3_client.delete_object(Bucket=bucket, Key=key)
        except ClientError as e:
            self.log.error("S3 delete failed", bucket=bucket, key=key, error=str(e))
            raise StorageError(f"S3 error deleting {key}") from e
