"""S3 object storage adapter."""

from __future__ import annotations

import logging
from pathlib import Path

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from stackops.config import AWSSettings
from stackops.errors import ConfigurationError, UploadError

logger = logging.getLogger(__name__)


def _get_service_config(timeout_seconds: int) -> Config:
    return Config(
        read_timeout=timeout_seconds,
        connect_timeout=timeout_seconds,
        # Retries are owned by the backup run's backoff policy.
        retries={"max_attempts": 1, "mode": "standard"},
        request_checksum_calculation="when_required",
        response_checksum_validation="when_required",
    )


def create_s3_client(aws: AWSSettings, timeout_seconds: int):
    session = boto3.Session(
        profile_name=aws.default_profile,
        region_name=aws.default_region,
    )
    return session.client("s3", config=_get_service_config(timeout_seconds))


class S3StorageClient:
    def __init__(self, client, bucket: str, prefix: str = "") -> None:
        if not bucket:
            raise ConfigurationError("S3 bucket is not configured (BACKUP_S3_BUCKET)")
        self._client = client
        self._bucket = bucket
        self._prefix = prefix.strip("/")

    @property
    def bucket(self) -> str:
        return self._bucket

    def key_for(self, filename: str) -> str:
        return f"{self._prefix}/{filename}" if self._prefix else filename

    def uri_for(self, key: str) -> str:
        return f"s3://{self._bucket}/{key}"

    def put(self, local_path: str | Path, key: str, metadata: dict[str, str] | None = None) -> None:
        extra_args: dict[str, object] = {"ServerSideEncryption": "AES256"}
        if metadata:
            extra_args["Metadata"] = metadata
        try:
            self._client.upload_file(str(local_path), self._bucket, key, ExtraArgs=extra_args)
        except (BotoCoreError, ClientError, OSError) as exc:
            raise UploadError(f"upload to {self.uri_for(key)} failed: {exc}") from exc
        logger.info("Uploaded %s to %s", local_path, self.uri_for(key))

    def exists(self, key: str) -> bool:
        try:
            self._client.head_object(Bucket=self._bucket, Key=key)
        except ClientError as exc:
            code = str(exc.response.get("Error", {}).get("Code", ""))
            if code in {"404", "NoSuchKey", "NotFound"}:
                return False
            raise UploadError(f"cannot check {self.uri_for(key)}: {exc}") from exc
        except BotoCoreError as exc:
            raise UploadError(f"cannot check {self.uri_for(key)}: {exc}") from exc
        return True
