"""
S3-compatible object storage (AWS S3, Cloudflare R2, MinIO) via boto3.
"""
import logging
import mimetypes
from pathlib import Path
from typing import Any, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from silencecut.domain.errors import MissingObjectError, StorageError

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}


def output_key_for(owner_id: str, job_id: str, original_filename: str) -> str:
    """Output keys are namespaced by owner and job so concurrent jobs never share one."""
    name = Path(original_filename).name or "output.mp4"
    return f"videos/output/{owner_id}/{job_id}/{name}"


class S3ObjectStore:
    def __init__(
        self,
        bucket: str,
        *,
        endpoint_url: Optional[str] = None,
        region: Optional[str] = None,
        client: Any = None,
    ) -> None:
        self._bucket = bucket
        self._client = client or boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            region_name=region,
            config=Config(retries={"max_attempts": 3, "mode": "standard"}),
        )

    def download(self, key: str, destination: Path) -> None:
        destination.parent.mkdir(parents=True, exist_ok=True)
        try:
            self._client.download_file(self._bucket, key, str(destination))
        except ClientError as e:
            code = str(e.response.get("Error", {}).get("Code", ""))
            if code in _NOT_FOUND_CODES:
                raise MissingObjectError(f"Input file not found in storage: {key}") from e
            raise StorageError(f"Download of {key} failed: {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"Download of {key} failed: {e}") from e

    def upload(self, source: Path, key: str) -> None:
        content_type = mimetypes.guess_type(source.name)[0] or "application/octet-stream"
        try:
            self._client.upload_file(str(source), self._bucket, key, ExtraArgs={"ContentType": content_type})
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Upload of {key} failed: {e}") from e
        logger.info("Uploaded s3://%s/%s", self._bucket, key)

    def presign_download(self, key: str, expires_in: int) -> str:
        return self._client.generate_presigned_url(
            "get_object",
            Params={"Bucket": self._bucket, "Key": key},
            ExpiresIn=expires_in,
        )
