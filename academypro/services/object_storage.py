"""
S3 object storage for profile images and notice attachments.

One ObjectStorage is opened in the app lifespan and handed to routes
through a dependency; every boto failure surfaces as StorageError.
"""

import logging
import os
from pathlib import Path
from typing import BinaryIO, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from academypro.errors import StorageError

log = logging.getLogger(__name__)

# ─── Config ───────────────────────────────────────────────────────────────────

AWS_REGION = os.getenv("AWS_REGION", "ap-northeast-2")
AWS_ACCESS_KEY_ID = os.getenv("AWS_ACCESS_KEY_ID")
AWS_SECRET_ACCESS_KEY = os.getenv("AWS_SECRET_ACCESS_KEY")
S3_BUCKET_NAME = os.getenv("S3_BUCKET_NAME", "academypro")

# delete_objects accepts at most 1000 keys per call
_DELETE_BATCH = 1000


class ObjectStorage:
    def __init__(self, bucket: str = S3_BUCKET_NAME, region: str = AWS_REGION, client=None):
        self.bucket = bucket
        self.region = region
        self._client = client

    def open(self) -> "ObjectStorage":
        if self._client is None:
            self._client = boto3.client(
                "s3",
                region_name=self.region,
                aws_access_key_id=AWS_ACCESS_KEY_ID,
                aws_secret_access_key=AWS_SECRET_ACCESS_KEY,
            )
            log.info("S3 client ready (bucket=%s, region=%s)", self.bucket, self.region)
        return self

    def close(self) -> None:
        if self._client is not None and hasattr(self._client, "close"):
            self._client.close()
        self._client = None

    @property
    def client(self):
        if self._client is None:
            raise StorageError("Object storage is not open")
        return self._client

    # ─── Writes ──────────────────────────────────────────────────────────────

    def upload_fileobj(self, fileobj: BinaryIO, key: str, content_type: Optional[str] = None) -> str:
        extra = {"ContentType": content_type} if content_type else None
        try:
            self.client.upload_fileobj(fileobj, self.bucket, key, ExtraArgs=extra)
        except (BotoCoreError, ClientError) as e:
            log.error("S3 upload failed for %s: %s", key, e)
            raise StorageError(f"Failed to upload {key}")
        return key

    def upload_dir(self, dir_path: Path, prefix: str) -> List[str]:
        """Mirror every file under dir_path to <prefix>/<relative path>."""
        keys = []
        for path in sorted(Path(dir_path).rglob("*")):
            if not path.is_file():
                continue
            key = f"{prefix}/{path.relative_to(dir_path).as_posix()}"
            try:
                self.client.upload_file(str(path), self.bucket, key)
            except (BotoCoreError, ClientError) as e:
                log.error("S3 upload failed for %s: %s", key, e)
                raise StorageError(f"Failed to upload {key}")
            keys.append(key)
        return keys

    # ─── Deletes ─────────────────────────────────────────────────────────────

    def delete_keys(self, keys: List[str]) -> int:
        keys = [k for k in keys if k]
        try:
            for start in range(0, len(keys), _DELETE_BATCH):
                batch = keys[start:start + _DELETE_BATCH]
                self.client.delete_objects(
                    Bucket=self.bucket,
                    Delete={"Objects": [{"Key": k} for k in batch]},
                )
        except (BotoCoreError, ClientError) as e:
            log.error("S3 delete failed: %s", e)
            raise StorageError("Failed to delete stored files")
        return len(keys)

    def delete_prefix(self, prefix: str) -> int:
        """Delete every object under prefix. An empty prefix listing is not an error."""
        try:
            paginator = self.client.get_paginator("list_objects_v2")
            keys = [
                item["Key"]
                for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix)
                for item in page.get("Contents", [])
            ]
        except (BotoCoreError, ClientError) as e:
            log.error("S3 listing failed for %s: %s", prefix, e)
            raise StorageError("Failed to list stored files")
        if not keys:
            log.info("No stored objects under %s", prefix)
            return 0
        return self.delete_keys(keys)

    def url_for(self, key: str) -> str:
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"
