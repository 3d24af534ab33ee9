from __future__ import annotations

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional, Protocol, Sequence
from urllib.parse import quote

import boto3
from botocore.config import Config as BotoConfig

from utils.config import Settings
from utils.deadline import Deadline

logger = logging.getLogger(__name__)


class ObjectStore(Protocol):
    def upload(self, path: str, key: str, deadline: Optional[Deadline] = None) -> str:
        ...


class S3ObjectStore:
    """Single-file uploads to one S3 bucket. Returns the object's URL."""

    def __init__(
        self,
        client,
        bucket: str,
        *,
        region: str = "us-east-1",
        acl: str = "",
        endpoint_url: str = "",
    ):
        self.client = client
        self.bucket = bucket
        self.region = region
        self.acl = acl
        self.endpoint_url = endpoint_url

    @classmethod
    def from_settings(cls, settings: Settings) -> "S3ObjectStore":
        logger.info("Initializing S3 connection (bucket=%s, region=%s)", settings.S3_BUCKET, settings.AWS_REGION)
        client = boto3.client(
            "s3",
            region_name=settings.AWS_REGION,
            aws_access_key_id=settings.ACCESS_KEY or None,
            aws_secret_access_key=settings.SECRET_KEY or None,
            endpoint_url=settings.S3_ENDPOINT_URL or None,
            config=BotoConfig(
                connect_timeout=min(5.0, settings.REQUEST_TIMEOUT),
                read_timeout=settings.REQUEST_TIMEOUT,
                retries={"total_max_attempts": 1},
            ),
        )
        return cls(
            client,
            settings.S3_BUCKET,
            region=settings.AWS_REGION,
            acl=settings.AWS_ACL,
            endpoint_url=settings.S3_ENDPOINT_URL,
        )

    def location_for(self, key: str) -> str:
        quoted = quote(key)
        if self.endpoint_url:
            return f"{self.endpoint_url.rstrip('/')}/{self.bucket}/{quoted}"
        if self.region == "us-east-1":
            return f"https://{self.bucket}.s3.amazonaws.com/{quoted}"
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{quoted}"

    def upload(self, path: str, key: str, deadline: Optional[Deadline] = None) -> str:
        if deadline is not None:
            deadline.check()

        extra_args = {"ACL": self.acl} if self.acl else None
        # progress callback runs per chunk: raising there aborts an in-flight transfer
        callback = (lambda _bytes: deadline.check()) if deadline is not None else None

        with open(path, "rb") as fh:
            self.client.upload_fileobj(
                fh,
                self.bucket,
                key,
                ExtraArgs=extra_args,
                Callback=callback,
            )
        return self.location_for(key)


class BatchUploader:
    """
    Uploads a list of local files concurrently.

    One task per file on a bounded thread pool. Every task writes its URL or
    its exception into the slot matching its input index, so the result
    order always follows the input order. All tasks run to completion before
    the first error (in index order) is raised. Nothing is retried and
    already-uploaded objects are not deleted when another file fails.
    """

    def __init__(self, store: ObjectStore, max_workers: int = 5):
        if max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        self.store = store
        self.max_workers = max_workers

    @staticmethod
    def key_for(path: str) -> str:
        return os.path.basename(path)

    def upload(self, paths: Sequence[str], deadline: Optional[Deadline] = None) -> List[str]:
        if not paths:
            return []

        locations: List[Optional[str]] = [None] * len(paths)
        errors: List[Optional[BaseException]] = [None] * len(paths)

        def _task(index: int, path: str) -> None:
            try:
                if deadline is not None:
                    deadline.check()
                location = self.store.upload(path, self.key_for(path), deadline)
            except Exception as exc:  # noqa: BLE001
                logger.error("Upload failed for %s: %s", path, exc)
                errors[index] = exc
                return
            locations[index] = location
            logger.info("Upload result: %s -> %s", path, location)

        workers = min(self.max_workers, len(paths))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="blob-upload") as pool:
            for index, path in enumerate(paths):
                pool.submit(_task, index, path)

        for err in errors:
            if err is not None:
                raise err
        return list(locations)
