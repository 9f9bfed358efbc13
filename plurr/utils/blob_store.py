"""
Object storage for image payloads.

S3BlobStore talks to any S3-compatible service (AWS, MinIO, R2) through
boto3; InMemoryBlobStore keeps objects in a dict for local runs and tests.
Both expose the same async interface.
"""

import hashlib
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import format_datetime, parsedate_to_datetime
from typing import Dict, List, Mapping, Optional, Protocol

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError
from fastapi.concurrency import run_in_threadpool

logger = logging.getLogger(__name__)

IMAGE_CONTENT_TYPE = "image/jpeg"


def image_blob_key(lobby_id: str, image_id: str) -> str:
    """The only place blob keys are derived from entity ids."""
    return f"{lobby_id}/{image_id}.jpeg"


def lobby_blob_prefix(lobby_id: str) -> str:
    return f"{lobby_id}/"


@dataclass
class GetConditions:
    """Conditional and range request headers forwarded to the store."""
    if_match: Optional[str] = None
    if_none_match: Optional[str] = None
    if_modified_since: Optional[datetime] = None
    if_unmodified_since: Optional[datetime] = None
    range: Optional[str] = None

    @classmethod
    def from_headers(cls, headers: Mapping[str, str]) -> "GetConditions":
        return cls(
            if_match=headers.get("if-match"),
            if_none_match=headers.get("if-none-match"),
            if_modified_since=_parse_http_date(headers.get("if-modified-since")),
            if_unmodified_since=_parse_http_date(headers.get("if-unmodified-since")),
            range=headers.get("range"),
        )


@dataclass
class BlobObject:
    key: str
    etag: str
    # None when a precondition was not met
    body: Optional[bytes]
    size: int = 0
    content_type: Optional[str] = None
    last_modified: Optional[datetime] = None
    content_range: Optional[str] = None
    # If-Match or If-Unmodified-Since failed, as opposed to not modified
    precondition_failed: bool = False

    @property
    def http_etag(self) -> str:
        return self.etag if self.etag.startswith('"') else f'"{self.etag}"'

    @property
    def is_partial(self) -> bool:
        return self.content_range is not None


class BlobStore(Protocol):
    async def put(self, key: str, data: bytes, content_type: str = IMAGE_CONTENT_TYPE) -> None:
        ...

    async def get(self, key: str, conditions: Optional[GetConditions] = None) -> Optional[BlobObject]:
        ...

    async def delete(self, key: str) -> None:
        ...

    async def list(self, prefix: str) -> List[str]:
        ...


def _parse_http_date(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None


def _etag_matches(header_value: str, etag: str) -> bool:
    bare = etag.strip('"')
    candidates = [tag.strip().removeprefix("W/").strip('"') for tag in header_value.split(",")]
    return "*" in candidates or bare in candidates


_RANGE_PATTERN = re.compile(r"^bytes=(\d*)-(\d*)$")


def _resolve_range(range_header: str, size: int) -> Optional[tuple]:
    """Return an inclusive (start, end) for a single byte range, or None if unsatisfiable."""
    match = _RANGE_PATTERN.match(range_header.strip())
    if not match or size == 0:
        return None
    start_raw, end_raw = match.groups()
    if not start_raw and not end_raw:
        return None
    if not start_raw:
        suffix = int(end_raw)
        if suffix == 0:
            return None
        return max(size - suffix, 0), size - 1
    start = int(start_raw)
    end = int(end_raw) if end_raw else size - 1
    if start >= size or end < start:
        return None
    return start, min(end, size - 1)


@dataclass
class _StoredObject:
    data: bytes
    content_type: str
    etag: str
    last_modified: datetime


@dataclass
class InMemoryBlobStore:
    """Dict-backed store with S3-like conditional and range semantics."""

    objects: Dict[str, _StoredObject] = field(default_factory=dict)

    async def put(self, key: str, data: bytes, content_type: str = IMAGE_CONTENT_TYPE) -> None:
        self.objects[key] = _StoredObject(
            data=bytes(data),
            content_type=content_type,
            etag=hashlib.md5(data).hexdigest(),
            last_modified=datetime.now(timezone.utc).replace(microsecond=0),
        )

    async def get(self, key: str, conditions: Optional[GetConditions] = None) -> Optional[BlobObject]:
        stored = self.objects.get(key)
        if stored is None:
            return None
        conditions = conditions or GetConditions()
        obj = BlobObject(
            key=key,
            etag=stored.etag,
            body=None,
            size=len(stored.data),
            content_type=stored.content_type,
            last_modified=stored.last_modified,
        )

        if conditions.if_match and not _etag_matches(conditions.if_match, stored.etag):
            obj.precondition_failed = True
            return obj
        if conditions.if_unmodified_since and stored.last_modified > conditions.if_unmodified_since:
            obj.precondition_failed = True
            return obj
        if conditions.if_none_match:
            if _etag_matches(conditions.if_none_match, stored.etag):
                return obj
        elif conditions.if_modified_since and stored.last_modified <= conditions.if_modified_since:
            return obj

        if conditions.range:
            resolved = _resolve_range(conditions.range, len(stored.data))
            if resolved is not None:
                start, end = resolved
                obj.body = stored.data[start:end + 1]
                obj.content_range = f"bytes {start}-{end}/{len(stored.data)}"
                return obj

        obj.body = stored.data
        return obj

    async def delete(self, key: str) -> None:
        self.objects.pop(key, None)

    async def list(self, prefix: str) -> List[str]:
        return sorted(key for key in self.objects if key.startswith(prefix))


class S3BlobStore:
    """boto3-backed store; blocking client calls run in the threadpool."""

    def __init__(
        self,
        bucket: str,
        endpoint_url: str,
        access_key: str,
        secret_key: str,
        region: str = "us-east-1",
        client=None,
    ):
        self.bucket = bucket
        self.client = client or boto3.client(
            's3',
            endpoint_url=endpoint_url,
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            region_name=region,
            # Use path-style URLs (required for MinIO)
            config=Config(signature_version='s3v4', s3={'addressing_style': 'path'}),
        )

    def ensure_bucket_exists(self) -> bool:
        try:
            self.client.head_bucket(Bucket=self.bucket)
            logger.info(f"Bucket '{self.bucket}' already exists.")
            return True
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code')
            error_message = e.response.get('Error', {}).get('Message', str(e))
            if error_code not in ('404', 'NoSuchBucket'):
                logger.error(f"Error checking bucket '{self.bucket}': Code={error_code}, Message={error_message}")
                return False
        logger.info(f"Bucket '{self.bucket}' not found. Attempting to create it...")
        try:
            self.client.create_bucket(Bucket=self.bucket)
            logger.info(f"Bucket '{self.bucket}' created successfully.")
            return True
        except ClientError as create_error:
            create_error_code = create_error.response.get('Error', {}).get('Code')
            create_error_message = create_error.response.get('Error', {}).get('Message', str(create_error))
            logger.error(f"Error creating bucket '{self.bucket}': Code={create_error_code}, Message={create_error_message}")
            return False

    async def put(self, key: str, data: bytes, content_type: str = IMAGE_CONTENT_TYPE) -> None:
        await run_in_threadpool(
            self.client.put_object,
            Bucket=self.bucket,
            Key=key,
            Body=data,
            ContentType=content_type,
        )
        logger.debug(f"Uploaded {key} to bucket {self.bucket}")

    async def get(self, key: str, conditions: Optional[GetConditions] = None) -> Optional[BlobObject]:
        conditions = conditions or GetConditions()
        params = {'Bucket': self.bucket, 'Key': key}
        if conditions.if_match:
            params['IfMatch'] = conditions.if_match
        if conditions.if_none_match:
            params['IfNoneMatch'] = conditions.if_none_match
        if conditions.if_modified_since:
            params['IfModifiedSince'] = conditions.if_modified_since
        if conditions.if_unmodified_since:
            params['IfUnmodifiedSince'] = conditions.if_unmodified_since
        if conditions.range:
            params['Range'] = conditions.range

        try:
            response = await run_in_threadpool(self.client.get_object, **params)
        except ClientError as e:
            error = e.response.get('Error', {})
            error_code = str(error.get('Code'))
            if error_code in ('NoSuchKey', '404', 'NotFound'):
                return None
            if error_code in ('304', 'NotModified', '412', 'PreconditionFailed'):
                # S3 omits the object's etag on these; fall back to a HEAD
                head = await run_in_threadpool(self.client.head_object, Bucket=self.bucket, Key=key)
                return BlobObject(
                    key=key,
                    etag=head.get('ETag', ''),
                    body=None,
                    size=head.get('ContentLength', 0),
                    content_type=head.get('ContentType'),
                    last_modified=head.get('LastModified'),
                    precondition_failed=error_code in ('412', 'PreconditionFailed'),
                )
            if error_code == 'InvalidRange':
                conditions.range = None
                return await self.get(key, conditions)
            raise

        body = await run_in_threadpool(response['Body'].read)
        return BlobObject(
            key=key,
            etag=response.get('ETag', ''),
            body=body,
            size=response.get('ContentLength', len(body)),
            content_type=response.get('ContentType'),
            last_modified=response.get('LastModified'),
            content_range=response.get('ContentRange'),
        )

    async def delete(self, key: str) -> None:
        await run_in_threadpool(self.client.delete_object, Bucket=self.bucket, Key=key)

    async def list(self, prefix: str) -> List[str]:
        def _list_keys() -> List[str]:
            keys: List[str] = []
            paginator = self.client.get_paginator('list_objects_v2')
            for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                keys.extend(item['Key'] for item in page.get('Contents', []))
            return keys

        return await run_in_threadpool(_list_keys)


def http_date(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return format_datetime(value.astimezone(timezone.utc), usegmt=True)


def build_blob_store(settings) -> BlobStore:
    """Create the blob store selected by BLOB_STORE_BACKEND."""
    backend = settings.BLOB_STORE_BACKEND.strip().lower()
    if backend == "memory":
        logger.warning("Using in-memory blob store; images are lost on restart.")
        return InMemoryBlobStore()
    if backend != "s3":
        raise ValueError(f"Unknown BLOB_STORE_BACKEND '{settings.BLOB_STORE_BACKEND}'")
    logger.info(f"S3 endpoint URL: {settings.s3_endpoint_url}")
    logger.info(f"S3 bucket: {settings.S3_BUCKET}")
    return S3BlobStore(
        bucket=settings.S3_BUCKET,
        endpoint_url=settings.s3_endpoint_url,
        access_key=settings.S3_ACCESS_KEY,
        secret_key=settings.S3_SECRET_KEY,
        region=settings.S3_REGION,
    )
