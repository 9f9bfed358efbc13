"""
Image upload pipeline and image delivery.

Uploads validate every file before touching either store, write all blobs
concurrently, and only then insert the Image rows in a single transaction.
Blobs written for a batch that fails are deleted again.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import BinaryIO, Dict, List, Optional, Sequence

from fastapi.concurrency import run_in_threadpool
from sqlalchemy.ext.asyncio import AsyncSession

from plurr.core import models
from plurr.core.config import settings
from plurr.core.exceptions import (
    InternalError,
    InvalidInputError,
    NotFoundError,
    PayloadTooLargeError,
    UnsupportedMediaTypeError,
)
from plurr.utils.blob_store import IMAGE_CONTENT_TYPE, BlobStore, GetConditions, http_date, image_blob_key
from plurr.utils.crud import delete_blobs_best_effort, log_db_operation
from plurr.utils.ids import allocate_unique_id
from plurr.utils.image_transform import ImageTransformer

logger = logging.getLogger(__name__)


@dataclass
class IncomingImage:
    """An uploaded file as seen by the pipeline, independent of the web framework."""
    filename: Optional[str]
    content_type: Optional[str]
    size: int
    file: BinaryIO

    async def read(self) -> bytes:
        self.file.seek(0)
        return await run_in_threadpool(self.file.read)


def validate_images(files: Sequence[IncomingImage]) -> None:
    allowed = settings.ALLOWED_UPLOAD_CONTENT_TYPES
    for incoming in files:
        content_type = (incoming.content_type or "").split(";")[0].strip().lower()
        if content_type not in allowed:
            raise UnsupportedMediaTypeError(incoming.content_type, allowed)
        if incoming.size > settings.MAX_UPLOAD_BYTES:
            raise PayloadTooLargeError(incoming.size, settings.MAX_UPLOAD_BYTES)


async def upload_images(
    db: AsyncSession,
    blob_store: BlobStore,
    lobby_id: str,
    uploader_id: str,
    files: Sequence[IncomingImage],
) -> List[str]:
    """
    Store a batch of JPEGs for a lobby.

    Returns the new image ids in the same order as ``files``. Nothing is
    written when validation fails.
    """
    if not uploader_id:
        raise InvalidInputError("Uploader id is required")
    validate_images(files)
    if not files:
        return []

    image_ids: List[str] = []
    for _ in files:
        image_id = await allocate_unique_id(db, models.Image.id, settings.IMAGE_ID_LENGTH)
        while image_id in image_ids:
            image_id = await allocate_unique_id(db, models.Image.id, settings.IMAGE_ID_LENGTH)
        image_ids.append(image_id)
    payloads = [await incoming.read() for incoming in files]
    keys = [image_blob_key(lobby_id, image_id) for image_id in image_ids]

    results = await asyncio.gather(
        *(blob_store.put(key, data, IMAGE_CONTENT_TYPE) for key, data in zip(keys, payloads)),
        return_exceptions=True,
    )
    failures = [result for result in results if isinstance(result, BaseException)]
    if failures:
        written = [key for key, result in zip(keys, results) if not isinstance(result, BaseException)]
        logger.error(f"Failed to store {len(failures)}/{len(keys)} images for lobby {lobby_id}: {failures[0]}")
        await delete_blobs_best_effort(blob_store, written)
        raise InternalError("Failed to store images")

    db.add_all([
        models.Image(id=image_id, lobby_id=lobby_id, uploader_id=uploader_id, reaction_string="0")
        for image_id in image_ids
    ])
    try:
        await db.commit()
    except Exception:
        await db.rollback()
        logger.error(f"Failed to insert image rows for lobby {lobby_id}; removing stored blobs")
        await delete_blobs_best_effort(blob_store, keys)
        raise

    log_db_operation("CREATE", "images", lobby_id, uploader_id, {"image_ids": image_ids})
    return image_ids


@dataclass
class ImageDelivery:
    status_code: int
    body: Optional[bytes]
    media_type: str = IMAGE_CONTENT_TYPE
    headers: Dict[str, str] = field(default_factory=dict)


async def get_image(
    blob_store: BlobStore,
    transformer: ImageTransformer,
    lobby_id: str,
    image_id: str,
    conditions: Optional[GetConditions] = None,
) -> ImageDelivery:
    key = image_blob_key(lobby_id, image_id)
    obj = await blob_store.get(key, conditions)
    if obj is None:
        raise NotFoundError("Image", image_id)

    headers = {"etag": obj.http_etag}
    last_modified = http_date(obj.last_modified)
    if last_modified:
        headers["last-modified"] = last_modified

    if obj.precondition_failed:
        return ImageDelivery(status_code=412, body=None, headers=headers)
    if obj.body is None:
        return ImageDelivery(status_code=304, body=None, headers=headers)

    if obj.is_partial:
        headers["content-range"] = obj.content_range
        headers["accept-ranges"] = "bytes"
        return ImageDelivery(
            status_code=206,
            body=obj.body,
            media_type=obj.content_type or IMAGE_CONTENT_TYPE,
            headers=headers,
        )

    body = await transformer.transform(obj.body)
    return ImageDelivery(status_code=200, body=body, media_type=transformer.content_type, headers=headers)
