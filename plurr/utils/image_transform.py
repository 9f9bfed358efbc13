import io
import logging
from typing import Optional

from fastapi.concurrency import run_in_threadpool
from PIL import Image, ImageOps, UnidentifiedImageError

from plurr.core.exceptions import InternalError

logger = logging.getLogger(__name__)

CONTENT_TYPES = {
    'JPEG': 'image/jpeg',
    'PNG': 'image/png',
    'WEBP': 'image/webp',
}


class ImageTransformer:
    """Re-encode stored images for delivery."""

    def __init__(self, quality: int = 50, output_format: str = "JPEG", max_dimension: Optional[int] = None):
        self.quality = quality
        self.output_format = output_format.upper()
        self.max_dimension = max_dimension

    @property
    def content_type(self) -> str:
        return CONTENT_TYPES.get(self.output_format, 'image/jpeg')

    def transform_sync(self, data: bytes) -> bytes:
        try:
            img = Image.open(io.BytesIO(data))
            img = ImageOps.exif_transpose(img)
        except (UnidentifiedImageError, OSError) as e:
            logger.error(f"Could not decode stored image: {e}")
            raise InternalError("Stored image could not be decoded") from e

        if self.max_dimension:
            # Resize the image while maintaining aspect ratio
            img.thumbnail((self.max_dimension, self.max_dimension))

        if self.output_format == 'JPEG' and img.mode not in ('RGB', 'L'):
            img = img.convert('RGB')

        output_buffer = io.BytesIO()
        img.save(output_buffer, format=self.output_format, quality=self.quality)
        return output_buffer.getvalue()

    async def transform(self, data: bytes) -> bytes:
        return await run_in_threadpool(self.transform_sync, data)


def build_image_transformer(settings) -> ImageTransformer:
    return ImageTransformer(
        quality=settings.IMAGE_TRANSFORM_QUALITY,
        output_format=settings.IMAGE_TRANSFORM_FORMAT,
        max_dimension=settings.IMAGE_TRANSFORM_MAX_DIMENSION,
    )
