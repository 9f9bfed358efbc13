from typing import Optional
from fastapi import Request
from plurr.core.exceptions import UnauthorizedError
from plurr.utils.blob_store import BlobStore
from plurr.utils.image_transform import ImageTransformer


def get_current_user_id(request: Request) -> Optional[str]:
    """The user id set by the auth middleware, or None for anonymous requests."""
    return getattr(request.state, 'user_id', None)


def require_user_id(request: Request) -> str:
    user_id = get_current_user_id(request)
    if not user_id:
        raise UnauthorizedError()
    return user_id


def get_blob_store(request: Request) -> BlobStore:
    return request.app.state.blob_store


def get_image_transformer(request: Request) -> ImageTransformer:
    return request.app.state.image_transformer
