from fastapi import APIRouter, Depends, Form, Request
from fastapi.responses import Response, StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession
import io
import plurr.utils.crud as crud
from plurr.core import schemas
from plurr.core.database import get_db
from plurr.utils.blob_store import BlobStore, GetConditions
from plurr.utils.dependencies import get_blob_store, get_image_transformer, require_user_id
from plurr.utils.image_transform import ImageTransformer
from plurr.utils.uploads import get_image

router = APIRouter(
    prefix="/image",
    tags=["Images"],
)


@router.get("/{lobby_id}/{image_id}", response_class=StreamingResponse)
async def read_image(
    lobby_id: str,
    image_id: str,
    request: Request,
    blob_store: BlobStore = Depends(get_blob_store),
    transformer: ImageTransformer = Depends(get_image_transformer),
):
    """Stream an image, honoring conditional and range request headers."""
    conditions = GetConditions.from_headers(request.headers)
    delivery = await get_image(blob_store, transformer, lobby_id, image_id, conditions)
    if delivery.body is None:
        return Response(status_code=delivery.status_code, headers=delivery.headers)
    return StreamingResponse(
        content=io.BytesIO(delivery.body),
        status_code=delivery.status_code,
        media_type=delivery.media_type,
        headers=delivery.headers,
    )


@router.put("/{image_id}/react", response_model=schemas.ReactionResult)
async def react_to_image(
    image_id: str,
    reaction: str = Form(...),
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(require_user_id),
):
    reaction_string, user_reaction = await crud.apply_reaction(db, image_id, user_id, reaction)
    return schemas.ReactionResult(reaction_string=reaction_string, user_reaction=user_reaction)
