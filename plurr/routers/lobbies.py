import io
import logging
from typing import List, Optional
from fastapi import APIRouter, Depends, File, Form, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession
import plurr.utils.crud as crud
from plurr.core import schemas
from plurr.core.database import get_db
from plurr.utils.blob_store import BlobStore
from plurr.utils.dependencies import get_blob_store, get_current_user_id, require_user_id
from plurr.utils.uploads import IncomingImage, upload_images, validate_images

logger = logging.getLogger(__name__)

router = APIRouter(
    tags=["Lobbies"],
)


def to_incoming_image(upload: UploadFile) -> IncomingImage:
    upload.file.seek(0, io.SEEK_END)
    file_size = upload.file.tell()
    upload.file.seek(0)
    return IncomingImage(
        filename=upload.filename,
        content_type=upload.content_type,
        size=file_size,
        file=upload.file,
    )


@router.get("/lobby/id/{lobby_id}", response_model=schemas.LobbyEntry)
async def read_lobby(
    lobby_id: str,
    db: AsyncSession = Depends(get_db),
    user_id: Optional[str] = Depends(get_current_user_id),
):
    return await crud.get_lobby_by_id(db, lobby_id, user_id)


@router.get("/lobby/code/{code}", response_model=schemas.LobbyEntry)
async def read_lobby_by_code(
    code: str,
    db: AsyncSession = Depends(get_db),
    user_id: Optional[str] = Depends(get_current_user_id),
):
    return await crud.get_lobby_by_code(db, code, user_id)


@router.get("/lobby-id/code/{code}", response_model=schemas.LobbyIdResponse)
async def read_lobby_id_by_code(
    code: str,
    db: AsyncSession = Depends(get_db),
    user_id: Optional[str] = Depends(get_current_user_id),
):
    lobby_id = await crud.get_lobby_id_by_code(db, code, user_id)
    return schemas.LobbyIdResponse(lobby_id=lobby_id)


@router.get("/lobby/user/{owner_id}", response_model=List[schemas.LobbySummary])
async def list_user_lobbies(
    owner_id: str,
    db: AsyncSession = Depends(get_db),
):
    return await crud.list_lobbies_by_owner(db, owner_id)


@router.get("/lobby/drafts", response_model=List[schemas.LobbySummary])
async def list_my_drafts(
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(require_user_id),
):
    return await crud.list_draft_lobbies(db, user_id)


@router.post("/lobby", response_model=schemas.LobbyCreated)
async def create_lobby(
    title: str = Form(...),
    background_color: Optional[str] = Form(None, alias="backgroundColor"),
    viewers_can_edit: bool = Form(False, alias="viewersCanEdit"),
    is_draft: bool = Form(True, alias="isDraft"),
    images: List[UploadFile] = File(default=[]),
    db: AsyncSession = Depends(get_db),
    blob_store: BlobStore = Depends(get_blob_store),
    user_id: str = Depends(require_user_id),
):
    files = [to_incoming_image(upload) for upload in images]
    validate_images(files)

    db_lobby = await crud.create_lobby(
        db,
        owner_id=user_id,
        title=title,
        background_color=background_color,
        viewers_can_edit=viewers_can_edit,
        is_draft=is_draft,
    )
    image_ids: List[str] = []
    if files:
        try:
            image_ids = await upload_images(db, blob_store, db_lobby.id, user_id, files)
        except Exception:
            logger.error(f"Upload failed while creating lobby {db_lobby.id}; removing lobby")
            await crud.delete_lobby(db, blob_store, db_lobby.id, user_id)
            raise
        db_lobby = await crud.append_lobby_images(db, db_lobby.id, image_ids, user_id)

    return schemas.LobbyCreated(lobby_id=db_lobby.id, lobby_code=db_lobby.lobby_code, images=image_ids)


@router.put("/lobby/id/{lobby_id}", response_model=schemas.Lobby)
async def update_lobby(
    lobby_id: str,
    payload: schemas.LobbyUpdateRequest,
    db: AsyncSession = Depends(get_db),
    blob_store: BlobStore = Depends(get_blob_store),
    user_id: str = Depends(require_user_id),
):
    return await crud.update_lobby(
        db,
        blob_store,
        lobby_id,
        user_id,
        payload.changes,
        payload.added_images,
        payload.deleted_images,
    )


@router.put("/lobby/id/{lobby_id}/upload", response_model=schemas.UploadResponse)
async def upload_to_lobby(
    lobby_id: str,
    images: List[UploadFile] = File(...),
    db: AsyncSession = Depends(get_db),
    blob_store: BlobStore = Depends(get_blob_store),
    user_id: str = Depends(require_user_id),
):
    files = [to_incoming_image(upload) for upload in images]
    validate_images(files)
    await crud.get_lobby_for_upload(db, lobby_id, user_id)

    image_ids = await upload_images(db, blob_store, lobby_id, user_id, files)
    await crud.append_lobby_images(db, lobby_id, image_ids, user_id)
    return schemas.UploadResponse(images=image_ids)


@router.put("/lobby/id/{lobby_id}/join", response_model=schemas.JoinResponse)
async def join_lobby(
    lobby_id: str,
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(require_user_id),
):
    is_joined = await crud.toggle_join(db, lobby_id, user_id)
    return schemas.JoinResponse(is_joined=is_joined)


@router.delete("/lobby/id/{lobby_id}")
async def delete_lobby(
    lobby_id: str,
    db: AsyncSession = Depends(get_db),
    blob_store: BlobStore = Depends(get_blob_store),
    user_id: str = Depends(require_user_id),
):
    await crud.delete_lobby(db, blob_store, lobby_id, user_id)
    return {"message": "Deleted Lobby"}
