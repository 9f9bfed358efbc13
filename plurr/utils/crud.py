import asyncio
import logging
import re
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pydantic import ValidationError
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from plurr.core import models, schemas
from plurr.core.config import settings
from plurr.core.exceptions import (
    ForbiddenError,
    InvalidInputError,
    NotFoundError,
    ResourceExhaustedError,
)
from plurr.utils.blob_store import BlobStore, image_blob_key, lobby_blob_prefix
from plurr.utils.ids import allocate_unique_id
from plurr.utils.reactions import LIKE, aggregate_reactions

logger = logging.getLogger(__name__)

HEX_COLOR_RE = re.compile(schemas.HEX_COLOR_PATTERN)


def log_db_operation(operation: str, table: str, record_id: str, user_id: Optional[str], additional_info: Optional[Dict] = None):
    """Log database operations with user information"""
    log_data = {
        "operation": operation,
        "table": table,
        "record_id": str(record_id),
        "user": user_id or "anonymous",
        "additional_info": additional_info or {}
    }
    logger.info(f"DB_OPERATION: {log_data}")


async def delete_blobs_best_effort(blob_store: BlobStore, keys: Sequence[str]) -> int:
    """Delete blobs concurrently; failures are logged and skipped. Returns the number deleted."""
    if not keys:
        return 0
    results = await asyncio.gather(*(blob_store.delete(key) for key in keys), return_exceptions=True)
    failed = 0
    for key, result in zip(keys, results):
        if isinstance(result, BaseException):
            failed += 1
            logger.warning(f"Failed to delete blob {key}: {result}")
    return len(keys) - failed


def _ensure_visible(lobby: Optional[models.Lobby], requester_id: Optional[str], identifier: str) -> models.Lobby:
    # Drafts are only visible to their owner
    if lobby is None or (lobby.is_draft and lobby.owner_id != requester_id):
        raise NotFoundError("Lobby", identifier)
    return lobby


def _ensure_owner(lobby: models.Lobby, requester_id: Optional[str]):
    if not requester_id or lobby.owner_id != requester_id:
        raise ForbiddenError()


def _normalize_code(code: str) -> str:
    return (code or "").strip().lower()


# Lobby CRUD operations
async def get_lobby(db: AsyncSession, lobby_id: str) -> Optional[models.Lobby]:
    result = await db.execute(select(models.Lobby).where(models.Lobby.id == lobby_id))
    return result.scalars().first()


async def get_lobby_row_by_code(db: AsyncSession, code: str) -> Optional[models.Lobby]:
    result = await db.execute(select(models.Lobby).where(models.Lobby.lobby_code == _normalize_code(code)))
    return result.scalars().first()


async def create_lobby(
    db: AsyncSession,
    owner_id: str,
    title: str,
    background_color: Optional[str] = None,
    viewers_can_edit: bool = False,
    is_draft: bool = True,
) -> models.Lobby:
    if not owner_id:
        raise InvalidInputError("Owner id is required")
    title = (title or "").strip()
    if not title:
        raise InvalidInputError("Title is required")
    background_color = background_color or settings.DEFAULT_BACKGROUND_COLOR
    if not HEX_COLOR_RE.match(background_color):
        raise InvalidInputError("Background color must be a hex color like #e69c09")

    attempts = settings.ID_MAX_ATTEMPTS
    for _ in range(attempts):
        lobby_id = await allocate_unique_id(db, models.Lobby.id, settings.LOBBY_ID_LENGTH)
        lobby_code = await allocate_unique_id(db, models.Lobby.lobby_code, settings.JOIN_CODE_LENGTH)
        db_lobby = models.Lobby(
            id=lobby_id,
            lobby_code=lobby_code,
            owner_id=owner_id,
            title=title,
            background_color=background_color,
            viewers_can_edit=viewers_can_edit,
            is_draft=is_draft,
            images=[],
        )
        db.add(db_lobby)
        try:
            await db.commit()
        except IntegrityError:
            # Another request took the id or code between check and insert
            await db.rollback()
            logger.warning(f"Unique conflict creating lobby {lobby_id}/{lobby_code}, retrying")
            continue
        await db.refresh(db_lobby)
        log_db_operation("CREATE", "lobbies", db_lobby.id, owner_id, {"title": title, "lobby_code": lobby_code})
        return db_lobby

    raise ResourceExhaustedError("lobby id", attempts)


async def append_lobby_images(db: AsyncSession, lobby_id: str, image_ids: Sequence[str], user_id: Optional[str] = None) -> models.Lobby:
    """
    Append image ids to a lobby's display list.

    The lobby row is re-read (locked where the backend supports it) so that
    concurrent uploads do not overwrite each other's additions.
    """
    result = await db.execute(
        select(models.Lobby)
        .where(models.Lobby.id == lobby_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    lobby = result.scalars().first()
    if lobby is None:
        raise NotFoundError("Lobby", lobby_id)
    if not image_ids:
        return lobby

    existing = list(lobby.images or [])
    lobby.images = existing + [image_id for image_id in image_ids if image_id not in existing]
    if lobby.first_upload_on is None:
        lobby.first_upload_on = models.utcnow()
    await db.commit()

    log_db_operation("UPDATE", "lobbies", lobby.id, user_id, {"appended_images": list(image_ids)})
    return lobby


async def build_lobby_entry(db: AsyncSession, lobby: models.Lobby, requester_id: Optional[str]) -> schemas.LobbyEntry:
    """Assemble the client view of a lobby: images in display order with reactions, plus join state."""
    image_ids = list(lobby.images or [])

    result = await db.execute(select(models.Image).where(models.Image.lobby_id == lobby.id))
    images_by_id = {image.id: image for image in result.scalars().all()}

    own_reactions: Dict[str, str] = {}
    is_joined = False
    if requester_id:
        result = await db.execute(
            select(models.Reaction.image_id, models.Reaction.reaction)
            .where(models.Reaction.lobby_id == lobby.id, models.Reaction.user_id == requester_id)
            .order_by(models.Reaction.created_on, models.Reaction.id)
        )
        for image_id, reaction in result.all():
            own_reactions.setdefault(image_id, reaction)

        result = await db.execute(
            select(models.JoinedLobby.id)
            .where(models.JoinedLobby.lobby_id == lobby.id, models.JoinedLobby.user_id == requester_id)
            .limit(1)
        )
        is_joined = result.first() is not None

    entries: List[schemas.ImageEntry] = []
    for image_id in image_ids:
        image = images_by_id.get(image_id)
        if image is None:
            logger.warning(f"Lobby {lobby.id} lists image {image_id} with no row")
            continue
        entries.append(schemas.ImageEntry(
            id=image.id,
            reaction_string=image.reaction_string,
            current_user_reaction=own_reactions.get(image.id),
        ))

    return schemas.LobbyEntry(
        id=lobby.id,
        lobby_code=lobby.lobby_code,
        created_on=lobby.created_on,
        first_upload_on=lobby.first_upload_on,
        is_joined=is_joined,
        owner_id=lobby.owner_id,
        title=lobby.title,
        background_color=lobby.background_color,
        viewers_can_edit=lobby.viewers_can_edit,
        is_draft=lobby.is_draft,
        images=entries,
    )


async def get_lobby_by_id(db: AsyncSession, lobby_id: str, requester_id: Optional[str]) -> schemas.LobbyEntry:
    lobby = _ensure_visible(await get_lobby(db, lobby_id), requester_id, lobby_id)
    return await build_lobby_entry(db, lobby, requester_id)


async def get_lobby_by_code(db: AsyncSession, code: str, requester_id: Optional[str]) -> schemas.LobbyEntry:
    lobby = _ensure_visible(await get_lobby_row_by_code(db, code), requester_id, code)
    return await build_lobby_entry(db, lobby, requester_id)


async def get_lobby_id_by_code(db: AsyncSession, code: str, requester_id: Optional[str]) -> str:
    lobby = _ensure_visible(await get_lobby_row_by_code(db, code), requester_id, code)
    return lobby.id


async def get_lobby_for_upload(db: AsyncSession, lobby_id: str, user_id: Optional[str]) -> models.Lobby:
    """Return the lobby if ``user_id`` may add images to it: the owner, or anyone when viewers can edit."""
    lobby = _ensure_visible(await get_lobby(db, lobby_id), user_id, lobby_id)
    if lobby.owner_id != user_id and not lobby.viewers_can_edit:
        raise ForbiddenError()
    return lobby


def _summaries(lobbies: Sequence[models.Lobby]) -> List[schemas.LobbySummary]:
    return [
        schemas.LobbySummary(
            id=lobby.id,
            created_on=lobby.created_on,
            title=lobby.title,
            first_image_id=lobby.images[0] if lobby.images else None,
        )
        for lobby in lobbies
    ]


async def list_lobbies_by_owner(db: AsyncSession, user_id: str) -> List[schemas.LobbySummary]:
    result = await db.execute(
        select(models.Lobby)
        .where(models.Lobby.owner_id == user_id, models.Lobby.is_draft.is_(False))
        .order_by(models.Lobby.created_on.desc(), models.Lobby.id)
    )
    return _summaries(result.scalars().all())


async def list_draft_lobbies(db: AsyncSession, owner_id: str) -> List[schemas.LobbySummary]:
    result = await db.execute(
        select(models.Lobby)
        .where(models.Lobby.owner_id == owner_id, models.Lobby.is_draft.is_(True))
        .order_by(models.Lobby.created_on.desc(), models.Lobby.id)
    )
    return _summaries(result.scalars().all())


def _parse_changes(changes: Dict[str, Any]) -> Dict[str, Any]:
    try:
        parsed = schemas.LobbyChanges.model_validate(changes or {})
    except ValidationError as e:
        fields = [".".join(str(part) for part in error["loc"]) for error in e.errors()]
        raise InvalidInputError("Invalid lobby changes", details={"fields": fields}) from e

    values = parsed.model_dump(exclude_unset=True)
    nulls = [name for name, value in values.items() if value is None]
    if nulls:
        raise InvalidInputError("Lobby fields cannot be null", details={"fields": nulls})
    if "title" in values:
        values["title"] = values["title"].strip()
        if not values["title"]:
            raise InvalidInputError("Title is required")
    return values


async def update_lobby(
    db: AsyncSession,
    blob_store: BlobStore,
    lobby_id: str,
    requester_id: Optional[str],
    changes: Dict[str, Any],
    added_image_ids: Sequence[str] = (),
    deleted_image_ids: Sequence[str] = (),
) -> models.Lobby:
    """
    Apply an owner's field patch, image additions and image deletions.

    Args:
        db: Database session
        blob_store: Store holding the image payloads
        lobby_id: Lobby to update
        requester_id: Authenticated user, must own the lobby
        changes: camelCase field patch, restricted to the LobbyChanges allow-list
        added_image_ids: Images of this lobby to append to the display list
        deleted_image_ids: Images of this lobby to remove along with their blobs

    Returns:
        The updated lobby row

    Raises:
        NotFoundError: unknown lobby
        ForbiddenError: requester is not the owner
        InvalidInputError: disallowed key, wrong value type, or foreign image id
    """
    lobby = await get_lobby(db, lobby_id)
    if lobby is None:
        raise NotFoundError("Lobby", lobby_id)
    _ensure_owner(lobby, requester_id)

    values = _parse_changes(changes)
    added = list(dict.fromkeys(added_image_ids or []))
    deleted = list(dict.fromkeys(deleted_image_ids or []))

    result = await db.execute(select(models.Image.id).where(models.Image.lobby_id == lobby.id))
    owned = set(result.scalars().all())
    foreign = [
        image_id
        for image_id in dict.fromkeys([*values.get("images", []), *added, *deleted])
        if image_id not in owned
    ]
    if foreign:
        raise InvalidInputError("Images do not belong to this lobby", details={"images": foreign})

    if "images" in values or added or deleted:
        images = list(values.get("images", lobby.images or []))
        images.extend(image_id for image_id in added if image_id not in images)
        deleted_set = set(deleted)
        values["images"] = [image_id for image_id in dict.fromkeys(images) if image_id not in deleted_set]

    if deleted:
        removed = await delete_blobs_best_effort(blob_store, [image_blob_key(lobby.id, image_id) for image_id in deleted])
        logger.info(f"Removed {removed}/{len(deleted)} blobs from lobby {lobby.id}")
        await db.execute(delete(models.Reaction).where(models.Reaction.image_id.in_(deleted)))
        await db.execute(delete(models.Image).where(models.Image.id.in_(deleted)))

    for field, value in values.items():
        setattr(lobby, field, value)
    if lobby.images and lobby.first_upload_on is None:
        lobby.first_upload_on = models.utcnow()
    await db.commit()

    log_db_operation("UPDATE", "lobbies", lobby.id, requester_id, {
        "changes": {key: value for key, value in values.items() if key != "images"},
        "added_images": added,
        "deleted_images": deleted,
    })
    return lobby


async def delete_lobby(db: AsyncSession, blob_store: BlobStore, lobby_id: str, requester_id: Optional[str]) -> bool:
    lobby = await get_lobby(db, lobby_id)
    if lobby is None:
        raise NotFoundError("Lobby", lobby_id)
    _ensure_owner(lobby, requester_id)

    keys = await blob_store.list(lobby_blob_prefix(lobby.id))
    removed = await delete_blobs_best_effort(blob_store, keys)

    await db.execute(delete(models.Reaction).where(models.Reaction.lobby_id == lobby.id))
    await db.execute(delete(models.JoinedLobby).where(models.JoinedLobby.lobby_id == lobby.id))
    await db.execute(delete(models.Image).where(models.Image.lobby_id == lobby.id))
    await db.execute(delete(models.Lobby).where(models.Lobby.id == lobby.id))
    await db.commit()

    log_db_operation("DELETE", "lobbies", lobby_id, requester_id, {"blobs_found": len(keys), "blobs_deleted": removed})
    return True


# Image and reaction operations
async def get_image(db: AsyncSession, image_id: str) -> Optional[models.Image]:
    result = await db.execute(select(models.Image).where(models.Image.id == image_id))
    return result.scalars().first()


async def apply_reaction(db: AsyncSession, image_id: str, user_id: Optional[str], new_value: Optional[str]) -> Tuple[str, Optional[str]]:
    """
    Toggle a user's reaction on an image and refresh the image's reaction string.

    Sending the current value, or ``"like"``, clears an existing reaction;
    any other value replaces it in place. Returns the new display string and
    the user's resulting reaction (``None`` when cleared).
    """
    if not user_id:
        raise InvalidInputError("User id is required")
    new_value = (new_value or "").strip()
    if not new_value:
        raise InvalidInputError("Reaction is required")
    if len(new_value) > settings.REACTION_MAX_LENGTH:
        raise InvalidInputError(f"Reaction must be at most {settings.REACTION_MAX_LENGTH} characters")

    image = await get_image(db, image_id)
    if image is None:
        raise NotFoundError("Image", image_id)
    # Images in a draft are hidden from everyone but the owner
    lobby = await get_lobby(db, image.lobby_id)
    if lobby is None or (lobby.is_draft and lobby.owner_id != user_id):
        raise NotFoundError("Image", image_id)

    result = await db.execute(
        select(models.Reaction)
        .where(models.Reaction.image_id == image_id, models.Reaction.user_id == user_id)
        .order_by(models.Reaction.created_on, models.Reaction.id)
    )
    rows = result.scalars().all()
    for duplicate in rows[1:]:
        logger.warning(f"Removing duplicate reaction {duplicate.id} for image {image_id} user {user_id}")
        await db.delete(duplicate)
    current = rows[0] if rows else None

    if current is None:
        reaction_id = await allocate_unique_id(db, models.Reaction.id, settings.RECORD_ID_LENGTH)
        db.add(models.Reaction(
            id=reaction_id,
            user_id=user_id,
            lobby_id=image.lobby_id,
            image_id=image_id,
            reaction=new_value,
        ))
        user_reaction: Optional[str] = new_value
        operation = "CREATE"
    elif new_value == current.reaction or new_value == LIKE:
        await db.delete(current)
        user_reaction = None
        operation = "DELETE"
    else:
        current.reaction = new_value
        user_reaction = new_value
        operation = "UPDATE"
    await db.flush()

    result = await db.execute(
        select(models.Reaction.reaction)
        .where(models.Reaction.image_id == image_id)
        .order_by(models.Reaction.created_on, models.Reaction.id)
    )
    image.reaction_string = aggregate_reactions(result.scalars().all())
    reaction_string = image.reaction_string
    await db.commit()

    log_db_operation(operation, "reactions", image_id, user_id, {"reaction": new_value, "reaction_string": reaction_string})
    return reaction_string, user_reaction


# Join operations
async def toggle_join(db: AsyncSession, lobby_id: str, user_id: Optional[str]) -> bool:
    """Join the lobby if the user has not joined it, otherwise leave. Returns the new joined state."""
    if not user_id:
        raise InvalidInputError("User id is required")
    _ensure_visible(await get_lobby(db, lobby_id), user_id, lobby_id)

    result = await db.execute(
        select(models.JoinedLobby)
        .where(models.JoinedLobby.lobby_id == lobby_id, models.JoinedLobby.user_id == user_id)
    )
    rows = result.scalars().all()
    if rows:
        await db.execute(
            delete(models.JoinedLobby)
            .where(models.JoinedLobby.lobby_id == lobby_id, models.JoinedLobby.user_id == user_id)
        )
        await db.commit()
        log_db_operation("DELETE", "joined_lobbies", lobby_id, user_id)
        return False

    join_id = await allocate_unique_id(db, models.JoinedLobby.id, settings.RECORD_ID_LENGTH)
    db.add(models.JoinedLobby(id=join_id, lobby_id=lobby_id, user_id=user_id))
    await db.commit()
    log_db_operation("CREATE", "joined_lobbies", join_id, user_id, {"lobby_id": lobby_id})
    return True


async def list_joined_lobbies(db: AsyncSession, user_id: str) -> List[schemas.LobbySummary]:
    result = await db.execute(
        select(models.Lobby)
        .join(models.JoinedLobby, models.JoinedLobby.lobby_id == models.Lobby.id)
        .where(models.JoinedLobby.user_id == user_id, models.Lobby.is_draft.is_(False))
        .order_by(models.JoinedLobby.joined_on.desc(), models.Lobby.id)
    )
    return _summaries(result.scalars().unique().all())


# Report operations
async def create_report(db: AsyncSession, lobby_id: str, creator_id: Optional[str], email: str, msg: str) -> models.Report:
    if not creator_id:
        raise InvalidInputError("User id is required")
    email = (email or "").strip()
    msg = (msg or "").strip()
    if not email or not msg:
        raise InvalidInputError("Email and message are required")
    _ensure_visible(await get_lobby(db, lobby_id), creator_id, lobby_id)

    report_id = await allocate_unique_id(db, models.Report.id, settings.RECORD_ID_LENGTH)
    db_report = models.Report(
        id=report_id,
        status="open",
        lobby_id=lobby_id,
        creator_id=creator_id,
        email=email,
        msg=msg,
    )
    db.add(db_report)
    await db.commit()
    await db.refresh(db_report)

    log_db_operation("CREATE", "reports", db_report.id, creator_id, {"lobby_id": lobby_id})
    return db_report
