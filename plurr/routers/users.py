from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List
import plurr.utils.crud as crud
from plurr.core import schemas
from plurr.core.database import get_db
from plurr.utils.dependencies import require_user_id

router = APIRouter(
    prefix="/user",
    tags=["Users"],
)


@router.get("/joined-lobbies", response_model=List[schemas.LobbySummary])
async def read_joined_lobbies(
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(require_user_id),
):
    """Published lobbies the current user has joined, most recently joined first."""
    return await crud.list_joined_lobbies(db, user_id)
