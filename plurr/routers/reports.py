from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
import plurr.utils.crud as crud
from plurr.core import schemas
from plurr.core.database import get_db
from plurr.utils.dependencies import require_user_id

router = APIRouter(
    prefix="/report",
    tags=["Reports"],
)


@router.post("", response_model=schemas.Report)
async def create_report(
    report: schemas.ReportCreate,
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(require_user_id),
):
    return await crud.create_report(db, report.lobby_id, user_id, report.email, report.msg)
