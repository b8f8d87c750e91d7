from fastapi import APIRouter, Depends

from .dependencies import get_board
from .models import MaintenanceSnapshot, MemberCount
from .service import BoardService

router = APIRouter(tags=["members"])


@router.get("/members/count", response_model=MemberCount)
async def members_count(board: BoardService = Depends(get_board)):
    return {"count": board.members_count()}


@router.get("/maintenance", response_model=MaintenanceSnapshot)
async def maintenance_status(board: BoardService = Depends(get_board)):
    """Public maintenance snapshot so clients can render the banner."""
    return board.maintenance_snapshot()
