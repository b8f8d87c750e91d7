"""Administrator routes: sessions, maintenance mode and member listing."""

import logging

from fastapi import APIRouter, Depends

from .dependencies import bearer_token, get_board, require_admin
from .models import LoginRequest, LoginResponse, MaintenanceSnapshot, MaintenanceUpdate, MemberInfo
from .service import BoardService
from .sessions import SessionInfo

router = APIRouter(prefix="/admin", tags=["admin"])
logger = logging.getLogger(__name__)


@router.post("/login", response_model=LoginResponse)
async def login(body: LoginRequest, board: BoardService = Depends(get_board)):
    token = board.login(body.username, body.password)
    return {"token": token}


@router.post("/logout")
async def logout(
    token: str = Depends(bearer_token),
    session: SessionInfo = Depends(require_admin),
    board: BoardService = Depends(get_board),
):
    revoked = board.logout(token)
    logger.info("Admin session closed for %s", session.principal)
    return {"revoked": revoked}


@router.get("/maintenance", response_model=MaintenanceSnapshot, dependencies=[Depends(require_admin)])
async def get_maintenance(board: BoardService = Depends(get_board)):
    return board.maintenance_snapshot()


async def _apply_maintenance(body: MaintenanceUpdate | None, board: BoardService) -> dict:
    update = body or MaintenanceUpdate()
    if not update.enabled:
        return board.disable_maintenance()
    return board.enable_maintenance(update.message, update.logo_url, update.duration_minutes)


@router.post("/maintenance", response_model=MaintenanceSnapshot, dependencies=[Depends(require_admin)])
async def set_maintenance(body: MaintenanceUpdate | None = None, board: BoardService = Depends(get_board)):
    return await _apply_maintenance(body, board)


@router.put("/maintenance", response_model=MaintenanceSnapshot, dependencies=[Depends(require_admin)])
async def put_maintenance(body: MaintenanceUpdate | None = None, board: BoardService = Depends(get_board)):
    return await _apply_maintenance(body, board)


@router.delete("/maintenance", response_model=MaintenanceSnapshot, dependencies=[Depends(require_admin)])
async def disable_maintenance(board: BoardService = Depends(get_board)):
    return board.disable_maintenance()


@router.get("/members", response_model=list[MemberInfo], dependencies=[Depends(require_admin)])
async def list_members(board: BoardService = Depends(get_board)):
    return board.list_members()
