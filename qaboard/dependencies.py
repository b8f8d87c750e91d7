from fastapi import Depends, Header, Request

from .errors import Unauthorized
from .service import BoardService
from .sessions import SessionInfo


def get_board(request: Request) -> BoardService:
    board = getattr(request.app.state, "board", None)
    if board is None:
        raise RuntimeError("Board service is not initialized")
    return board


def bearer_token(authorization: str | None = Header(default=None)) -> str:
    """Extract the token from an ``Authorization: Bearer <token>`` header."""
    scheme, _, token = (authorization or "").strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise Unauthorized("Missing bearer token")
    return token.strip()


def require_admin(
    token: str = Depends(bearer_token),
    board: BoardService = Depends(get_board),
) -> SessionInfo:
    return board.authorize(token)
