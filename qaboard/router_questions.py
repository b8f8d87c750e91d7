"""Question and reply routes.

Endpoints:
  GET    /questions                         List questions with their replies
  POST   /questions                         Ask a question
  POST   /questions/{id}/replies            Reply to a question
  DELETE /questions/{id}                    Delete a question (admin)
  DELETE /questions/{id}/replies/{rid}      Delete a reply (admin)
  DELETE /questions                         Clear the board (admin)
"""

from fastapi import APIRouter, Depends

from .dependencies import get_board, require_admin
from .models import QuestionCreate, ReplyCreate
from .service import BoardService

router = APIRouter(prefix="/questions", tags=["questions"])


@router.get("")
async def list_questions(board: BoardService = Depends(get_board)):
    return board.list_questions()


@router.post("", status_code=201)
async def create_question(body: QuestionCreate, board: BoardService = Depends(get_board)):
    return board.create_question(body.text, body.author, use_ai=body.use_ai)


@router.post("/{question_id}/replies", status_code=201)
async def add_reply(question_id: str, body: ReplyCreate, board: BoardService = Depends(get_board)):
    return board.add_reply(question_id, body.text, body.author, use_ai=body.use_ai)


@router.delete("", dependencies=[Depends(require_admin)])
async def clear_questions(board: BoardService = Depends(get_board)):
    return board.clear()


@router.delete("/{question_id}", dependencies=[Depends(require_admin)])
async def delete_question(question_id: str, board: BoardService = Depends(get_board)):
    return board.delete_question(question_id)


@router.delete("/{question_id}/replies/{reply_id}", dependencies=[Depends(require_admin)])
async def delete_reply(question_id: str, reply_id: str, board: BoardService = Depends(get_board)):
    return board.delete_reply(question_id, reply_id)
