"""In-memory question and reply storage."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from .errors import InvalidInput, QuestionNotFound, ReplyNotFound

QUESTION_ORDERS = {"newest", "oldest"}


def _new_id() -> str:
    return uuid.uuid4().hex


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Reply:
    id: str
    text: str
    author: str
    created_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "author": self.author,
            "createdAt": self.created_at.isoformat(),
        }


@dataclass
class Question:
    id: str
    text: str
    author: str
    created_at: datetime
    replies: list[Reply] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "author": self.author,
            "createdAt": self.created_at.isoformat(),
            "replies": [reply.to_dict() for reply in self.replies],
        }


class ContentStore:
    """Questions keyed by id, each owning its replies.

    Every mutator is synchronous so a mutation and the broadcast that follows it
    run without yielding to the event loop.
    """

    def __init__(
        self,
        *,
        max_text_chars: int = 2000,
        max_author_chars: int = 50,
        anonymous_label: str = "Anonymous",
        order: str = "newest",
    ):
        if order not in QUESTION_ORDERS:
            raise ValueError(f"Unknown question order: {order!r}")
        self._questions: dict[str, Question] = {}
        self._max_text_chars = max(1, max_text_chars)
        self._max_author_chars = max(1, max_author_chars)
        self._anonymous_label = anonymous_label
        self._order = order

    @property
    def order(self) -> str:
        return self._order

    def _clean_text(self, text: str | None) -> str:
        value = str(text or "").strip()
        if not value:
            raise InvalidInput("Text is required")
        return value[: self._max_text_chars]

    def _clean_author(self, author: str | None) -> str:
        value = str(author or "").strip()
        if not value:
            return self._anonymous_label
        return value[: self._max_author_chars]

    def list_questions(self) -> list[Question]:
        """Questions newest-first or in insertion order, per the configured order."""
        items = list(self._questions.values())
        if self._order == "newest":
            # Dicts keep insertion order, so reversing is a stable newest-first.
            items.reverse()
        return items

    def get_question(self, question_id: str) -> Question:
        question = self._questions.get(question_id)
        if question is None:
            raise QuestionNotFound(question_id)
        return question

    def count(self) -> int:
        return len(self._questions)

    def create_question(self, text: str | None, author: str | None = None) -> Question:
        question = Question(
            id=_new_id(),
            text=self._clean_text(text),
            author=self._clean_author(author),
            created_at=_now(),
        )
        self._questions[question.id] = question
        return question

    def append_reply(self, question_id: str, text: str | None, author: str | None = None) -> Reply:
        question = self.get_question(question_id)
        reply = Reply(
            id=_new_id(),
            text=self._clean_text(text),
            author=self._clean_author(author),
            created_at=_now(),
        )
        question.replies.append(reply)
        return reply

    def delete_question(self, question_id: str) -> Question:
        question = self._questions.pop(question_id, None)
        if question is None:
            raise QuestionNotFound(question_id)
        return question

    def delete_reply(self, question_id: str, reply_id: str) -> Reply:
        question = self.get_question(question_id)
        for idx, reply in enumerate(question.replies):
            if reply.id == reply_id:
                return question.replies.pop(idx)
        raise ReplyNotFound(question_id, reply_id)

    def clear(self) -> int:
        removed = len(self._questions)
        self._questions.clear()
        return removed
