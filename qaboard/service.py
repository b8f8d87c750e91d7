"""Board service: owns every component and pairs each mutation with its broadcast."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from .config import Settings
from .content_store import ContentStore
from .errors import InvalidInput, QuestionNotFound, ServiceUnavailable
from .hub import BroadcastHub, Connection, ConnectionRegistry, Member
from .maintenance import EVICTION_MODES, MaintenanceState
from .reply_generator import ReplyGenerator
from .sessions import SessionInfo, SessionRegistry

logger = logging.getLogger(__name__)

# 1013 = "try again later"; browsers surface it to the client's onclose.
MAINTENANCE_CLOSE_CODE = 1013
SHUTDOWN_CLOSE_CODE = 1001


class BoardService:
    """Single owner of board state.

    Reads go straight to the store. Every write runs synchronously to completion
    and ends with a broadcast describing exactly what changed. Generated
    answers are the one two-phase flow: they are appended by a background task
    after the primary write has been acknowledged and broadcast.
    """

    def __init__(
        self,
        *,
        store: ContentStore,
        sessions: SessionRegistry,
        maintenance: MaintenanceState,
        hub: BroadcastHub,
        generator: ReplyGenerator | None = None,
        eviction: str = "hard",
        ai_enabled: bool = False,
        ai_author_label: str = "AI Assistant",
        guest_label: str = "Guest",
        max_username_chars: int = 50,
    ):
        if eviction not in EVICTION_MODES:
            raise ValueError(f"Unknown maintenance eviction mode: {eviction!r}")
        self.store = store
        self.sessions = sessions
        self.maintenance = maintenance
        self.hub = hub
        self.generator = generator
        self._eviction = eviction
        self._ai_enabled = ai_enabled
        self._ai_author_label = ai_author_label
        self._guest_label = guest_label
        self._max_username_chars = max(1, max_username_chars)
        self._ai_tasks: set[asyncio.Task] = set()
        self.maintenance.set_expiry_listener(self._announce_maintenance)

    @classmethod
    def from_settings(cls, settings: Settings, *, generator: ReplyGenerator | None = None) -> "BoardService":
        return cls(
            store=ContentStore(
                max_text_chars=settings.max_text_chars,
                max_author_chars=settings.max_author_chars,
                anonymous_label=settings.anonymous_label,
                order=settings.question_order.strip().lower(),
            ),
            sessions=SessionRegistry(
                username=settings.admin_username,
                password=settings.admin_password,
                mode=settings.session_mode.strip().lower(),
                secret=settings.session_secret,
                ttl_seconds=settings.session_ttl_seconds,
            ),
            maintenance=MaintenanceState(message=settings.maintenance_message),
            hub=BroadcastHub(ConnectionRegistry(), guest_label=settings.guest_label),
            generator=generator,
            eviction=settings.maintenance_eviction.strip().lower(),
            ai_enabled=settings.ai_enabled,
            ai_author_label=settings.ai_author_label,
            guest_label=settings.guest_label,
            max_username_chars=settings.max_username_chars,
        )

    @property
    def eviction(self) -> str:
        return self._eviction

    # --- Content ---

    def list_questions(self) -> list[dict[str, Any]]:
        return [question.to_dict() for question in self.store.list_questions()]

    def create_question(self, text: str | None, author: str | None = None, *, use_ai: bool = False) -> dict[str, Any]:
        self._ensure_writable()
        question = self.store.create_question(text, self._human_author(author))
        payload = question.to_dict()
        self.hub.broadcast("new-question", payload)
        logger.info("Question %s created", question.id)
        if use_ai:
            self._spawn_ai_reply(question.id, question.text)
        return payload

    def add_reply(
        self,
        question_id: str,
        text: str | None,
        author: str | None = None,
        *,
        use_ai: bool = False,
    ) -> dict[str, Any]:
        self._ensure_writable()
        reply = self.store.append_reply(question_id, text, self._human_author(author))
        payload = reply.to_dict()
        self.hub.broadcast("new-reply", {"questionId": question_id, "reply": payload})
        logger.info("Reply %s added to question %s", reply.id, question_id)
        if use_ai:
            question = self.store.get_question(question_id)
            self._spawn_ai_reply(question_id, f"Question: {question.text}\nFollow-up: {reply.text}")
        return payload

    def delete_question(self, question_id: str) -> dict[str, Any]:
        question = self.store.delete_question(question_id)
        self.hub.broadcast("delete-question", {"questionId": question.id})
        logger.info("Question %s deleted", question.id)
        return {"deleted": question.id}

    def delete_reply(self, question_id: str, reply_id: str) -> dict[str, Any]:
        reply = self.store.delete_reply(question_id, reply_id)
        self.hub.broadcast("delete-reply", {"questionId": question_id, "replyId": reply.id})
        logger.info("Reply %s deleted from question %s", reply.id, question_id)
        return {"deleted": reply.id, "questionId": question_id}

    def clear(self) -> dict[str, Any]:
        removed = self.store.clear()
        self.hub.broadcast("clear-all", {})
        logger.info("Board cleared (%d questions removed)", removed)
        return {"cleared": removed}

    def _ensure_writable(self) -> None:
        if self.maintenance.active:
            raise ServiceUnavailable(self.maintenance.snapshot())

    def _human_author(self, author: str | None) -> str | None:
        # The generated-content label is reserved.
        if author and author.strip().casefold() == self._ai_author_label.casefold():
            return None
        return author

    # --- Generated answers ---

    def _spawn_ai_reply(self, question_id: str, prompt: str) -> None:
        if not self._ai_enabled or self.generator is None:
            return
        task = asyncio.get_running_loop().create_task(self._append_ai_reply(question_id, prompt))
        self._ai_tasks.add(task)
        task.add_done_callback(self._ai_tasks.discard)

    async def _append_ai_reply(self, question_id: str, prompt: str) -> None:
        answer = await self.generator.generate(prompt)
        try:
            reply = self.store.append_reply(question_id, answer, self._ai_author_label)
        except QuestionNotFound:
            logger.info("Question %s was deleted before its generated answer arrived", question_id)
            return
        except InvalidInput:
            logger.warning("Generated answer for question %s was empty; discarded", question_id)
            return
        self.hub.broadcast("new-reply", {"questionId": question_id, "reply": reply.to_dict()})
        logger.info("Generated reply %s added to question %s", reply.id, question_id)

    async def wait_for_background_tasks(self) -> None:
        if self._ai_tasks:
            await asyncio.gather(*list(self._ai_tasks), return_exceptions=True)

    # --- Administration ---

    def login(self, username: str, password: str) -> str:
        return self.sessions.login(username, password)

    def authorize(self, token: str | None) -> SessionInfo:
        return self.sessions.validate(token)

    def logout(self, token: str | None) -> bool:
        return self.sessions.revoke(token)

    def maintenance_snapshot(self) -> dict[str, Any]:
        return self.maintenance.snapshot()

    def enable_maintenance(
        self,
        message: str | None = None,
        logo_url: str | None = None,
        duration_minutes: float | None = None,
    ) -> dict[str, Any]:
        snapshot = self.maintenance.enable(message, logo_url, duration_minutes)
        self._announce_maintenance(snapshot)
        if self._eviction == "hard":
            self.hub.evict_all(code=MAINTENANCE_CLOSE_CODE, reason="maintenance")
        return snapshot

    def disable_maintenance(self) -> dict[str, Any]:
        snapshot = self.maintenance.disable()
        self._announce_maintenance(snapshot)
        return snapshot

    def _announce_maintenance(self, snapshot: dict[str, Any]) -> None:
        self.hub.broadcast("maintenance", snapshot)

    def members_count(self) -> int:
        return self.hub.count()

    def list_members(self) -> list[dict[str, str]]:
        return self.hub.list_members()

    # --- Real-time lifecycle ---

    def open_connection(self, connection: Connection) -> Member:
        member = self.hub.connect(connection)
        self.hub.send(connection, "connected", {"id": member.id, "message": "Welcome"})
        snapshot = self.maintenance.snapshot()
        self.hub.send(connection, "maintenance", snapshot)
        if snapshot["status"] and self._eviction == "hard":
            self.hub.evict(connection, code=MAINTENANCE_CLOSE_CODE, reason="maintenance")
        return member

    def close_connection(self, connection: Connection) -> None:
        member = self.hub.disconnect(connection)
        if member is None:
            return
        self.hub.broadcast(
            "user-left",
            {"id": member.id, "username": member.display_name(self._guest_label), "count": self.hub.count()},
        )

    def handle_client_message(self, connection: Connection, raw: str) -> None:
        try:
            message = json.loads(raw)
        except json.JSONDecodeError:
            logger.debug("Ignoring non-JSON frame from %s", connection.member.id)
            return
        if not isinstance(message, dict):
            logger.debug("Ignoring non-object frame from %s", connection.member.id)
            return
        kind = message.get("type")
        if kind == "set-username":
            self.set_username(connection, message.get("username"))
        elif kind == "typing":
            self.typing(connection, message.get("questionId"))
        else:
            logger.debug("Ignoring unknown message type %r from %s", kind, connection.member.id)

    def set_username(self, connection: Connection, username: Any) -> None:
        if not self.hub.is_registered(connection):
            return
        member = connection.member
        name = username.strip()[: self._max_username_chars] if isinstance(username, str) else ""
        if not name:
            self.hub.send(connection, "error", {"message": "Display name is required"})
            return
        if member.name is not None:
            self.hub.send(connection, "error", {"message": "Display name is already set"})
            return
        member.name = name
        self.hub.broadcast(
            "user-joined",
            {"id": member.id, "username": name, "count": self.hub.count()},
            exclude=connection,
        )

    def typing(self, connection: Connection, question_id: Any) -> None:
        if not self.hub.is_registered(connection):
            return
        self.hub.broadcast(
            "typing",
            {
                "questionId": question_id if isinstance(question_id, str) else None,
                "username": connection.member.display_name(self._guest_label),
            },
            exclude=connection,
        )

    # --- Lifecycle ---

    async def shutdown(self) -> None:
        self.maintenance.shutdown()
        tasks = list(self._ai_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self.hub.evict_all(code=SHUTDOWN_CLOSE_CODE, reason="shutdown")
