"""Administrator sessions: login, bearer validation and revocation."""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from itsdangerous import BadData, SignatureExpired, URLSafeTimedSerializer

from .errors import InvalidCredentials, InvalidSession

logger = logging.getLogger(__name__)

SESSION_MODES = {"token", "signed"}
SESSION_SALT = "qaboard-admin-session"


@dataclass(frozen=True)
class SessionInfo:
    session_id: str
    principal: str
    created_at: datetime
    expires_at: datetime | None = None


class SessionRegistry:
    """Tracks live admin sessions for a single configured administrator.

    In ``token`` mode the bearer credential is the session id itself. In
    ``signed`` mode it is a timestamped, signed ``{"sid": ...}`` payload; a
    credential is honored only while the signature verifies, it is younger than
    ``ttl_seconds``, and its ``sid`` is still registered, so ``revoke`` wins over
    natural expiry.
    """

    def __init__(
        self,
        *,
        username: str,
        password: str,
        mode: str = "token",
        secret: str = "",
        ttl_seconds: int = 43200,
    ):
        if mode not in SESSION_MODES:
            raise ValueError(f"Unknown session mode: {mode!r}")
        if mode == "signed" and not secret:
            raise ValueError("A session secret is required for signed sessions")
        self._username = username
        self._password = password
        self._mode = mode
        self._ttl_seconds = max(1, int(ttl_seconds))
        self._signer = URLSafeTimedSerializer(secret, salt=SESSION_SALT) if mode == "signed" else None
        self._sessions: dict[str, SessionInfo] = {}

    @property
    def mode(self) -> str:
        return self._mode

    def count(self) -> int:
        return len(self._sessions)

    def login(self, username: str, password: str) -> str:
        if not self._password:
            logger.warning("Admin login attempted but no admin password is configured")
            raise InvalidCredentials("Invalid credentials")
        user_ok = secrets.compare_digest(str(username or "").encode("utf-8"), self._username.encode("utf-8"))
        pass_ok = secrets.compare_digest(str(password or "").encode("utf-8"), self._password.encode("utf-8"))
        if not (user_ok and pass_ok):
            raise InvalidCredentials("Invalid credentials")

        sid = secrets.token_urlsafe(32)
        now = datetime.now(timezone.utc)
        self._sessions[sid] = SessionInfo(
            session_id=sid,
            principal=self._username,
            created_at=now,
            expires_at=now + timedelta(seconds=self._ttl_seconds) if self._signer else None,
        )
        logger.info("Admin session opened for %s", self._username)
        if self._signer is None:
            return sid
        return self._signer.dumps({"sid": sid})

    def validate(self, token: str | None) -> SessionInfo:
        sid = self._session_id_from(token)
        session = self._sessions.get(sid) if sid else None
        if session is None:
            raise InvalidSession("Invalid or expired session")
        return session

    def revoke(self, token: str | None) -> bool:
        try:
            sid = self._session_id_from(token, check_expiry=False)
        except InvalidSession:
            return False
        return self._sessions.pop(sid, None) is not None

    def _session_id_from(self, token: str | None, *, check_expiry: bool = True) -> str:
        raw = str(token or "").strip()
        if not raw:
            raise InvalidSession("Missing session token")
        if self._signer is None:
            return raw

        max_age = self._ttl_seconds if check_expiry else None
        try:
            payload = self._signer.loads(raw, max_age=max_age)
        except SignatureExpired as e:
            self._forget_expired(e)
            raise InvalidSession("Session expired") from e
        except BadData as e:
            raise InvalidSession("Invalid session signature") from e
        sid = payload.get("sid") if isinstance(payload, dict) else None
        if not isinstance(sid, str) or not sid:
            raise InvalidSession("Malformed session token")
        return sid

    def _forget_expired(self, error: SignatureExpired) -> None:
        # The signature verified, only the age check failed, so the payload is trusted.
        if error.payload is None:
            return
        try:
            payload = self._signer.load_payload(error.payload)
        except BadData:
            return
        if isinstance(payload, dict):
            self._sessions.pop(payload.get("sid"), None)
