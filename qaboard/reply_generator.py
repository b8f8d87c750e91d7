"""Automatic answers from an OpenAI-compatible chat-completions backend."""

import asyncio
import logging
import os
import time
from dataclasses import dataclass, field

import httpx

from .config import get_backend_url

logger = logging.getLogger(__name__)


@dataclass
class CircuitBreaker:
    """Stops calling the answer backend after repeated failures.

    ``threshold`` consecutive failures open the breaker. Once ``cooldown``
    seconds have passed it reports half-open and lets requests probe again;
    the next success closes it, the next failure re-opens it.
    """

    threshold: int = 5
    cooldown: float = 30.0
    failures: int = field(default=0, init=False)
    opened_at: float | None = field(default=None, init=False)

    @property
    def state(self) -> str:
        if self.opened_at is None:
            return "closed"
        if time.monotonic() - self.opened_at >= self.cooldown:
            return "half-open"
        return "open"

    def allow_request(self) -> bool:
        return self.state != "open"

    def record_failure(self) -> None:
        self.failures += 1
        if self.failures < self.threshold:
            return
        if self.opened_at is None:
            logger.warning("Reply backend disabled for %.0fs after %d failures", self.cooldown, self.failures)
        self.opened_at = time.monotonic()

    def record_success(self) -> None:
        self.failures = 0
        self.opened_at = None


class ReplyGenerator:
    """Turns a question into an answer string; never raises to the caller.

    Missing configuration, backend errors, malformed payloads and timeouts all
    produce ``fallback_text``.
    """

    def __init__(
        self,
        *,
        backends_config: dict,
        backend_name: str = "llm",
        model: str = "auto",
        system_prompt: str = "",
        fallback_text: str = "",
        timeout_seconds: float = 30.0,
        max_retries: int = 2,
        failure_threshold: int = 5,
        cooldown_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._backends_config = backends_config
        self._backend_name = backend_name
        self._model = model
        self._system_prompt = system_prompt
        self._fallback_text = fallback_text
        self._timeout_seconds = max(0.1, timeout_seconds)
        self._max_retries = max(1, max_retries)
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._breaker = CircuitBreaker(threshold=max(1, failure_threshold), cooldown=cooldown_seconds)

    @property
    def fallback_text(self) -> str:
        return self._fallback_text

    @property
    def configured(self) -> bool:
        return self._backend_name in self._backends_config.get("backends", {})

    async def start(self) -> None:
        if self._client is not None:
            return
        self._client = httpx.AsyncClient(
            transport=self._transport,
            follow_redirects=True,
            limits=httpx.Limits(max_connections=20, max_keepalive_connections=5),
        )

    async def stop(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def generate(self, prompt: str) -> str:
        if not self.configured:
            logger.info("Reply backend '%s' is not configured; using fallback", self._backend_name)
            return self._fallback_text
        try:
            answer = await asyncio.wait_for(self._complete(prompt), timeout=self._timeout_seconds)
        except asyncio.TimeoutError:
            self._breaker.record_failure()
            logger.warning("Reply generation timed out after %.1fs", self._timeout_seconds)
            return self._fallback_text
        except Exception as e:
            logger.warning("Reply generation failed: %s", e)
            return self._fallback_text
        return answer or self._fallback_text

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        backend = self._backends_config.get("backends", {}).get(self._backend_name, {})
        key_env = backend.get("api_key_env") if isinstance(backend, dict) else None
        api_key = os.getenv(key_env, "") if key_env else ""
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        return headers

    def _payload(self, prompt: str) -> dict:
        messages = []
        if self._system_prompt:
            messages.append({"role": "system", "content": self._system_prompt})
        messages.append({"role": "user", "content": prompt})
        return {"model": self._model, "messages": messages, "stream": False}

    async def _complete(self, prompt: str) -> str:
        if self._client is None:
            raise RuntimeError("Reply generator is not started")
        if not self._breaker.allow_request():
            raise RuntimeError(f"Reply backend '{self._backend_name}' is cooling down after repeated failures")

        base_url = get_backend_url(self._backends_config, self._backend_name)
        url = f"{base_url.rstrip('/')}/v1/chat/completions"
        delays = [0.5, 1.0, 2.0]

        last_exc: Exception | None = None
        for attempt in range(self._max_retries):
            try:
                resp = await self._client.post(url, json=self._payload(prompt), headers=self._headers())
            except (httpx.ConnectError, httpx.ConnectTimeout) as e:
                last_exc = e
                self._breaker.record_failure()
                if attempt < self._max_retries - 1:
                    delay = delays[min(attempt, len(delays) - 1)]
                    logger.warning(
                        "%s attempt %d failed: %s (retry in %.1fs)",
                        self._backend_name, attempt + 1, e, delay,
                    )
                    await asyncio.sleep(delay)
                continue
            try:
                answer = self._extract_answer(resp)
            except RuntimeError:
                self._breaker.record_failure()
                raise
            self._breaker.record_success()
            return answer

        raise last_exc

    @staticmethod
    def _extract_answer(resp: httpx.Response) -> str:
        if resp.status_code >= 400:
            raise RuntimeError(f"Reply backend returned status {resp.status_code}")
        try:
            data = resp.json()
        except ValueError as e:
            raise RuntimeError("Reply backend returned invalid JSON") from e
        choices = data.get("choices") if isinstance(data, dict) else None
        if not isinstance(choices, list) or not choices:
            raise RuntimeError("Reply backend returned no choices")
        message = choices[0].get("message") if isinstance(choices[0], dict) else None
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, str):
            raise RuntimeError("Reply backend returned no message content")
        return content.strip()
