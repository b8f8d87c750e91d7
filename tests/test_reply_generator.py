import asyncio
import json

import httpx

from qaboard.reply_generator import CircuitBreaker, ReplyGenerator

FALLBACK = "No automatic answer right now."
BACKENDS = {"backends": {"llm": {"url": "http://llm.test", "api_key_env": "QABOARD_TEST_LLM_KEY"}}}


def _completion(content: str) -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


async def _generate(handler, prompt="What is TCP?", **overrides) -> str:
    options = {
        "backends_config": BACKENDS,
        "system_prompt": "Be brief.",
        "fallback_text": FALLBACK,
        "transport": httpx.MockTransport(handler),
    }
    options.update(overrides)
    generator = ReplyGenerator(**options)
    await generator.start()
    try:
        return await generator.generate(prompt)
    finally:
        await generator.stop()


def test_successful_completion_is_returned(monkeypatch):
    monkeypatch.setenv("QABOARD_TEST_LLM_KEY", "sk-test")
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=_completion("  A transport protocol.  "))

    assert asyncio.run(_generate(handler)) == "A transport protocol."

    request = seen[0]
    assert str(request.url) == "http://llm.test/v1/chat/completions"
    assert request.headers["Authorization"] == "Bearer sk-test"
    body = json.loads(request.content)
    assert body["messages"] == [
        {"role": "system", "content": "Be brief."},
        {"role": "user", "content": "What is TCP?"},
    ]
    assert body["stream"] is False


def test_no_authorization_header_without_key(monkeypatch):
    monkeypatch.delenv("QABOARD_TEST_LLM_KEY", raising=False)
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=_completion("ok"))

    asyncio.run(_generate(handler))
    assert "Authorization" not in seen[0].headers


def test_unconfigured_backend_uses_fallback_without_a_request():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=_completion("unused"))

    assert asyncio.run(_generate(handler, backends_config={})) == FALLBACK
    assert seen == []


def test_server_error_uses_fallback():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="boom")

    assert asyncio.run(_generate(handler)) == FALLBACK


def test_invalid_json_uses_fallback():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"<html>", headers={"Content-Type": "text/html"})

    assert asyncio.run(_generate(handler)) == FALLBACK


def test_missing_choices_uses_fallback():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"choices": []})

    assert asyncio.run(_generate(handler)) == FALLBACK


def test_empty_answer_uses_fallback():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=_completion("   "))

    assert asyncio.run(_generate(handler)) == FALLBACK


def test_timeout_uses_fallback():
    async def handler(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(5)
        return httpx.Response(200, json=_completion("too late"))

    assert asyncio.run(_generate(handler, timeout_seconds=0.1)) == FALLBACK


def test_connection_errors_use_fallback():
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        raise httpx.ConnectError("connection refused", request=request)

    assert asyncio.run(_generate(handler, max_retries=1)) == FALLBACK
    assert len(attempts) == 1


def test_generate_before_start_uses_fallback():
    generator = ReplyGenerator(backends_config=BACKENDS, fallback_text=FALLBACK)
    assert asyncio.run(generator.generate("q")) == FALLBACK


def test_repeated_bad_responses_stop_further_requests():
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        return httpx.Response(500, text="boom")

    async def scenario():
        generator = ReplyGenerator(
            backends_config=BACKENDS,
            fallback_text=FALLBACK,
            failure_threshold=2,
            cooldown_seconds=60,
            transport=httpx.MockTransport(handler),
        )
        await generator.start()
        try:
            return [await generator.generate("q") for _ in range(3)]
        finally:
            await generator.stop()

    assert asyncio.run(scenario()) == [FALLBACK] * 3
    assert len(attempts) == 2


def test_breaker_opens_at_threshold_and_success_closes_it():
    breaker = CircuitBreaker(threshold=2, cooldown=60)
    breaker.record_failure()
    assert breaker.state == "closed"
    breaker.record_failure()
    assert breaker.state == "open"
    assert not breaker.allow_request()

    breaker.record_success()
    assert breaker.state == "closed"
    assert breaker.failures == 0


def test_breaker_half_opens_after_cooldown():
    breaker = CircuitBreaker(threshold=1, cooldown=0)
    breaker.record_failure()
    assert breaker.state == "half-open"
    assert breaker.allow_request()
