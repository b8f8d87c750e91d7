"""Process logging with credential redaction."""

from __future__ import annotations

import logging
import re


_BUILTIN_RULES: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"(?i)\b(authorization)\s*:\s*bearer\s+[a-z0-9._\-+/=]+"), r"\1: Bearer [REDACTED]"),
    (re.compile(r"(?i)\bbearer\s+[a-z0-9._\-+/=]+"), "Bearer [REDACTED]"),
    (
        re.compile(r'(?i)("?(?:api[-_]?key|token|secret|password|passwd|cookie)"?\s*[:=]\s*)(".*?"|[^,\s;]+)'),
        r"\1[REDACTED]",
    ),
)


def compile_extra_patterns(raw: str) -> list[re.Pattern[str]]:
    """Parse ``||``-separated regexes; entries that do not compile are skipped."""
    patterns = []
    for chunk in (raw or "").split("||"):
        chunk = chunk.strip()
        if not chunk:
            continue
        try:
            patterns.append(re.compile(chunk))
        except re.error:
            continue
    return patterns


class LogRedactor:
    """Scrub admin credentials and operator-supplied patterns from log text."""

    def __init__(self, extra_patterns: str = ""):
        self._rules = list(_BUILTIN_RULES)
        self._rules.extend((pattern, "[REDACTED]") for pattern in compile_extra_patterns(extra_patterns))

    def redact(self, text: str) -> str:
        for regex, replacement in self._rules:
            text = regex.sub(replacement, text)
        return text


class RedactingFilter(logging.Filter):
    def __init__(self, redactor: LogRedactor):
        super().__init__()
        self._redactor = redactor

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = self._redactor.redact(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def configure_logging(level: str, extra_patterns: str = "") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    for handler in logging.getLogger().handlers:
        if any(isinstance(f, RedactingFilter) for f in handler.filters):
            continue
        handler.addFilter(RedactingFilter(LogRedactor(extra_patterns)))
