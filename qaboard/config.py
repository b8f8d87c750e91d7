from pathlib import Path

import yaml
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    host: str = "0.0.0.0"
    port: int = 3001
    log_level: str = "INFO"
    log_redact_extra_patterns: str = ""
    cors_allowed_origins: str = "*"

    admin_username: str = "admin"
    admin_password: str = ""
    session_mode: str = "token"
    session_secret: str = ""
    session_ttl_seconds: int = 43200

    maintenance_eviction: str = "hard"
    maintenance_message: str = "The board is under maintenance. Please check back soon."

    question_order: str = "newest"
    max_text_chars: int = 2000
    max_author_chars: int = 50
    max_username_chars: int = 50
    anonymous_label: str = "Anonymous"
    guest_label: str = "Guest"

    ai_enabled: bool = False
    ai_author_label: str = "AI Assistant"
    ai_fallback_text: str = "Sorry, an automatic answer is not available right now."
    ai_timeout_seconds: float = 30.0
    ai_backend: str = "llm"
    ai_model: str = "auto"
    ai_system_prompt: str = "You are a helpful teaching assistant. Answer the student's question briefly and clearly."
    backends_config_path: str = "/config/backends.yaml"

    realtime_path: str = "/ws"
    subscriber_queue_size: int = 100
    sse_keepalive_seconds: float = 15.0

    model_config = {"env_prefix": "QABOARD_"}


settings = Settings()


def load_backends_config(path: str | None = None) -> dict:
    """Load backend registry from YAML config; a missing file means no backends."""
    config_path = Path(path or settings.backends_config_path)
    if not config_path.exists():
        return {}
    with open(config_path) as f:
        return yaml.safe_load(f) or {}


def get_backend_url(config: dict, name: str) -> str:
    """Get the base URL for a named backend."""
    backend = config.get("backends", {}).get(name)
    if not backend:
        raise KeyError(f"Backend not found in config: {name}")
    return backend["url"]
