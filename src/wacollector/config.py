"""Process configuration read from environment variables.

Required env vars:
- WEBHOOK_URL: ingestion endpoint that receives forwarded group messages

Everything else is optional; see ``load_settings`` for defaults.
"""

import os
import re
from dataclasses import dataclass, field
from typing import Literal, Mapping

RestartMode = Literal["inprocess", "exit"]

_TRUE_PATTERN = re.compile(r"^true$", re.IGNORECASE)

DEFAULT_AUTH_DIR = "./auth"
DEFAULT_PORT = 3000
DEFAULT_HOST = "0.0.0.0"
DEFAULT_WEBHOOK_TIMEOUT = 10.0
DEFAULT_RECONNECT_DELAY = 1.0
DEFAULT_RESTART_DELAY = 1.0
DEFAULT_EVENT_QUEUE_SIZE = 1000


class ConfigError(Exception):
    """Raised when the environment does not describe a runnable process."""

    pass


@dataclass(frozen=True)
class EvolutionSettings:
    """Connection details for the Evolution API backend."""

    base_url: str = ""
    instance: str = ""
    api_key: str = ""
    webhook_secret: str | None = None

    def is_configured(self) -> bool:
        return bool(self.base_url and self.instance and self.api_key)


@dataclass(frozen=True)
class Settings:
    """Immutable snapshot of the process configuration."""

    webhook_url: str
    webhook_secret: str | None = None
    webhook_timeout: float = DEFAULT_WEBHOOK_TIMEOUT
    forward_all: bool = False
    tag_pattern: re.Pattern[str] | None = None
    ignore_quoted: bool = False
    mention_text_fallback: bool = True
    my_phone: str | None = None
    my_lid_base: str | None = None
    owner_aliases: tuple[str, ...] = ()
    owner_display_name: str | None = None
    include_debug_fields: bool = False
    auth_dir: str = DEFAULT_AUTH_DIR
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    admin_secret: str | None = None
    cors_origins: tuple[str, ...] = ("*",)
    restart_mode: RestartMode = "inprocess"
    reconnect_delay: float = DEFAULT_RECONNECT_DELAY
    restart_delay: float = DEFAULT_RESTART_DELAY
    event_queue_size: int = DEFAULT_EVENT_QUEUE_SIZE
    evolution: EvolutionSettings = field(default_factory=EvolutionSettings)


def _opt(env: Mapping[str, str], key: str) -> str | None:
    value = env.get(key, "").strip()
    return value or None


def _flag(env: Mapping[str, str], key: str, default: bool) -> bool:
    raw = env.get(key)
    if raw is None or not raw.strip():
        return default
    return bool(_TRUE_PATTERN.match(raw.strip()))


def _number(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigError(f"{key} must be a number, got {raw!r}") from None
    if value < 0:
        raise ConfigError(f"{key} must not be negative")
    return value


def _integer(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key, "").strip()
    if not raw:
        return default
    try:
        return int(raw, 10)
    except ValueError:
        raise ConfigError(f"{key} must be an integer, got {raw!r}") from None


def _csv(raw: str | None) -> tuple[str, ...]:
    if not raw:
        return ()
    return tuple(part.strip() for part in raw.split(",") if part.strip())


def _compile_pattern(raw: str | None) -> re.Pattern[str] | None:
    if not raw:
        return None
    try:
        return re.compile(raw, re.IGNORECASE)
    except re.error as e:
        raise ConfigError(f"TAG_REGEX is not a valid regular expression: {e}") from None


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    """Build Settings from ``environ`` (defaults to ``os.environ``).

    Raises:
        ConfigError: If WEBHOOK_URL is missing or a value cannot be parsed.
    """
    env = os.environ if environ is None else environ

    webhook_url = _opt(env, "WEBHOOK_URL")
    if not webhook_url:
        raise ConfigError("Missing WEBHOOK_URL")

    restart_mode = (env.get("AUTORESTART_MODE", "") or "inprocess").strip().lower()
    if restart_mode not in ("inprocess", "exit"):
        raise ConfigError(
            f"AUTORESTART_MODE must be 'inprocess' or 'exit', got {restart_mode!r}"
        )

    port = _integer(env, "PORT", DEFAULT_PORT)
    if not 0 < port < 65536:
        raise ConfigError(f"PORT out of range: {port}")

    queue_size = _integer(env, "EVENT_QUEUE_SIZE", DEFAULT_EVENT_QUEUE_SIZE)
    if queue_size <= 0:
        raise ConfigError("EVENT_QUEUE_SIZE must be positive")

    cors_origins = _csv(env.get("CORS_ORIGIN")) or ("*",)

    return Settings(
        webhook_url=webhook_url,
        webhook_secret=_opt(env, "WEBHOOK_SECRET"),
        webhook_timeout=_number(env, "WEBHOOK_TIMEOUT_SECONDS", DEFAULT_WEBHOOK_TIMEOUT),
        forward_all=_flag(env, "FORWARD_ALL", False),
        tag_pattern=_compile_pattern(_opt(env, "TAG_REGEX")),
        ignore_quoted=_flag(env, "IGNORE_QUOTED", False),
        mention_text_fallback=_flag(env, "MENTION_TEXT_FALLBACK", True),
        my_phone=_opt(env, "MY_PHONE"),
        my_lid_base=_opt(env, "MY_LID_BASE") or _opt(env, "MY_LID"),
        owner_aliases=_csv(env.get("OWNER_ALIASES")),
        owner_display_name=_opt(env, "OWNER_DISPLAY_NAME"),
        include_debug_fields=_flag(env, "INCLUDE_DEBUG_FIELDS", False),
        auth_dir=_opt(env, "AUTH_DIR") or DEFAULT_AUTH_DIR,
        host=_opt(env, "HOST") or DEFAULT_HOST,
        port=port,
        admin_secret=_opt(env, "ADMIN_SECRET"),
        cors_origins=cors_origins,
        restart_mode=restart_mode,  # type: ignore[arg-type]
        reconnect_delay=_number(env, "RECONNECT_DELAY_SECONDS", DEFAULT_RECONNECT_DELAY),
        restart_delay=_number(env, "RESTART_DELAY_SECONDS", DEFAULT_RESTART_DELAY),
        event_queue_size=queue_size,
        evolution=EvolutionSettings(
            base_url=(_opt(env, "EVOLUTION_BASE_URL") or "").rstrip("/"),
            instance=_opt(env, "EVOLUTION_INSTANCE") or "",
            api_key=_opt(env, "EVOLUTION_API_KEY") or "",
            webhook_secret=_opt(env, "EVOLUTION_WEBHOOK_SECRET"),
        ),
    )
