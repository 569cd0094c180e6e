from __future__ import annotations

import os
from dataclasses import dataclass

ENV_PREFIX = "VOICETURN_"


def _getenv(name: str) -> str | None:
    return os.getenv(ENV_PREFIX + name)


def _getenv_bool(name: str, default: bool) -> bool:
    raw = _getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "t", "yes", "y", "on"}


def _getenv_int(name: str, default: int, *, min_value: int = 0) -> int:
    raw = _getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        return default
    if value < min_value:
        return default
    return value


def _getenv_str(name: str, default: str) -> str:
    raw = _getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw


def _getenv_csv(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = _getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return tuple(p.strip() for p in raw.split("|") if p.strip())


@dataclass(frozen=True, slots=True)
class SessionConfig:
    # Turn timing
    silence_ms: int = 2000
    hard_timeout_ms: int = 30_000
    max_attempts: int = 3
    retry_delay_ms: int = 500
    listen_delay_ms: int = 0  # scripted prompts: listen right after the prompt finishes
    live_listen_delay_ms: int = 500  # live agent: let residual playback die down first

    # Turn-taking
    barge_in_enabled: bool = True
    reprompt_text: str = "Can you hear me?"
    echo_phrases: tuple[str, ...] = ("can you hear me?",)

    # Speech engines
    locale: str = "en-US"
    pace_ms_per_char: int = 60

    # Channel
    ws_url: str = "ws://localhost:8080"
    ws_open_timeout_ms: int = 5000

    # Logging
    log_level: str = "INFO"
    structured_logs: bool = False

    def is_echo(self, text: str) -> bool:
        norm = (text or "").strip().lower()
        if norm and norm == self.reprompt_text.strip().lower():
            return True
        return any(norm == p.strip().lower() for p in self.echo_phrases)

    @staticmethod
    def from_env() -> "SessionConfig":
        log_level = _getenv_str("LOG_LEVEL", "INFO").strip().upper()
        if log_level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            log_level = "INFO"
        reprompt = _getenv_str("REPROMPT_TEXT", "Can you hear me?")
        return SessionConfig(
            silence_ms=_getenv_int("SILENCE_MS", 2000, min_value=1),
            hard_timeout_ms=_getenv_int("HARD_TIMEOUT_MS", 30_000, min_value=1),
            max_attempts=_getenv_int("MAX_ATTEMPTS", 3, min_value=1),
            retry_delay_ms=_getenv_int("RETRY_DELAY_MS", 500),
            listen_delay_ms=_getenv_int("LISTEN_DELAY_MS", 0),
            live_listen_delay_ms=_getenv_int("LIVE_LISTEN_DELAY_MS", 500),
            barge_in_enabled=_getenv_bool("BARGE_IN_ENABLED", True),
            reprompt_text=reprompt,
            # The re-prompt is always an echo phrase, whatever else is configured.
            echo_phrases=tuple(dict.fromkeys(_getenv_csv("ECHO_PHRASES", ()) + (reprompt.lower(),))),
            locale=_getenv_str("LOCALE", "en-US"),
            pace_ms_per_char=_getenv_int("PACE_MS_PER_CHAR", 60),
            ws_url=_getenv_str("WS_URL", "ws://localhost:8080"),
            ws_open_timeout_ms=_getenv_int("WS_OPEN_TIMEOUT_MS", 5000, min_value=1),
            log_level=log_level,
            structured_logs=_getenv_bool("STRUCTURED_LOGS", False),
        )
