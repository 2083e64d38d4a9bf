"""
Configuration via environment variables.

Paths default to $XDG_STATE_HOME/mpd-2-lastfm (~/.local/state/mpd-2-lastfm).
"""

from __future__ import annotations
import os
from dataclasses import dataclass
from typing import Mapping

APP_NAME = "mpd-2-lastfm"


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class Settings:
    mpd_host: str
    mpd_port: int
    mpd_socket: str | None
    mpd_password: str | None
    mpd_channel: str
    poll_interval: int
    log_level: str

    lastfm_api_key: str | None
    lastfm_api_secret: str | None
    lastfm_session_key: str | None
    lastfm_username: str | None
    lastfm_password_md5: str | None
    non_interactive: bool

    queue_path: str
    session_key_path: str
    min_retry_time: int
    max_retry_time: int
    batch_size: int

    scrobble_max_threshold: float
    scrobble_min_duration: float
    scrobble_unknown_threshold: float
    restart_tolerance: float

    def validate(self) -> None:
        """Fail early with a clear message for anything the daemon cannot run without."""
        if not self.lastfm_api_key or not self.lastfm_api_secret:
            raise ConfigError("LASTFM_API_KEY and LASTFM_API_SECRET are required")
        if self.non_interactive and not (
            self.lastfm_session_key or (self.lastfm_username and self.lastfm_password_md5)
        ):
            raise ConfigError("NON_INTERACTIVE needs LASTFM_SESSION_KEY or "
                              "LASTFM_USERNAME + LASTFM_PASSWORD_MD5")
        if self.min_retry_time > self.max_retry_time:
            raise ConfigError("MIN_RETRY_TIME must not exceed MAX_RETRY_TIME")
        if not 1 <= self.batch_size <= 50:
            raise ConfigError("BATCH_SIZE must be between 1 and 50")


def _state_dir(environ: Mapping[str, str]) -> str:
    base = environ.get("XDG_STATE_HOME") or os.path.join(os.path.expanduser("~"), ".local", "state")
    return os.path.join(base, APP_NAME)


def _int(environ, name, default, minimum=None) -> int:
    raw = environ.get(name, str(default))
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from None
    if minimum is not None:
        value = max(minimum, value)
    return value


def _float(environ, name, default) -> float:
    raw = environ.get(name, str(default))
    try:
        value = float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from None
    if value < 0:
        raise ConfigError(f"{name} must not be negative")
    return value


def _bool(environ, name) -> bool:
    return environ.get(name, "").strip().lower() in ("1", "true", "yes", "on")


def from_env(environ: Mapping[str, str] = os.environ) -> Settings:
    state = _state_dir(environ)
    return Settings(
        mpd_host=environ.get("MPD_HOST", "localhost"),
        mpd_port=_int(environ, "MPD_PORT", 6600),
        mpd_socket=environ.get("MPD_SOCKET") or None,
        mpd_password=environ.get("MPD_PASSWORD") or None,
        mpd_channel=environ.get("MPD_CHANNEL", "lastfm"),
        poll_interval=_int(environ, "POLL_INTERVAL", 5, minimum=1),
        log_level=environ.get("LOG_LEVEL", "INFO").upper(),
        lastfm_api_key=environ.get("LASTFM_API_KEY"),
        lastfm_api_secret=environ.get("LASTFM_API_SECRET"),
        lastfm_session_key=environ.get("LASTFM_SESSION_KEY") or None,
        lastfm_username=environ.get("LASTFM_USERNAME") or None,
        lastfm_password_md5=environ.get("LASTFM_PASSWORD_MD5") or None,
        non_interactive=_bool(environ, "NON_INTERACTIVE"),
        queue_path=environ.get("QUEUE_PATH") or os.path.join(state, "queue.json"),
        session_key_path=environ.get("SESSION_KEY_PATH") or os.path.join(state, "session.json"),
        min_retry_time=_int(environ, "MIN_RETRY_TIME", 15, minimum=1),
        max_retry_time=_int(environ, "MAX_RETRY_TIME", 960, minimum=1),
        batch_size=_int(environ, "BATCH_SIZE", 50),
        scrobble_max_threshold=_float(environ, "SCROBBLE_MAX_THRESHOLD", 240),
        scrobble_min_duration=_float(environ, "SCROBBLE_MIN_DURATION", 30),
        scrobble_unknown_threshold=_float(environ, "SCROBBLE_UNKNOWN_THRESHOLD", 240),
        restart_tolerance=_float(environ, "RESTART_TOLERANCE", 2),
    )
