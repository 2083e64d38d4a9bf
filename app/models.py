"""
Plain data shared by the player, state machine, queue and worker.

Everything here is immutable and JSON-friendly (to_dict / from_dict) so the
action queue can persist it without pickling.
"""

from __future__ import annotations
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Dict


class Mode(str, Enum):
    PLAYING = "play"
    PAUSED = "pause"
    STOPPED = "stop"


# -------------------------
# Track identity
# -------------------------
@dataclass(frozen=True)
class Track:
    artist: str
    title: str
    album: str | None = None
    duration: int | None = None       # seconds
    album_artist: str | None = None
    track_number: str | None = None
    mbid: str | None = None           # MusicBrainz track id

    @property
    def identity(self) -> tuple:
        # Player ids are not stable across player restarts; metadata is.
        return (self.artist, self.title, self.album)

    def label(self) -> str:
        return f"{self.artist} - {self.title}" + (f" [{self.album}]" if self.album else "")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Track":
        return cls(**data)


@dataclass(frozen=True)
class Snapshot:
    """One observation of the player: what is loaded, where, and in which mode."""
    track: Track | None
    elapsed: float | None
    mode: Mode
    song_id: str | None = None


@dataclass(frozen=True)
class ScrobbleCandidate:
    track: Track
    started_at: int       # unix seconds
    listened: float       # credited seconds

    def to_dict(self) -> Dict[str, Any]:
        return {"track": self.track.to_dict(), "started_at": self.started_at, "listened": self.listened}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScrobbleCandidate":
        return cls(
            track=Track.from_dict(data["track"]),
            started_at=int(data["started_at"]),
            listened=float(data["listened"]),
        )


# -------------------------
# Outbound actions
# -------------------------
class ActionKind(str, Enum):
    NOW_PLAYING = "now_playing"
    SCROBBLE = "scrobble"
    LOVE = "love"
    UNLOVE = "unlove"


@dataclass(frozen=True)
class Action:
    """Tagged variant: NowPlaying/Love/Unlove carry a track, Scrobble a candidate."""
    kind: ActionKind
    track: Track
    candidate: ScrobbleCandidate | None = None

    @classmethod
    def now_playing(cls, track: Track) -> "Action":
        return cls(ActionKind.NOW_PLAYING, track)

    @classmethod
    def scrobble(cls, candidate: ScrobbleCandidate) -> "Action":
        return cls(ActionKind.SCROBBLE, candidate.track, candidate)

    @classmethod
    def love(cls, track: Track) -> "Action":
        return cls(ActionKind.LOVE, track)

    @classmethod
    def unlove(cls, track: Track) -> "Action":
        return cls(ActionKind.UNLOVE, track)

    def to_dict(self) -> Dict[str, Any]:
        if self.candidate is not None:
            return {"kind": self.kind.value, "candidate": self.candidate.to_dict()}
        return {"kind": self.kind.value, "track": self.track.to_dict()}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Action":
        kind = ActionKind(data["kind"])
        if kind is ActionKind.SCROBBLE:
            return cls.scrobble(ScrobbleCandidate.from_dict(data["candidate"]))
        return cls(kind, Track.from_dict(data["track"]))


@dataclass(frozen=True)
class QueuedAction:
    seq: int
    enqueued_at: float
    action: Action

    def to_dict(self) -> Dict[str, Any]:
        return {"seq": self.seq, "enqueued_at": self.enqueued_at, "action": self.action.to_dict()}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QueuedAction":
        return cls(
            seq=int(data["seq"]),
            enqueued_at=float(data["enqueued_at"]),
            action=Action.from_dict(data["action"]),
        )


# -------------------------
# Auth
# -------------------------
@dataclass(frozen=True)
class Credential:
    session_key: str
    username: str | None = None
    issued_at: float | None = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Credential":
        return cls(
            session_key=data["session_key"],
            username=data.get("username"),
            issued_at=data.get("issued_at"),
        )
