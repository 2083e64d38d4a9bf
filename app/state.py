from __future__ import annotations
import logging
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Deque, List

from action_queue import ActionQueue, QueueStorageError
from clock import Clock, SYSTEM_CLOCK
from models import Action, Mode, ScrobbleCandidate, Snapshot, Track

log = logging.getLogger("state")


class Transition(Enum):
    CONTINUE = "continue"
    RESTART = "restart"
    STOP = "stop"
    TRACK_CHANGE = "track_change"


@dataclass(frozen=True)
class PlaybackPolicy:
    """Scrobble eligibility and repeat-detection knobs.

    Last.fm guideline: scrobble at halfway or 240s (4min), whichever comes first,
    and never scrobble tracks shorter than 30s.
    """
    max_threshold: float = 240
    min_track_duration: float = 30
    unknown_duration_threshold: float = 240
    restart_tolerance: float = 2.0

    def threshold(self, track: Track) -> float | None:
        """Seconds of listening needed, or None if the track can never scrobble."""
        if not track.duration:
            return self.unknown_duration_threshold
        if track.duration < self.min_track_duration:
            return None
        return min(self.max_threshold, track.duration / 2)

    def is_eligible(self, track: Track, credited: float) -> bool:
        needed = self.threshold(track)
        return needed is not None and credited >= needed


def classify(prev: Snapshot | None, new: Snapshot, tolerance: float = 2.0) -> Transition:
    """Decide how `new` relates to `prev`.

    The player reports "same song replayed" and "seek backward" identically,
    so a backward jump past `tolerance` while playing counts as a restart.
    """
    if new.mode is Mode.STOPPED or new.track is None:
        return Transition.STOP
    if prev is None or prev.track is None or prev.mode is Mode.STOPPED:
        return Transition.TRACK_CHANGE
    if prev.track.identity != new.track.identity:
        return Transition.TRACK_CHANGE
    # Same song queued twice in a row: metadata matches, the player's id does not.
    if prev.song_id is not None and new.song_id is not None and prev.song_id != new.song_id:
        return Transition.RESTART
    if (
        new.mode is Mode.PLAYING
        and prev.elapsed is not None
        and new.elapsed is not None
        and prev.elapsed - new.elapsed > tolerance
    ):
        return Transition.RESTART
    return Transition.CONTINUE


@dataclass
class PlaybackSession:
    track: Track
    started_at: float          # wall clock, back-dated by the elapsed position first seen
    last_elapsed: float | None
    last_seen: float           # monotonic
    mode: Mode
    credited: float = 0.0
    announced: bool = False
    scrobbled: bool = False


class PlaybackStateMachine:
    """Turns player snapshots into NowPlaying / Scrobble actions on the queue.

    Owns exactly one PlaybackSession (or none when idle). Enqueue failures are
    kept in an outbox and retried, in order, on the next update.
    """

    def __init__(self, queue: ActionQueue, policy: PlaybackPolicy | None = None,
                 clock: Clock = SYSTEM_CLOCK):
        self.queue = queue
        self.policy = policy or PlaybackPolicy()
        self.clock = clock
        self.session: PlaybackSession | None = None
        self._prev: Snapshot | None = None
        self._outbox: Deque[Action] = deque()

    @property
    def state(self) -> str:
        if self.session is None:
            return "idle"
        return "paused" if self.session.mode is Mode.PAUSED else "playing"

    @property
    def outbox_size(self) -> int:
        return len(self._outbox)

    # -------- inputs --------
    def update(self, snapshot: Snapshot) -> List[Action]:
        """Feed one snapshot; returns the actions it produced."""
        now = self.clock.monotonic()
        emitted: List[Action] = []
        transition = classify(self._prev, snapshot, self.policy.restart_tolerance)
        if self.session is None and transition in (Transition.CONTINUE, Transition.RESTART):
            transition = Transition.TRACK_CHANGE

        if transition is Transition.CONTINUE:
            self._credit(self.session, snapshot, now)
        else:
            if self.session is not None:
                if transition is Transition.RESTART:
                    log.info("Restart detected: %s", self.session.track.label())
                self._close(self.session, now, emitted)
                self.session = None
            if transition is not Transition.STOP:
                self.session = self._open(snapshot, now)

        if self.session is not None:
            if not self.session.announced and self.session.mode is Mode.PLAYING:
                self.session.announced = True
                log.info("Now playing: %s", self.session.track.label())
                emitted.append(Action.now_playing(self.session.track))
            self._maybe_scrobble(self.session, emitted)

        self._prev = snapshot
        self._emit(emitted)
        return emitted

    def handle_message(self, payload: str) -> Action | None:
        """React to a client message: exactly 'love' or 'unlove'."""
        if payload == "love":
            make = Action.love
        elif payload == "unlove":
            make = Action.unlove
        else:
            log.debug("Ignoring message %r", payload)
            return None
        if self.session is None:
            log.info("Got %r but nothing is playing; ignoring", payload)
            return None
        action = make(self.session.track)
        log.info("%s: %s", payload.capitalize(), self.session.track.label())
        self._emit([action])
        return action

    # -------- session bookkeeping --------
    def _open(self, snapshot: Snapshot, now: float) -> PlaybackSession:
        offset = snapshot.elapsed or 0.0
        return PlaybackSession(
            track=snapshot.track,
            started_at=self.clock.time() - offset,
            last_elapsed=snapshot.elapsed,
            last_seen=now,
            mode=snapshot.mode,
        )

    def _credit(self, session: PlaybackSession, snapshot: Snapshot, now: float) -> None:
        if session.mode is Mode.PLAYING:
            # Only time that really passed, and never more than the position moved.
            gained = max(0.0, now - session.last_seen)
            if snapshot.elapsed is not None and session.last_elapsed is not None:
                gained = min(gained, max(0.0, snapshot.elapsed - session.last_elapsed))
            session.credited += gained
        session.last_seen = now
        session.last_elapsed = snapshot.elapsed
        session.mode = snapshot.mode

    def _close(self, session: PlaybackSession, now: float, emitted: List[Action]) -> None:
        if session.mode is Mode.PLAYING:
            # Played on since the last observation, but not past the end of the track.
            gained = max(0.0, now - session.last_seen)
            if session.track.duration and session.last_elapsed is not None:
                gained = min(gained, max(0.0, session.track.duration - session.last_elapsed))
            session.credited += gained
        self._maybe_scrobble(session, emitted)
        if not session.scrobbled:
            log.debug("Discarding play of %s (%.0fs listened)", session.track.label(), session.credited)

    def _maybe_scrobble(self, session: PlaybackSession, emitted: List[Action]) -> None:
        if session.scrobbled or not self.policy.is_eligible(session.track, session.credited):
            return
        session.scrobbled = True
        candidate = ScrobbleCandidate(
            track=session.track,
            started_at=int(session.started_at),
            listened=round(session.credited, 3),
        )
        log.info("Scrobble ready: %s (%.0fs listened)", session.track.label(), session.credited)
        emitted.append(Action.scrobble(candidate))

    # -------- output --------
    def _emit(self, actions: List[Action]) -> None:
        self._outbox.extend(actions)
        while self._outbox:
            try:
                self.queue.enqueue(self._outbox[0])
            except QueueStorageError as e:
                log.warning("Could not queue %s action(s), will retry: %s", len(self._outbox), e)
                return
            self._outbox.popleft()
