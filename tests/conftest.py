"""Pytest configuration and fixtures."""

import pytest

from action_queue import ActionQueue
from credentials import CredentialStore
from models import Credential, Mode, Snapshot, Track


class FakeClock:
    """Manually advanced wall and monotonic clocks."""

    def __init__(self, wall: float = 1_700_000_000.0, mono: float = 1000.0):
        self.wall = wall
        self.mono = mono

    def time(self) -> float:
        return self.wall

    def monotonic(self) -> float:
        return self.mono

    def advance(self, seconds: float) -> None:
        self.wall += seconds
        self.mono += seconds


class FakeClient:
    """Records submissions; `script` holds one exception (or None) per upcoming call."""

    def __init__(self):
        self.calls = []
        self.script = []
        self.auth_calls = 0
        self.auth_error = None

    def authenticate(self):
        self.auth_calls += 1
        if self.auth_error is not None:
            raise self.auth_error
        return Credential(session_key="fresh-key", username="listener")

    def _record(self, call):
        self.calls.append(call)
        if self.script:
            exc = self.script.pop(0)
            if exc is not None:
                raise exc

    def submit_now_playing(self, track):
        self._record(("now_playing", track.title))

    def submit_scrobble(self, candidate):
        self._record(("scrobble", candidate.track.title))

    def submit_love(self, track, loved):
        self._record(("love" if loved else "unlove", track.title))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def queue_path(tmp_path):
    return str(tmp_path / "state" / "queue.json")


@pytest.fixture
def queue(queue_path, clock):
    return ActionQueue(queue_path, clock=clock)


@pytest.fixture
def credentials(tmp_path):
    store = CredentialStore(str(tmp_path / "state" / "session.json"))
    store.set(Credential(session_key="stored-key", username="listener"))
    return store


@pytest.fixture
def client():
    return FakeClient()


@pytest.fixture
def song():
    return Track(artist="Boards of Canada", title="Roygbiv", album="Music Has the Right to Children",
                 duration=200)


@pytest.fixture
def other_song():
    return Track(artist="Aphex Twin", title="Xtal", album="Selected Ambient Works 85-92", duration=293)


def playing(track, elapsed, song_id=None):
    return Snapshot(track=track, elapsed=elapsed, mode=Mode.PLAYING, song_id=song_id)


def paused(track, elapsed):
    return Snapshot(track=track, elapsed=elapsed, mode=Mode.PAUSED)


STOPPED = Snapshot(track=None, elapsed=None, mode=Mode.STOPPED)
