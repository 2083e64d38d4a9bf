"""Tests for the shared data model."""

from models import Action, QueuedAction, ScrobbleCandidate, Track


class TestTrackLabel:
    def test_plain_hyphen_separator(self):
        assert Track("Daft Punk", "Veridis Quo").label() == "Daft Punk - Veridis Quo"

    def test_album_appended(self):
        track = Track("Daft Punk", "Veridis Quo", album="Discovery")
        assert track.label() == "Daft Punk - Veridis Quo [Discovery]"


class TestPersistedForm:
    def test_scrobble_keeps_candidate(self, song):
        item = QueuedAction(7, 1_700_000_000.0, Action.scrobble(ScrobbleCandidate(song, 1_699_999_900, 120.0)))
        restored = QueuedAction.from_dict(item.to_dict())
        assert restored == item
        assert restored.action.candidate.started_at == 1_699_999_900
