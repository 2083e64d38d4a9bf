"""Tests for the pylast wrapper."""

from unittest.mock import Mock
from xml.dom import minidom

import pylast
import pytest

import lastfm_client
from lastfm_client import (
    AuthError, CredentialError, FatalError, LastFMClient, RetryableError, classify_ws_error,
)
from models import ScrobbleCandidate


def ws_error(code, details="boom"):
    return pylast.WSError(None, str(code), details)


@pytest.fixture
def lfm(credentials):
    c = LastFMClient("api-key", "api-secret", credentials)
    c.network = Mock()
    return c


@pytest.fixture
def skg(monkeypatch):
    generator = Mock()
    monkeypatch.setattr(lastfm_client.pylast, "SessionKeyGenerator", Mock(return_value=generator))
    return generator


class TestClassification:
    @pytest.mark.parametrize("code", [8, 11, 16, 29])
    def test_retryable(self, code):
        assert type(classify_ws_error(ws_error(code))) is RetryableError

    @pytest.mark.parametrize("code", [4, 9, 14])
    def test_credential(self, code):
        assert type(classify_ws_error(ws_error(code))) is CredentialError

    def test_other_codes_fatal(self):
        assert type(classify_ws_error(ws_error(6, "Invalid parameters"))) is FatalError

    def test_non_numeric_code_fatal(self):
        assert type(classify_ws_error(pylast.WSError(None, None, "???"))) is FatalError


class TestSubmissions:
    def test_now_playing_uses_stored_session(self, lfm, song):
        lfm.submit_now_playing(song)
        assert lfm.network.session_key == "stored-key"
        kwargs = lfm.network.update_now_playing.call_args.kwargs
        assert (kwargs["artist"], kwargs["title"], kwargs["duration"]) == (song.artist, song.title, 200)

    def test_scrobble_sends_start_timestamp(self, lfm, song):
        lfm.submit_scrobble(ScrobbleCandidate(song, 1_700_000_123, 120.0))
        kwargs = lfm.network.scrobble.call_args.kwargs
        assert kwargs["timestamp"] == 1_700_000_123
        assert kwargs["album"] == song.album

    def test_love_and_unlove(self, lfm, song):
        lfm.submit_love(song, True)
        lfm.submit_love(song, False)
        remote = lfm.network.get_track.return_value
        lfm.network.get_track.assert_called_with(song.artist, song.title)
        remote.love.assert_called_once_with()
        remote.unlove.assert_called_once_with()

    def test_no_session_key(self, lfm, credentials, song):
        credentials.clear()
        with pytest.raises(CredentialError):
            lfm.submit_now_playing(song)
        lfm.network.update_now_playing.assert_not_called()

    def test_ws_error_mapped(self, lfm, song):
        lfm.network.scrobble.side_effect = ws_error(29, "Rate limit exceeded")
        with pytest.raises(RetryableError):
            lfm.submit_scrobble(ScrobbleCandidate(song, 1, 100.0))

    def test_network_error_retryable(self, lfm, song):
        lfm.network.update_now_playing.side_effect = pylast.NetworkError(None, OSError("unreachable"))
        with pytest.raises(RetryableError):
            lfm.submit_now_playing(song)

    def test_malformed_response_retryable(self, lfm, song):
        lfm.network.scrobble.side_effect = pylast.MalformedResponseError(None, ValueError("<html>"))
        with pytest.raises(RetryableError):
            lfm.submit_scrobble(ScrobbleCandidate(song, 1, 100.0))

    def test_unexpected_exception_fatal(self, lfm, song):
        lfm.network.update_now_playing.side_effect = TypeError("unexpected keyword argument")
        with pytest.raises(FatalError):
            lfm.submit_now_playing(song)


class TestAuthenticate:
    def test_password_auth(self, credentials, skg):
        skg.get_session_key.return_value = "new-key"
        c = LastFMClient("k", "s", credentials, username="listener", password_md5="md5")
        cred = c.authenticate()
        assert (cred.session_key, cred.username) == ("new-key", "listener")
        skg.get_session_key.assert_called_once_with("listener", "md5")

    def test_password_auth_rejected(self, credentials, skg):
        skg.get_session_key.side_effect = ws_error(4, "Authentication Failed")
        c = LastFMClient("k", "s", credentials, username="listener", password_md5="bad")
        with pytest.raises(AuthError):
            c.authenticate()

    def test_non_interactive_without_credentials(self, credentials, skg):
        c = LastFMClient("k", "s", credentials, interactive=False)
        with pytest.raises(AuthError):
            c.authenticate()
        skg.get_web_auth_url.assert_not_called()

    def test_web_auth_flow(self, credentials, skg):
        url = "https://www.last.fm/api/auth/?token=TOK"
        skg.get_web_auth_url.return_value = url
        skg.web_auth_tokens = {url: "TOK"}
        skg.get_web_auth_session_key_username.return_value = ("web-key", "listener")
        c = LastFMClient("k", "s", credentials)
        with pytest.raises(AuthError):
            c.authenticate()
        cred = c.authenticate()
        assert cred.session_key == "web-key"
        skg.get_web_auth_url.assert_called_once_with()
        skg.get_web_auth_session_key_username.assert_called_once_with(url, "TOK")

    def test_web_auth_pending(self, credentials, skg):
        url = "https://www.last.fm/api/auth/?token=t"
        skg.get_web_auth_url.return_value = url
        skg.web_auth_tokens = {url: "t"}
        skg.get_web_auth_session_key_username.side_effect = ws_error(14, "Unauthorized Token")
        c = LastFMClient("k", "s", credentials)
        for _ in range(3):
            with pytest.raises(AuthError):
                c.authenticate()
        skg.get_web_auth_url.assert_called_once_with()

    def test_missing_api_key(self, credentials):
        with pytest.raises(ValueError):
            LastFMClient("", "s", credentials)


class RecordedRequest:
    """Stands in for pylast's HTTP request; remembers what would have been sent."""
    sent = []

    def __init__(self, network, method, params=None):
        RecordedRequest.sent.append((method, dict(params or {})))

    def sign_it(self):
        pass

    def execute(self, cacheable=False):
        return minidom.parseString(
            "<lfm status='ok'><session><name>listener</name><key>web-key</key></session></lfm>"
        )


class TestWebAuthToken:
    def test_session_requested_with_issued_token(self, credentials, monkeypatch):
        RecordedRequest.sent = []
        monkeypatch.setattr(pylast.SessionKeyGenerator, "_get_web_auth_token", lambda self: "TOK")
        monkeypatch.setattr(pylast, "_Request", RecordedRequest)
        c = LastFMClient("k", "s", credentials)
        with pytest.raises(AuthError):
            c.authenticate()
        cred = c.authenticate()
        assert RecordedRequest.sent == [("auth.getSession", {"token": "TOK"})]
        assert (cred.session_key, cred.username) == ("web-key", "listener")
