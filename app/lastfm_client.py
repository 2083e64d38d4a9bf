import logging
import time

import pylast

from credentials import CredentialStore
from models import Credential, ScrobbleCandidate, Track

log = logging.getLogger("lastfm")

# Custom error classes so callers can branch
class RemoteError(Exception): ...
class RetryableError(RemoteError): ...
class FatalError(RemoteError): ...
class CredentialError(FatalError): ...
class AuthError(RemoteError): ...

# Last.fm error codes, see https://www.last.fm/api/errorcodes
RETRYABLE_CODES = {8, 11, 16, 29}            # operation failed, offline, temporarily unavailable, rate limit
CREDENTIAL_CODES = {4, 9, 10, 14, 15, 26}    # auth failed, bad session, bad api key, token, suspended key


def _code(e: pylast.WSError) -> int | None:
    try:
        return int(e.status)
    except (TypeError, ValueError):
        return None


def classify_ws_error(e: pylast.WSError) -> RemoteError:
    code = _code(e)
    msg = f"Last.fm API error {code}: {e.details}"
    if code in RETRYABLE_CODES:
        return RetryableError(msg)
    if code in CREDENTIAL_CODES:
        return CredentialError(msg)
    return FatalError(msg)


class LastFMClient:
    """Thin wrapper over pylast for auth, now playing, scrobbling and love/unlove.

    The session key is read from the credential store on every call, so a key
    cleared after a revocation is never used again.
    """

    def __init__(self, api_key: str, api_secret: str, credentials: CredentialStore,
                 username: str | None = None, password_md5: str | None = None,
                 interactive: bool = True):
        if not api_key or not api_secret:
            raise ValueError("Missing Last.fm API key/secret")
        self.network = pylast.LastFMNetwork(api_key=api_key, api_secret=api_secret)
        self.credentials = credentials
        self.username = username
        self.password_md5 = password_md5
        self.interactive = interactive
        self._skg = pylast.SessionKeyGenerator(self.network)
        self._auth_url: str | None = None
        self._auth_token: str | None = None

    # -------- auth --------
    def authenticate(self) -> Credential:
        """Obtain a new session key. Raises AuthError until one is available."""
        skg = self._skg
        try:
            if self.username and self.password_md5:
                log.info("Authenticating to Last.fm as %s", self.username)
                key = skg.get_session_key(self.username, self.password_md5)
                return Credential(session_key=key, username=self.username, issued_at=time.time())

            if not self.interactive:
                raise AuthError("Last.fm authorization required; set LASTFM_SESSION_KEY or "
                                "LASTFM_USERNAME + LASTFM_PASSWORD_MD5")
            if self._auth_url is None:
                self._auth_url = skg.get_web_auth_url()
                self._auth_token = skg.web_auth_tokens[self._auth_url]
                # Ask once; keep polling the same token afterwards.
                log.warning("Authorize this application at: %s", self._auth_url)
                raise AuthError("waiting for web authorization")
            key, username = skg.get_web_auth_session_key_username(self._auth_url, self._auth_token)
            self._auth_url = self._auth_token = None
            log.info("Last.fm web authorization complete for %s", username)
            return Credential(session_key=key, username=username, issued_at=time.time())
        except pylast.WSError as e:
            if _code(e) == 15:  # token expired, start over
                self._auth_url = self._auth_token = None
            raise AuthError(f"Last.fm auth failed: {e.details}") from e
        except pylast.PyLastError as e:
            raise AuthError(f"Last.fm auth network error: {e}") from e

    def _use_session(self) -> None:
        credential = self.credentials.get()
        if credential is None:
            raise CredentialError("no Last.fm session key")
        self.network.session_key = credential.session_key

    def _call(self, what: str, fn, *args, **kwargs):
        self._use_session()
        try:
            return fn(*args, **kwargs)
        except pylast.WSError as e:
            raise classify_ws_error(e) from e
        except (pylast.NetworkError, pylast.MalformedResponseError, OSError, TimeoutError) as e:
            # Network problems, timeouts, malformed responses: try again later.
            log.debug("%s failed: %s", what, e)
            raise RetryableError(f"{what}: {e}") from e
        except Exception as e:
            raise FatalError(f"{what}: {type(e).__name__}: {e}") from e

    # -------- submissions --------
    def submit_now_playing(self, track: Track) -> None:
        """Push a Now Playing update."""
        self._call(
            "update_now_playing",
            lambda: self.network.update_now_playing(
                artist=track.artist, title=track.title, album=track.album,
                album_artist=track.album_artist, duration=track.duration,
                track_number=track.track_number, mbid=track.mbid,
            ),
        )

    def submit_scrobble(self, candidate: ScrobbleCandidate) -> None:
        """Submit a scrobble with its start timestamp (unix seconds)."""
        track = candidate.track
        self._call(
            "scrobble",
            lambda: self.network.scrobble(
                artist=track.artist, title=track.title, timestamp=candidate.started_at,
                album=track.album, album_artist=track.album_artist,
                track_number=track.track_number, duration=track.duration, mbid=track.mbid,
            ),
        )

    def submit_love(self, track: Track, loved: bool) -> None:
        remote = self.network.get_track(track.artist, track.title)
        self._call("love" if loved else "unlove", remote.love if loved else remote.unlove)
