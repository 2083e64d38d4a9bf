import logging
import select

import mpd

from models import Mode, Snapshot, Track

log = logging.getLogger("mpd")


def _first(d: dict, *keys: str):
    # MPD repeats tags for multi-valued fields; python-mpd2 hands those back as lists.
    for k in keys:
        v = d.get(k)
        if isinstance(v, list):
            v = v[0] if v else None
        if v:
            return str(v).strip()
    return None


def _joined(d: dict, key: str):
    v = d.get(key)
    if isinstance(v, list):
        v = ", ".join(str(x).strip() for x in v if x)
    return v.strip() if v else None


def _to_float(s):
    if s is None: return None
    try:
        return float(s)
    except (TypeError, ValueError):
        return None


def parse_snapshot(status: dict, song: dict) -> Snapshot:
    """Build a Snapshot from the `status` and `currentsong` responses."""
    try:
        mode = Mode(status.get("state", "stop"))
    except ValueError:
        mode = Mode.STOPPED

    # "time" is the deprecated "elapsed:total" pair, still all some servers send.
    legacy = (status.get("time") or "").split(":")
    elapsed = _to_float(status.get("elapsed")) if "elapsed" in status else _to_float(legacy[0] or None)
    duration = _to_float(status.get("duration") or song.get("duration") or song.get("time"))
    if duration is None and len(legacy) == 2:
        duration = _to_float(legacy[1])

    artist = _joined(song, "artist")
    title = _first(song, "title")
    track = None
    if artist and title:
        number = _first(song, "track")
        track = Track(
            artist=artist,
            title=title,
            album=_first(song, "album"),
            duration=int(round(duration)) if duration else None,
            album_artist=_first(song, "albumartist"),
            track_number=number.split("/")[0] if number else None,
            mbid=_first(song, "musicbrainz_trackid"),
        )
    elif song:
        log.debug("Current song lacks artist/title; not tracking: %s", song.get("file"))

    return Snapshot(track=track, elapsed=elapsed, mode=mode, song_id=_first(status, "songid"))


class MPDPlayer:
    """
    Minimal MPD client over python-mpd2: status snapshots, bounded idle waits
    and client-to-client messages on one subscribed channel.
    """
    def __init__(self, host: str = "localhost", port: int = 6600, socket_path: str | None = None,
                 password: str | None = None, channel: str | None = "lastfm", timeout: int = 10):
        self.host = host
        self.port = port
        self.socket_path = socket_path
        self.password = password
        self.channel = channel
        self.client = mpd.MPDClient()
        self.client.timeout = timeout
        self.client.idletimeout = None

    def connect(self) -> None:
        if self.socket_path:
            try:
                self.client.connect(self.socket_path)
            except (OSError, mpd.ConnectionError) as e:
                log.warning("Unix socket %s failed (%s); trying TCP at %s:%s",
                            self.socket_path, e, self.host, self.port)
                self.client.connect(self.host, self.port)
        else:
            self.client.connect(self.host, self.port)
        if self.password:
            self.client.password(self.password)
        if self.channel:
            self.client.subscribe(self.channel)
        log.info("Connected to MPD, version: %s", self.client.mpd_version)

    def disconnect(self) -> None:
        try:
            self.client.close()
        except (OSError, mpd.MPDError):
            pass
        try:
            self.client.disconnect()
        except (OSError, mpd.MPDError):
            pass

    def snapshot(self) -> Snapshot:
        return parse_snapshot(self.client.status(), self.client.currentsong())

    def wait_for_changes(self, timeout: float) -> list:
        """Block on idle for up to `timeout` seconds; returns changed subsystems (maybe empty)."""
        self.client.send_idle("player", "message")
        ready, _, _ = select.select([self.client], [], [], timeout)
        if ready:
            return self.client.fetch_idle()
        return self.client.noidle() or []

    def read_messages(self) -> list:
        if not self.channel:
            return []
        return [m.get("message", "") for m in self.client.readmessages()
                if m.get("channel") == self.channel]
