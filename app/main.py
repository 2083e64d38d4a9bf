import logging
import signal
import threading
import time

import mpd

import config
import notifier
from action_queue import ActionQueue
from config import ConfigError, Settings
from credentials import CredentialStore
from lastfm_client import LastFMClient
from models import Credential
from player import MPDPlayer
from state import PlaybackPolicy, PlaybackStateMachine
from worker import SubmissionWorker

log = logging.getLogger("mpd-lastfm")

RECONNECT_DELAY = 10


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        force=True,  # ensure our config is used even if libs pre-configure logging
    )


def policy_from(settings: Settings) -> PlaybackPolicy:
    return PlaybackPolicy(
        max_threshold=settings.scrobble_max_threshold,
        min_track_duration=settings.scrobble_min_duration,
        unknown_duration_threshold=settings.scrobble_unknown_threshold,
        restart_tolerance=settings.restart_tolerance,
    )


def seed_credential(credentials: CredentialStore, settings: Settings) -> None:
    """A session key from the environment is used only until one is stored."""
    if settings.lastfm_session_key and credentials.get() is None:
        log.info("Using Last.fm session key from LASTFM_SESSION_KEY")
        credentials.set(Credential(
            session_key=settings.lastfm_session_key,
            username=settings.lastfm_username,
            issued_at=time.time(),
        ))


def follow(player: MPDPlayer, tracker: PlaybackStateMachine, poll_interval: float,
           stop: threading.Event | None = None) -> None:
    """Feed snapshots and messages to the tracker until the connection drops or `stop` is set."""
    tracker.update(player.snapshot())
    while stop is None or not stop.is_set():
        changes = player.wait_for_changes(poll_interval)
        if "message" in changes:
            for payload in player.read_messages():
                tracker.handle_message(payload)
        snapshot = player.snapshot()
        if changes:
            log.debug("Changed %s: mode=%s track=%s elapsed=%s", changes, snapshot.mode.value,
                      snapshot.track.label() if snapshot.track else None, snapshot.elapsed)
        tracker.update(snapshot)


def main():
    try:
        settings = config.from_env()
        settings.validate()
    except ConfigError as e:
        raise SystemExit(str(e))

    setup_logging(settings.log_level)
    alert = notifier.from_env()

    credentials = CredentialStore(settings.session_key_path)
    seed_credential(credentials, settings)
    queue = ActionQueue(settings.queue_path)
    client = LastFMClient(
        api_key=settings.lastfm_api_key,
        api_secret=settings.lastfm_api_secret,
        credentials=credentials,
        username=settings.lastfm_username,
        password_md5=settings.lastfm_password_md5,
        interactive=not settings.non_interactive,
    )
    worker = SubmissionWorker(
        queue, client, credentials,
        min_retry=settings.min_retry_time,
        max_retry=settings.max_retry_time,
        batch_size=settings.batch_size,
        alert=alert,
    )
    tracker = PlaybackStateMachine(queue, policy_from(settings))
    player = MPDPlayer(
        host=settings.mpd_host,
        port=settings.mpd_port,
        socket_path=settings.mpd_socket,
        password=settings.mpd_password,
        channel=settings.mpd_channel,
    )

    # SIGTERM behaves like Ctrl-C so the worker gets a clean stop.
    signal.signal(signal.SIGTERM, signal.default_int_handler)

    log.info("Starting MPD → Last.fm bridge. MPD: %s:%s | Queue: %s (size=%s)",
             settings.mpd_host, settings.mpd_port, settings.queue_path, queue.size())
    alert("INFO", "Bridge started",
          f"Watching MPD at {settings.mpd_host}:{settings.mpd_port}; queue at {settings.queue_path}.")
    worker.start()

    try:
        while True:
            try:
                player.connect()
                follow(player, tracker, settings.poll_interval)
            except (mpd.MPDError, OSError) as e:
                log.warning("MPD connection lost: %s; reconnecting in %ss", e, RECONNECT_DELAY)
                player.disconnect()
                time.sleep(RECONNECT_DELAY)
    except KeyboardInterrupt:
        log.info("Shutting down…")
    finally:
        worker.stop()
        player.disconnect()
        if tracker.outbox_size:
            log.warning("%s action(s) could not be written to the queue and are lost", tracker.outbox_size)


if __name__ == "__main__":
    main()
