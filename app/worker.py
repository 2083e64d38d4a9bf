"""
Background submitter: drains the action queue to Last.fm in strict order.

- Success commits the action and resets the backoff.
- Retryable failures stop the batch (nothing is skipped) and back off
  exponentially up to max_retry.
- Rejected actions are dropped with a diagnostic so one bad action cannot block
  the queue; credential failures clear the stored session key and leave the
  action queued until re-authentication succeeds.
"""

from __future__ import annotations
import logging
import threading
from dataclasses import dataclass
from typing import Callable

from action_queue import ActionQueue, QueueStorageError
from clock import Clock, SYSTEM_CLOCK
from credentials import CredentialStore
from lastfm_client import AuthError, CredentialError, FatalError, LastFMClient, RetryableError
from models import Action, ActionKind, Credential, QueuedAction

log = logging.getLogger("worker")

AlertFn = Callable[..., None]


@dataclass
class RetryState:
    """Exponential backoff between min_delay and max_delay. Not persisted."""
    min_delay: float
    max_delay: float
    attempts: int = 0
    next_attempt: float = 0.0  # monotonic

    @property
    def delay(self) -> float:
        if self.attempts == 0:
            return 0.0
        return min(self.max_delay, self.min_delay * (2 ** (self.attempts - 1)))

    def failed(self, now: float) -> float:
        self.attempts += 1
        self.next_attempt = now + self.delay
        return self.delay

    def reset(self) -> None:
        self.attempts = 0
        self.next_attempt = 0.0

    def remaining(self, now: float) -> float:
        return max(0.0, self.next_attempt - now)


class SubmissionWorker:
    def __init__(self, queue: ActionQueue, client: LastFMClient, credentials: CredentialStore, *,
                 min_retry: float = 15, max_retry: float = 960, batch_size: int = 50,
                 clock: Clock = SYSTEM_CLOCK, alert: AlertFn | None = None):
        self.queue = queue
        self.client = client
        self.credentials = credentials
        self.batch_size = batch_size
        self.clock = clock
        self.alert = alert or (lambda *a, **k: None)
        self.retry = RetryState(min_delay=min_retry, max_delay=max(min_retry, max_retry))
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    # -------- lifecycle --------
    def start(self) -> None:
        self._thread = threading.Thread(target=self.run, name="submitter", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = 10) -> None:
        """Ask the loop to exit; an in-flight call is allowed to finish."""
        self._stop.set()
        self.queue.wake()
        if self._thread is not None:
            self._thread.join(timeout)
            if self._thread.is_alive():
                log.warning("Submitter still busy after %ss; abandoning it", timeout)

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def run(self) -> None:
        log.info("Submitter running; %s action(s) pending", self.queue.size())
        while not self._stop.is_set():
            wait = self.retry.remaining(self.clock.monotonic())
            if wait > 0:
                self._stop.wait(wait)
                continue
            if not self.queue.wait_for_work(timeout=30):
                continue
            if self._stop.is_set():
                break
            try:
                self.run_once()
            except Exception:
                log.exception("Unexpected error while submitting")
                self._back_off()
        log.info("Submitter stopped; %s action(s) pending", self.queue.size())

    # -------- one pass --------
    def run_once(self) -> int:
        """Submit the oldest batch in order. Returns how many actions left the queue."""
        if self._ensure_credential() is None:
            self._back_off()
            return 0

        done = 0
        for item in self.queue.peek_batch(self.batch_size):
            if self._stop.is_set():
                break
            try:
                self._submit(item.action)
            except RetryableError as e:
                delay = self._back_off()
                log.info("Deferred #%s %s: %s; retrying in %.0fs (%s pending)",
                         item.seq, item.action.kind.value, e, delay, self.queue.size())
                break
            except CredentialError as e:
                log.error("Last.fm rejected the session key: %s; re-authenticating", e)
                self.credentials.clear()
                self.alert("ERROR", "Last.fm authentication failed", str(e),
                           {"pending_queue_size": self.queue.size()})
                self._back_off()
                break
            except FatalError as e:
                log.error("Dropping #%s %s for %s: %s",
                          item.seq, item.action.kind.value, item.action.track.label(), e)
                self.alert("WARNING", "Last.fm rejected an action", str(e), self._describe(item))
                if not self._commit(item):
                    break
                done += 1
                continue

            if not self._commit(item):
                break
            self.retry.reset()
            done += 1
            log.info("Submitted #%s %s: %s", item.seq, item.action.kind.value, item.action.track.label())
        return done

    def _ensure_credential(self) -> Credential | None:
        credential = self.credentials.get()
        if credential is not None:
            return credential
        try:
            credential = self.client.authenticate()
        except AuthError as e:
            log.warning("Not authenticated (%s); %s action(s) waiting", e, self.queue.size())
            return None
        self.credentials.set(credential)
        log.info("Authenticated to Last.fm%s", f" as {credential.username}" if credential.username else "")
        return credential

    def _submit(self, action: Action) -> None:
        if action.kind is ActionKind.NOW_PLAYING:
            self.client.submit_now_playing(action.track)
        elif action.kind is ActionKind.SCROBBLE:
            self.client.submit_scrobble(action.candidate)
        elif action.kind is ActionKind.LOVE:
            self.client.submit_love(action.track, True)
        elif action.kind is ActionKind.UNLOVE:
            self.client.submit_love(action.track, False)
        else:
            raise FatalError(f"unknown action kind {action.kind!r}")

    def _commit(self, item: QueuedAction) -> bool:
        try:
            self.queue.commit([item.seq])
        except QueueStorageError as e:
            # Still pending on disk; it will be sent again (at-least-once).
            log.error("Could not commit #%s: %s", item.seq, e)
            self._back_off()
            return False
        return True

    def _back_off(self) -> float:
        return self.retry.failed(self.clock.monotonic())

    @staticmethod
    def _describe(item: QueuedAction) -> dict:
        return {"seq": item.seq, "kind": item.action.kind.value, **item.action.track.to_dict()}
