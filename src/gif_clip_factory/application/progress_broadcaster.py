from __future__ import annotations

import json
import queue
import threading
from collections import defaultdict
from collections.abc import Callable, Iterator

from gif_clip_factory.domain.models import ProgressEvent, ProgressStatus

_CLOSED = object()


class Subscription:
    """One observer's view of a job's progress stream.

    Percentages are filtered so the observer never sees a value lower than
    one it has already seen, and iteration ends after the final event.
    """

    def __init__(self, broadcaster: ProgressBroadcaster, job_id: str, maxsize: int) -> None:
        self.job_id = job_id
        self._broadcaster = broadcaster
        self._queue: queue.Queue = queue.Queue(maxsize=maxsize)
        self._last_percent = -1
        self._finished = False
        self.closed = False

    def _offer(self, item) -> None:
        # latest-wins: a slow observer loses its oldest pending update, never the newest
        while True:
            try:
                self._queue.put_nowait(item)
                return
            except queue.Full:
                try:
                    self._queue.get_nowait()
                except queue.Empty:
                    pass

    def get(self, timeout: float | None = None) -> ProgressEvent | None:
        while not self._finished:
            try:
                item = self._queue.get(timeout=timeout)
            except queue.Empty:
                return None
            if item is _CLOSED:
                self._finished = True
                return None
            if item.status is ProgressStatus.PROCESSING and item.percent < self._last_percent:
                continue
            self._last_percent = max(self._last_percent, item.percent)
            if item.is_final:
                self._finished = True
            return item
        return None

    def __iter__(self) -> Iterator[ProgressEvent]:
        while True:
            event = self.get()
            if event is None:
                return
            yield event

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._broadcaster.unsubscribe(self)
        self._offer(_CLOSED)

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class ProgressBroadcaster:
    """In-memory, thread-safe fan-out of progress events keyed by job id."""

    def __init__(self, queue_size: int = 64, logger=None) -> None:
        self.queue_size = max(2, queue_size)
        self.logger = logger
        self._lock = threading.Lock()
        self._subscribers: dict[str, set[Subscription]] = defaultdict(set)

    def subscribe(
        self,
        job_id: str,
        seed: Callable[[str], ProgressEvent | None] | None = None,
    ) -> Subscription:
        """Register an observer for ``job_id``.

        ``seed`` is called after registration and its event, if any, is queued
        first so late subscribers see the current state without missing what
        is published meanwhile.
        """
        subscription = Subscription(self, job_id, self.queue_size)
        with self._lock:
            self._subscribers[job_id].add(subscription)
        initial = seed(job_id) if seed is not None else None
        if initial is not None:
            subscription._offer(initial)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            subs = self._subscribers.get(subscription.job_id)
            if not subs:
                return
            subs.discard(subscription)
            if not subs:
                self._subscribers.pop(subscription.job_id, None)

    def publish(self, job_id: str, event: ProgressEvent) -> int:
        with self._lock:
            subs = list(self._subscribers.get(job_id, ()))
        for subscription in subs:
            subscription._offer(event)
        return len(subs)

    def subscriber_count(self, job_id: str) -> int:
        with self._lock:
            return len(self._subscribers.get(job_id, ()))

    def active_job_ids(self) -> list[str]:
        with self._lock:
            return list(self._subscribers)


def parse_subscribe_message(raw: str | bytes) -> str | None:
    """Return the id named by a ``{"type": "subscribe", "videoId": ...}`` message."""
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        return None
    if not isinstance(data, dict) or data.get("type") != "subscribe":
        return None
    target = data.get("videoId") or data.get("jobId")
    return target if isinstance(target, str) and target else None


def to_message(event: ProgressEvent) -> str:
    payload = {
        "type": "progress",
        "videoId": event.job_id,
        "progress": event.percent,
        "status": event.status.value,
    }
    if event.error_message:
        payload["error"] = event.error_message
    return json.dumps(payload)


class ChannelSession:
    """Bridges one bidirectional client channel to the broadcaster.

    ``send`` is the transport's write function; when it raises, the client is
    treated as disconnected and its subscriptions are dropped.
    """

    def __init__(
        self,
        broadcaster: ProgressBroadcaster,
        send: Callable[[str], None],
        initial_event: Callable[[str], ProgressEvent | None] | None = None,
        logger=None,
    ) -> None:
        self.broadcaster = broadcaster
        self.send = send
        self.initial_event = initial_event
        self.logger = logger
        self._subscriptions: list[Subscription] = []
        self._lock = threading.Lock()

    def handle_message(self, raw: str | bytes) -> Subscription | None:
        job_id = parse_subscribe_message(raw)
        if job_id is None:
            if self.logger:
                self.logger.warning("channel.ignored_message")
            return None
        subscription = self.broadcaster.subscribe(job_id, seed=self.initial_event)
        with self._lock:
            self._subscriptions.append(subscription)
        threading.Thread(target=self._pump, args=(subscription,), daemon=True).start()
        return subscription

    def _pump(self, subscription: Subscription) -> None:
        try:
            for event in subscription:
                self.send(to_message(event))
        except Exception as exc:
            if self.logger:
                self.logger.info("channel.disconnected", job_id=subscription.job_id, error=str(exc))
        finally:
            subscription.close()

    def close(self) -> None:
        with self._lock:
            subscriptions, self._subscriptions = self._subscriptions, []
        for subscription in subscriptions:
            subscription.close()
