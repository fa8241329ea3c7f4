# Overview: In-process live feeds that push full, ordered snapshots to subscribers.

from __future__ import annotations

import json
import queue
import threading
from dataclasses import dataclass
from typing import Any, Callable

from flask import Flask, current_app

"""
Live feed semantics (authoritative)

- A feed delivers the FULL refreshed snapshot on every change, never deltas.
- Every published snapshot carries a version; versions only increase.
  Subscribers may drop a snapshot whose version is older than one already seen.
- subscribe() returns a Subscription handle. Teardown is explicit and
  idempotent (unsubscribe() or leaving the `with` block).
- A subscriber that raises is logged and skipped; other subscribers still
  receive the snapshot.
- Feeds are owned by the Flask app (app.extensions["live_feeds"]).
"""


@dataclass(frozen=True)
class Snapshot:
    feed: str
    version: int
    items: tuple


class Subscription:
    """Handle returned by LiveFeed.subscribe()."""

    def __init__(self, feed: "LiveFeed", callback: Callable[[Snapshot], Any]):
        self._feed = feed
        self.callback = callback
        self.active = True

    def unsubscribe(self) -> None:
        if not self.active:
            return
        self.active = False
        self._feed._remove(self)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.unsubscribe()


class LiveFeed:
    def __init__(self, name: str, loader: Callable[[], list], logger=None):
        self.name = name
        self._loader = loader
        self._logger = logger
        self._lock = threading.RLock()
        self._subscriptions: list[Subscription] = []
        self._latest: Snapshot | None = None
        self._version = 0

    @property
    def latest(self) -> Snapshot | None:
        return self._latest

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def subscribe(self, callback: Callable[[Snapshot], Any]) -> Subscription:
        """
        Register a callback and push it a freshly loaded snapshot.

        Must be called inside an app context (the loader reads the database).
        """
        sub = Subscription(self, callback)
        with self._lock:
            self._subscriptions.append(sub)
        try:
            self.refresh()
        except Exception:
            sub.unsubscribe()
            raise
        return sub

    def refresh(self) -> Snapshot:
        """Reload from the store and push the result to every subscriber."""
        with self._lock:
            items = tuple(self._loader())
            snapshot = self._next_snapshot(items)
            subs = list(self._subscriptions)
        self._deliver_all(subs, snapshot)
        return snapshot

    def publish(self, items) -> Snapshot:
        """Push an already loaded snapshot without touching the store."""
        with self._lock:
            snapshot = self._next_snapshot(tuple(items))
            subs = list(self._subscriptions)
        self._deliver_all(subs, snapshot)
        return snapshot

    def publish_changes(self) -> Snapshot | None:
        """
        Called after a committed write. Skips the reload when nobody listens;
        the next subscribe() loads a fresh snapshot anyway.
        """
        with self._lock:
            if not self._subscriptions:
                self._latest = None
                return None
        return self.refresh()

    def _next_snapshot(self, items: tuple) -> Snapshot:
        self._version += 1
        self._latest = Snapshot(feed=self.name, version=self._version, items=items)
        return self._latest

    def _deliver_all(self, subs: list[Subscription], snapshot: Snapshot) -> None:
        for sub in subs:
            if not sub.active:
                continue
            try:
                sub.callback(snapshot)
            except Exception:
                if self._logger is not None:
                    self._logger.exception(
                        "Live feed %s subscriber failed on version %s", self.name, snapshot.version
                    )

    def _remove(self, sub: Subscription) -> None:
        with self._lock:
            if sub in self._subscriptions:
                self._subscriptions.remove(sub)


class LiveFeeds:
    """Flask extension holding the app's medicine and sales feeds."""

    MEDICINES = "medicines"
    SALES = "sales"

    def __init__(self, app: Flask | None = None):
        if app is not None:
            self.init_app(app)

    def init_app(self, app: Flask) -> None:
        from .stock_service import list_medicines
        from .journal_service import list_sales

        app.extensions["live_feeds"] = {
            self.MEDICINES: LiveFeed(self.MEDICINES, list_medicines, logger=app.logger),
            self.SALES: LiveFeed(self.SALES, list_sales, logger=app.logger),
        }

    def get(self, name: str, app: Flask | None = None) -> LiveFeed:
        target = app or current_app
        return target.extensions["live_feeds"][name]

    @property
    def medicines(self) -> LiveFeed:
        return self.get(self.MEDICINES)

    @property
    def sales(self) -> LiveFeed:
        return self.get(self.SALES)


def publish_medicines() -> None:
    from ..extensions import feeds
    feeds.medicines.publish_changes()


def publish_sales() -> None:
    from ..extensions import feeds
    feeds.sales.publish_changes()


def open_event_stream(feed: LiveFeed, serialize: Callable[[Snapshot], dict], keepalive_seconds: float):
    """
    Subscribe a queue to the feed and return (subscription, generator) for a
    Server-Sent Events response. The first event is the current snapshot.

    Delivery happens outside the feed lock, so snapshots can reach the queue
    out of order; any snapshot not newer than the last one sent is dropped.
    """
    events: queue.Queue = queue.Queue()
    subscription = feed.subscribe(events.put)

    def generate():
        last_version = 0
        try:
            while subscription.active:
                try:
                    snapshot = events.get(timeout=keepalive_seconds)
                except queue.Empty:
                    yield ": keep-alive\n\n"
                    continue
                if snapshot.version <= last_version:
                    continue
                last_version = snapshot.version
                payload = json.dumps(serialize(snapshot))
                yield f"id: {snapshot.version}\nevent: {feed.name}\ndata: {payload}\n\n"
        finally:
            subscription.unsubscribe()

    return subscription, generate()
