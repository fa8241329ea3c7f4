# Overview: Low-stock and expiring-soon alerts derived from ledger snapshots.

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import date
from typing import Callable, Iterable

from flask import current_app

from ..models import MedicineSnapshot
from ..time_utils import today_utc
from .feed_service import LiveFeed, Snapshot, Subscription

"""
Alert rules (authoritative)

- low_stock: quantity <= threshold (default 10), zero included.
- expiring_soon: expiry_date set and |expiry_date - today| <= window days
  (default 60). The distance is an absolute calendar-day difference, so
  medicines that have ALREADY expired are reported as expiring soon too.
  There is no separate "expired" bucket.
- Alerts are recomputed from each snapshot and never cached across versions.
"""

LOW_STOCK_THRESHOLD = 10
EXPIRY_WINDOW_DAYS = 60


@dataclass(frozen=True)
class AlertReport:
    low_stock: tuple
    expiring_soon: tuple
    evaluated_on: date
    version: int | None = None

    def to_dict(self) -> dict:
        return {
            "evaluated_on": self.evaluated_on.isoformat(),
            "version": self.version,
            "low_stock": [m.to_dict() for m in self.low_stock],
            "expiring_soon": [
                {**m.to_dict(), "days_to_expiry": days_to_expiry(m.expiry_date, self.evaluated_on)}
                for m in self.expiring_soon
            ],
            "counts": {
                "low_stock": len(self.low_stock),
                "expiring_soon": len(self.expiring_soon),
            },
        }


def expiry_distance_days(expiry: date, today: date) -> int:
    return abs((expiry - today).days)


def days_to_expiry(expiry: date | None, today: date) -> int | None:
    """Signed day count for display; negative once expired."""
    if expiry is None:
        return None
    return (expiry - today).days


def low_stock(
    medicines: Iterable[MedicineSnapshot],
    threshold: int = LOW_STOCK_THRESHOLD,
) -> list[MedicineSnapshot]:
    return [m for m in medicines if m.quantity <= threshold]


def expiring_soon(
    medicines: Iterable[MedicineSnapshot],
    today: date | None = None,
    window_days: int = EXPIRY_WINDOW_DAYS,
) -> list[MedicineSnapshot]:
    today = today or today_utc()
    return [
        m for m in medicines
        if m.expiry_date is not None and expiry_distance_days(m.expiry_date, today) <= window_days
    ]


def evaluate_alerts(
    medicines: Iterable[MedicineSnapshot],
    today: date | None = None,
    *,
    threshold: int = LOW_STOCK_THRESHOLD,
    window_days: int = EXPIRY_WINDOW_DAYS,
    version: int | None = None,
) -> AlertReport:
    medicines = list(medicines)
    today = today or today_utc()
    return AlertReport(
        low_stock=tuple(low_stock(medicines, threshold)),
        expiring_soon=tuple(expiring_soon(medicines, today, window_days)),
        evaluated_on=today,
        version=version,
    )


def current_alerts(today: date | None = None) -> AlertReport:
    """Evaluate against a fresh ledger read using the app's configured thresholds."""
    from .stock_service import list_medicines

    return evaluate_alerts(
        list_medicines(),
        today,
        threshold=current_app.config["LOW_STOCK_THRESHOLD"],
        window_days=current_app.config["EXPIRY_WINDOW_DAYS"],
    )


class AlertMonitor:
    """
    Re-derives alerts on every medicine feed snapshot and pushes the report
    to its listeners.

    Usage:
        with AlertMonitor(feeds.medicines, on_alerts=handler):
            ...
    """

    def __init__(
        self,
        feed: LiveFeed,
        on_alerts: Callable[[AlertReport], None] | None = None,
        *,
        today: Callable[[], date] = today_utc,
        threshold: int = LOW_STOCK_THRESHOLD,
        window_days: int = EXPIRY_WINDOW_DAYS,
    ):
        self._feed = feed
        self._today = today
        self.threshold = threshold
        self.window_days = window_days
        self._listeners: list[Callable[[AlertReport], None]] = []
        if on_alerts is not None:
            self._listeners.append(on_alerts)
        self._lock = threading.Lock()
        self._subscription: Subscription | None = None
        self._latest: AlertReport | None = None

    @property
    def latest(self) -> AlertReport | None:
        return self._latest

    def add_listener(self, listener: Callable[[AlertReport], None]) -> None:
        self._listeners.append(listener)

    def start(self) -> "AlertMonitor":
        if self._subscription is None:
            self._subscription = self._feed.subscribe(self._on_snapshot)
        return self

    def stop(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    def __enter__(self) -> "AlertMonitor":
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    def _on_snapshot(self, snapshot: Snapshot) -> None:
        with self._lock:
            if self._latest is not None and self._latest.version is not None \
                    and snapshot.version <= self._latest.version:
                return
            report = evaluate_alerts(
                snapshot.items,
                self._today(),
                threshold=self.threshold,
                window_days=self.window_days,
                version=snapshot.version,
            )
            self._latest = report
        for listener in list(self._listeners):
            listener(report)
