from typing import Dict, List, Sequence

from ..store.models import Alert, ensure_utc

DEFAULT_WINDOW = 300.0
DEFAULT_DEPTH = 10


def within_window(a: Alert, b: Alert, window: float) -> bool:
    delta = ensure_utc(a.timestamp) - ensure_utc(b.timestamp)
    return abs(delta.total_seconds()) <= window


def correlate(alerts: Sequence[Alert], window: float = DEFAULT_WINDOW, depth: int = DEFAULT_DEPTH) -> Sequence[Alert]:
    """
    Annotate a newest-first alert list in place and return it.

    Each alert is compared against at most ``depth`` of the entries that
    follow it. Two alerts from the same source system whose timestamps lie
    within ``window`` seconds of each other are siblings: both are flagged
    as duplicates and list each other in ``related_alerts``. Related ids are
    recomputed from scratch on every call, so running it twice gives the
    same annotations. ``is_duplicate`` is never cleared.
    """
    siblings: Dict[int, List[int]] = {i: [] for i in range(len(alerts))}

    for i, alert in enumerate(alerts):
        for j in range(i + 1, min(len(alerts), i + 1 + depth)):
            other = alerts[j]
            if other.source_system != alert.source_system:
                continue
            if not within_window(alert, other, window):
                continue
            siblings[i].append(j)
            siblings[j].append(i)

    for i, alert in enumerate(alerts):
        related = [alerts[j].id for j in sorted(siblings[i]) if alerts[j].id != alert.id]
        alert.related_alerts = related
        if related:
            alert.is_duplicate = True

    return alerts


class CorrelationEngine:
    def __init__(self, window: float = DEFAULT_WINDOW, depth: int = DEFAULT_DEPTH):
        self.window = window
        self.depth = depth

    def correlate(self, alerts: Sequence[Alert]) -> Sequence[Alert]:
        return correlate(alerts, self.window, self.depth)
