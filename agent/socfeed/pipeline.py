import asyncio
from abc import ABC, abstractmethod
from collections import deque
from typing import Any, Callable, Deque, Iterable, List, Optional, Set

from .backend.channel import Channel, ChannelMessage, StreamChannel
from .backend.client import BackendClient
from .backend.connection import ConnectionManager, ConnectionState
from .backend.stats import StatsPoller
from .config.schema import SocFeedConfig
from .errors import MalformedPayloadError, SocFeedError
from .events import EventDispatcher, EventKind
from .ingest.correlation import CorrelationEngine
from .ingest.mapper import MappedThreat, map_threat
from .store.alert_feed import AlertFeed, merge_alerts
from .store.models import (
    Alert,
    AnomalyDetection,
    Incident,
    IncidentStatus,
    NetworkTraffic,
    ThreatDetection,
    ensure_utc,
)
from .store.views import HistoryKind, HistoryViews
from .utils.logging import get_logger
from .wire import BackendStats, WireThreat, parse_threat

logger = get_logger("pipeline")

THREAT_EVENT = "threat_detected"


class EventSource(ABC):
    """External producer of ready-made domain events (traffic, alerts, detections, anomalies)."""

    @abstractmethod
    def poll(self) -> List[Any]:
        """Return the events produced since the last poll."""


class ThreatPipeline:
    """
    Ingests backend threats into bounded views and notifies observers.

    All state is owned by the event loop the pipeline runs on. Every store
    mutation happens synchronously between awaits, and observers are
    notified right after it.
    """

    def __init__(
        self,
        config: SocFeedConfig,
        client: Optional[BackendClient] = None,
        channel_factory: Optional[Callable[[], Channel]] = None,
        alert_feed: Optional[AlertFeed] = None,
        event_source: Optional[EventSource] = None,
        dispatcher: Optional[EventDispatcher] = None,
    ):
        self.config = config
        self.dispatcher = dispatcher or EventDispatcher()
        self.views = HistoryViews(config.history)
        self.correlation = CorrelationEngine(config.correlation.window, config.correlation.depth)
        self.client = client or BackendClient(config.backend.url, config.backend.request_timeout)
        self.alert_feed = alert_feed
        self.event_source = event_source
        self.monitoring = config.monitoring.enabled
        self.dropped_events = 0

        if channel_factory is None:
            backend = config.backend

            def channel_factory():
                return StreamChannel(
                    backend.channel_host,
                    backend.channel_port,
                    connect_timeout=config.reconnect.connect_timeout,
                )

        self.connection = ConnectionManager(
            channel_factory,
            self.dispatcher,
            base_delay=config.reconnect.base_delay,
            max_attempts=config.reconnect.max_attempts,
            on_connected=self._on_connected,
            on_disconnected=self._on_disconnected,
            on_message=self._on_message,
        )
        self.stats = StatsPoller(self.client.fetch_statistics, self._publish_stats, config.stats.interval)

        self._seen_order: Deque[str] = deque()
        self._seen: Set[str] = set()
        self._seen_capacity = config.dedupe.capacity
        self._tasks: List[asyncio.Task] = []

    # Observer API

    def subscribe_threats(self, handler: Callable[[MappedThreat], None]) -> Callable[[], None]:
        return self.dispatcher.subscribe(EventKind.THREAT, handler)

    def subscribe_stats(self, handler: Callable[[BackendStats], None]) -> Callable[[], None]:
        return self.dispatcher.subscribe(EventKind.STATS, handler)

    def subscribe_connection_state(self, handler: Callable[[ConnectionState], None]) -> Callable[[], None]:
        return self.dispatcher.subscribe(EventKind.CONNECTION, handler)

    def subscribe_views(self, handler: Callable[[HistoryKind], None]) -> Callable[[], None]:
        return self.dispatcher.subscribe(EventKind.VIEWS, handler)

    @property
    def connection_state(self) -> ConnectionState:
        return self.connection.state

    @property
    def latest_stats(self) -> Optional[BackendStats]:
        return self.stats.latest

    # Lifecycle

    async def start(self):
        if self.alert_feed:
            await self.alert_feed.open()
            await self.refresh_alerts_from_feed()
            self._tasks.append(asyncio.create_task(self._watch_alert_feed()))

        if self.event_source:
            self._tasks.append(asyncio.create_task(self._consume_event_source()))

        await self.connection.connect()

    async def reconnect(self):
        """Manual reconnect, also the way out of the FAILED state."""
        await self.connection.connect()

    async def stop(self):
        await self.connection.disconnect()
        await self.stats.stop()

        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        if self.alert_feed:
            await self.alert_feed.close()
        await self.client.aclose()

    # Operator actions

    def acknowledge_alert(self, alert_id: str) -> bool:
        def acknowledge(alert: Alert):
            alert.acknowledged = True

        found = self.views.alerts.update_by_id(alert_id, acknowledge)
        if found:
            self._views_changed(HistoryKind.ALERTS)
        return found

    def resolve_incident(self, incident_id: str) -> bool:
        def resolve(incident: Incident):
            incident.status = IncidentStatus.RESOLVED

        found = self.views.incidents.update_by_id(incident_id, resolve)
        if found:
            self._views_changed(HistoryKind.INCIDENTS)
        return found

    async def block_ip(self, ip: str) -> bool:
        return await self.client.block_ip(ip)

    async def unblock_ip(self, ip: str) -> bool:
        return await self.client.unblock_ip(ip)

    async def submit_event(self, event: Any) -> bool:
        return await self.client.submit_event(event)

    def toggle_monitoring(self) -> bool:
        """Pause or resume consumption of the external event source; the backend channel is unaffected."""
        self.monitoring = not self.monitoring
        logger.info(f"Monitoring {'resumed' if self.monitoring else 'paused'}")
        return self.monitoring

    # Threat ingestion

    def ingest_threat(self, wire: WireThreat) -> Optional[MappedThreat]:
        """Map a live threat and push it onto the views; returns None for a replay."""
        if not self._remember(wire.id):
            logger.debug(f"Skipping already ingested threat {wire.id}")
            return None

        mapped = map_threat(wire)
        self.views.incidents.push(mapped.incident)
        self.views.alerts.push(mapped.alert)
        self._correlate_alerts()
        self.views.threat_detections.push(mapped.detection)

        self.dispatcher.publish(EventKind.THREAT, mapped)
        for kind in (HistoryKind.INCIDENTS, HistoryKind.ALERTS, HistoryKind.THREAT_DETECTIONS):
            self._views_changed(kind)
        return mapped

    def ingest_backlog(self, threats: Iterable[WireThreat]) -> List[MappedThreat]:
        """
        Merge a backlog batch by timestamp, so a backlog that arrives after
        newer live events does not land in front of them.
        """
        fresh = []
        for wire in sorted(threats, key=lambda t: t.timestamp):
            if self._remember(wire.id):
                fresh.append(map_threat(wire))

        if not fresh:
            return []

        self._merge_into(self.views.incidents, [m.incident for m in fresh])
        self._merge_into(self.views.alerts, [m.alert for m in fresh])
        self._correlate_alerts()
        self._merge_into(self.views.threat_detections, [m.detection for m in fresh])

        for mapped in fresh:
            self.dispatcher.publish(EventKind.THREAT, mapped)
        for kind in (HistoryKind.INCIDENTS, HistoryKind.ALERTS, HistoryKind.THREAT_DETECTIONS):
            self._views_changed(kind)

        logger.info(f"Ingested {len(fresh)} backlog threats")
        return fresh

    def ingest_external(self, item: Any) -> bool:
        """Route one event from the external source onto its view."""
        if isinstance(item, NetworkTraffic):
            kind = HistoryKind.NETWORK_TRAFFIC
        elif isinstance(item, Alert):
            kind = HistoryKind.ALERTS
        elif isinstance(item, ThreatDetection):
            kind = HistoryKind.THREAT_DETECTIONS
        elif isinstance(item, AnomalyDetection):
            kind = HistoryKind.ANOMALIES
        elif isinstance(item, Incident):
            kind = HistoryKind.INCIDENTS
        else:
            self.dropped_events += 1
            logger.warning(f"Dropping unsupported event from source: {type(item).__name__}")
            return False

        self.views.by_kind(kind).push(item)
        if kind == HistoryKind.ALERTS:
            self._correlate_alerts()
        self._views_changed(kind)
        return True

    async def refresh_alerts_from_feed(self):
        """Full re-fetch from the alert store, merged into the held alerts."""
        try:
            rows = await self.alert_feed.fetch_alerts()
        except Exception as e:
            logger.error(f"Alert feed fetch failed: {e}")
            return

        merged = merge_alerts(self.views.alerts.snapshot(), rows)
        self.views.alerts.replace_all(merged)
        self._correlate_alerts()
        self._views_changed(HistoryKind.ALERTS)

    def status(self):
        return {
            "connection": self.connection.state.value,
            "reconnect_attempts": self.connection.attempts,
            "monitoring": self.monitoring,
            "views": self.views.sizes(),
            "stats_available": self.stats.latest is not None,
            "stats_failures": self.stats.failures,
            "dropped_events": self.dropped_events,
        }

    # Connection hooks

    async def _on_connected(self):
        session = self.connection.session
        await self._fetch_backlog()
        # A disconnect during the backlog fetch already ran _on_disconnected
        if self.connection.session != session or not self.connection.is_connected:
            logger.debug("Connection changed during backlog fetch, not starting stats polling")
            return
        self.stats.start()

    async def _on_disconnected(self):
        await self.stats.stop()

    async def _on_message(self, message: ChannelMessage):
        if message.event != THREAT_EVENT:
            logger.debug(f"Ignoring {message.event} event")
            return

        try:
            wire = parse_threat(message.data)
        except MalformedPayloadError as e:
            self.dropped_events += 1
            logger.warning(f"Dropping threat event: {e}")
            return

        self.ingest_threat(wire)

    async def _fetch_backlog(self):
        try:
            threats = await self.client.fetch_threats(self.config.backend.backlog_limit)
        except SocFeedError as e:
            logger.warning(f"Backlog fetch failed: {e}")
            return
        self.ingest_backlog(threats)

    # Background loops

    async def _consume_event_source(self):
        while True:
            await asyncio.sleep(self.config.monitoring.interval)
            if not self.monitoring:
                continue
            try:
                batch = self.event_source.poll()
            except Exception:
                logger.exception("Event source poll failed")
                continue
            for item in batch:
                self.ingest_external(item)

    async def _watch_alert_feed(self):
        try:
            async for _ in self.alert_feed.changes():
                await self.refresh_alerts_from_feed()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Alert feed watcher stopped")

    # Helpers

    def _remember(self, threat_id: str) -> bool:
        if threat_id in self._seen:
            return False
        self._seen.add(threat_id)
        self._seen_order.append(threat_id)
        if len(self._seen_order) > self._seen_capacity:
            self._seen.discard(self._seen_order.popleft())
        return True

    @staticmethod
    def _merge_into(history, items):
        combined = items + history.snapshot()
        combined.sort(key=lambda e: ensure_utc(e.timestamp), reverse=True)
        history.replace_all(combined)

    def _correlate_alerts(self):
        self.correlation.correlate(self.views.alerts.snapshot())

    def _publish_stats(self, stats: BackendStats):
        self.dispatcher.publish(EventKind.STATS, stats)

    def _views_changed(self, kind: HistoryKind):
        self.dispatcher.publish(EventKind.VIEWS, kind)
