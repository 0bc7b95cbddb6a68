import asyncio
from datetime import datetime, timezone

import httpx

from agent.socfeed.backend.connection import ConnectionState
from agent.socfeed.pipeline import EventSource, ThreatPipeline
from agent.socfeed.store.alert_feed import AlertFeed
from agent.socfeed.store.models import (
    Alert,
    AlertType,
    AnomalyDetection,
    IncidentStatus,
    NetworkTraffic,
    SeverityTier,
)
from agent.socfeed.store.views import HistoryKind
from agent.socfeed.wire import parse_threat


def build_pipeline(config, backend, channel_factory, **kwargs):
    return ThreatPipeline(config, client=backend.client(), channel_factory=channel_factory, **kwargs)


def test_live_threat_flows_into_every_view(test_config, backend, channel_factory, wire_threat, wait_until):
    async def scenario():
        pipeline = build_pipeline(test_config, backend, channel_factory)
        threats, views = [], []
        pipeline.subscribe_threats(threats.append)
        pipeline.subscribe_views(views.append)

        await pipeline.start()
        assert pipeline.connection_state == ConnectionState.CONNECTED

        channel_factory.last.push("threat_detected", wire_threat(id="T-9", severity=9, confidence=0.87, blocked=True))
        await wait_until(lambda: len(threats) == 1)

        incident = pipeline.views.incidents.get("T-9")
        alert = pipeline.views.alerts.get("ALT-T-9")
        detection = pipeline.views.threat_detections.get("THR-T-9")
        assert incident.status == IncidentStatus.CONTAINED
        assert incident.severity == SeverityTier.CRITICAL
        assert alert.risk_score == 87
        assert alert.type == AlertType.CRITICAL
        assert detection.confidence == 87
        assert threats[0].incident is incident
        assert {HistoryKind.INCIDENTS, HistoryKind.ALERTS, HistoryKind.THREAT_DETECTIONS} <= set(views)

        await pipeline.stop()

    asyncio.run(scenario())


def test_malformed_event_is_dropped_and_stream_continues(test_config, backend, channel_factory, wire_threat, wait_until):
    async def scenario():
        pipeline = build_pipeline(test_config, backend, channel_factory)
        await pipeline.start()

        channel = channel_factory.last
        channel.push("threat_detected", {"id": "T-1", "severity": 42})
        channel.push("threat_detected", "garbage")
        channel.push("threat_detected", wire_threat(id="T-2"))
        await wait_until(lambda: "T-2" in pipeline.views.incidents)

        assert pipeline.dropped_events == 2
        assert len(pipeline.views.incidents) == 1
        assert pipeline.connection_state == ConnectionState.CONNECTED
        await pipeline.stop()

    asyncio.run(scenario())


def test_backlog_on_connect_is_newest_first(test_config, backend, channel_factory, wire_threat):
    backlog = [
        wire_threat(id="T-3", timestamp="2024-03-01T12:03:00Z"),
        wire_threat(id="T-1", timestamp="2024-03-01T12:01:00Z"),
        wire_threat(id="T-2", timestamp="2024-03-01T12:02:00Z"),
    ]
    backend.route("GET", "/api/threats", httpx.Response(200, json=backlog))

    async def scenario():
        pipeline = build_pipeline(test_config, backend, channel_factory)
        await pipeline.start()
        ids = [i.id for i in pipeline.views.incidents]
        await pipeline.stop()
        return ids

    assert asyncio.run(scenario()) == ["T-3", "T-2", "T-1"]
    assert backend.requests[0].url.params["limit"] == "50"


def test_backlog_after_newer_live_event_does_not_jump_ahead(test_config, backend, channel_factory, wire_threat):
    async def scenario():
        pipeline = build_pipeline(test_config, backend, channel_factory)
        pipeline.ingest_threat(parse_threat(wire_threat(id="LIVE", timestamp="2024-03-01T13:00:00Z")))
        pipeline.ingest_backlog([parse_threat(wire_threat(id="OLD", timestamp="2024-03-01T12:00:00Z"))])
        return [i.id for i in pipeline.views.incidents]

    assert asyncio.run(scenario()) == ["LIVE", "OLD"]


def test_reconnect_does_not_duplicate_threats(test_config, backend, channel_factory, wire_threat, wait_until):
    backend.route("GET", "/api/threats", httpx.Response(200, json=[wire_threat(id="T-1")]))

    async def scenario():
        pipeline = build_pipeline(test_config, backend, channel_factory)
        threats = []
        pipeline.subscribe_threats(threats.append)
        await pipeline.start()
        pipeline.acknowledge_alert("ALT-T-1")

        # Backend restarts; the backlog and a replayed live event repeat T-1
        channel_factory.last.drop()
        await wait_until(lambda: len(channel_factory.channels) == 2 and pipeline.connection_state == ConnectionState.CONNECTED)
        channel_factory.last.push("threat_detected", wire_threat(id="T-1"))
        channel_factory.last.push("threat_detected", wire_threat(id="T-2"))
        await wait_until(lambda: "T-2" in pipeline.views.incidents)

        assert [t.incident.id for t in threats] == ["T-1", "T-2"]
        assert [i.id for i in pipeline.views.incidents] == ["T-2", "T-1"]
        assert pipeline.views.alerts.get("ALT-T-1").acknowledged is True
        await pipeline.stop()

    asyncio.run(scenario())


def test_acknowledge_touches_only_the_target_alert(test_config, backend, channel_factory, wire_threat):
    async def scenario():
        pipeline = build_pipeline(test_config, backend, channel_factory)
        pipeline.ingest_threat(parse_threat(wire_threat(id="1", timestamp="2024-03-01T12:00:00Z")))
        pipeline.ingest_threat(parse_threat(wire_threat(id="2", timestamp="2024-03-01T15:00:00Z")))
        before = {a.id: (a.message, a.type, a.risk_score, a.is_duplicate, list(a.related_alerts)) for a in pipeline.views.alerts}

        assert pipeline.acknowledge_alert("ALT-1") is True
        assert pipeline.acknowledge_alert("ALT-404") is False

        after = {a.id: (a.message, a.type, a.risk_score, a.is_duplicate, list(a.related_alerts)) for a in pipeline.views.alerts}
        assert after == before
        assert pipeline.views.alerts.get("ALT-1").acknowledged is True
        assert pipeline.views.alerts.get("ALT-2").acknowledged is False

    asyncio.run(scenario())


def test_resolve_incident(test_config, backend, channel_factory, wire_threat):
    async def scenario():
        pipeline = build_pipeline(test_config, backend, channel_factory)
        pipeline.ingest_threat(parse_threat(wire_threat(id="T-5", blocked=True)))
        assert pipeline.resolve_incident("T-5") is True
        assert pipeline.resolve_incident("T-6") is False
        return pipeline.views.incidents.get("T-5").status

    assert asyncio.run(scenario()) == IncidentStatus.RESOLVED


def test_backend_alerts_close_in_time_are_correlated(test_config, backend, channel_factory, wire_threat):
    async def scenario():
        pipeline = build_pipeline(test_config, backend, channel_factory)
        pipeline.ingest_threat(parse_threat(wire_threat(id="A", timestamp="2024-03-01T12:00:00Z")))
        pipeline.ingest_threat(parse_threat(wire_threat(id="B", timestamp="2024-03-01T12:01:00Z")))
        pipeline.ingest_threat(parse_threat(wire_threat(id="C", timestamp="2024-03-01T18:00:00Z")))
        return {a.id: (a.is_duplicate, a.related_alerts) for a in pipeline.views.alerts}

    result = asyncio.run(scenario())
    assert result["ALT-A"] == (True, ["ALT-B"])
    assert result["ALT-B"] == (True, ["ALT-A"])
    assert result["ALT-C"] == (False, [])


def test_stats_polling_starts_on_connect_and_survives_failures(test_config, backend, channel_factory, stats_payload, wait_until):
    responses = [httpx.Response(200, json=stats_payload), httpx.Response(500), httpx.Response(200, json=stats_payload)]

    def stats_route(request):
        return responses.pop(0) if responses else httpx.Response(500)

    backend.route("GET", "/api/statistics", stats_route)

    async def scenario():
        pipeline = build_pipeline(test_config, backend, channel_factory)
        stats = []
        pipeline.subscribe_stats(stats.append)
        await pipeline.start()
        await wait_until(lambda: len(stats) == 1)
        first = pipeline.latest_stats

        await wait_until(lambda: pipeline.stats.failures >= 1)
        assert pipeline.latest_stats is first

        await wait_until(lambda: len(stats) == 2)
        await pipeline.stop()
        assert not pipeline.stats.running

    asyncio.run(scenario())


def test_disconnect_during_backlog_fetch_keeps_stats_stopped(test_config, backend, channel_factory, wait_until):
    async def scenario():
        release = asyncio.Event()

        async def slow_backlog(request):
            await release.wait()
            return httpx.Response(200, json=[])

        backend.route("GET", "/api/threats", slow_backlog)
        pipeline = build_pipeline(test_config, backend, channel_factory)
        starting = asyncio.create_task(pipeline.start())
        await wait_until(lambda: backend.paths("GET") == ["/api/threats"])

        await pipeline.connection.disconnect()
        release.set()
        await starting
        await asyncio.sleep(0.15)

        assert pipeline.connection_state == ConnectionState.DISCONNECTED
        assert not pipeline.stats.running
        assert backend.paths("GET") == ["/api/threats"]
        await pipeline.stop()

    asyncio.run(scenario())


def test_dropped_channel_during_backlog_fetch_leaves_stats_to_the_new_session(
    test_config, backend, channel_factory, stats_payload, wait_until
):
    backend.route("GET", "/api/statistics", httpx.Response(200, json=stats_payload))

    async def scenario():
        release = asyncio.Event()
        calls = []

        async def backlog(request):
            calls.append(request)
            if len(calls) == 1:
                await release.wait()
            return httpx.Response(200, json=[])

        backend.route("GET", "/api/threats", backlog)
        pipeline = build_pipeline(test_config, backend, channel_factory)
        starting = asyncio.create_task(pipeline.start())
        await wait_until(lambda: len(calls) == 1)

        # First session dies and a second one connects before the first backlog returns
        channel_factory.last.drop()
        await wait_until(lambda: len(calls) == 2 and pipeline.stats.running)
        release.set()
        await starting

        assert pipeline.connection_state == ConnectionState.CONNECTED
        assert pipeline.stats.running
        await pipeline.stop()
        assert not pipeline.stats.running

    asyncio.run(scenario())


def test_exhausted_connection_surfaces_as_failed_state(test_config, backend, channel_factory, wait_until):
    channel_factory.always_fail = True

    async def scenario():
        pipeline = build_pipeline(test_config, backend, channel_factory)
        states = []
        pipeline.subscribe_connection_state(states.append)
        await pipeline.start()
        await wait_until(lambda: pipeline.connection_state == ConnectionState.FAILED)
        assert states[-1] == ConnectionState.FAILED
        assert not pipeline.stats.running

        channel_factory.always_fail = False
        await pipeline.reconnect()
        assert pipeline.connection_state == ConnectionState.CONNECTED
        await pipeline.stop()

    asyncio.run(scenario())


def test_block_ip_goes_to_backend(test_config, backend, channel_factory):
    backend.route("POST", "/api/block/198.51.100.9", httpx.Response(200))

    async def scenario():
        pipeline = build_pipeline(test_config, backend, channel_factory)
        return await pipeline.block_ip("198.51.100.9"), await pipeline.unblock_ip("198.51.100.9")

    assert asyncio.run(scenario()) == (True, False)


class ListSource(EventSource):
    def __init__(self, batches):
        self.batches = list(batches)

    def poll(self):
        return self.batches.pop(0) if self.batches else []


def test_event_source_respects_monitoring_toggle(test_config, backend, channel_factory, wait_until):
    ts = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
    traffic = NetworkTraffic(id="NT-1", timestamp=ts, source_ip="10.0.0.1", destination_ip="10.0.0.2", protocol="tcp", port=443)
    anomaly = AnomalyDetection(id="AN-1", timestamp=ts, data={"metric": "cpu", "zscore": 4.2})
    source = ListSource([[traffic, anomaly, object()]])

    async def scenario():
        pipeline = build_pipeline(test_config, backend, channel_factory, event_source=source)
        assert pipeline.toggle_monitoring() is False
        await pipeline.start()
        await asyncio.sleep(0.05)
        assert len(pipeline.views.network_traffic) == 0

        assert pipeline.toggle_monitoring() is True
        assert pipeline.connection_state == ConnectionState.CONNECTED
        await wait_until(lambda: len(pipeline.views.anomalies) == 1)

        assert pipeline.views.network_traffic.get("NT-1") is traffic
        assert pipeline.views.anomalies.get("AN-1").data == {"metric": "cpu", "zscore": 4.2}
        assert pipeline.dropped_events == 1
        await pipeline.stop()

    asyncio.run(scenario())


class StaticFeed(AlertFeed):
    def __init__(self, rows):
        self.rows = rows
        self.opened = False

    async def open(self):
        self.opened = True

    async def fetch_alerts(self):
        return [Alert(**vars(row)) for row in self.rows]

    async def changes(self):
        return
        yield


def test_alert_feed_is_merged_on_start(test_config, backend, channel_factory, wire_threat):
    feed_alert = Alert(
        id="DB-1",
        timestamp=datetime(2024, 3, 1, 11, 0, tzinfo=timezone.utc),
        message="from store",
        type=AlertType.ERROR,
        source_system="siem",
        acknowledged=True,
    )

    async def scenario():
        pipeline = build_pipeline(test_config, backend, channel_factory, alert_feed=StaticFeed([feed_alert]))
        await pipeline.start()
        pipeline.ingest_threat(parse_threat(wire_threat(id="T-1")))
        ids = [a.id for a in pipeline.views.alerts]
        acknowledged = pipeline.views.alerts.get("DB-1").acknowledged
        await pipeline.stop()
        return ids, acknowledged

    ids, acknowledged = asyncio.run(scenario())
    assert ids == ["ALT-T-1", "DB-1"]
    assert acknowledged is True
