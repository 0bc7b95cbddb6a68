from enum import Enum

from ..config.schema import HistoryConfig
from .history import BoundedHistory
from .models import Alert, AnomalyDetection, Incident, NetworkTraffic, ThreatDetection


class HistoryKind(str, Enum):
    INCIDENTS = "incidents"
    NETWORK_TRAFFIC = "network_traffic"
    ALERTS = "alerts"
    THREAT_DETECTIONS = "threat_detections"
    ANOMALIES = "anomalies"


class HistoryViews:
    """The bounded, query-ready views kept for the monitoring surface."""

    def __init__(self, config: HistoryConfig):
        self.incidents: BoundedHistory[Incident] = BoundedHistory("incidents", config.incidents)
        self.network_traffic: BoundedHistory[NetworkTraffic] = BoundedHistory(
            "network_traffic", config.network_traffic
        )
        self.alerts: BoundedHistory[Alert] = BoundedHistory("alerts", config.alerts)
        self.threat_detections: BoundedHistory[ThreatDetection] = BoundedHistory(
            "threat_detections", config.threat_detections
        )
        self.anomalies: BoundedHistory[AnomalyDetection] = BoundedHistory("anomalies", config.anomalies)

    def by_kind(self, kind: HistoryKind) -> BoundedHistory:
        return getattr(self, kind.value)

    def sizes(self):
        return {kind.value: len(self.by_kind(kind)) for kind in HistoryKind}
