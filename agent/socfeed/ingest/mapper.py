import math
from typing import NamedTuple

from ..store.models import (
    Alert,
    AlertType,
    DetectionMethod,
    Incident,
    IncidentStatus,
    SeverityTier,
    ThreatDetection,
)
from ..wire import WireThreat

BACKEND_SOURCE_SYSTEM = "Backend Threat Detection"
BLOCKED_RESPONSE_ACTIONS = ("Block IP address", "Notify security team")
OPEN_RESPONSE_ACTIONS = ("Investigate source",)
DEFAULT_TACTICS = ("Initial Access", "Execution")


class MappedThreat(NamedTuple):
    incident: Incident
    alert: Alert
    detection: ThreatDetection


def severity_tier(severity: int) -> SeverityTier:
    if severity >= 8:
        return SeverityTier.CRITICAL
    if severity >= 6:
        return SeverityTier.HIGH
    if severity >= 4:
        return SeverityTier.MEDIUM
    return SeverityTier.LOW


def alert_type(severity: int) -> AlertType:
    if severity >= 8:
        return AlertType.CRITICAL
    if severity >= 6:
        return AlertType.ERROR
    return AlertType.WARNING


def detection_method(threat_type: str) -> DetectionMethod:
    # First matching rule wins
    if "behavioral" in threat_type:
        return DetectionMethod.BEHAVIORAL_ANOMALY
    if "signature" in threat_type:
        return DetectionMethod.SIGNATURE_MATCH
    return DetectionMethod.ML_DETECTION


def percent(confidence: float) -> int:
    """
    Scale a 0..1 confidence to 0..100, rounding halves up on the float
    product, so 0.285 gives 28 because 0.285 * 100 is 28.499999999999996.
    """
    return int(math.floor(confidence * 100 + 0.5))


def map_threat(wire: WireThreat) -> MappedThreat:
    """
    Project a backend threat onto the incident, alert and detection views.

    The mapping is pure: the same WireThreat always yields equal output.
    Confidence stands in for both the detection confidence and the risk
    scores until the backend reports a separate risk figure.
    """
    score = percent(wire.confidence)

    incident = Incident(
        id=wire.id,
        timestamp=wire.timestamp,
        category=wire.threat_type,
        severity=severity_tier(wire.severity),
        source=wire.source_ip,
        target=wire.destination_ip,
        description=wire.description,
        status=IncidentStatus.CONTAINED if wire.blocked else IncidentStatus.DETECTED,
        response_actions=list(BLOCKED_RESPONSE_ACTIONS if wire.blocked else OPEN_RESPONSE_ACTIONS),
        affected_systems=[wire.destination_ip],
    )

    alert = Alert(
        id=f"ALT-{wire.id}",
        timestamp=wire.timestamp,
        message=wire.description,
        type=alert_type(wire.severity),
        source_system=BACKEND_SOURCE_SYSTEM,
        risk_score=score,
    )

    detection = ThreatDetection(
        id=f"THR-{wire.id}",
        timestamp=wire.timestamp,
        threat_type=detection_method(wire.threat_type),
        confidence=score,
        risk_score=score,
        indicators=list(wire.indicators),
        affected_assets=[wire.destination_ip],
        mitre_tactics=list(DEFAULT_TACTICS),
        description=wire.description,
    )

    return MappedThreat(incident, alert, detection)
