from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List


def ensure_utc(value: datetime) -> datetime:
    """Naive timestamps are taken to be UTC so they compare with aware ones."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SeverityTier(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AlertType(str, Enum):
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class IncidentStatus(str, Enum):
    DETECTED = "detected"
    CONTAINED = "contained"
    RESOLVED = "resolved"


class DetectionMethod(str, Enum):
    BEHAVIORAL_ANOMALY = "behavioral_anomaly"
    SIGNATURE_MATCH = "signature_match"
    ML_DETECTION = "ml_detection"


@dataclass
class Incident:
    id: str
    timestamp: datetime
    category: str
    severity: SeverityTier
    source: str
    target: str
    description: str
    status: IncidentStatus = IncidentStatus.DETECTED
    response_actions: List[str] = field(default_factory=list)
    affected_systems: List[str] = field(default_factory=list)


@dataclass
class Alert:
    id: str
    timestamp: datetime
    message: str
    type: AlertType
    source_system: str
    risk_score: int = 0
    acknowledged: bool = False
    is_duplicate: bool = False
    related_alerts: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class ThreatDetection:
    id: str
    timestamp: datetime
    threat_type: DetectionMethod
    confidence: int
    risk_score: int
    indicators: List[str]
    affected_assets: List[str]
    mitre_tactics: List[str]
    description: str


@dataclass(frozen=True)
class AnomalyDetection:
    id: str
    timestamp: datetime
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class NetworkTraffic:
    id: str
    timestamp: datetime
    source_ip: str
    destination_ip: str
    protocol: str
    port: int
    bytes: int = 0
    suspicious: bool = False
