"""
Wire-level payloads exchanged with the detection backend.

Everything arriving from the channel or the REST API is validated here
before it reaches the mapper; anything that does not fit the expected shape
is reported as a MalformedPayloadError so the caller can drop that single
event and carry on.
"""
from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from .errors import MalformedPayloadError
from .store.models import ensure_utc


class WireThreat(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str = Field(min_length=1)
    timestamp: datetime
    source_ip: str
    destination_ip: str
    threat_type: str
    severity: int = Field(ge=0, le=10)
    confidence: float = Field(ge=0.0, le=1.0)
    description: str = ""
    indicators: Tuple[str, ...] = ()
    blocked: bool = False

    @field_validator("timestamp")
    @classmethod
    def _normalize_timestamp(cls, value: datetime) -> datetime:
        return ensure_utc(value)


class TopThreatIP(BaseModel):
    ip: str
    threat_count: int = 0
    max_severity: int = 0
    blocked: bool = False


class ThreatCorrelation(BaseModel):
    type: str
    source_ip: str
    threat_count: int = 0
    severity: int = 0
    timespan: float = 0
    description: str = ""


class BackendStats(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    total_threats: int
    active_threats: int
    blocked_ips: int
    threats_last_hour: int
    threats_last_24h: int
    threat_types: Dict[str, int] = Field(default_factory=dict)
    top_threat_ips: List[TopThreatIP] = Field(default_factory=list)
    severity_distribution: Dict[str, int] = Field(default_factory=dict)
    correlations: List[ThreatCorrelation] = Field(default_factory=list)


class NetworkFlowEvent(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    event_type: Literal["network_flow"]
    source_ip: str
    destination_ip: str
    port: int = Field(ge=0, le=65535)
    protocol: str = "tcp"
    bytes: int = Field(default=0, ge=0)


class AuthFailureEvent(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    event_type: Literal["auth_failure"]
    source_ip: str
    username: str
    service: str = "ssh"
    attempts: int = Field(default=1, ge=1)


SubmittedEvent = Annotated[
    Union[NetworkFlowEvent, AuthFailureEvent],
    Field(discriminator="event_type"),
]

_submitted_event_adapter = TypeAdapter(SubmittedEvent)


def _summarize(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(p) for p in item["loc"]) or "<root>"
        parts.append(f"{location}: {item['msg']}")
    return "; ".join(parts)


def parse_threat(payload: Any) -> WireThreat:
    try:
        return WireThreat.model_validate(payload)
    except ValidationError as e:
        raise MalformedPayloadError("threat", _summarize(e)) from e


def parse_stats(payload: Any) -> BackendStats:
    try:
        return BackendStats.model_validate(payload)
    except ValidationError as e:
        raise MalformedPayloadError("statistics", _summarize(e)) from e


def parse_submitted_event(payload: Any) -> Union[NetworkFlowEvent, AuthFailureEvent]:
    if isinstance(payload, (NetworkFlowEvent, AuthFailureEvent)):
        return payload
    try:
        return _submitted_event_adapter.validate_python(payload)
    except ValidationError as e:
        raise MalformedPayloadError("submitted event", _summarize(e)) from e
