from pydantic import BaseModel, Field

from .defaults import DEFAULT_ALERT_DB_PATH, DEFAULT_BACKEND_URL, DEFAULT_SOCKET_PATH

class AgentConfig(BaseModel):
    name: str = "socfeed-agent"
    log_level: str = "INFO"
    ipc_socket: str = str(DEFAULT_SOCKET_PATH)

class BackendConfig(BaseModel):
    url: str = DEFAULT_BACKEND_URL
    channel_host: str = "localhost"
    channel_port: int = 5001
    backlog_limit: int = Field(default=50, gt=0)
    request_timeout: float = Field(default=10.0, gt=0)

class ReconnectConfig(BaseModel):
    base_delay: float = Field(default=3.0, ge=0)
    max_attempts: int = Field(default=5, ge=0)
    connect_timeout: float = Field(default=10.0, gt=0)

class StatsConfig(BaseModel):
    interval: float = Field(default=10.0, gt=0)

class HistoryConfig(BaseModel):
    incidents: int = Field(default=50, gt=0)
    network_traffic: int = Field(default=100, gt=0)
    alerts: int = Field(default=50, gt=0)
    threat_detections: int = Field(default=30, gt=0)
    anomalies: int = Field(default=20, gt=0)

class CorrelationConfig(BaseModel):
    window: float = Field(default=300.0, ge=0)
    depth: int = Field(default=10, ge=1)

class AlertFeedConfig(BaseModel):
    enabled: bool = False
    path: str = str(DEFAULT_ALERT_DB_PATH)
    poll_interval: float = Field(default=2.0, gt=0)

class MonitoringConfig(BaseModel):
    enabled: bool = True
    interval: float = Field(default=2.0, gt=0)

class DedupeConfig(BaseModel):
    capacity: int = Field(default=1000, gt=0)

class SocFeedConfig(BaseModel):
    agent: AgentConfig = Field(default_factory=AgentConfig)
    backend: BackendConfig = Field(default_factory=BackendConfig)
    reconnect: ReconnectConfig = Field(default_factory=ReconnectConfig)
    stats: StatsConfig = Field(default_factory=StatsConfig)
    history: HistoryConfig = Field(default_factory=HistoryConfig)
    correlation: CorrelationConfig = Field(default_factory=CorrelationConfig)
    alert_feed: AlertFeedConfig = Field(default_factory=AlertFeedConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)
    dedupe: DedupeConfig = Field(default_factory=DedupeConfig)
