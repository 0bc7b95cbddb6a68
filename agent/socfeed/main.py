import asyncio
import ipaddress
import signal
import sys
from typing import Dict, Optional

from .config.loader import load_config
from .config.schema import SocFeedConfig
from .backend.connection import ConnectionState
from .errors import MalformedPayloadError
from .pipeline import ThreatPipeline
from .store.alert_feed import SQLiteAlertFeed
from .utils.logging import setup_logging, get_logger
from .ipc import IPCServer

logger = get_logger("agent")

VERSION = "0.1.0"


def _ip_param(params: Dict) -> str:
    ip = params["ip"]
    try:
        ipaddress.ip_address(ip)
    except ValueError:
        raise MalformedPayloadError("ip", f"{ip!r} is not an IP address")
    return ip


class SocFeedAgent:
    def __init__(self, config_path: Optional[str] = None, config: Optional[SocFeedConfig] = None):
        self.config = config or load_config(config_path)
        setup_logging(self.config.agent.log_level)

        alert_feed = None
        if self.config.alert_feed.enabled:
            alert_feed = SQLiteAlertFeed(self.config.alert_feed.path, self.config.alert_feed.poll_interval)

        self.pipeline = ThreatPipeline(self.config, alert_feed=alert_feed)
        self.pipeline.subscribe_connection_state(self._log_connection_state)

        self.ipc_handlers = {
            "status": self.handle_status,
            "incidents": self.handle_incidents,
            "alerts": self.handle_alerts,
            "detections": self.handle_detections,
            "stats": self.handle_stats,
            "acknowledge": self.handle_acknowledge,
            "resolve": self.handle_resolve,
            "block": self.handle_block,
            "unblock": self.handle_unblock,
            "reconnect": self.handle_reconnect,
        }
        self.ipc = IPCServer(self.config.agent.ipc_socket, self.ipc_handlers)

        self._stopped = asyncio.Event()

    async def run(self):
        """Main service loop."""
        logger.info(f"Starting SocFeed Agent v{VERSION}")
        logger.info(f"Backend: {self.config.backend.url}")

        await self.ipc.start()
        try:
            await self.pipeline.start()
            await self._stopped.wait()
        except asyncio.CancelledError:
            logger.info("Agent stopping...")
        finally:
            await self.shutdown()

    def request_stop(self):
        self._stopped.set()

    async def shutdown(self):
        await self.ipc.stop()
        await self.pipeline.stop()
        logger.info("Agent stopped.")

    def _log_connection_state(self, state):
        if state == ConnectionState.FAILED:
            logger.error("Backend unreachable; use 'socfeed reconnect' once it is back")

    async def handle_status(self, params: Dict):
        status = self.pipeline.status()
        status["version"] = VERSION
        status["backend"] = self.config.backend.url
        return status

    async def handle_incidents(self, params: Dict):
        limit = params.get("limit", 10)
        return self.pipeline.views.incidents.snapshot()[:limit]

    async def handle_alerts(self, params: Dict):
        limit = params.get("limit", 10)
        alerts = self.pipeline.views.alerts.snapshot()
        if params.get("unacknowledged"):
            alerts = [a for a in alerts if not a.acknowledged]
        return alerts[:limit]

    async def handle_detections(self, params: Dict):
        limit = params.get("limit", 10)
        return self.pipeline.views.threat_detections.snapshot()[:limit]

    async def handle_stats(self, params: Dict):
        return self.pipeline.latest_stats

    async def handle_acknowledge(self, params: Dict):
        return {"found": self.pipeline.acknowledge_alert(params["id"])}

    async def handle_resolve(self, params: Dict):
        return {"found": self.pipeline.resolve_incident(params["id"])}

    async def handle_block(self, params: Dict):
        return {"ok": await self.pipeline.block_ip(_ip_param(params))}

    async def handle_unblock(self, params: Dict):
        return {"ok": await self.pipeline.unblock_ip(_ip_param(params))}

    async def handle_reconnect(self, params: Dict):
        await self.pipeline.reconnect()
        return {"connection": self.pipeline.connection_state.value}


def main():
    if len(sys.argv) > 1:
        config_path = sys.argv[1]
    else:
        config_path = None

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    agent = SocFeedAgent(config_path)

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, agent.request_stop)

    try:
        loop.run_until_complete(agent.run())
    except KeyboardInterrupt:
        pass
    finally:
        loop.close()


if __name__ == "__main__":
    main()
