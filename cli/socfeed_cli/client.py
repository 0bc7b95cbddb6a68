import asyncio
import json
import os
from typing import Any, Dict, Optional

from agent.socfeed.config.defaults import DEFAULT_SOCKET_PATH
from agent.socfeed.ipc import INVALID_PARAMS, METHOD_NOT_FOUND


class AgentNotRunning(ConnectionError):
    pass


class AgentError(RuntimeError):
    """A JSON-RPC error returned by the agent."""

    def __init__(self, code: int, message: str):
        super().__init__(message)
        self.code = code
        self.message = message

    @property
    def invalid_params(self) -> bool:
        return self.code == INVALID_PARAMS

    @property
    def unknown_method(self) -> bool:
        return self.code == METHOD_NOT_FOUND


def socket_path_from_env() -> str:
    return os.environ.get("SOCFEED_SOCKET") or str(DEFAULT_SOCKET_PATH)


class IPCClient:
    """One JSON-RPC request per connection to the agent's unix socket."""

    def __init__(self, socket_path: Optional[str] = None):
        self.socket_path = socket_path or socket_path_from_env()
        self._next_id = 0

    async def call(self, method: str, params: Optional[Dict[str, Any]] = None) -> Any:
        try:
            reader, writer = await asyncio.open_unix_connection(self.socket_path)
        except (FileNotFoundError, ConnectionRefusedError) as e:
            raise AgentNotRunning(f"No agent listening on {self.socket_path}. Is the agent running?") from e

        self._next_id += 1
        request = {"jsonrpc": "2.0", "method": method, "params": params or {}, "id": self._next_id}

        try:
            writer.write(json.dumps(request).encode() + b"\n")
            await writer.drain()
            response = json.loads(await reader.readuntil(b"\n"))
        except asyncio.IncompleteReadError as e:
            raise AgentNotRunning("Agent closed the connection without answering") from e
        finally:
            writer.close()
            await writer.wait_closed()

        error = response.get("error")
        if error:
            raise AgentError(error.get("code", 0), error.get("message", "Unknown error"))
        return response.get("result")


def run_command(method: str, params: Optional[Dict[str, Any]] = None) -> Any:
    """Helper to run sync command from CLI."""
    return asyncio.run(IPCClient().call(method, params))
