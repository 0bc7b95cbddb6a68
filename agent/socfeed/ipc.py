import asyncio
import dataclasses
import json
import os
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict

from pydantic import BaseModel

from .errors import MalformedPayloadError
from .utils.logging import get_logger

logger = get_logger("ipc_server")

METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
SERVER_ERROR = -32000


def _json_default(value: Any):
    if isinstance(value, datetime):
        return value.isoformat()
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    raise TypeError(f"{type(value).__name__} is not JSON serializable")


def encode_message(message: Dict) -> bytes:
    return json.dumps(message, default=_json_default).encode() + b"\n"


class IPCServer:
    """JSON-RPC 2.0 over a unix socket, one request per line, for the local CLI."""

    def __init__(self, socket_path: str, handlers: Dict[str, Callable[[Dict], Awaitable[Any]]]):
        self.socket_path = socket_path
        self.handlers = handlers
        self.server = None

    async def start(self):
        if os.path.exists(self.socket_path):
            os.unlink(self.socket_path)

        os.makedirs(os.path.dirname(self.socket_path), exist_ok=True)

        self.server = await asyncio.start_unix_server(self.handle_client, self.socket_path)
        logger.info(f"IPC Server listening on {self.socket_path}")

    async def stop(self):
        if self.server:
            self.server.close()
            await self.server.wait_closed()
            if os.path.exists(self.socket_path):
                os.unlink(self.socket_path)
            logger.info("IPC Server stopped")

    async def handle_client(self, reader, writer):
        try:
            while True:
                data = await reader.readuntil(b"\n")
                try:
                    request = json.loads(data.decode().strip())
                except ValueError:
                    response = {"jsonrpc": "2.0", "error": {"code": -32700, "message": "Parse error"}, "id": None}
                else:
                    response = await self.process_request(request)

                writer.write(encode_message(response))
                await writer.drain()
        except asyncio.IncompleteReadError:
            pass
        except OSError as e:
            logger.error(f"IPC Client Error: {e}")
        finally:
            writer.close()
            await writer.wait_closed()

    async def process_request(self, request: Dict) -> Dict:
        method = request.get("method")
        params = request.get("params") or {}
        msg_id = request.get("id")

        if method not in self.handlers:
            return {"jsonrpc": "2.0", "error": {"code": METHOD_NOT_FOUND, "message": "Method not found"}, "id": msg_id}

        try:
            result = await self.handlers[method](params)
            return {"jsonrpc": "2.0", "result": result, "id": msg_id}
        except (KeyError, MalformedPayloadError) as e:
            return {"jsonrpc": "2.0", "error": {"code": INVALID_PARAMS, "message": f"Invalid params: {e}"}, "id": msg_id}
        except Exception as e:
            logger.error(f"Error processing {method}: {e}")
            return {"jsonrpc": "2.0", "error": {"code": SERVER_ERROR, "message": str(e)}, "id": msg_id}
