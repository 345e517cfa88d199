"""
communication.py

Implements CommunicationManager, the async TCP control server for the rover.
Handles client authentication, JSONL/NDJSON command reception, and telemetry
streaming back to the operator.
"""

import asyncio
import json
import logging
from typing import Optional, Any

log = logging.getLogger(__name__)


class CommunicationManager:
    """
    Asynchronous TCP server for rover commands and telemetry.

    - Accepts incoming connections from trusted clients only (IP prefixes).
    - Receives one command per line: a JSON object, or the plain
      ``speed,angle`` text form.
    - Sends replies and telemetry to the connected client as JSONL.
    - The newest trusted client replaces the previous one.
    """

    def __init__(
        self,
        host: str = "0.0.0.0",
        port: int = 9000,
        trusted_clients: Optional[list[str]] = None,
    ):
        """
        Args:
            host (str): IP address or hostname to bind to (usually "0.0.0.0").
            port (int): TCP port to listen for connections.
            trusted_clients (list[str]): List of IPs or subnet prefixes to allow.
        """
        self.host = host
        self.port = port
        self.trusted_clients = trusted_clients or ["127.0.0.1"]
        self.connected = False
        self.server: Optional[asyncio.base_events.Server] = None
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None

    async def start_server(self):
        """Start listening; clients are attached as they connect."""
        self.server = await asyncio.start_server(
            self._handle_client, self.host, self.port
        )
        log.info(f"Server started on {self.host}:{self.port}")

    @property
    def bound_port(self) -> int:
        """Actual listening port (useful when configured with port 0)."""
        return self.server.sockets[0].getsockname()[1]

    async def close(self):
        if self._writer is not None:
            self._writer.close()
        self._drop_client()
        if self.server is not None:
            self.server.close()
            await self.server.wait_closed()
            self.server = None

    async def _handle_client(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ):
        """
        Accept and authenticate a client connection, storing reader/writer
        if IP is trusted. Otherwise, reject the connection.
        """
        addr = writer.get_extra_info("peername")
        if not addr or not self._is_trusted(addr[0]):
            log.warning(f"Rejected connection from untrusted IP: {addr}")
            writer.close()
            await writer.wait_closed()
            return
        if self._writer is not None:
            log.info("New client replaces the previous connection")
            self._writer.close()
        self._reader = reader
        self._writer = writer
        self.connected = True
        log.info(f"Client connected: {addr}")

    def _is_trusted(self, ip: str) -> bool:
        for trusted in self.trusted_clients:
            if ip.startswith(trusted):
                return True
        return False

    def _drop_client(self):
        self._reader = None
        self._writer = None
        self.connected = False

    async def handle_connection(self, timeout: float = 0.01) -> Optional[Any]:
        """
        Wait briefly for a single command from the connected client.

        Returns:
            dict, str or None: The parsed JSON command, the raw text line if
            it is not JSON, or None if nothing arrived.
        """
        if not self._reader:
            await asyncio.sleep(0.05)
            return None
        try:
            line = await asyncio.wait_for(self._reader.readline(), timeout=timeout)
        except asyncio.TimeoutError:
            return None
        if not line:
            log.info("Client disconnected")
            self._drop_client()
            return None
        # undecodable bytes become U+FFFD and fail command validation
        text = line.decode("utf-8", errors="replace").strip()
        if not text:
            return None
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            return text

    async def send_telemetry(self, telemetry: dict):
        """
        Send a JSON dictionary (reply or telemetry) to the connected client.

        Args:
            telemetry (dict): Data to send.
        """
        if not self._writer:
            return
        try:
            message = json.dumps(telemetry) + "\n"
            self._writer.write(message.encode("utf-8"))
            await self._writer.drain()
        except (ConnectionError, OSError) as e:
            log.warning(f"Failed to send telemetry: {e}")
            self._drop_client()
