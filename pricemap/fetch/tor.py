"""Tor control-port client for circuit rotation."""
import asyncio
import logging
from typing import Optional, Protocol

from pricemap.jobs.run_control import RunControl

logger = logging.getLogger(__name__)


class CircuitError(Exception):
    """The Tor control port refused or failed a command."""


class CircuitController(Protocol):
    """Anything able to switch the egress identity."""

    async def rotate_circuit(self, control: Optional[RunControl] = None) -> None: ...


class TorController:
    """Talks to the Tor control port to request new circuits."""

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 9051,
        password: Optional[str] = None,
        timeout: float = 10.0,
        settle_delay: float = 2.0,
    ):
        self.host = host
        self.port = port
        self.password = password
        self.timeout = timeout
        self.settle_delay = settle_delay

    async def _command(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter, command: str
    ) -> str:
        verb = command.split(" ", 1)[0]
        try:
            writer.write(f"{command}\r\n".encode())
            await writer.drain()
            line = await asyncio.wait_for(reader.readline(), timeout=self.timeout)
        except (OSError, asyncio.TimeoutError) as e:
            raise CircuitError(f"{verb} failed: {e!r}") from e
        response = line.decode(errors="replace").strip()
        if not response.startswith("250"):
            raise CircuitError(f"{verb} failed: {response or 'no response'}")
        return response

    async def _session(self) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port), timeout=self.timeout
            )
        except (OSError, asyncio.TimeoutError) as e:
            raise CircuitError(f"failed to connect to Tor control port {self.host}:{self.port}: {e}") from e

        auth = f'AUTHENTICATE "{self.password}"' if self.password else "AUTHENTICATE"
        try:
            await self._command(reader, writer, auth)
        except CircuitError:
            writer.close()
            raise
        return reader, writer

    async def rotate_circuit(self, control: Optional[RunControl] = None) -> None:
        """Request a new circuit (changes the exit IP).

        The settle wait goes through `control.sleep` when given, so a stopped
        run raises ScrapeCancelled instead of waiting it out.
        """
        reader, writer = await self._session()
        try:
            await self._command(reader, writer, "SIGNAL NEWNYM")
        finally:
            writer.close()

        logger.info("Tor circuit rotated successfully")
        # Tor needs a moment to build the new circuit
        if self.settle_delay > 0:
            if control is not None:
                await control.sleep(self.settle_delay)
            else:
                await asyncio.sleep(self.settle_delay)

    async def circuit_status(self) -> str:
        """Raw `GETINFO circuit-status` reply line."""
        reader, writer = await self._session()
        try:
            return await self._command(reader, writer, "GETINFO circuit-status")
        finally:
            writer.close()
