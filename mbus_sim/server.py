"""
Session Server
Async TCP listener that answers M-Bus read requests like a slave device.
"""

import asyncio
import random
import time
from dataclasses import dataclass, field
from typing import Dict, Optional

from mbus_sim.codec import ValueFieldLocator, locate_value_field, mutate_telegram
from mbus_sim.config import ServerConfig
from mbus_sim.description import DeviceDescription
from mbus_sim.exceptions import DescriptionError, ValueFieldNotFoundError
from mbus_sim.frames import ACK_BYTE, FrameKind, classify_frame
from mbus_sim.logger import get_logger
from mbus_sim.telegram import TelegramStore
from mbus_sim.transmitter import TransmitResult, send_telegram, send_whole

logger = get_logger(__name__)


class StaticResponder:
    """Answers every read with the unmodified template in one write."""

    chunked = False

    def __init__(self, store: TelegramStore):
        self.store = store

    def next_response(self) -> bytes:
        return self.store.template


class MutatingResponder:
    """
    Simulation context shared by all connections.

    Holds the read-only template and the record set. Every call to
    next_response() advances all records and writes the first record's
    value into a fresh copy of the template. Refresh and rewrite happen in
    one synchronous call, so each request sees a consistent record set.
    """

    chunked = True

    def __init__(
        self,
        store: TelegramStore,
        description: DeviceDescription,
        rng: Optional[random.Random] = None
    ):
        locator = locate_value_field(store.template)
        if locator is None:
            raise ValueFieldNotFoundError(
                f"No BCD energy value signature in template {store.source}"
            )
        if not description.records:
            raise DescriptionError("Description contains no DataRecord entries")
        if not description.records[0].numeric:
            raise DescriptionError(
                f"First data record value {description.records[0].value!r} is not numeric"
            )

        # Fails with ValueFieldOverrunError before any client is served
        mutate_telegram(store.template, locator, description.records[0].value)

        self.store = store
        self.description = description
        self.locator: ValueFieldLocator = locator
        self.rng = rng or random.Random()

        logger.info("value_field_located", offset=locator.offset, type=locator.field_type)

    def next_response(self) -> bytes:
        self.description.refresh_records(self.rng)
        value = self.description.records[0].value
        logger.debug("writing_record_value", value=value)
        return mutate_telegram(self.store.template, self.locator, value)


@dataclass
class SessionStats:
    """Counters exposed by the health server."""
    connections_total: int = 0
    connections_active: int = 0
    requests: Dict[str, int] = field(default_factory=lambda: {kind.value: 0 for kind in FrameKind})
    telegrams_sent: int = 0
    transmissions_aborted: int = 0
    transport_errors: int = 0
    started: float = field(default_factory=time.time)

    def record_request(self, kind: FrameKind) -> None:
        self.requests[kind.value] += 1

    def record_transmission(self, result: TransmitResult) -> None:
        self.telegrams_sent += 1
        if result.aborted:
            self.transmissions_aborted += 1

    def as_dict(self) -> Dict[str, object]:
        return {
            "connections_total": self.connections_total,
            "connections_active": self.connections_active,
            "requests": dict(self.requests),
            "telegrams_sent": self.telegrams_sent,
            "transmissions_aborted": self.transmissions_aborted,
            "transport_errors": self.transport_errors,
        }


class MBusSlaveServer:
    """
    Simulated M-Bus slave on a TCP byte stream.
    Each connection is served by its own task; requests on one connection
    are handled strictly one after another.
    """

    def __init__(self, config: ServerConfig, responder, stats: Optional[SessionStats] = None):
        """
        Initialize server.

        Args:
            config: Server configuration
            responder: StaticResponder or MutatingResponder
            stats: Shared counters (created if omitted)
        """
        self.config = config
        self.responder = responder
        self.stats = stats or SessionStats()
        self._server: Optional[asyncio.AbstractServer] = None

        logger.info(
            "mbus_server_init",
            host=config.host,
            port=config.port,
            mode=config.mode,
            fault_injection=config.fault_injection.enabled
        )

    @property
    def port(self) -> int:
        """Bound port (useful when configured with port 0)."""
        if self._server is None or not self._server.sockets:
            return self.config.port
        return self._server.sockets[0].getsockname()[1]

    async def start(self) -> None:
        """Start listening."""
        self._server = await asyncio.start_server(
            self.handle_connection,
            self.config.host,
            self.config.port
        )
        logger.info("mbus_server_listening", host=self.config.host, port=self.port)

    async def stop(self) -> None:
        """Stop accepting connections."""
        if self._server:
            self._server.close()
            await self._server.wait_closed()
            self._server = None

        logger.info("mbus_server_stopped")

    async def handle_connection(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        """Serve one client until it disconnects."""
        peer = writer.get_extra_info("peername")
        self.stats.connections_total += 1
        self.stats.connections_active += 1
        logger.info("client_connected", peer=str(peer))

        try:
            while True:
                data = await reader.read(self.config.read_size)
                if not data:
                    break
                await self.handle_request(data, writer)

        except (ConnectionError, OSError) as e:
            self.stats.transport_errors += 1
            logger.error("socket_error", peer=str(peer), error=str(e))

        finally:
            self.stats.connections_active -= 1
            writer.close()
            try:
                await writer.wait_closed()
            except (ConnectionError, OSError):
                pass
            logger.info("client_disconnected", peer=str(peer))

    async def handle_request(self, data: bytes, writer: asyncio.StreamWriter) -> Optional[TransmitResult]:
        """
        Answer one inbound chunk.

        Returns:
            TransmitResult for telegram replies, None otherwise
        """
        response = self.responder.next_response()
        frame = classify_frame(data)
        self.stats.record_request(frame.kind)

        if frame.kind is FrameKind.UNRECOGNIZED:
            logger.warning("frame_unrecognized", data=data.hex())
            return None

        if not frame.is_read_request:
            writer.write(bytes([ACK_BYTE]))
            await writer.drain()
            logger.info("ack_sent", control=f"0x{frame.control:02X}")
            return None

        logger.info(
            "read_request_received",
            kind=frame.kind.value,
            control=f"0x{frame.control:02X}",
            address=frame.address
        )

        if not self.responder.chunked:
            result = await send_whole(writer, response)
        else:
            if frame.kind is FrameKind.SHORT_REQUEST:
                delay = self.config.short_frame_delay
            else:
                delay = self.config.long_frame_delay

            fault = self.config.fault_injection
            result = await send_telegram(
                writer,
                response,
                chunk_size=self.config.chunk_size,
                delay=delay,
                abort_after=fault.abort_after_chunks if fault.enabled else None
            )

        self.stats.record_transmission(result)
        return result
