"""
Reassembly Client
Sends a short-frame read request and rebuilds the long-frame reply from
however the TCP stream happens to segment it.
"""

import asyncio
import time
from typing import Optional

from mbus_sim.exceptions import MBusIncompleteFrameError, MBusTimeoutError
from mbus_sim.frames import (
    LONG_FRAME_HEADER_LENGTH,
    LONG_FRAME_START,
    SHORT_FRAME_START,
    SND_UD1,
    build_short_frame,
    long_frame_length,
)
from mbus_sim.logger import get_logger

logger = get_logger(__name__)

DEFAULT_TIMEOUT = 3.0
READ_SIZE = 4096


class FrameAssembler:
    """
    Incremental long-frame reassembly.

    Chunks are fed in arrival order; feed() returns the complete frame as
    soon as the declared length has been received. The result does not
    depend on how the frame was split.
    """

    def __init__(self):
        self.buffer = bytearray()
        self.expected_length: Optional[int] = None

    @property
    def started(self) -> bool:
        return bool(self.buffer)

    def feed(self, chunk: bytes) -> Optional[bytes]:
        if not chunk:
            return None

        # Echoed request or short ack ahead of the reply
        if not self.started and chunk[0] == SHORT_FRAME_START:
            logger.debug("short_frame_ignored", data=chunk.hex())
            return None

        self.buffer.extend(chunk)

        start = self.buffer.find(LONG_FRAME_START)
        if start == -1:
            self.buffer.clear()
            return None
        if start > 0:
            del self.buffer[:start]

        if len(self.buffer) < LONG_FRAME_HEADER_LENGTH:
            return None

        self.expected_length = long_frame_length(self.buffer[1])
        if len(self.buffer) < self.expected_length:
            return None

        return bytes(self.buffer[:self.expected_length])


class MBusTcpClient:
    """Reads one long frame from a simulated (or real) M-Bus TCP slave."""

    def __init__(self, host: str, port: int, timeout: float = DEFAULT_TIMEOUT):
        """
        Initialize client.

        Args:
            host: Slave host
            port: Slave TCP port
            timeout: Idle timeout in seconds, restarted by every chunk
        """
        self.host = host
        self.port = port
        self.timeout = timeout

    async def read(self, address: int, control: int = SND_UD1) -> bytes:
        """
        Request data from a primary address and wait for the long frame.

        Returns:
            The complete long frame

        Raises:
            MBusTimeoutError: No complete frame before the idle timeout
            MBusIncompleteFrameError: Peer closed mid-frame
            ConnectionError / OSError: Connection could not be made
        """
        request = build_short_frame(control, address)
        started = time.monotonic()

        logger.info("connecting", host=self.host, port=self.port, address=address)
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port),
                timeout=self.timeout
            )
        except asyncio.TimeoutError:
            raise MBusTimeoutError(f"Timeout connecting to {self.host}:{self.port}") from None

        try:
            logger.info("request_sent", frame=request.hex())
            writer.write(request)
            await writer.drain()

            assembler = FrameAssembler()
            while True:
                try:
                    chunk = await asyncio.wait_for(reader.read(READ_SIZE), timeout=self.timeout)
                except asyncio.TimeoutError:
                    logger.warning(
                        "frame_timeout",
                        received=len(assembler.buffer),
                        expected=assembler.expected_length
                    )
                    raise MBusTimeoutError(
                        f"Timeout waiting for frame after {self.timeout}s "
                        f"({len(assembler.buffer)} bytes buffered)"
                    ) from None

                if not chunk:
                    logger.warning("peer_closed", received=len(assembler.buffer))
                    raise MBusIncompleteFrameError(
                        f"Connection closed with {len(assembler.buffer)} of "
                        f"{assembler.expected_length or '?'} bytes received"
                    )

                logger.debug("chunk_received", data=chunk.hex())
                frame = assembler.feed(chunk)
                if frame is not None:
                    logger.info(
                        "frame_complete",
                        length=len(frame),
                        seconds=round(time.monotonic() - started, 3)
                    )
                    return frame

        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except (ConnectionError, OSError):
                pass
