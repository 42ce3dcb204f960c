"""
Telegram Transmitter
Streams outbound telegrams to a peer, optionally cutting the link short
after a number of chunks to exercise client robustness.
"""

import asyncio
from dataclasses import dataclass
from typing import Optional

from mbus_sim.logger import get_logger

logger = get_logger(__name__)

DEFAULT_CHUNK_SIZE = 24


@dataclass
class TransmitResult:
    """What actually went out on the wire for one response."""
    chunks_sent: int = 0
    bytes_sent: int = 0
    aborted: bool = False


async def send_telegram(
    writer: asyncio.StreamWriter,
    telegram: bytes,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    delay: float = 0.0,
    abort_after: Optional[int] = None
) -> TransmitResult:
    """
    Write a telegram in consecutive chunks with a pause between them.

    Args:
        writer: Connected stream
        telegram: Bytes to send
        chunk_size: Maximum bytes per write
        delay: Seconds to wait before the next chunk
        abort_after: Stop silently once this many chunks went out

    Returns:
        TransmitResult
    """
    if chunk_size < 1:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")

    result = TransmitResult()
    logger.info(
        "transmission_started",
        length=len(telegram),
        chunk_size=chunk_size,
        delay=delay,
        abort_after=abort_after
    )

    for offset in range(0, len(telegram), chunk_size):
        if abort_after is not None and result.chunks_sent >= abort_after:
            # Link failure: no remainder and no signal to the peer
            result.aborted = True
            logger.warning(
                "transmission_aborted",
                chunks_sent=result.chunks_sent,
                bytes_sent=result.bytes_sent,
                remaining=len(telegram) - offset
            )
            return result

        if result.chunks_sent and delay > 0:
            await asyncio.sleep(delay)

        chunk = telegram[offset:offset + chunk_size]
        writer.write(chunk)
        await writer.drain()

        result.chunks_sent += 1
        result.bytes_sent += len(chunk)
        logger.debug("chunk_sent", first=offset, last=offset + len(chunk) - 1)

    logger.info("transmission_finished", chunks_sent=result.chunks_sent, bytes_sent=result.bytes_sent)
    return result


async def send_whole(writer: asyncio.StreamWriter, telegram: bytes) -> TransmitResult:
    """Single unchunked write without delay."""
    writer.write(telegram)
    await writer.drain()
    logger.info("telegram_sent", length=len(telegram))
    return TransmitResult(chunks_sent=1, bytes_sent=len(telegram))
