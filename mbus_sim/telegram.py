"""
Telegram Store
Holds the captured template telegram and hands out per-request copies.
"""

from pathlib import Path
from typing import Union

from mbus_sim.exceptions import TelegramFormatError
from mbus_sim.frames import (
    FRAME_STOP,
    LONG_FRAME_HEADER_LENGTH,
    LONG_FRAME_START,
    long_frame_length,
)
from mbus_sim.logger import get_logger

logger = get_logger(__name__)

# Checksum covers C, A and the payload: everything after "68 L L 68"
# and before the checksum byte itself.
CHECKSUM_START = LONG_FRAME_HEADER_LENGTH


def compute_checksum(telegram: bytes) -> int:
    """Sum of bytes between the long-frame header and the checksum byte, mod 256."""
    return sum(telegram[CHECKSUM_START:-2]) & 0xFF


def checksum_valid(telegram: bytes) -> bool:
    return compute_checksum(telegram) == telegram[-2]


def parse_hex_telegram(text: str) -> bytes:
    """
    Decode a hex dump (whitespace separated octets) into bytes.

    Raises:
        TelegramFormatError: If the text is not valid hex
    """
    try:
        data = bytes(int(token, 16) for token in text.split())
    except ValueError as e:
        raise TelegramFormatError(f"Invalid hex telegram: {e}") from e

    if not data:
        raise TelegramFormatError("Hex telegram is empty")
    return data


def validate_long_frame(telegram: bytes) -> None:
    """
    Check the structural layout ``68 L L 68 C A ... CS 16``.

    Raises:
        TelegramFormatError: If the bytes are not a complete long frame
    """
    if len(telegram) < LONG_FRAME_HEADER_LENGTH + 4:
        raise TelegramFormatError(f"Telegram too short: {len(telegram)} bytes")

    if telegram[0] != LONG_FRAME_START or telegram[3] != LONG_FRAME_START:
        raise TelegramFormatError("Telegram does not start with a long-frame header")

    if telegram[1] != telegram[2]:
        raise TelegramFormatError(
            f"Length fields differ: 0x{telegram[1]:02X} != 0x{telegram[2]:02X}"
        )

    expected = long_frame_length(telegram[1])
    if len(telegram) != expected:
        raise TelegramFormatError(
            f"Telegram length {len(telegram)} does not match L-field ({expected})"
        )

    if telegram[-1] != FRAME_STOP:
        raise TelegramFormatError(f"Missing stop byte, got 0x{telegram[-1]:02X}")


class TelegramStore:
    """Immutable template telegram plus fresh per-request copies."""

    def __init__(self, template: bytes, source: str = "<memory>"):
        validate_long_frame(template)
        self._template = bytes(template)
        self.source = source

        if not checksum_valid(self._template):
            logger.warning(
                "template_checksum_mismatch",
                source=source,
                stored=f"0x{self._template[-2]:02X}",
                computed=f"0x{compute_checksum(self._template):02X}"
            )

        logger.info("telegram_loaded", source=source, length=len(self._template))

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "TelegramStore":
        """
        Load a template telegram from a hex file.

        Raises:
            TelegramFormatError: If the file is unreadable or not a long frame
        """
        try:
            text = Path(path).read_text(encoding='utf-8')
        except OSError as e:
            raise TelegramFormatError(f"Cannot read telegram file {path}: {e}") from e
        return cls(parse_hex_telegram(text), source=str(path))

    @property
    def template(self) -> bytes:
        return self._template

    def __len__(self) -> int:
        return len(self._template)
