"""
M-Bus Frame Classification
Recognizes inbound request frames and builds/describes outbound ones.

Classification is a pure function of the received bytes so the session
server can decide how to answer without touching any state.
"""

import enum
from dataclasses import dataclass
from typing import Any, Dict, Optional

SHORT_FRAME_START = 0x10
LONG_FRAME_START = 0x68
FRAME_STOP = 0x16
ACK_BYTE = 0xE5

SHORT_FRAME_LENGTH = 5
LONG_FRAME_OVERHEAD = 6
LONG_FRAME_HEADER_LENGTH = 4
MIN_LONG_REQUEST_LENGTH = 7

# Short-form requests
SND_UD1 = 0x5B
SND_UD2 = 0x5D
SHORT_REQUEST_CODES = (SND_UD1, SND_UD2)

# Long-form data reads
REQ_UD1 = 0x05
REQ_UD2 = 0x09
LONG_READ_CODES = (REQ_UD1, REQ_UD2)

MAX_PRIMARY_ADDRESS = 250


class FrameKind(enum.Enum):
    SHORT_REQUEST = "short_request"
    LONG_READ = "long_read"
    LONG_OTHER = "long_other"
    UNRECOGNIZED = "unrecognized"


@dataclass(frozen=True)
class ClassifiedFrame:
    """Outcome of classifying one inbound byte chunk."""
    kind: FrameKind
    control: Optional[int] = None
    address: Optional[int] = None
    declared_length: Optional[int] = None

    @property
    def is_read_request(self) -> bool:
        return self.kind in (FrameKind.SHORT_REQUEST, FrameKind.LONG_READ)


def long_frame_length(length_field: int) -> int:
    """Total size of a long frame whose L-field is ``length_field``."""
    return LONG_FRAME_OVERHEAD + length_field


def classify_frame(data: bytes) -> ClassifiedFrame:
    """
    Classify an inbound byte sequence.

    Short frames must look like ``10 C A CS 16`` with C in SND_UD1/SND_UD2;
    the checksum is not verified. Anything starting with 0x68 and at least
    seven bytes long is a long frame, read by the control byte at index 6.

    Args:
        data: Bytes received from the peer in one chunk

    Returns:
        ClassifiedFrame describing the request
    """
    if (
        len(data) == SHORT_FRAME_LENGTH
        and data[0] == SHORT_FRAME_START
        and data[1] in SHORT_REQUEST_CODES
        and data[4] == FRAME_STOP
    ):
        return ClassifiedFrame(
            kind=FrameKind.SHORT_REQUEST,
            control=data[1],
            address=data[2],
            declared_length=SHORT_FRAME_LENGTH,
        )

    if len(data) >= MIN_LONG_REQUEST_LENGTH and data[0] == LONG_FRAME_START:
        control = data[6]
        kind = FrameKind.LONG_READ if control in LONG_READ_CODES else FrameKind.LONG_OTHER
        return ClassifiedFrame(
            kind=kind,
            control=control,
            address=data[5],
            declared_length=long_frame_length(data[1]),
        )

    return ClassifiedFrame(kind=FrameKind.UNRECOGNIZED)


def build_short_frame(control: int, address: int) -> bytes:
    """Build ``10 C A (C+A)%256 16`` for a primary address."""
    if not 0 <= address <= MAX_PRIMARY_ADDRESS:
        raise ValueError(f"Invalid primary address {address}. Must be 0-{MAX_PRIMARY_ADDRESS}.")
    if not 0 <= control <= 0xFF:
        raise ValueError(f"Invalid control code {control}")

    checksum = (control + address) & 0xFF
    return bytes([SHORT_FRAME_START, control, address, checksum, FRAME_STOP])


def decode_manufacturer(code: int) -> str:
    """Decode the 15-bit packed three-letter manufacturer code."""
    if code == 0:
        return ""
    return "".join(
        chr(((code >> shift) & 0x1F) + ord('A') - 1)
        for shift in (10, 5, 0)
    )


def describe_long_frame(frame: bytes) -> Dict[str, Any]:
    """
    Decode the fixed header of a variable data response for display.

    Returns:
        Dict with header fields; fields beyond the frame end are omitted
    """
    info: Dict[str, Any] = {
        "length": frame[1],
        "c_field": f"0x{frame[4]:02X}",
        "address": frame[5],
        "checksum": f"0x{frame[-2]:02X}",
    }

    if len(frame) > 6:
        info["ci_field"] = f"0x{frame[6]:02X}"

    # 72h header: ident(4, BCD LSB first), manufacturer(2), version, medium,
    # access number, status, signature(2)
    if len(frame) >= 21:
        info["identification"] = frame[7:11][::-1].hex().upper()
        manufacturer = int.from_bytes(frame[11:13], byteorder='little')
        info["manufacturer"] = decode_manufacturer(manufacturer)
        info["version"] = frame[13]
        info["medium"] = f"0x{frame[14]:02X}"
        info["access_number"] = frame[15]
        info["status"] = f"0x{frame[16]:02X}"
        info["signature"] = frame[17:19].hex().upper()

    return info
