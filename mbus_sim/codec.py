"""
Value Codec
Packs meter readings into 4-byte BCD fields inside a telegram and keeps
the frame checksum consistent.
"""

import random
from dataclasses import dataclass
from typing import Optional, Union

from mbus_sim.exceptions import ValueFieldOverrunError
from mbus_sim.telegram import compute_checksum

# First data record sits right after the 20-byte fixed header
VALUE_HEADER_OFFSET = 20
ENERGY_DIF = 0x10
ENERGY_VIF = 0x04

BCD_FIELD_LENGTH = 4
BCD_DIGITS = BCD_FIELD_LENGTH * 2
BCD_MODULUS = 10 ** BCD_DIGITS

# unit -> (low factor, span); value is scaled by low + random() * span
PERTURBATION = {
    "Wh": (1.0, 0.02),
    "V": (0.95, 0.1),
    "A": (0.8, 0.4),
    "W": (0.7, 0.6),
}
DEFAULT_PERTURBATION = (0.9, 0.2)


@dataclass(frozen=True)
class ValueFieldLocator:
    """Position of the writable BCD value inside the template."""
    offset: int
    dif: int
    vif: int
    field_type: str = "BCD4"
    length: int = BCD_FIELD_LENGTH


def locate_value_field(telegram: bytes) -> Optional[ValueFieldLocator]:
    """
    Find the energy value record right after the fixed header.

    Returns:
        Locator for the 4-byte BCD value, or None if the DIF/VIF signature
        is not present at the expected offset
    """
    if len(telegram) < VALUE_HEADER_OFFSET + 2:
        return None

    dif = telegram[VALUE_HEADER_OFFSET]
    vif = telegram[VALUE_HEADER_OFFSET + 1]

    if dif == ENERGY_DIF and vif == ENERGY_VIF:
        return ValueFieldLocator(offset=VALUE_HEADER_OFFSET + 2, dif=dif, vif=vif)
    return None


def encode_bcd(value: Union[str, float, int]) -> bytes:
    """
    Encode a decimal value as 4 packed BCD bytes, least significant pair first.

    The fractional part is truncated. Values past eight digits roll over
    like a meter register.

    Raises:
        ValueError: If the value is negative or not a number
    """
    integer = int(float(value))
    if integer < 0:
        raise ValueError(f"BCD field cannot hold negative value {value}")

    digits = f"{integer % BCD_MODULUS:0{BCD_DIGITS}d}"
    field = bytearray(BCD_FIELD_LENGTH)
    for i in range(BCD_FIELD_LENGTH):
        pos = BCD_DIGITS - 2 - i * 2
        field[i] = (int(digits[pos]) << 4) | int(digits[pos + 1])
    return bytes(field)


def decode_bcd(field: bytes) -> int:
    """Inverse of encode_bcd."""
    result = 0
    for byte in reversed(field):
        high, low = byte >> 4, byte & 0x0F
        if high > 9 or low > 9:
            raise ValueError(f"Invalid BCD byte 0x{byte:02X}")
        result = result * 100 + high * 10 + low
    return result


def mutate_telegram(telegram: bytes, locator: ValueFieldLocator, value: Union[str, float]) -> bytes:
    """
    Return a copy of ``telegram`` with the value field rewritten and the
    checksum recomputed.

    Raises:
        ValueFieldOverrunError: If the field does not fit before the checksum
    """
    end = locator.offset + locator.length
    if locator.offset < 0 or end > len(telegram) - 2:
        raise ValueFieldOverrunError(
            f"Value field {locator.offset}..{end} exceeds payload of "
            f"{len(telegram)}-byte telegram"
        )

    updated = bytearray(telegram)
    updated[locator.offset:end] = encode_bcd(value)
    updated[-2] = compute_checksum(updated)
    return bytes(updated)


def perturb_value(unit: str, value: Union[str, float], rng: Optional[random.Random] = None) -> str:
    """
    Produce the next simulated reading for a record.

    Energy only drifts upwards (0-2%); voltage varies +-5%, current +-20%,
    power +-30% and everything else +-10%.
    """
    rng = rng or random
    low, span = PERTURBATION.get(unit, DEFAULT_PERTURBATION)
    return f"{float(value) * (low + rng.random() * span):.6f}"
