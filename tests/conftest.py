from __future__ import annotations

from pathlib import Path

import pytest

from mbus_sim.config import ServerConfig
from mbus_sim.description import DataRecord, DeviceDescription, SlaveInformation

DATA_DIR = Path(__file__).resolve().parent.parent / "data"

# C A CI | ident 12345678 | LUG | version 1, electricity |
# access, status, signature | idle filler
FIXED_HEADER = bytes.fromhex("08 01 72 78 56 34 12 A7 32 01 02 00 00 00 00 2F")

SAMPLE_XML = """<?xml version="1.0"?>
<MBusData>
    <SlaveInformation>
        <Id>12345678</Id>
        <Manufacturer>LUG</Manufacturer>
        <Version>1</Version>
        <Medium>Electricity</Medium>
        <AccessNumber>7</AccessNumber>
        <Status>00</Status>
        <Signature>0000</Signature>
    </SlaveInformation>
    <DataRecord id="0">
        <Function>Instantaneous value</Function>
        <Unit>Wh</Unit>
        <Quantity>Energy</Quantity>
        <Value>00001234</Value>
    </DataRecord>
    <DataRecord id="1">
        <Function>Instantaneous value</Function>
        <Unit>A</Unit>
        <Quantity>Current</Quantity>
        <Value>10.000000</Value>
    </DataRecord>
</MBusData>
"""


def build_telegram(total_length: int = 80, value: bytes = b"\x34\x12\x00\x00",
                   dif: int = 0x10, vif: int = 0x04) -> bytes:
    length_field = total_length - 6
    body = bytes([0x68, length_field, length_field, 0x68]) + FIXED_HEADER
    body += bytes([dif, vif]) + value
    body += b"\x2F" * (total_length - 2 - len(body))
    checksum = sum(body[4:]) & 0xFF
    return body + bytes([checksum, 0x16])


@pytest.fixture
def telegram() -> bytes:
    return build_telegram()


@pytest.fixture
def make_telegram():
    return build_telegram


@pytest.fixture
def energy_description() -> DeviceDescription:
    return DeviceDescription(
        slave=SlaveInformation(id="12345678", manufacturer="LUG"),
        records=[DataRecord(record_id="0", quantity="Energy", unit="Wh", value="00001234")],
    )


@pytest.fixture
def sample_xml() -> str:
    return SAMPLE_XML


@pytest.fixture
def fast_server_config() -> ServerConfig:
    return ServerConfig(host="127.0.0.1", port=0, short_frame_delay=0.0, long_frame_delay=0.0)


@pytest.fixture
def data_dir() -> Path:
    return DATA_DIR
