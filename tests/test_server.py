from __future__ import annotations

import asyncio
import random

import pytest

from mbus_sim.client import MBusTcpClient
from mbus_sim.codec import decode_bcd
from mbus_sim.config import FaultInjectionConfig
from mbus_sim.description import DataRecord, DeviceDescription
from mbus_sim.exceptions import (
    DescriptionError,
    MBusIncompleteFrameError,
    MBusTimeoutError,
    ValueFieldNotFoundError,
)
from mbus_sim.server import MBusSlaveServer, MutatingResponder, StaticResponder
from mbus_sim.telegram import TelegramStore, compute_checksum

READ_REQUEST = bytes.fromhex("105b015c16")


def run_with_server(config, responder, exercise):
    async def _exercise():
        server = MBusSlaveServer(config, responder)
        await server.start()
        try:
            return await exercise(server)
        finally:
            await server.stop()

    return asyncio.run(_exercise())


async def raw_exchange(port: int, request: bytes, expected: int, timeout: float = 1.0) -> bytes:
    reader, writer = await asyncio.open_connection("127.0.0.1", port)
    try:
        writer.write(request)
        await writer.drain()
        return await asyncio.wait_for(reader.readexactly(expected), timeout)
    finally:
        writer.close()
        await writer.wait_closed()


def test_short_request_gets_mutated_telegram(telegram, energy_description, fast_server_config):
    responder = MutatingResponder(TelegramStore(telegram), energy_description, random.Random(5))

    async def exercise(server):
        return await MBusTcpClient("127.0.0.1", server.port, timeout=2.0).read(1)

    frame = run_with_server(fast_server_config, responder, exercise)

    assert len(frame) == len(telegram)
    assert 1234 <= decode_bcd(frame[22:26]) <= 1259
    assert frame[-2] == compute_checksum(frame)
    assert frame[:22] == telegram[:22]


def test_long_read_request_gets_telegram(telegram, energy_description, fast_server_config):
    responder = MutatingResponder(TelegramStore(telegram), energy_description)
    request = bytes([0x68, 0x03, 0x03, 0x68, 0x53, 0x01, 0x09, 0x00, 0x16])

    async def exercise(server):
        return await raw_exchange(server.port, request, len(telegram))

    frame = run_with_server(fast_server_config, responder, exercise)
    assert frame[:22] == telegram[:22]
    assert frame[-2] == compute_checksum(frame)


def test_non_read_long_frame_is_acknowledged(telegram, fast_server_config):
    request = bytes([0x68, 0x03, 0x03, 0x68, 0x53, 0xFE, 0x50, 0xA1, 0x16])

    async def exercise(server):
        return await raw_exchange(server.port, request, 1)

    assert run_with_server(fast_server_config, StaticResponder(TelegramStore(telegram)), exercise) == b"\xe5"


def test_unrecognized_frame_is_dropped_and_connection_stays_open(telegram, fast_server_config):
    async def exercise(server):
        reader, writer = await asyncio.open_connection("127.0.0.1", server.port)
        try:
            writer.write(bytes.fromhex("1040014116"))
            await writer.drain()
            with pytest.raises(asyncio.TimeoutError):
                await asyncio.wait_for(reader.read(100), 0.2)

            writer.write(READ_REQUEST)
            await writer.drain()
            reply = await asyncio.wait_for(reader.readexactly(len(telegram)), 1.0)
        finally:
            writer.close()
            await writer.wait_closed()
        return reply, server.stats

    reply, stats = run_with_server(fast_server_config, StaticResponder(TelegramStore(telegram)), exercise)
    assert reply == telegram
    assert stats.requests["unrecognized"] == 1
    assert stats.requests["short_request"] == 1


def test_static_mode_returns_template_unchanged(telegram, fast_server_config):
    async def exercise(server):
        return await MBusTcpClient("127.0.0.1", server.port, timeout=2.0).read(1)

    frame = run_with_server(fast_server_config, StaticResponder(TelegramStore(telegram)), exercise)
    assert frame == telegram


def test_fault_injection_truncates_and_client_times_out(telegram, energy_description, fast_server_config):
    config = fast_server_config.model_copy(
        update={"fault_injection": FaultInjectionConfig(enabled=True, abort_after_chunks=3)}
    )
    responder = MutatingResponder(TelegramStore(telegram), energy_description)

    async def exercise(server):
        reader, writer = await asyncio.open_connection("127.0.0.1", server.port)
        received = b""
        try:
            writer.write(READ_REQUEST)
            await writer.drain()
            while True:
                try:
                    chunk = await asyncio.wait_for(reader.read(100), 0.3)
                except asyncio.TimeoutError:
                    break
                received += chunk
        finally:
            writer.close()
            await writer.wait_closed()

        with pytest.raises(MBusTimeoutError):
            await MBusTcpClient("127.0.0.1", server.port, timeout=0.3).read(1)
        return received, server.stats

    received, stats = run_with_server(config, responder, exercise)
    assert len(received) == 72
    assert received[:22] == telegram[:22]
    assert stats.transmissions_aborted == 2


def test_every_record_is_refreshed_but_only_the_first_is_written(telegram):
    description = DeviceDescription(records=[
        DataRecord(record_id="0", quantity="Energy", unit="Wh", value="1234"),
        DataRecord(record_id="1", quantity="Voltage", unit="V", value="230"),
    ])
    responder = MutatingResponder(TelegramStore(telegram), description, random.Random(11))

    first = responder.next_response()
    second = responder.next_response()

    assert description.records[1].value != "230"
    assert decode_bcd(second[22:26]) == int(float(description.records[0].value))
    assert decode_bcd(first[22:26]) <= decode_bcd(second[22:26])
    assert second[26:-2] == telegram[26:-2]


def test_mutating_responder_requires_signature(make_telegram, energy_description):
    with pytest.raises(ValueFieldNotFoundError):
        MutatingResponder(TelegramStore(make_telegram(dif=0x0C, vif=0x13)), energy_description)


def test_mutating_responder_requires_numeric_first_record(telegram):
    description = DeviceDescription(records=[
        DataRecord(record_id="0", quantity="Time point", unit="time & date", value="2024-01-01"),
    ])
    with pytest.raises(DescriptionError):
        MutatingResponder(TelegramStore(telegram), description)


def test_client_reports_peer_closing_mid_frame(telegram):
    async def half_telegram(reader, writer):
        await reader.read(100)
        writer.write(telegram[:30])
        await writer.drain()
        writer.close()

    async def _exercise():
        server = await asyncio.start_server(half_telegram, "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        try:
            await MBusTcpClient("127.0.0.1", port, timeout=2.0).read(1)
        finally:
            server.close()
            await server.wait_closed()

    with pytest.raises(MBusIncompleteFrameError, match="30 of 80"):
        asyncio.run(_exercise())
