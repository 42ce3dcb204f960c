from __future__ import annotations

import asyncio

import pytest

from mbus_sim.client import MBusTcpClient
from mbus_sim.codec import decode_bcd
from mbus_sim.config import Config
from mbus_sim.exceptions import DescriptionError
from mbus_sim.main import Simulator
from mbus_sim.telegram import TelegramStore, compute_checksum


def make_config(data_dir, **server):
    server = {"host": "127.0.0.1", "port": 0, "short_frame_delay": 0.0, "long_frame_delay": 0.0, **server}
    return Config(
        server=server,
        device={
            "description": str(data_dir / "electricity-meter-1.xml"),
            "telegram": str(data_dir / "electricity-meter-1.hex"),
        },
    )


def test_simulator_serves_bundled_meter(data_dir):
    async def _exercise():
        simulator = Simulator(make_config(data_dir))
        await simulator.start()
        try:
            frame = await MBusTcpClient("127.0.0.1", simulator.server.port, timeout=2.0).read(1)
        finally:
            await simulator.stop()
        return frame, simulator

    frame, simulator = asyncio.run(_exercise())
    assert len(frame) == 34
    assert 1234 <= decode_bcd(frame[22:26]) <= 1259
    assert frame[-2] == compute_checksum(frame)
    assert simulator.stats.telegrams_sent == 1
    assert simulator.description.records[1].value != "1000"


def test_static_mode_needs_no_description(data_dir):
    config = make_config(data_dir, mode="static")
    config.device.description = ""

    async def _exercise():
        simulator = Simulator(config)
        await simulator.start()
        try:
            return await MBusTcpClient("127.0.0.1", simulator.server.port, timeout=2.0).read(1)
        finally:
            await simulator.stop()

    frame = asyncio.run(_exercise())
    assert frame == TelegramStore.from_file(config.device.telegram).template


def test_mutating_mode_requires_description(data_dir):
    config = make_config(data_dir)
    config.device.description = ""

    async def _exercise():
        await Simulator(config).start()

    with pytest.raises(DescriptionError):
        asyncio.run(_exercise())


def test_missing_telegram_is_fatal(data_dir):
    config = make_config(data_dir)
    config.device.telegram = ""

    async def _exercise():
        await Simulator(config).start()

    with pytest.raises(ValueError):
        asyncio.run(_exercise())
