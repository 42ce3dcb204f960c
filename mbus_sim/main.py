"""
M-Bus TCP Slave Simulator - Main Application
Wires the device sources, the TCP server and optional monitoring together.
"""

import asyncio
import random
import signal
import sys
from typing import Optional

from mbus_sim.config import Config
from mbus_sim.description import DeviceDescription, load_description
from mbus_sim.exceptions import DescriptionError
from mbus_sim.health_server import HealthServer
from mbus_sim.logger import get_logger
from mbus_sim.server import MBusSlaveServer, MutatingResponder, SessionStats, StaticResponder
from mbus_sim.telegram import TelegramStore

logger = get_logger(__name__)


class Simulator:
    """Main simulator application orchestrator."""

    def __init__(self, config: Config, rng: Optional[random.Random] = None):
        """
        Initialize simulator.

        Args:
            config: Application configuration
            rng: Random source for value perturbation
        """
        self.config = config
        self.rng = rng
        self.stats = SessionStats()

        self.description: Optional[DeviceDescription] = None
        self.server: Optional[MBusSlaveServer] = None
        self.health: Optional[HealthServer] = None
        self._stopped = asyncio.Event()

    def build_responder(self):
        """
        Load the device sources and build the response strategy.

        Raises:
            DescriptionError, TelegramFormatError, ValueFieldNotFoundError
        """
        device = self.config.device
        if not device.telegram:
            raise ValueError("No template telegram configured (device.telegram)")

        if device.description:
            self.description = load_description(device.description)
            self.description.log_summary()

        store = TelegramStore.from_file(device.telegram)

        if self.config.server.mode == "static":
            return StaticResponder(store)

        if self.description is None:
            raise DescriptionError("Mutating mode requires a device description (device.description)")
        return MutatingResponder(store, self.description, self.rng)

    async def start(self) -> None:
        """Start all simulator components."""
        logger.info("simulator_starting", mode=self.config.server.mode)

        responder = self.build_responder()

        self.server = MBusSlaveServer(self.config.server, responder, self.stats)
        await self.server.start()

        monitoring = self.config.monitoring
        if monitoring.enable_http:
            self.health = HealthServer(
                self.stats,
                port=monitoring.http_port,
                enable_metrics=monitoring.enable_metrics
            )
            self.health.update_component_status("mbus_server", True, port=self.server.port)
            await self.health.start()

        logger.info("simulator_started", port=self.server.port)

    async def run(self) -> None:
        """Start and block until stop() is called."""
        await self.start()
        await self._stopped.wait()

    async def stop(self) -> None:
        """Stop all simulator components."""
        logger.info("simulator_stopping")

        if self.server:
            await self.server.stop()
            if self.health:
                self.health.update_component_status("mbus_server", False)

        if self.health:
            await self.health.stop()

        self._stopped.set()
        logger.info("simulator_stopped", **self.stats.as_dict())


async def serve(config: Config) -> int:
    """Run the simulator until SIGINT/SIGTERM."""
    simulator = Simulator(config)

    loop = asyncio.get_running_loop()

    def signal_handler(sig):
        logger.info("signal_received", signal=sig.name)
        asyncio.ensure_future(simulator.stop())

    if sys.platform != "win32":
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, lambda s=sig: signal_handler(s))

    await simulator.run()
    return 0
