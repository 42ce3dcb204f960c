#!/usr/bin/env python3
"""
M-Bus TCP Simulator CLI

Usage:
    mbus-sim serve --port 8000 --description meter.xml --telegram meter.hex
    mbus-sim serve --config config.yaml --broken
    mbus-sim read 5 192.168.0.100:8001 --pretty
"""

import argparse
import asyncio
import json
import re
import sys
import time
from datetime import datetime
from typing import List, Optional, Tuple

from mbus_sim.client import MBusTcpClient
from mbus_sim.config import Config, DeviceConfig, ServerConfig, load_config
from mbus_sim.exceptions import MBusReadError, MBusSimError
from mbus_sim.frames import MAX_PRIMARY_ADDRESS, describe_long_frame
from mbus_sim.logger import get_logger, setup_logging
from mbus_sim.main import serve

logger = get_logger(__name__)

HOST_PORT = re.compile(r"^([^:]+):(\d+)$")


def parse_read_targets(targets: List[str], address: int, host: str, port: int) -> Tuple[int, str, int]:
    """
    Interpret positional read arguments: an integer primary address
    and/or ``host:port``, in any order.

    Raises:
        ValueError: For out-of-range or unknown arguments
    """
    for arg in targets:
        if arg.isdigit():
            address = int(arg)
            if address > MAX_PRIMARY_ADDRESS:
                raise ValueError(f'Invalid address "{arg}". Must be 0-{MAX_PRIMARY_ADDRESS}.')
            continue

        match = HOST_PORT.match(arg)
        if match:
            host = match.group(1)
            port = int(match.group(2))
            if not 0 < port <= 65535:
                raise ValueError(f'Invalid port "{match.group(2)}". Must be 1-65535.')
            continue

        raise ValueError(f'Unknown argument "{arg}". Use an integer address or host:port.')

    return address, host, port


def apply_serve_overrides(config: Config, args: argparse.Namespace) -> Config:
    """Command line flags win over file and environment values."""
    server = config.server.model_dump()
    device = config.device.model_dump()

    if args.port is not None:
        server["port"] = args.port
    if args.mode:
        server["mode"] = args.mode
    if args.chunk_size is not None:
        server["chunk_size"] = args.chunk_size
    if args.broken is not None:
        server["fault_injection"]["enabled"] = args.broken
    if args.abort_after is not None:
        server["fault_injection"]["abort_after_chunks"] = args.abort_after
    if args.description:
        device["description"] = args.description
    if args.telegram:
        device["telegram"] = args.telegram

    return config.model_copy(update={
        "server": ServerConfig.model_validate(server),
        "device": DeviceConfig.model_validate(device),
    })


def cmd_serve(args: argparse.Namespace) -> int:
    try:
        config = apply_serve_overrides(load_config(args.config), args)
        setup_logging(config.logging)
        return asyncio.run(serve(config))
    except (MBusSimError, ValueError, OSError) as e:
        logger.error("fatal_error", error=str(e))
        return 1
    except KeyboardInterrupt:
        logger.info("interrupted_by_user")
        return 0


def cmd_read(args: argparse.Namespace) -> int:
    try:
        config = load_config(args.config)
    except (ValueError, OSError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2
    setup_logging(config.logging, stream=sys.stderr)

    client_config = config.client
    try:
        address, host, port = parse_read_targets(
            args.targets, client_config.address, client_config.host, client_config.port
        )
    except ValueError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2

    timeout = args.timeout if args.timeout is not None else client_config.timeout
    client = MBusTcpClient(host, port, timeout=timeout)

    result = {
        "address": address,
        "host": host,
        "port": port,
        "timestamp": datetime.now().isoformat()
    }
    started = time.monotonic()

    try:
        frame = asyncio.run(client.read(address, control=client_config.control))
        result.update({
            "success": True,
            "frame": frame.hex(),
            "length": len(frame),
            "header": describe_long_frame(frame),
        })
    except (MBusReadError, ConnectionError, OSError) as e:
        result.update({"success": False, "error": str(e), "error_type": type(e).__name__})

    result["read_duration_seconds"] = round(time.monotonic() - started, 3)
    print(json.dumps(result, indent=2 if args.pretty else None))
    return 0 if result["success"] else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="mbus-sim", description="M-Bus slave simulator over TCP")
    parser.add_argument('--config', help='YAML/JSON configuration file')
    sub = parser.add_subparsers(dest="command", required=True)

    serve_parser = sub.add_parser("serve", help="Run the simulated slave")
    serve_parser.add_argument('--port', type=int, help='Listen port')
    serve_parser.add_argument('--description', help='Normalized M-Bus XML of the meter')
    serve_parser.add_argument('--telegram', help='Hex dump of the template telegram')
    serve_parser.add_argument('--mode', choices=['mutating', 'static'])
    serve_parser.add_argument('--broken', action=argparse.BooleanOptionalAction, default=None,
                              help='Abort telegrams mid-stream to simulate a broken link')
    serve_parser.add_argument('--abort-after', type=int, help='Chunks sent before aborting')
    serve_parser.add_argument('--chunk-size', type=int, help='Bytes per chunk (default: 24)')
    serve_parser.set_defaults(func=cmd_serve)

    read_parser = sub.add_parser("read", help="Request data from a slave")
    read_parser.add_argument('targets', nargs='*', metavar='address|host:port')
    read_parser.add_argument('--timeout', type=float, help='Idle timeout in seconds (default: 3.0)')
    read_parser.add_argument('--pretty', action='store_true', help='Indented JSON output')
    read_parser.set_defaults(func=cmd_read)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
