# -*- coding: utf-8 -*-
"""
Copyright (C) 2024 Xiaomi Corporation.

The ownership and intellectual property rights of Xiaomi Home Assistant
Integration and related Xiaomi cloud service API interface provided under this
license, including source code and object code (collectively, "Licensed Work"),
are owned by Xiaomi. Subject to the terms and conditions of this License, Xiaomi
hereby grants you a personal, limited, non-exclusive, non-transferable,
non-sublicensable, and royalty-free license to reproduce, use, modify, and
distribute the Licensed Work only for your use of Home Assistant for
non-commercial purposes. For the avoidance of doubt, Xiaomi does not authorize
you to use the Licensed Work for any other purpose, including but not limited
to use Licensed Work to develop applications (APP), Web services, and other
forms of software.

You may reproduce and distribute copies of the Licensed Work, with or without
modifications, whether in source or object form, provided that you must give
any other recipients of the Licensed Work a copy of this License and retain all
copyright and disclaimers.

Xiaomi provides the Licensed Work on an "AS IS" BASIS, WITHOUT WARRANTIES OR
CONDITIONS OF ANY KIND, either express or implied, including, without
limitation, any warranties, undertakes, or conditions of TITLE, NO ERROR OR
OMISSION, CONTINUITY, RELIABILITY, NON-INFRINGEMENT, MERCHANTABILITY, or
FITNESS FOR A PARTICULAR PURPOSE. In any event, you are solely responsible
for any direct, indirect, special, incidental, or consequential damages or
losses arising from the use or inability to use the Licensed Work.

Xiaomi reserves all rights not expressly granted to you in this License.
Except for the rights expressly granted by Xiaomi under this License, Xiaomi
does not authorize you in any form to use the trademarks, copyrights, or other
forms of intellectual property rights of Xiaomi and its affiliates, including,
without limitation, without obtaining other written permission from Xiaomi, you
shall not use "Xiaomi", "Mijia" and other words related to Xiaomi or words that
may make the public associate with Xiaomi in any form to publicize or promote
the software or hardware devices that use the Licensed Work.

Xiaomi has the right to immediately terminate all your authorization under this
License in the event:
1. You assert patent invalidation, litigation, or other claims against patents
or other intellectual property rights of Xiaomi or its affiliates; or,
2. You make, have made, manufacture, sell, or offer to sell products that knock
off Xiaomi or its affiliates' products.

Command line of the miio bridge.

Usage:
python -m miio_bridge [-m MQTT_IP] [-a AGENT_SOCKET_PATH] [-b BIND_ID]
                      [-l LOG_LEVEL] [-c CONFIG] [--driven]

Example:
python -m miio_bridge -m 192.168.1.10 -b 8 -l debug
"""
import argparse
import asyncio
import logging
import signal
import sys
from typing import Optional

# pylint: disable=relative-beyond-top-level
from .const import DRIVEN_COMMAND, LOG_LEVELS
from .miio_bridge import MiioBridge
from .miio_config import MiioBridgeConfig, load_config
from .miio_error import MiioConfigError

_LOGGER = logging.getLogger(__name__)

LOG_FORMAT: str = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='miio-bridge',
        description='Bridge between an MQTT broker and the miio agent.')
    parser.add_argument(
        '-m', '--mqtt-ip', dest='mqtt_host', help='MQTT broker address')
    parser.add_argument(
        '-a', '--agent-socket-path', dest='agent_socket_path',
        help='miio agent socket path')
    parser.add_argument(
        '-b', '--bind-id', dest='bind_id', type=int,
        help='address bound on the miio agent')
    parser.add_argument(
        '-l', '--log-level', dest='log_level', choices=list(LOG_LEVELS),
        help='log level')
    parser.add_argument(
        '-c', '--config', dest='config', help='yaml or json config file')
    parser.add_argument(
        '--driven', action='store_true',
        help=f'read reports from {DRIVEN_COMMAND}')
    parser.add_argument(
        '--mqtt-log', action='store_true', help='enable paho-mqtt logger')
    return parser


def build_config(args: argparse.Namespace) -> MiioBridgeConfig:
    """Config file values, overridden by command line values."""
    config = load_config(args.config) if args.config else MiioBridgeConfig()
    config.update(
        mqtt_host=args.mqtt_host, agent_socket_path=args.agent_socket_path,
        bind_id=args.bind_id, log_level=args.log_level)
    if args.driven and not config.driven_command:
        config.driven_command = DRIVEN_COMMAND
    return config


async def run_async(config: MiioBridgeConfig, mqtt_log: bool = False) -> None:
    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)
    bridge = MiioBridge(config=config, loop=loop)
    await bridge.init_async()
    if mqtt_log:
        bridge.mqtt_client.enable_mqtt_logger(logging.getLogger('paho.mqtt'))
    try:
        await stop_event.wait()
    finally:
        _LOGGER.info('stopping')
        await bridge.deinit_async()


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        config = build_config(args)
    except MiioConfigError as err:
        print(f'invalid config, {err.message}', file=sys.stderr)
        return 2
    logging.basicConfig(level=config.level, format=LOG_FORMAT)
    asyncio.run(run_async(config, mqtt_log=args.mqtt_log))
    return 0


if __name__ == '__main__':
    sys.exit(main())
