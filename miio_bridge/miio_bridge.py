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

miio bridge, owner of the router and its transports.
"""
import asyncio
import logging
from typing import Any, Optional

# pylint: disable=relative-beyond-top-level
from .miio_agent import MiioAgentClient
from .miio_config import MiioBridgeConfig
from .miio_correlator import MiioCorrelator
from .miio_driven import MiioDrivenReader
from .miio_mqtt import MiioMqttClient
from .miio_registry import MiioRegistry
from .miio_router import MiioRouter

_LOGGER = logging.getLogger(__name__)


class MiioBridge:
    """Bridge between the MQTT broker and the miio agent.

    mqtt_client and agent_client are created from the config unless given.
    """
    _main_loop: asyncio.AbstractEventLoop
    _config: MiioBridgeConfig
    _init_done: bool
    _registry: Optional[MiioRegistry]
    _correlator: Optional[MiioCorrelator]
    _router: Optional[MiioRouter]
    _mqtt: Any
    _agent: Any
    _driven: Optional[MiioDrivenReader]
    _sweep_timer: Optional[asyncio.TimerHandle]

    def __init__(
        self, config: Optional[MiioBridgeConfig] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        mqtt_client: Any = None, agent_client: Any = None
    ) -> None:
        self._main_loop = loop or asyncio.get_running_loop()
        self._config = config or MiioBridgeConfig()
        self._init_done = False
        self._registry = None
        self._correlator = None
        self._router = None
        self._mqtt = mqtt_client
        self._agent = agent_client
        self._driven = None
        self._sweep_timer = None

    @property
    def config(self) -> MiioBridgeConfig:
        return self._config

    @property
    def init_done(self) -> bool:
        return self._init_done

    @property
    def registry(self) -> Optional[MiioRegistry]:
        return self._registry

    @property
    def correlator(self) -> Optional[MiioCorrelator]:
        return self._correlator

    @property
    def router(self) -> Optional[MiioRouter]:
        return self._router

    @property
    def mqtt_client(self) -> Any:
        return self._mqtt

    @property
    def agent_client(self) -> Any:
        return self._agent

    async def init_async(self) -> None:
        if self._init_done:
            _LOGGER.info('miio bridge already init')
            return
        config = self._config
        self._registry = MiioRegistry()
        self._correlator = MiioCorrelator(
            default_timeout=config.request_timeout)
        if self._mqtt is None:
            self._mqtt = MiioMqttClient(
                host=config.mqtt_host, port=config.mqtt_port,
                client_id=config.mqtt_client_id,
                username=config.mqtt_username, password=config.mqtt_password,
                keepalive=config.mqtt_keepalive, loop=self._main_loop)
        if self._agent is None:
            self._agent = MiioAgentClient(
                socket_path=config.agent_socket_path, bind_id=config.bind_id,
                keys=config.agent_keys, loop=self._main_loop)
        self._router = MiioRouter(
            registry=self._registry, correlator=self._correlator,
            publish=self._mqtt.publish, send=self._agent.send,
            gateway_did=config.gateway_did,
            strict_forward=config.strict_forward,
            topic_command=config.topic_command, topic_ack=config.topic_ack,
            topic_response=config.topic_response,
            topic_report=config.topic_report, loop=self._main_loop)
        await self._router.start_async()

        self._agent.sub_message('miio_bridge', self._router.on_gateway_message)
        self._agent.sub_agent_state('miio_bridge', self.__on_agent_state)
        await self._agent.init_async()
        self._mqtt.sub_mqtt_state('miio_bridge', self.__on_mqtt_state)
        self._mqtt.sub_topic(
            config.topic_command, self._router.on_mqtt_message)
        self._mqtt.connect()

        if config.driven_command:
            self._driven = MiioDrivenReader(
                handler=self.__on_driven_report,
                command=config.driven_command, loop=self._main_loop)
            await self._driven.init_async()

        self._sweep_timer = self._main_loop.call_later(
            config.sweep_interval, self.__sweep_timer_handler)
        self._init_done = True
        _LOGGER.info(
            'miio bridge init, mqtt %s:%s, agent %s, bind %s',
            config.mqtt_host, config.mqtt_port, config.agent_socket_path,
            config.bind_id)

    async def deinit_async(self) -> None:
        if not self._init_done:
            _LOGGER.info('miio bridge not init')
            return
        self._init_done = False
        if self._sweep_timer:
            self._sweep_timer.cancel()
            self._sweep_timer = None
        if self._driven:
            await self._driven.deinit_async()
            self._driven = None
        self._mqtt.unsub_topic(self._config.topic_command)
        self._mqtt.unsub_mqtt_state('miio_bridge')
        self._mqtt.disconnect()
        self._mqtt.deinit()
        self._agent.unsub_message('miio_bridge')
        self._agent.unsub_agent_state('miio_bridge')
        await self._agent.deinit_async()
        await self._router.stop_async()
        pending = self._correlator.clear()
        if pending:
            _LOGGER.info(
                'drop pending requests, %s', [req.msg_id for req in pending])
        self._registry.clear()
        _LOGGER.info('miio bridge deinit')

    def sweep(self) -> None:
        if self._router:
            self._router.sweep()

    def __sweep_timer_handler(self) -> None:
        self._sweep_timer = None
        self.sweep()
        if self._init_done:
            self._sweep_timer = self._main_loop.call_later(
                self._config.sweep_interval, self.__sweep_timer_handler)

    def __on_driven_report(self, payload: str) -> None:
        self._mqtt.publish(self._config.topic_report, payload.encode('utf-8'))

    async def __on_mqtt_state(self, key: str, state: bool) -> None:
        _LOGGER.info('mqtt %s', 'connected' if state else 'disconnected')

    async def __on_agent_state(self, state: bool) -> None:
        _LOGGER.info(
            'miio agent %s', 'connected' if state else 'disconnected')
