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

MQTT client of the bridge.

paho-mqtt runs in its own thread on a MiioEventLoop, the asyncio loop talks
to it through a command queue woken up by an eventfd. Subscribed messages
and state changes are handed back to the asyncio loop.
"""
import asyncio
import logging
import os
import queue
import threading
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Awaitable, Callable, Optional, Union

from paho.mqtt.client import (
    MQTT_ERR_SUCCESS,
    MQTT_ERR_UNKNOWN,
    CallbackAPIVersion,
    Client,
    MQTTv311)

# pylint: disable=relative-beyond-top-level
from .common import MiioMatcher, randomize_int
from .const import (
    DEFAULT_MQTT_CLIENT_ID,
    DEFAULT_MQTT_HOST,
    DEFAULT_MQTT_PORT,
    MQTT_KEEPALIVE,
    MQTT_QOS)
from .miio_error import MiioErrorCode, MiioTransportError
from .miio_ev import MiioEventLoop, TimeoutHandle

_LOGGER = logging.getLogger(__name__)


class MiioMqttCmdType(Enum):
    """MQTT client command type."""
    CONNECT = 0
    DISCONNECT = auto()
    DEINIT = auto()
    SUB = auto()
    UNSUB = auto()
    PUBLISH = auto()
    REG_STATE = auto()
    UNREG_STATE = auto()


@dataclass
class MiioMqttCmd:
    """MQTT client command."""
    type_: MiioMqttCmdType
    data: Any = None


@dataclass
class MiioMqttSub:
    """Topic subscription."""
    topic: str
    handler: Optional[Callable[[str, bytes], None]] = None


@dataclass
class MiioMqttPublish:
    topic: str
    payload: Union[bytes, str]


@dataclass
class MiioMqttState:
    """MQTT state subscription."""
    key: str
    handler: Optional[Callable[[str, bool], Awaitable[None]]] = None


class MiioMqttClient:
    """MQTT client."""
    # pylint: disable=unused-argument
    MQTT_INTERVAL_MS: int = 1000
    RECONNECT_INTERVAL_MIN: int = 500
    RECONNECT_INTERVAL_MAX: int = 30000
    SUB_INTERVAL: int = 1000
    SUB_RETRY: int = 3
    main_loop: asyncio.AbstractEventLoop
    _client_id: str
    _host: str
    _port: int
    _username: Optional[str]
    _password: Optional[str]
    _keepalive: int

    _mqtt: Client
    _mqtt_fd: int
    _mqtt_timer: Optional[TimeoutHandle]
    _mqtt_state: bool

    _mev: Optional[MiioEventLoop]
    _mqtt_thread: Optional[threading.Thread]
    _cmd_queue: Optional[queue.Queue]
    _cmd_event_fd: Optional[int]
    _reconnect_tag: bool
    _reconnect_interval: int
    _reconnect_timer: Optional[TimeoutHandle]
    _state_sub_map: dict[str, MiioMqttState]
    _msg_matcher: MiioMatcher
    _sub_pending_map: dict[str, int]
    _sub_pending_timer: Optional[TimeoutHandle]

    def __init__(
            self, host: str = DEFAULT_MQTT_HOST, port: int = DEFAULT_MQTT_PORT,
            client_id: str = DEFAULT_MQTT_CLIENT_ID,
            username: Optional[str] = None, password: Optional[str] = None,
            keepalive: int = MQTT_KEEPALIVE,
            loop: Optional[asyncio.AbstractEventLoop] = None
    ) -> None:
        # MUST run with running loop
        self.main_loop = loop or asyncio.get_running_loop()
        self._client_id = client_id
        self._host = host
        self._port = port
        self._username = username
        self._password = password
        self._keepalive = keepalive

        self._mqtt_fd = -1
        self._mqtt_timer = None
        self._mqtt_state = False
        self._mqtt = Client(
            callback_api_version=CallbackAPIVersion.VERSION2,
            client_id=self._client_id, clean_session=True,
            protocol=MQTTv311)
        self._mqtt.disable_logger()

        self._reconnect_tag = False
        self._reconnect_interval = 0
        self._reconnect_timer = None
        self._state_sub_map = {}
        self._msg_matcher = MiioMatcher()
        self._sub_pending_map = {}
        self._sub_pending_timer = None
        self._mev = MiioEventLoop()
        self._cmd_queue = queue.Queue()
        self._cmd_event_fd = os.eventfd(0, os.O_NONBLOCK)
        self._mev.set_read_handler(
            self._cmd_event_fd, self.__cmd_read_handler, None)
        self._mqtt_thread = threading.Thread(target=self.__mqtt_loop_thread)
        self._mqtt_thread.daemon = True
        self._mqtt_thread.name = f'mqtt.{self._client_id}'
        self._mqtt_thread.start()

    @property
    def client_id(self) -> str:
        return self._client_id

    @property
    def host(self) -> str:
        return self._host

    @property
    def port(self) -> int:
        return self._port

    @property
    def mqtt_state(self) -> bool:
        """MQTT connect state.

        Returns:
            bool: True: connected, False: disconnected
        """
        return bool(self._mqtt and self._mqtt.is_connected())

    def deinit(self) -> None:
        if not self._mqtt_thread:
            return
        self.__send_cmd(MiioMqttCmdType.DEINIT)
        self._mqtt_thread.join()
        self._mqtt_thread = None
        self._state_sub_map = {}
        self._sub_pending_map = {}
        self._msg_matcher = MiioMatcher()

    def enable_mqtt_logger(
        self, logger: Optional[logging.Logger] = None
    ) -> None:
        if logger:
            self._mqtt.enable_logger(logger=logger)
        else:
            self._mqtt.disable_logger()

    def connect(self) -> bool:
        return self.__send_cmd(MiioMqttCmdType.CONNECT)

    def disconnect(self) -> bool:
        return self.__send_cmd(MiioMqttCmdType.DISCONNECT)

    def sub_mqtt_state(
        self, key: str, handler: Callable[[str, bool], Awaitable[None]]
    ) -> bool:
        """Subscribe MQTT state.
        NOTICE: handler is run as a task of the main loop
        """
        if not isinstance(key, str) or handler is None:
            raise MiioTransportError(
                'invalid params', MiioErrorCode.CODE_INVALID_PARAMS)
        return self.__send_cmd(
            MiioMqttCmdType.REG_STATE,
            MiioMqttState(key=key, handler=handler))

    def unsub_mqtt_state(self, key: str) -> bool:
        return self.__send_cmd(
            MiioMqttCmdType.UNREG_STATE, MiioMqttState(key=key))

    def sub_topic(
        self, topic: str, handler: Callable[[str, bytes], None]
    ) -> bool:
        """Subscribe a topic, subscriptions are renewed on reconnect.
        NOTICE: handler is called in the main loop
        """
        if not isinstance(topic, str) or not topic or handler is None:
            raise MiioTransportError(
                'invalid params', MiioErrorCode.CODE_INVALID_PARAMS)
        return self.__send_cmd(
            MiioMqttCmdType.SUB, MiioMqttSub(topic=topic, handler=handler))

    def unsub_topic(self, topic: str) -> bool:
        return self.__send_cmd(MiioMqttCmdType.UNSUB, MiioMqttSub(topic=topic))

    def publish(self, topic: str, payload: Union[bytes, str]) -> bool:
        """Queue a message, dropped if MQTT is not connected when sent."""
        return self.__send_cmd(
            MiioMqttCmdType.PUBLISH,
            MiioMqttPublish(topic=topic, payload=payload))

    def __send_cmd(self, type_: MiioMqttCmdType, data: Any = None) -> bool:
        if self._cmd_queue is None or self._cmd_event_fd is None:
            _LOGGER.error('mqtt client is deinit, drop cmd, %s', type_)
            return False
        self._cmd_queue.put(MiioMqttCmd(type_=type_, data=data))
        os.eventfd_write(self._cmd_event_fd, 1)
        return True

    def __cmd_read_handler(self, ctx: Any) -> None:
        fd_value = os.eventfd_read(self._cmd_event_fd)
        if fd_value == 0:
            return
        while self._cmd_queue and not self._cmd_queue.empty():
            cmd: MiioMqttCmd = self._cmd_queue.get(block=False)
            if cmd.type_ == MiioMqttCmdType.CONNECT:
                self._reconnect_tag = True
                self.__try_reconnect(immediately=True)
            elif cmd.type_ == MiioMqttCmdType.DISCONNECT:
                self._reconnect_tag = False
                self.__disconnect()
            elif cmd.type_ == MiioMqttCmdType.DEINIT:
                _LOGGER.info('mqtt client recv deinit cmd')
                self._reconnect_tag = False
                self.__disconnect()
                self._mev.set_read_handler(self._cmd_event_fd, None, None)
                os.close(self._cmd_event_fd)
                self._cmd_event_fd = None
                self._cmd_queue = None
                self._mev.loop_stop()
                break
            elif cmd.type_ == MiioMqttCmdType.SUB:
                sub: MiioMqttSub = cmd.data
                self._msg_matcher[sub.topic] = sub
                self.__sub_internal(sub.topic)
            elif cmd.type_ == MiioMqttCmdType.UNSUB:
                sub: MiioMqttSub = cmd.data
                if self._msg_matcher.get(topic=sub.topic):
                    del self._msg_matcher[sub.topic]
                    self.__unsub_internal(sub.topic)
            elif cmd.type_ == MiioMqttCmdType.PUBLISH:
                self.__publish_internal(cmd.data)
            elif cmd.type_ == MiioMqttCmdType.REG_STATE:
                state: MiioMqttState = cmd.data
                self._state_sub_map[state.key] = state
            elif cmd.type_ == MiioMqttCmdType.UNREG_STATE:
                state: MiioMqttState = cmd.data
                self._state_sub_map.pop(state.key, None)

    def __sub_internal(self, topic: str) -> None:
        if not self._mqtt.is_connected():
            return
        if topic not in self._sub_pending_map:
            self._sub_pending_map[topic] = 0
        if not self._sub_pending_timer:
            self._sub_pending_timer = self._mev.set_timeout(
                10, self.__sub_pending_handler, None)

    def __unsub_internal(self, topic: str) -> None:
        self._sub_pending_map.pop(topic, None)
        if not self._mqtt.is_connected():
            return
        try:
            result, mid = self._mqtt.unsubscribe(topic)
            if result == MQTT_ERR_SUCCESS:
                _LOGGER.debug('mqtt unsub, %s, %s', mid, topic)
                return
            _LOGGER.error('mqtt unsub error, %s, %s', result, topic)
        except Exception as err:  # pylint: disable=broad-exception-caught
            _LOGGER.error('mqtt unsub error, %s, %s', topic, err)

    def __sub_pending_handler(self, ctx: Any) -> None:
        for topic in list(self._sub_pending_map.keys()):
            count = self._sub_pending_map[topic]
            if count > self.SUB_RETRY:
                self._sub_pending_map.pop(topic)
                _LOGGER.error('mqtt sub error, give up, %s', topic)
                continue
            result, mid = self._mqtt.subscribe(topic, qos=MQTT_QOS)
            if result == MQTT_ERR_SUCCESS:
                self._sub_pending_map.pop(topic)
                _LOGGER.info('mqtt sub, %s, %s', mid, topic)
                continue
            self._sub_pending_map[topic] = count+1
            _LOGGER.error(
                'mqtt sub error, retry, %s, %s, %s', count, topic, result)
        if self._sub_pending_map:
            self._sub_pending_timer = self._mev.set_timeout(
                self.SUB_INTERVAL, self.__sub_pending_handler, None)
        else:
            self._sub_pending_timer = None

    def __publish_internal(self, msg: MiioMqttPublish) -> bool:
        if not self._mqtt.is_connected():
            _LOGGER.info('mqtt not connected, drop message, %s', msg.topic)
            return False
        try:
            info = self._mqtt.publish(
                topic=msg.topic, payload=msg.payload, qos=MQTT_QOS)
            if info.rc != MQTT_ERR_SUCCESS:
                _LOGGER.error(
                    'mqtt publish error, %s, %s', msg.topic, info.rc)
                return False
            return True
        except Exception as err:  # pylint: disable=broad-exception-caught
            _LOGGER.error('mqtt publish error, %s, %s', msg.topic, err)
        return False

    def __mqtt_read_handler(self, ctx: Any) -> None:
        self.__mqtt_loop_handler(ctx=ctx)

    def __mqtt_write_handler(self, ctx: Any) -> None:
        self._mev.set_write_handler(self._mqtt_fd, None, None)
        self.__mqtt_loop_handler(ctx=ctx)

    def __mqtt_timer_handler(self, ctx: Any) -> None:
        self.__mqtt_loop_handler(ctx=ctx)
        if self._mqtt_fd != -1:
            self._mqtt_timer = self._mev.set_timeout(
                self.MQTT_INTERVAL_MS, self.__mqtt_timer_handler, None)

    def __mqtt_loop_handler(self, ctx: Any) -> None:
        try:
            self._mqtt.loop_read()
            self._mqtt.loop_write()
            self._mqtt.loop_misc()
            if self._mqtt_fd != -1 and self._mqtt.want_write():
                self._mev.set_write_handler(
                    self._mqtt_fd, self.__mqtt_write_handler, None)
        except Exception as err:  # pylint: disable=broad-exception-caught
            _LOGGER.error('mqtt loop error, %s', err)
            self.__release_fd()
            self.__try_reconnect()

    def __mqtt_loop_thread(self) -> None:
        _LOGGER.info('mqtt loop thread start, %s', self._client_id)
        if self._username:
            self._mqtt.username_pw_set(
                username=self._username, password=self._password)
        self._mqtt.on_connect = self.__on_connect
        self._mqtt.on_connect_fail = self.__on_connect_failed
        self._mqtt.on_disconnect = self.__on_disconnect
        self._mqtt.on_message = self.__on_message
        self._mev.loop_forever()
        self._mev = None
        _LOGGER.info('mqtt loop thread exit, %s', self._client_id)

    def __on_connect(self, client, user_data, flags, rc, props) -> None:
        if not self._mqtt.is_connected():
            _LOGGER.error('mqtt connect refused, %s', rc)
            return
        _LOGGER.info('mqtt connect, %s:%s, %s', self._host, self._port, rc)
        self._mqtt_state = True
        self._reconnect_interval = 0
        # clean session, subscribe again
        for topic, _ in list(self._msg_matcher.iter_all_nodes()):
            self.__sub_internal(topic)
        self.__notify_state(True)

    def __on_connect_failed(self, client, user_data) -> None:
        _LOGGER.error('mqtt connect failed, %s:%s', self._host, self._port)
        self.__release_fd()
        self.__try_reconnect()

    def __on_disconnect(self, client, user_data, flags, rc, props) -> None:
        if self._mqtt_state:
            _LOGGER.error('mqtt disconnect, %s', rc)
            self._mqtt_state = False
            if self._sub_pending_timer:
                self._mev.clear_timeout(self._sub_pending_timer)
                self._sub_pending_timer = None
            self._sub_pending_map = {}
            self.__notify_state(False)
        self.__release_fd()
        self.__try_reconnect()

    def __on_message(self, client, user_data, msg) -> None:
        for sub in list(self._msg_matcher.iter_match(msg.topic)):
            if sub.handler is None:
                continue
            self.main_loop.call_soon_threadsafe(
                sub.handler, msg.topic, msg.payload)

    def __notify_state(self, state: bool) -> None:
        for item in self._state_sub_map.values():
            if item.handler is None:
                continue
            self.main_loop.call_soon_threadsafe(
                self.main_loop.create_task, item.handler(item.key, state))

    def __try_reconnect(self, immediately: bool = False) -> None:
        if self._reconnect_timer:
            self._mev.clear_timeout(self._reconnect_timer)
            self._reconnect_timer = None
        if not self._reconnect_tag:
            return
        interval: int = 0
        if not immediately:
            interval = self.__get_next_reconnect_time()
            _LOGGER.info('mqtt try reconnect after %sms', interval)
        self._reconnect_timer = self._mev.set_timeout(
            interval, self.__connect, None)

    def __connect(self, ctx: Any = None) -> None:
        result = MQTT_ERR_UNKNOWN
        self._reconnect_timer = None
        self.__release_fd()
        try:
            result = self._mqtt.connect(
                host=self._host, port=self._port, keepalive=self._keepalive)
            _LOGGER.debug('mqtt connect, %s', result)
        except (TimeoutError, OSError) as error:
            _LOGGER.error('mqtt connect error, %s', error)

        if result == MQTT_ERR_SUCCESS:
            self._mqtt_fd = self._mqtt.socket().fileno()
            self._mev.set_read_handler(
                self._mqtt_fd, self.__mqtt_read_handler, None)
            if self._mqtt.want_write():
                self._mev.set_write_handler(
                    self._mqtt_fd, self.__mqtt_write_handler, None)
            self._mqtt_timer = self._mev.set_timeout(
                self.MQTT_INTERVAL_MS, self.__mqtt_timer_handler, None)
        else:
            self.__try_reconnect()

    def __disconnect(self) -> None:
        if self._reconnect_timer:
            self._mev.clear_timeout(self._reconnect_timer)
            self._reconnect_timer = None
        self.__release_fd()
        self._mqtt.disconnect()

    def __release_fd(self) -> None:
        if self._mqtt_timer:
            self._mev.clear_timeout(self._mqtt_timer)
            self._mqtt_timer = None
        if self._mqtt_fd != -1:
            self._mev.set_read_handler(self._mqtt_fd, None, None)
            self._mev.set_write_handler(self._mqtt_fd, None, None)
            self._mqtt_fd = -1

    def __get_next_reconnect_time(self) -> int:
        if self._reconnect_interval == 0:
            self._reconnect_interval = self.RECONNECT_INTERVAL_MIN
        else:
            self._reconnect_interval = min(
                self._reconnect_interval*2, self.RECONNECT_INTERVAL_MAX)
        return randomize_int(self._reconnect_interval, 0.1)
