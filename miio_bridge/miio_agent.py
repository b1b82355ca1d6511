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

miio agent socket client.

The miio agent of the gateway listens on a unix SOCK_SEQPACKET socket, one
datagram per json message. After connecting, a client binds an address and
registers the event keys it wants to receive.
"""
import asyncio
import json
import logging
import os
import queue
import socket
import threading
from collections import deque
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Awaitable, Callable, Optional, Union

# pylint: disable=relative-beyond-top-level
from .const import (
    AGENT_MSG_LEN,
    AGENT_RECONNECT_INTERVAL_MS,
    AGENT_REGISTER_KEYS,
    AGENT_SEND_BACKLOG,
    DEFAULT_AGENT_SOCKET_PATH,
    DEFAULT_BIND_ID)
from .miio_error import MiioErrorCode, MiioTransportError
from .miio_ev import MiioEventLoop, TimeoutHandle

_LOGGER = logging.getLogger(__name__)


class MiioAgentCmdType(Enum):
    """miio agent client command type."""
    DEINIT = 0
    SEND = auto()


@dataclass
class MiioAgentCmd:
    """miio agent client command."""
    type_: MiioAgentCmdType
    data: Any = None


class MiioAgentClient:
    """miio agent client."""
    # pylint: disable=unused-argument
    _main_loop: asyncio.AbstractEventLoop
    _socket_path: str
    _bind_id: int
    _keys: list[str]
    _init_done: bool

    _mev: Optional[MiioEventLoop]
    _thread: Optional[threading.Thread]
    _queue: Optional[queue.Queue]
    _cmd_event_fd: Optional[int]
    _sock: Optional[socket.socket]
    _reconnect_timer: Optional[TimeoutHandle]
    # Messages sent while disconnected, oldest dropped first
    _backlog: deque[bytes]
    _agent_state: bool

    _msg_sub_map: dict[str, Callable[[bytes], None]]
    _state_sub_map: dict[str, Callable[[bool], Awaitable[None]]]

    def __init__(
        self, socket_path: str = DEFAULT_AGENT_SOCKET_PATH,
        bind_id: int = DEFAULT_BIND_ID, keys: Optional[list[str]] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None
    ) -> None:
        self._main_loop = loop or asyncio.get_running_loop()
        self._socket_path = socket_path
        self._bind_id = bind_id
        self._keys = list(AGENT_REGISTER_KEYS if keys is None else keys)
        self._init_done = False

        self._mev = None
        self._thread = None
        self._queue = None
        self._cmd_event_fd = None
        self._sock = None
        self._reconnect_timer = None
        self._backlog = deque(maxlen=AGENT_SEND_BACKLOG)
        self._agent_state = False

        self._msg_sub_map = {}
        self._state_sub_map = {}

    @property
    def init_done(self) -> bool:
        return self._init_done

    @property
    def agent_state(self) -> bool:
        return self._agent_state

    @property
    def socket_path(self) -> str:
        return self._socket_path

    @property
    def bind_id(self) -> int:
        return self._bind_id

    async def init_async(self) -> None:
        if self._init_done:
            _LOGGER.info('miio agent client already init')
            return
        self._mev = MiioEventLoop()
        self._queue = queue.Queue()
        self._cmd_event_fd = os.eventfd(0, os.O_NONBLOCK)
        self._mev.set_read_handler(
            self._cmd_event_fd, self.__cmd_read_handler, None)
        self._thread = threading.Thread(target=self.__agent_thread_handler)
        self._thread.name = 'miio_agent'
        self._thread.daemon = True
        self._thread.start()
        self._init_done = True
        _LOGGER.info('miio agent client init, %s', self._socket_path)

    async def deinit_async(self) -> None:
        if not self._init_done:
            _LOGGER.info('miio agent client not init')
            return
        self._init_done = False
        self.__agent_send_cmd(MiioAgentCmdType.DEINIT)
        self._thread.join()
        self._thread = None
        self._mev = None
        self._queue = None
        self._backlog.clear()
        if self._agent_state:
            self.__set_agent_state(False)
        _LOGGER.info('miio agent client deinit')

    def send(self, payload: Union[bytes, str]) -> bool:
        """Queue a message to the agent.

        Messages sent while the agent is disconnected are kept until the
        next connect, up to AGENT_SEND_BACKLOG of them.
        """
        if not self._init_done:
            _LOGGER.error('miio agent client not init, drop message')
            return False
        if isinstance(payload, str):
            payload = payload.encode('utf-8')
        if len(payload) > AGENT_MSG_LEN:
            raise MiioTransportError(
                f'message too long, {len(payload)}',
                MiioErrorCode.CODE_TRANSPORT_SEND_ERROR)
        return self.__agent_send_cmd(MiioAgentCmdType.SEND, payload)

    def sub_message(self, key: str, handler: Callable[[bytes], None]) -> None:
        """Subscribe every message of the agent.
        NOTICE: handler is called in the main loop
        """
        self._msg_sub_map[key] = handler

    def unsub_message(self, key: str) -> None:
        self._msg_sub_map.pop(key, None)

    def sub_agent_state(
        self, key: str, handler: Callable[[bool], Awaitable[None]]
    ) -> None:
        self._state_sub_map[key] = handler

    def unsub_agent_state(self, key: str) -> None:
        self._state_sub_map.pop(key, None)

    def __agent_send_cmd(
        self, type_: MiioAgentCmdType, data: Any = None
    ) -> bool:
        try:
            self._queue.put(MiioAgentCmd(type_=type_, data=data))
            os.eventfd_write(self._cmd_event_fd, 1)
            return True
        except Exception as err:  # pylint: disable=broad-exception-caught
            _LOGGER.error('send cmd error, %s, %s', type_, err)
        return False

    def __agent_thread_handler(self) -> None:
        _LOGGER.info('miio agent thread start')
        self.__connect()
        self._mev.loop_forever()
        _LOGGER.info('miio agent thread exit')

    def __cmd_read_handler(self, ctx: Any) -> None:
        fd_value = os.eventfd_read(self._cmd_event_fd)
        if fd_value == 0:
            return
        while not self._queue.empty():
            cmd: MiioAgentCmd = self._queue.get(block=False)
            if cmd.type_ == MiioAgentCmdType.SEND:
                self.__send(cmd.data)
            elif cmd.type_ == MiioAgentCmdType.DEINIT:
                if self._reconnect_timer:
                    self._mev.clear_timeout(self._reconnect_timer)
                    self._reconnect_timer = None
                self.__close_socket()
                self._mev.set_read_handler(self._cmd_event_fd, None, None)
                os.close(self._cmd_event_fd)
                self._cmd_event_fd = None
                self._mev.loop_stop()
                break

    def __connect(self, ctx: Any = None) -> None:
        self._reconnect_timer = None
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_SEQPACKET)
        try:
            sock.connect(self._socket_path)
            sock.setblocking(False)
            sock.send(json.dumps(
                {'address': self._bind_id, 'method': 'bind'},
                separators=(',', ':')).encode('utf-8'))
            for key in self._keys:
                sock.send(json.dumps(
                    {'key': key, 'method': 'register'},
                    separators=(',', ':')).encode('utf-8'))
        except OSError as err:
            sock.close()
            _LOGGER.debug(
                'connect miio agent error, %s, %s', self._socket_path, err)
            self.__try_reconnect()
            return
        self._sock = sock
        self._mev.set_read_handler(
            sock.fileno(), self.__socket_read_handler, sock)
        _LOGGER.info(
            'miio agent connected, %s, bind %s', self._socket_path,
            self._bind_id)
        self._main_loop.call_soon_threadsafe(self.__set_agent_state, True)
        while self._backlog and self._sock:
            self.__send(self._backlog.popleft())

    def __try_reconnect(self) -> None:
        if self._reconnect_timer:
            return
        self._reconnect_timer = self._mev.set_timeout(
            AGENT_RECONNECT_INTERVAL_MS, self.__connect, None)

    def __close_socket(self) -> None:
        if not self._sock:
            return
        self._mev.set_read_handler(self._sock.fileno(), None, None)
        self._sock.close()
        self._sock = None
        self._main_loop.call_soon_threadsafe(self.__set_agent_state, False)

    def __on_socket_error(self) -> None:
        self.__close_socket()
        self.__try_reconnect()

    def __socket_read_handler(self, sock: socket.socket) -> None:
        try:
            data = sock.recv(AGENT_MSG_LEN)
        except (BlockingIOError, InterruptedError):
            return
        except OSError as err:
            _LOGGER.error('miio agent read error, %s, reconnect', err)
            self.__on_socket_error()
            return
        if not data:
            _LOGGER.warning('miio agent socket closed (EOF), reconnect')
            self.__on_socket_error()
            return
        _LOGGER.debug('miio agent recv, %s, %s', len(data), data)
        self._main_loop.call_soon_threadsafe(self.__on_message, data)

    def __send(self, payload: bytes) -> None:
        if not self._sock:
            if len(self._backlog) == self._backlog.maxlen:
                _LOGGER.warning(
                    'miio agent backlog full, drop oldest message')
            self._backlog.append(payload)
            return
        try:
            self._sock.send(payload)
        except BlockingIOError:
            _LOGGER.error('miio agent busy, drop message, %s', payload)
        except OSError as err:
            _LOGGER.error('miio agent send error, %s, reconnect', err)
            self._backlog.appendleft(payload)
            self.__on_socket_error()

    def __set_agent_state(self, state: bool) -> None:
        """MUST be called in the main loop."""
        if self._agent_state == state:
            return
        self._agent_state = state
        for handler in list(self._state_sub_map.values()):
            self._main_loop.create_task(handler(state))

    def __on_message(self, data: bytes) -> None:
        for key, handler in list(self._msg_sub_map.items()):
            try:
                handler(data)
            except Exception as err:  # pylint: disable=broad-exception-caught
                _LOGGER.error('miio agent message handler error, %s, %s',
                              key, err)
