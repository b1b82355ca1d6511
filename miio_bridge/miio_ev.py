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

Selector event loop of the transport threads.
"""
import selectors
import heapq
import time
import traceback
from typing import Any, Callable, Optional
import logging
import threading

# pylint: disable=relative-beyond-top-level
from .miio_error import MiioErrorCode, MiioEvError

_LOGGER = logging.getLogger(__name__)

TimeoutHandle = int


class MiioFdHandler:
    """File descriptor handler."""
    fd: Any
    read_handler: Optional[Callable[[Any], None]]
    read_handler_ctx: Any
    write_handler: Optional[Callable[[Any], None]]
    write_handler_ctx: Any

    def __init__(self, fd: Any) -> None:
        self.fd = fd
        self.read_handler = None
        self.read_handler_ctx = None
        self.write_handler = None
        self.write_handler_ctx = None

    @property
    def events(self) -> int:
        events = 0x0
        if self.read_handler:
            events |= selectors.EVENT_READ
        if self.write_handler:
            events |= selectors.EVENT_WRITE
        return events


class MiioTimeout:
    """Timeout handler."""
    key: TimeoutHandle
    target: int
    handler: Callable[[Any], None]
    handler_ctx: Any
    cancelled: bool

    def __init__(
            self, key: TimeoutHandle, target: int,
            handler: Callable[[Any], None], handler_ctx: Any = None
    ) -> None:
        self.key = key
        self.target = target
        self.handler = handler
        self.handler_ctx = handler_ctx
        self.cancelled = False

    def __lt__(self, other: 'MiioTimeout') -> bool:
        return (self.target, self.key) < (other.target, other.key)


class MiioEventLoop:
    """Single thread event loop, timers and fd handlers.

    All methods except loop_forever MUST be called from the thread that runs
    loop_forever, or before the loop is started.
    """
    _selector: Optional[selectors.DefaultSelector]
    _fd_handlers: dict[int, MiioFdHandler]
    _timer_heap: list[MiioTimeout]
    _timer_handlers: dict[TimeoutHandle, MiioTimeout]
    _timer_handle_seed: int
    _stopped: bool

    # Set when the fd handler is freed inside its own read handler, the
    # write handler of the same event MUST NOT be called then.
    _fd_handler_freed: bool

    def __init__(self) -> None:
        self._selector = selectors.DefaultSelector()
        self._fd_handlers = {}
        self._timer_heap = []
        self._timer_handlers = {}
        self._timer_handle_seed = 0
        self._stopped = False
        self._fd_handler_freed = False

    @property
    def running(self) -> bool:
        return not self._stopped

    def loop_forever(self) -> None:
        """Run the event loop in current thread.

        Returns when loop_stop is called or when neither timers nor fd
        handlers are left.
        """
        while not self._stopped:
            next_timeout = self.__run_timers()
            if self._stopped:
                break
            if next_timeout is None and not self._fd_handlers:
                break
            events = self._selector.select(
                timeout=None if next_timeout is None else next_timeout/1000.0)
            for key, mask in events:
                if self._stopped:
                    break
                fd_handler: MiioFdHandler = key.data
                if self.__fd_key(fd_handler.fd) not in self._fd_handlers:
                    continue
                self._fd_handler_freed = False
                if mask & selectors.EVENT_READ and fd_handler.read_handler:
                    fd_handler.read_handler(fd_handler.read_handler_ctx)
                if (
                    mask & selectors.EVENT_WRITE
                    and not self._fd_handler_freed
                    and fd_handler.write_handler
                ):
                    fd_handler.write_handler(fd_handler.write_handler_ctx)

    def loop_stop(self) -> None:
        """Stop the event loop, release all timers and fd handlers."""
        self._stopped = True
        if self._selector:
            self._selector.close()
            self._selector = None
        self._fd_handlers = {}
        self._timer_heap = []
        self._timer_handlers = {}

    def set_timeout(
        self, timeout_ms: int, handler: Callable[[Any], None],
        handler_ctx: Any = None
    ) -> TimeoutHandle:
        """Set a one-shot timer."""
        if timeout_ms is None or handler is None:
            raise MiioEvError(
                'invalid params', MiioErrorCode.CODE_EV_INVALID_PARAMS)
        self._timer_handle_seed = (
            self._timer_handle_seed + 1) % 0xFFFFFFFFFFFFFFFF
        timer = MiioTimeout(
            key=self._timer_handle_seed,
            target=self.__monotonic_ms() + max(int(timeout_ms), 0),
            handler=handler, handler_ctx=handler_ctx)
        heapq.heappush(self._timer_heap, timer)
        self._timer_handlers[timer.key] = timer
        return timer.key

    def clear_timeout(self, timer_key: Optional[TimeoutHandle]) -> None:
        """Cancel a timer, cancelled timers are dropped when they expire."""
        if timer_key is None:
            return
        timer = self._timer_handlers.pop(timer_key, None)
        if timer:
            timer.cancelled = True

    def set_read_handler(
        self, fd: Any, handler: Optional[Callable[[Any], None]],
        handler_ctx: Any = None
    ) -> bool:
        """Set or remove (handler=None) the read handler of a fd."""
        return self.__set_handler(
            fd, is_read=True, handler=handler, handler_ctx=handler_ctx)

    def set_write_handler(
        self, fd: Any, handler: Optional[Callable[[Any], None]],
        handler_ctx: Any = None
    ) -> bool:
        """Set or remove (handler=None) the write handler of a fd."""
        return self.__set_handler(
            fd, is_read=False, handler=handler, handler_ctx=handler_ctx)

    def __run_timers(self) -> Optional[int]:
        """Run expired timers, return ms until the next one or None."""
        now_ms = self.__monotonic_ms()
        while self._timer_heap and not self._stopped:
            timer = self._timer_heap[0]
            if timer.cancelled:
                heapq.heappop(self._timer_heap)
                continue
            if timer.target > now_ms:
                return timer.target - now_ms
            heapq.heappop(self._timer_heap)
            self._timer_handlers.pop(timer.key, None)
            timer.handler(timer.handler_ctx)
        return None

    def __set_handler(
        self, fd: Any, is_read: bool,
        handler: Optional[Callable[[Any], None]], handler_ctx: Any = None
    ) -> bool:
        if fd is None:
            raise MiioEvError(
                'invalid params', MiioErrorCode.CODE_EV_INVALID_PARAMS)
        if not self._selector:
            raise MiioEvError(
                'event loop not started', MiioErrorCode.CODE_EV_NOT_STARTED)

        fd_key = self.__fd_key(fd)
        fd_handler = self._fd_handlers.get(fd_key, None)
        if fd_handler is None:
            if handler is None:
                return True
            fd_handler = MiioFdHandler(fd=fd)
            self._fd_handlers[fd_key] = fd_handler

        old_events = fd_handler.events
        if is_read:
            fd_handler.read_handler = handler
            fd_handler.read_handler_ctx = handler_ctx
        else:
            fd_handler.write_handler = handler
            fd_handler.write_handler_ctx = handler_ctx
        new_events = fd_handler.events

        try:
            if new_events == 0:
                self._fd_handlers.pop(fd_key, None)
                # No effect unless called inside a read handler
                self._fd_handler_freed = True
                if old_events:
                    self._selector.unregister(fd)
            elif old_events == 0:
                self._selector.register(fd, new_events, fd_handler)
            elif old_events != new_events:
                self._selector.modify(fd, new_events, fd_handler)
        except (KeyError, ValueError, OSError) as err:
            if new_events == 0:
                # Already closed fd, nothing left to unregister
                return True
            _LOGGER.error(
                '%s, set fd handler error, %s, %s, %s, %s',
                threading.current_thread().name,
                'read' if is_read else 'write', fd_key, err,
                traceback.format_exc())
            self._fd_handlers.pop(fd_key, None)
            return False
        return True

    @staticmethod
    def __fd_key(fd: Any) -> int:
        return fd if isinstance(fd, int) else id(fd)

    @staticmethod
    def __monotonic_ms() -> int:
        return int(time.monotonic()*1000)
