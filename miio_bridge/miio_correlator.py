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

Correlation of in-flight requests with their responses.
"""
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional, Union

# pylint: disable=relative-beyond-top-level
from .const import DEFAULT_REQUEST_TIMEOUT
from .miio_codec import MiioEnvelope, MiioReply
from .miio_error import MiioDuplicateId, MiioNotFound

_LOGGER = logging.getLogger(__name__)


@dataclass
class MiioPendingRequest:
    """Request forwarded to the gateway and waiting for its response."""
    msg_id: int
    issued_at: float
    timeout: float
    # None: the RPC reply of the agent is the response
    expected_method: Optional[str] = None
    expected_name: Optional[str] = None
    # Target did of the request, if any
    did: Optional[str] = None
    envelope: Optional[MiioEnvelope] = None

    @property
    def deadline(self) -> float:
        return self.issued_at + self.timeout

    @property
    def expects_event(self) -> bool:
        return self.expected_method is not None

    def matches(self, response: Union[MiioEnvelope, MiioReply]) -> bool:
        if isinstance(response, MiioReply):
            return response.msg_id == self.msg_id
        return (
            response.msg_id == self.msg_id
            and response.method == self.expected_method
            and (
                self.expected_name is None
                or response.name == self.expected_name))


class MiioCorrelator:
    """Pending requests by id.

    register, resolve and sweep are serialized by one lock, an id can only
    be resolved (or swept) once.
    """
    _clock: Callable[[], float]
    _default_timeout: float
    _lock: threading.Lock
    _pending: dict[int, MiioPendingRequest]

    def __init__(
        self, default_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        clock: Optional[Callable[[], float]] = None
    ) -> None:
        self._clock = clock or time.monotonic
        self._default_timeout = default_timeout
        self._lock = threading.Lock()
        self._pending = {}

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, msg_id: int) -> bool:
        return msg_id in self._pending

    @property
    def now(self) -> float:
        return self._clock()

    def register(
        self, msg_id: int, expected_method: Optional[str] = None,
        timeout: Optional[float] = None, expected_name: Optional[str] = None,
        did: Optional[str] = None, envelope: Optional[MiioEnvelope] = None
    ) -> MiioPendingRequest:
        with self._lock:
            if msg_id in self._pending:
                raise MiioDuplicateId(f'request id already pending, {msg_id}')
            req = MiioPendingRequest(
                msg_id=msg_id, issued_at=self._clock(),
                timeout=self._default_timeout if timeout is None else timeout,
                expected_method=expected_method, expected_name=expected_name,
                did=did, envelope=envelope)
            self._pending[msg_id] = req
        _LOGGER.debug(
            'register request, %s, %s/%s', msg_id, expected_method,
            expected_name)
        return req

    def get(self, msg_id: int) -> Optional[MiioPendingRequest]:
        with self._lock:
            return self._pending.get(msg_id, None)

    def resolve(
        self, msg_id: int,
        response: Union[MiioEnvelope, MiioReply, None] = None
    ) -> MiioPendingRequest:
        """Remove and return the pending request answered by response.

        Raises MiioNotFound for unknown, already resolved or timed out ids
        and for responses the request does not expect.
        """
        with self._lock:
            req = self._pending.get(msg_id, None)
            if req is None:
                raise MiioNotFound(f'no pending request, {msg_id}')
            if response is not None and not req.matches(response):
                raise MiioNotFound(f'unexpected response, {msg_id}')
            del self._pending[msg_id]
        _LOGGER.debug(
            'resolve request, %s, %.3fs', msg_id, self._clock()-req.issued_at)
        return req

    def sweep(self, now: Optional[float] = None) -> list[MiioPendingRequest]:
        """Remove and return requests whose deadline is reached."""
        now = self._clock() if now is None else now
        with self._lock:
            expired = [
                req for req in self._pending.values() if req.deadline <= now]
            for req in expired:
                del self._pending[req.msg_id]
        if expired:
            _LOGGER.debug(
                'sweep requests, %s', [req.msg_id for req in expired])
        return expired

    def pop_if(
        self, predicate: Callable[[MiioPendingRequest], bool]
    ) -> list[MiioPendingRequest]:
        with self._lock:
            removed = [
                req for req in self._pending.values() if predicate(req)]
            for req in removed:
                del self._pending[req.msg_id]
        return removed

    def clear(self) -> list[MiioPendingRequest]:
        with self._lock:
            removed = list(self._pending.values())
            self._pending.clear()
        return removed
