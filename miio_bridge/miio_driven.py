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

Reader of the ha_driven log.

ha_driven prints the resource reports it receives on stdout:
    ... onReceiveMessage >> {"method":"auto.control",...res/report...} ...
The json after '>>' is republished as is.
"""
import asyncio
import logging
import traceback
from typing import Callable, Optional

# pylint: disable=relative-beyond-top-level
from .const import DRIVEN_COMMAND

_LOGGER = logging.getLogger(__name__)


def parse_driven_line(line: str) -> Optional[str]:
    """Return the report payload of a ha_driven log line, or None."""
    if (
        'onReceiveMessage' not in line
        or 'method' not in line
        or 'res/report' not in line
    ):
        return None
    parts = line.split('>>', 1)
    if len(parts) < 2:
        return None
    payload = parts[1].strip().split(' ')[0]
    return payload or None


class MiioDrivenReader:
    """Run ha_driven, hand its reports to a handler."""
    KILL_DELAY: float = 0.5
    _main_loop: asyncio.AbstractEventLoop
    _command: str
    _handler: Callable[[str], None]
    _process: Optional[asyncio.subprocess.Process]
    _task: Optional[asyncio.Task]

    def __init__(
        self, handler: Callable[[str], None], command: str = DRIVEN_COMMAND,
        loop: Optional[asyncio.AbstractEventLoop] = None
    ) -> None:
        self._main_loop = loop or asyncio.get_running_loop()
        self._command = command
        self._handler = handler
        self._process = None
        self._task = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def init_async(self) -> None:
        if self._task:
            return
        self._task = self._main_loop.create_task(self.__read_async())

    async def deinit_async(self) -> None:
        if self._process and self._process.returncode is None:
            try:
                self._process.kill()
            except ProcessLookupError:
                pass
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._process:
            await self._process.wait()
            self._process = None

    async def __read_async(self) -> None:
        # Only one ha_driven may own the gateway
        await self.__kill_running_async()
        await asyncio.sleep(self.KILL_DELAY)
        try:
            self._process = await asyncio.create_subprocess_exec(
                self._command, stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL)
        except OSError as err:
            _LOGGER.error('start %s error, %s', self._command, err)
            return
        _LOGGER.info('read %s, pid %s', self._command, self._process.pid)
        while True:
            line = await self._process.stdout.readline()
            if not line:
                break
            payload = parse_driven_line(
                line.decode('utf-8', errors='replace'))
            if payload is None:
                continue
            _LOGGER.debug('%s report, %s', self._command, payload)
            try:
                self._handler(payload)
            except Exception as err:  # pylint: disable=broad-exception-caught
                _LOGGER.error(
                    'driven report handler error, %s, %s', err,
                    traceback.format_exc())
        _LOGGER.warning(
            '%s exit, %s', self._command, await self._process.wait())

    async def __kill_running_async(self) -> None:
        try:
            process = await asyncio.create_subprocess_exec(
                'killall', '-9', self._command,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL)
            await process.wait()
        except OSError as err:
            _LOGGER.info('killall %s error, %s', self._command, err)
