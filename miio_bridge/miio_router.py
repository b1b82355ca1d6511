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

Command, response and event router between MQTT and the miio agent.

Messages of the two sources are put on one queue and handled by a single
consumer task, in order per source. Outbound messages are handed to the
transports, which queue them to their own thread, so the consumer never
waits for a send.
"""
import asyncio
import logging
import traceback
from dataclasses import dataclass
from enum import Enum, auto
from typing import Callable, Optional, Union

# pylint: disable=relative-beyond-top-level
from .const import (
    LANBOX_ADDRESS,
    LOCAL_ISSUER,
    METHOD_AUTO_CONTROL,
    METHOD_AUTO_FORWARD,
    METHOD_LANBOX_CONTROL,
    METHOD_LANBOX_EVENT,
    NAME_HUB_INTEREST,
    NAME_IFTTT,
    NAME_READ,
    NAME_READ_DONE,
    NAME_RES_UNSUBSCRIBE,
    NAME_RES_WRITE,
    NAME_WRITE,
    TOPIC_COMMAND,
    TOPIC_COMMAND_ACK,
    TOPIC_REPORT,
    TOPIC_RESPONSE)
from .miio_codec import (
    MiioEnvelope,
    MiioReply,
    decode_forward_params,
    parse_envelope,
    parse_gateway_message,
    serialize_envelope,
    serialize_reply)
from .miio_correlator import MiioCorrelator, MiioPendingRequest
from .miio_error import (
    MiioError,
    MiioErrorCode,
    MiioInterestPolicyViolation,
    MiioMalformedEnvelope,
    MiioNotFound,
    MiioRequestTimeout,
    MiioTransportError)
from .miio_registry import (
    MiioRegistry,
    MiioRegistryChange,
    MiioRegistryChangeType)

_LOGGER = logging.getLogger(__name__)


class MiioSource(Enum):
    """Source of an inbound message."""
    MQTT = 0
    GATEWAY = auto()


@dataclass
class MiioInbound:
    """Inbound message."""
    source: MiioSource
    payload: Union[bytes, str]
    topic: Optional[str] = None


class MiioRouter:
    """miio router."""
    # pylint: disable=unused-argument
    _main_loop: asyncio.AbstractEventLoop
    _registry: MiioRegistry
    _correlator: MiioCorrelator
    _publish: Callable[[str, bytes], bool]
    _send: Callable[[bytes], bool]
    _gateway_did: Optional[str]
    _issuer: str
    _strict_forward: bool

    _topic_command: str
    _topic_ack: str
    _topic_response: str
    _topic_report: str

    _queue: asyncio.Queue
    _consume_task: Optional[asyncio.Task]
    _command_handlers: dict[
        tuple[str, Optional[str]], Callable[[MiioEnvelope], None]]
    _report_handlers: dict[
        tuple[str, Optional[str]],
        Callable[[MiioEnvelope, Union[bytes, str]], None]]

    def __init__(
        self, registry: MiioRegistry, correlator: MiioCorrelator,
        publish: Callable[[str, bytes], bool],
        send: Callable[[bytes], bool],
        gateway_did: Optional[str] = None,
        strict_forward: bool = True,
        topic_command: str = TOPIC_COMMAND,
        topic_ack: str = TOPIC_COMMAND_ACK,
        topic_response: str = TOPIC_RESPONSE,
        topic_report: str = TOPIC_REPORT,
        loop: Optional[asyncio.AbstractEventLoop] = None
    ) -> None:
        self._main_loop = loop or asyncio.get_running_loop()
        self._registry = registry
        self._correlator = correlator
        self._publish = publish
        self._send = send
        self._gateway_did = gateway_did
        self._issuer = gateway_did or LOCAL_ISSUER
        self._strict_forward = strict_forward
        self._topic_command = topic_command
        self._topic_ack = topic_ack
        self._topic_response = topic_response
        self._topic_report = topic_report

        self._queue = asyncio.Queue()
        self._consume_task = None
        self._command_handlers = {
            (METHOD_AUTO_CONTROL, NAME_RES_WRITE): self.__command_res_write,
            (METHOD_LANBOX_EVENT, NAME_HUB_INTEREST):
                self.__command_hub_interest,
            (METHOD_LANBOX_CONTROL, NAME_WRITE): self.__command_write,
            (METHOD_LANBOX_CONTROL, NAME_READ): self.__command_read,
            (METHOD_LANBOX_CONTROL, NAME_IFTTT): self.__command_ifttt,
        }
        self._report_handlers = {
            (METHOD_LANBOX_EVENT, NAME_READ_DONE): self.__report_read_done,
            (METHOD_LANBOX_EVENT, NAME_RES_UNSUBSCRIBE):
                self.__report_res_unsubscribe,
            (METHOD_LANBOX_EVENT, NAME_HUB_INTEREST):
                self.__report_hub_interest,
            (METHOD_LANBOX_CONTROL, NAME_IFTTT): self.__report_ifttt,
            (METHOD_AUTO_FORWARD, None): self.__report_forward,
        }

    @property
    def issuer(self) -> str:
        """Interest set key of the local gateway."""
        return self._issuer

    @property
    def registry(self) -> MiioRegistry:
        return self._registry

    @property
    def correlator(self) -> MiioCorrelator:
        return self._correlator

    async def start_async(self) -> None:
        if self._consume_task:
            return
        self._registry.sub_registry_change(
            key='miio_router', handler=self.on_registry_change)
        self._consume_task = self._main_loop.create_task(
            self.__consume_async())
        _LOGGER.info('router start')

    async def stop_async(self) -> None:
        self._registry.unsub_registry_change(key='miio_router')
        if not self._consume_task:
            return
        self._consume_task.cancel()
        try:
            await self._consume_task
        except asyncio.CancelledError:
            pass
        self._consume_task = None
        _LOGGER.info('router stop')

    async def join_async(self) -> None:
        """Wait until every queued message is handled."""
        await self._queue.join()

    def on_mqtt_message(self, topic: str, payload: Union[bytes, str]) -> None:
        """MUST be called in the main loop."""
        self._queue.put_nowait(MiioInbound(
            source=MiioSource.MQTT, payload=payload, topic=topic))

    def on_gateway_message(self, payload: Union[bytes, str]) -> None:
        """MUST be called in the main loop."""
        self._queue.put_nowait(MiioInbound(
            source=MiioSource.GATEWAY, payload=payload))

    def handle_command(
        self, payload: Union[bytes, str], topic: Optional[str] = None
    ) -> None:
        """Handle a command envelope received from MQTT."""
        if topic is not None and topic != self._topic_command:
            _LOGGER.debug('ignore mqtt message, %s', topic)
            return
        try:
            envelope = parse_envelope(payload)
        except MiioMalformedEnvelope as err:
            _LOGGER.error(
                'drop malformed command, %s, %s', err.message, payload)
            return
        _LOGGER.debug(
            'command, %s, %s, %s', envelope.msg_id, envelope.method,
            envelope.name)
        try:
            self._command_handlers[envelope.key](envelope)
        except MiioError as err:
            _LOGGER.error(
                'reject command, %s, %s', envelope.msg_id, err.message)
            self.__publish_error(envelope.msg_id, envelope.to_addr, err)

    def handle_gateway(self, payload: Union[bytes, str]) -> None:
        """Handle a message received from the miio agent."""
        try:
            message = parse_gateway_message(payload)
        except MiioMalformedEnvelope as err:
            _LOGGER.error(
                'drop malformed gateway message, %s, %s', err.message, payload)
            return
        if isinstance(message, MiioReply):
            self.__on_reply(message, payload)
            return
        handler = self._report_handlers.get(message.key, None) if (
            message.key) else None
        if handler is None:
            self._publish(self._topic_report, payload)
            return
        try:
            handler(message, payload)
        except MiioError as err:
            _LOGGER.error(
                'drop gateway message, %s, %s', err.message, payload)

    def sweep(self, now: Optional[float] = None) -> list[MiioPendingRequest]:
        """Expire timed out requests, notify their callers."""
        expired = self._correlator.sweep(now)
        for req in expired:
            _LOGGER.info('request timeout, %s', req.msg_id)
            self.__publish_error(
                req.msg_id, req.envelope.to_addr if req.envelope else None,
                MiioRequestTimeout(f'request timeout, {req.msg_id}'))
        return expired

    def on_registry_change(self, change: MiioRegistryChange) -> None:
        _LOGGER.debug(
            'registry change, %s, %s, +%s, -%s', change.type_.name,
            change.subscriber, len(change.added), len(change.removed))
        if (
            change.type_ != MiioRegistryChangeType.INTEREST
            or change.subscriber != self._issuer
            or not change.removed
        ):
            return
        # Pending requests to hubs that left the interest set
        rejected = self._correlator.pop_if(
            lambda req: (
                req.envelope is not None
                and req.envelope.method == METHOD_LANBOX_CONTROL
                and req.did is not None
                and self.__is_cross_gateway(req.envelope.to_addr, req.did)
                and not self._registry.is_interested(self._issuer, req.did)))
        for req in rejected:
            _LOGGER.info('reject pending request, %s, %s', req.msg_id, req.did)
            self.__publish_error(
                req.msg_id, req.envelope.to_addr,
                MiioInterestPolicyViolation(
                    f'hub removed from interest set, {req.did}'))

    async def __consume_async(self) -> None:
        while True:
            inbound: MiioInbound = await self._queue.get()
            try:
                if inbound.source == MiioSource.MQTT:
                    self.handle_command(inbound.payload, topic=inbound.topic)
                else:
                    self.handle_gateway(inbound.payload)
            except Exception as err:  # pylint: disable=broad-exception-caught
                _LOGGER.error(
                    'route message error, %s, %s, %s', inbound.source, err,
                    traceback.format_exc())
            finally:
                self._queue.task_done()

    def __command_res_write(self, envelope: MiioEnvelope) -> None:
        self.__forward_request(envelope)

    def __command_hub_interest(self, envelope: MiioEnvelope) -> None:
        self._registry.hub_interest(
            issuer=self._issuer, hublist=envelope.value['hublist'],
            task=envelope.value.get('task', None))
        self.__forward(envelope)

    def __command_write(self, envelope: MiioEnvelope) -> None:
        self.__check_interest(envelope)
        self.__forward_request(envelope, did=envelope.value['did'])

    def __command_read(self, envelope: MiioEnvelope) -> None:
        self.__check_interest(envelope)
        self.__forward_request(
            envelope, expected_method=METHOD_LANBOX_EVENT,
            expected_name=NAME_READ_DONE, did=envelope.value['did'])

    def __command_ifttt(self, envelope: MiioEnvelope) -> None:
        self._registry.apply_ifttt(envelope.value)
        self.__forward(envelope)

    def __report_read_done(
        self, envelope: MiioEnvelope, payload: Union[bytes, str]
    ) -> None:
        try:
            self._correlator.resolve(envelope.msg_id, envelope)
        except MiioNotFound as err:
            _LOGGER.info('drop response, %s', err.message)
            return
        self._publish(self._topic_response, payload)

    def __report_res_unsubscribe(
        self, envelope: MiioEnvelope, payload: Union[bytes, str]
    ) -> None:
        self._registry.res_unsubscribe(
            did=envelope.value['did'], reslist=envelope.value['reslist'],
            task=envelope.value.get('task', None))
        self._publish(self._topic_report, payload)

    def __report_hub_interest(
        self, envelope: MiioEnvelope, payload: Union[bytes, str]
    ) -> None:
        issuer = envelope.value.get('did', None) or (
            str(envelope.from_addr) if envelope.from_addr is not None
            else None)
        if issuer:
            self._registry.hub_interest(
                issuer=issuer, hublist=envelope.value['hublist'],
                task=envelope.value.get('task', None))
        else:
            _LOGGER.warning('hub_interest without issuer, %s', payload)
        self._publish(self._topic_report, payload)

    def __report_ifttt(
        self, envelope: MiioEnvelope, payload: Union[bytes, str]
    ) -> None:
        self._registry.apply_ifttt(envelope.value)
        self._publish(self._topic_report, payload)

    def __report_forward(
        self, envelope: MiioEnvelope, payload: Union[bytes, str]
    ) -> None:
        value = decode_forward_params(envelope.value)
        target = value.get('did', None)
        res_list: list[dict] = []
        for item in value['res_list']:
            rid = item.get('res_name', None)
            subscribers: set[str] = set()
            if isinstance(target, str) and isinstance(rid, str):
                subscribers = self._registry.subscribers(target, rid)
            if self._strict_forward and not subscribers:
                _LOGGER.debug(
                    'drop forward without subscription, %s, %s', target, rid)
                continue
            res_list.append({**item, 'subscribers': sorted(subscribers)})
        if not res_list:
            return
        self._publish(self._topic_report, serialize_envelope(MiioEnvelope(
            msg_id=envelope.msg_id, method=envelope.method,
            name=envelope.name, value={**value, 'res_list': res_list},
            from_addr=envelope.from_addr)))

    def __on_reply(self, reply: MiioReply, payload: Union[bytes, str]) -> None:
        pending = self._correlator.get(reply.msg_id)
        if pending is None:
            _LOGGER.info('reply without pending request, %s', reply.msg_id)
            self._publish(self._topic_ack, payload)
            return
        if (
            pending.expects_event
            and not reply.is_error
            and not self.__is_read_result(reply)
        ):
            # Immediate ack, read_done follows
            self._publish(self._topic_ack, payload)
            return
        try:
            req = self._correlator.resolve(reply.msg_id, reply)
        except MiioNotFound as err:
            _LOGGER.info('drop reply, %s', err.message)
            return
        if req.expects_event and not reply.is_error:
            self._publish(self._topic_response, serialize_envelope(
                self.__build_read_done(req, reply)))
            return
        self._publish(self._topic_response, payload)

    def __forward(self, envelope: MiioEnvelope) -> bool:
        if self._send(serialize_envelope(envelope)):
            return True
        _LOGGER.error('forward command error, %s', envelope.msg_id)
        return False

    def __forward_request(
        self, envelope: MiioEnvelope, expected_method: Optional[str] = None,
        expected_name: Optional[str] = None, did: Optional[str] = None
    ) -> None:
        self._correlator.register(
            msg_id=envelope.msg_id, expected_method=expected_method,
            expected_name=expected_name, did=did, envelope=envelope)
        try:
            if self.__forward(envelope):
                return
            raise MiioTransportError(
                'miio agent unavailable',
                MiioErrorCode.CODE_TRANSPORT_UNAVAILABLE)
        except MiioError:
            # Never sent, nothing may stay pending
            self._correlator.pop_if(
                lambda req: req.msg_id == envelope.msg_id)
            raise

    def __check_interest(self, envelope: MiioEnvelope) -> None:
        did: str = envelope.value['did']
        if not self.__is_cross_gateway(envelope.to_addr, did):
            return
        if not self._registry.is_interested(self._issuer, did):
            raise MiioInterestPolicyViolation(
                f'hub not in interest set, {did}')

    def __is_cross_gateway(self, to_addr: Optional[int], did: str) -> bool:
        """Sent through the LAN box to a hub other than the local gateway."""
        return to_addr == LANBOX_ADDRESS and did != self._gateway_did

    def __publish_error(
        self, msg_id: Optional[int], to_addr: Optional[int], err: MiioError
    ) -> None:
        if msg_id is None:
            return
        self._publish(self._topic_response, serialize_reply(MiioReply(
            msg_id=msg_id, error=err.to_dict(), from_addr=to_addr)))

    @staticmethod
    def __is_read_result(reply: MiioReply) -> bool:
        """A reply carrying the resource values, not only a status."""
        result = reply.result
        return (
            isinstance(result, dict)
            and bool(result)
            and not set(result.keys()) <= {'code', 'message'})

    @staticmethod
    def __build_read_done(
        req: MiioPendingRequest, reply: MiioReply
    ) -> MiioEnvelope:
        value: dict = {}
        from_addr = reply.from_addr
        if req.envelope:
            if isinstance(req.envelope.value, dict):
                for key in ('did', 'sdid'):
                    if key in req.envelope.value:
                        value[key] = req.envelope.value[key]
            if from_addr is None:
                from_addr = req.envelope.to_addr
        value['result'] = reply.result
        return MiioEnvelope(
            msg_id=req.msg_id, method=METHOD_LANBOX_EVENT,
            name=NAME_READ_DONE, value=value, from_addr=from_addr)
