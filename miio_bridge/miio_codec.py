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

miio envelope and resource value codec.

Envelopes exchanged on MQTT and with the miio agent look like:
    {"_to": 524288, "id": 123, "method": "lanbox.control",
     "params": {"name": "read", "value": {"did": "lumi1.x", ...}}}
Requests carry "_to", responses and events carry "_from". Replies of the
agent have no method: {"id": 123, "result": {...}} or {"id": 123,
"error": {...}}.

The shape of params.value depends on (method, name), every supported pair
is listed in DISPATCH_TABLE with its own schema.
"""
import json
import re
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Callable, Optional, Union

# pylint: disable=relative-beyond-top-level
from .common import is_int
from .const import (
    IFTTT_DEL_SUBSCRIBE,
    IFTTT_SYNC_SUBSCRIBE,
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
    NAME_WRITE)
from .miio_error import MiioMalformedEncoding, MiioMalformedEnvelope

_HEX_PATTERN = re.compile(r'[0-9a-fA-F]*')


class MiioDirection(Enum):
    """Direction a variant is accepted from."""
    # MQTT -> gateway
    COMMAND = 0
    # Gateway -> MQTT
    REPORT = auto()
    BOTH = auto()


@dataclass(frozen=True)
class MiioVariant:
    """params.value schema of a (method, name) pair.

    name None matches any name of the method.
    """
    method: str
    name: Optional[str]
    value_type: type
    direction: MiioDirection
    required: tuple[tuple[str, type], ...] = ()
    validator: Optional[Callable[[dict], None]] = field(
        default=None, compare=False)

    @property
    def key(self) -> tuple[str, Optional[str]]:
        return (self.method, self.name)

    def accepts(self, direction: MiioDirection) -> bool:
        return self.direction in (direction, MiioDirection.BOTH)

    def validate(self, value: Any) -> None:
        if not isinstance(value, self.value_type):
            raise MiioMalformedEnvelope(
                f'{self.method}/{self.name}, value must be '
                f'{"an object" if self.value_type is dict else "an array"}')
        for key, type_ in self.required:
            if key not in value:
                raise MiioMalformedEnvelope(
                    f'{self.method}/{self.name}, missing value.{key}')
            if not _check_type(value[key], type_):
                raise MiioMalformedEnvelope(
                    f'{self.method}/{self.name}, invalid value.{key}, '
                    f'{value[key]!r}')
        if self.validator:
            self.validator(value)


@dataclass
class MiioEnvelope:
    """miio envelope."""
    msg_id: Optional[int]
    method: str
    name: Optional[str] = None
    value: Any = None
    to_addr: Optional[int] = None
    from_addr: Optional[int] = None
    # None for events passed through without interpretation
    variant: Optional[MiioVariant] = None
    raw: Optional[dict] = None

    @property
    def key(self) -> Optional[tuple[str, Optional[str]]]:
        return self.variant.key if self.variant else None

    @property
    def is_request(self) -> bool:
        return self.to_addr is not None


@dataclass
class MiioReply:
    """Reply of the agent to a request, without method."""
    msg_id: int
    result: Any = None
    error: Any = None
    from_addr: Optional[int] = None
    raw: Optional[dict] = None

    @property
    def is_error(self) -> bool:
        return self.error is not None


def _check_type(value: Any, type_: type) -> bool:
    if type_ is int:
        return is_int(value)
    if type_ is str:
        return isinstance(value, str) and bool(value)
    return isinstance(value, type_)


def _validate_ifttt(value: dict) -> None:
    method = value['method']
    data: list = value['data']
    if not _check_type(value.get('pid'), str):
        raise MiioMalformedEnvelope(f'ifttt {method}, invalid value.pid')
    if method == IFTTT_SYNC_SUBSCRIBE:
        for item in data:
            if (
                not isinstance(item, dict)
                or not _check_type(item.get('did'), str)
                or not isinstance(item.get('rids'), list)
                or not all(_check_type(rid, str) for rid in item['rids'])
            ):
                raise MiioMalformedEnvelope(
                    f'ifttt {method}, invalid data item, {item!r}')
    elif method == IFTTT_DEL_SUBSCRIBE:
        if not _check_type(value.get('delSubscribeDid'), str):
            raise MiioMalformedEnvelope(
                f'ifttt {method}, invalid value.delSubscribeDid')
        if not all(_check_type(rid, str) for rid in data):
            raise MiioMalformedEnvelope(
                f'ifttt {method}, invalid data, {data!r}')
    else:
        raise MiioMalformedEnvelope(f'unsupported ifttt method, {method}')


def _validate_str_list(key: str) -> Callable[[dict], None]:
    def validator(value: dict) -> None:
        if not all(_check_type(item, str) for item in value[key]):
            raise MiioMalformedEnvelope(f'invalid value.{key}, {value[key]!r}')
    return validator


def _validate_res_list(value: dict) -> None:
    for item in value['res_list']:
        if not isinstance(item, dict) or 'value' not in item:
            raise MiioMalformedEnvelope(f'invalid res_list item, {item!r}')


DISPATCH_TABLE: dict[tuple[str, Optional[str]], MiioVariant] = {
    variant.key: variant for variant in [
        MiioVariant(
            method=METHOD_AUTO_CONTROL, name=NAME_RES_WRITE,
            value_type=dict, direction=MiioDirection.COMMAND),
        MiioVariant(
            method=METHOD_LANBOX_EVENT, name=NAME_HUB_INTEREST,
            value_type=dict, direction=MiioDirection.BOTH,
            required=(('hublist', list),)),
        MiioVariant(
            method=METHOD_LANBOX_CONTROL, name=NAME_WRITE,
            value_type=dict, direction=MiioDirection.COMMAND,
            required=(('did', str),)),
        MiioVariant(
            method=METHOD_LANBOX_CONTROL, name=NAME_READ,
            value_type=dict, direction=MiioDirection.COMMAND,
            required=(('did', str), ('value', list))),
        MiioVariant(
            method=METHOD_LANBOX_CONTROL, name=NAME_IFTTT,
            value_type=dict, direction=MiioDirection.BOTH,
            required=(('method', str), ('data', list)),
            validator=_validate_ifttt),
        MiioVariant(
            method=METHOD_LANBOX_EVENT, name=NAME_RES_UNSUBSCRIBE,
            value_type=dict, direction=MiioDirection.BOTH,
            required=(('did', str), ('reslist', list)),
            validator=_validate_str_list('reslist')),
        MiioVariant(
            method=METHOD_LANBOX_EVENT, name=NAME_READ_DONE,
            value_type=dict, direction=MiioDirection.REPORT),
        MiioVariant(
            method=METHOD_AUTO_FORWARD, name=None,
            value_type=dict, direction=MiioDirection.REPORT,
            required=(('res_list', list),),
            validator=_validate_res_list),
    ]
}


def lookup_variant(
    method: str, name: Optional[str], direction: MiioDirection
) -> Optional[MiioVariant]:
    variant = DISPATCH_TABLE.get((method, name), None)
    if variant is None:
        variant = DISPATCH_TABLE.get((method, None), None)
    if variant is None or not variant.accepts(direction):
        return None
    return variant


def decode_forwarded_value(hex_str: str) -> str:
    """Decode a hex encoded UTF-8 value of auto.forward."""
    if not isinstance(hex_str, str):
        raise MiioMalformedEncoding(f'hex value must be a string, {hex_str!r}')
    if len(hex_str) % 2 != 0:
        raise MiioMalformedEncoding(f'odd length hex value, {hex_str!r}')
    # bytes.fromhex() would skip whitespaces
    if not _HEX_PATTERN.fullmatch(hex_str):
        raise MiioMalformedEncoding(f'invalid hex value, {hex_str!r}')
    try:
        return bytes.fromhex(hex_str).decode('utf-8')
    except UnicodeDecodeError as err:
        raise MiioMalformedEncoding(
            f'invalid utf-8 value, {hex_str!r}, {err}') from err


def encode_forwarded_value(text: str) -> str:
    """Encode a value the way auto.forward carries it."""
    return text.encode('utf-8').hex()


def decode_forward_params(value: dict) -> dict:
    """Return a copy of an auto.forward value with res_list values decoded."""
    if not isinstance(value, dict) or not isinstance(
            value.get('res_list', None), list):
        raise MiioMalformedEnvelope(f'invalid auto.forward value, {value!r}')
    res_list: list[dict] = []
    for item in value['res_list']:
        if not isinstance(item, dict) or 'value' not in item:
            raise MiioMalformedEnvelope(f'invalid res_list item, {item!r}')
        res_list.append({**item, 'value': decode_forwarded_value(
            item['value'])})
    return {**value, 'res_list': res_list}


def _load_object(raw: Union[bytes, str]) -> dict:
    try:
        obj = json.loads(raw)
    except (ValueError, TypeError) as err:
        # json.JSONDecodeError and UnicodeDecodeError are ValueError
        raise MiioMalformedEnvelope(f'invalid json, {err}') from err
    if not isinstance(obj, dict):
        raise MiioMalformedEnvelope('envelope must be a json object')
    return obj


def _get_address(obj: dict, key: str) -> Optional[int]:
    if key not in obj:
        return None
    if not is_int(obj[key]):
        raise MiioMalformedEnvelope(f'invalid {key}, {obj[key]!r}')
    return obj[key]


def _get_loose_address(obj: dict, key: str) -> Optional[int]:
    value = obj.get(key, None)
    return value if is_int(value) else None


def _get_msg_id(obj: dict, required: bool) -> Optional[int]:
    if 'id' not in obj:
        if required:
            raise MiioMalformedEnvelope('missing id')
        return None
    if not is_int(obj['id']):
        raise MiioMalformedEnvelope(f'invalid id, {obj["id"]!r}')
    return obj['id']


def parse_envelope(raw: Union[bytes, str]) -> MiioEnvelope:
    """Parse a command envelope received from MQTT."""
    obj = _load_object(raw)
    msg_id = _get_msg_id(obj, required=True)
    method = obj.get('method', None)
    if not isinstance(method, str) or not method:
        raise MiioMalformedEnvelope('missing method')
    params = obj.get('params', None)
    if not isinstance(params, dict):
        raise MiioMalformedEnvelope('missing params')
    name = params.get('name', None)
    if not isinstance(name, str) or not name:
        raise MiioMalformedEnvelope('missing params.name')
    variant = lookup_variant(method, name, MiioDirection.COMMAND)
    if variant is None:
        raise MiioMalformedEnvelope(f'unsupported command, {method}/{name}')
    value = params.get('value', None)
    variant.validate(value)
    return MiioEnvelope(
        msg_id=msg_id, method=method, name=name, value=value,
        to_addr=_get_address(obj, '_to'),
        from_addr=_get_address(obj, '_from'),
        variant=variant, raw=obj)


def parse_gateway_message(
    raw: Union[bytes, str]
) -> Union[MiioEnvelope, MiioReply]:
    """Parse a message received from the miio agent.

    Known variants are validated, any other event is returned with
    variant None so it can be passed through as is.
    """
    obj = _load_object(raw)
    if 'method' not in obj:
        if 'result' not in obj and 'error' not in obj:
            raise MiioMalformedEnvelope('neither method nor result')
        return MiioReply(
            msg_id=_get_msg_id(obj, required=True),
            result=obj.get('result', None), error=obj.get('error', None),
            from_addr=_get_address(obj, '_from'), raw=obj)
    method = obj['method']
    if not isinstance(method, str) or not method:
        raise MiioMalformedEnvelope(f'invalid method, {method!r}')
    params = obj.get('params', None)
    name = params.get('name', None) if isinstance(params, dict) else None
    value = params.get('value', None) if isinstance(params, dict) else params
    variant = lookup_variant(method, name, MiioDirection.REPORT)
    if variant is None:
        # Pass through, republished as received
        return MiioEnvelope(
            msg_id=obj['id'] if is_int(obj.get('id', None)) else None,
            method=method, name=name if isinstance(name, str) else None,
            value=value, to_addr=_get_loose_address(obj, '_to'),
            from_addr=_get_loose_address(obj, '_from'), variant=None,
            raw=obj)
    if not isinstance(params, dict):
        raise MiioMalformedEnvelope(f'{method}, missing params')
    variant.validate(value)
    return MiioEnvelope(
        msg_id=_get_msg_id(obj, required=variant.name == NAME_READ_DONE),
        method=method, name=name if isinstance(name, str) else None,
        value=value, to_addr=_get_address(obj, '_to'),
        from_addr=_get_address(obj, '_from'), variant=variant, raw=obj)


def _dumps(obj: dict) -> bytes:
    return json.dumps(
        obj, ensure_ascii=False, separators=(',', ':')).encode('utf-8')


def serialize_envelope(envelope: MiioEnvelope) -> bytes:
    """Serialize an envelope, requests carry _to, others _from."""
    obj: dict = {}
    if envelope.to_addr is not None:
        obj['_to'] = envelope.to_addr
    elif envelope.from_addr is not None:
        obj['_from'] = envelope.from_addr
    if envelope.msg_id is not None:
        obj['id'] = envelope.msg_id
    obj['method'] = envelope.method
    params: dict = {}
    if envelope.name is not None:
        params['name'] = envelope.name
    if envelope.value is not None:
        params['value'] = envelope.value
    obj['params'] = params
    return _dumps(obj)


def serialize_reply(reply: MiioReply) -> bytes:
    obj: dict = {}
    if reply.from_addr is not None:
        obj['_from'] = reply.from_addr
    obj['id'] = reply.msg_id
    if reply.error is not None:
        obj['error'] = reply.error
    else:
        obj['result'] = reply.result
    return _dumps(obj)
