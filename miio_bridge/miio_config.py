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

Bridge configuration.
"""
import logging
from dataclasses import dataclass, field, fields
from typing import Any, Optional

import yaml

# pylint: disable=relative-beyond-top-level
from .common import is_int, load_json_file, load_yaml_file
from .const import (
    AGENT_REGISTER_KEYS,
    DEFAULT_AGENT_SOCKET_PATH,
    DEFAULT_BIND_ID,
    DEFAULT_LOG_LEVEL,
    DEFAULT_MQTT_CLIENT_ID,
    DEFAULT_MQTT_HOST,
    DEFAULT_MQTT_PORT,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_SWEEP_INTERVAL,
    LOG_LEVELS,
    MQTT_KEEPALIVE,
    TOPIC_COMMAND,
    TOPIC_COMMAND_ACK,
    TOPIC_REPORT,
    TOPIC_RESPONSE)
from .miio_error import MiioConfigError, MiioErrorCode

_LOGGER = logging.getLogger(__name__)


@dataclass
class MiioBridgeConfig:
    """Bridge configuration."""
    # pylint: disable=too-many-instance-attributes
    mqtt_host: str = DEFAULT_MQTT_HOST
    mqtt_port: int = DEFAULT_MQTT_PORT
    mqtt_client_id: str = DEFAULT_MQTT_CLIENT_ID
    mqtt_username: Optional[str] = None
    mqtt_password: Optional[str] = None
    mqtt_keepalive: int = MQTT_KEEPALIVE
    agent_socket_path: str = DEFAULT_AGENT_SOCKET_PATH
    bind_id: int = DEFAULT_BIND_ID
    agent_keys: list[str] = field(
        default_factory=lambda: list(AGENT_REGISTER_KEYS))
    # did of the local gateway, None: every read/write needs hub_interest
    gateway_did: Optional[str] = None
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    sweep_interval: float = DEFAULT_SWEEP_INTERVAL
    strict_forward: bool = True
    # Empty: ha_driven is not read
    driven_command: str = ''
    topic_command: str = TOPIC_COMMAND
    topic_ack: str = TOPIC_COMMAND_ACK
    topic_response: str = TOPIC_RESPONSE
    topic_report: str = TOPIC_REPORT
    log_level: str = DEFAULT_LOG_LEVEL

    @classmethod
    def from_dict(cls, data: dict) -> 'MiioBridgeConfig':
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise MiioConfigError(f'config must be a mapping, {data!r}')
        config = cls()
        config.update(**data)
        return config

    def update(self, **kwargs) -> 'MiioBridgeConfig':
        """Update from keyword values, None values are skipped."""
        names = {item.name for item in fields(self)}
        for key, value in kwargs.items():
            if key not in names:
                raise MiioConfigError(f'unknown config key, {key}')
            if value is None:
                continue
            _check_value(key, value)
            setattr(self, key, list(value) if isinstance(
                value, list) else value)
        return self

    def to_dict(self) -> dict:
        return {item.name: getattr(self, item.name) for item in fields(self)}

    @property
    def level(self) -> str:
        """logging level name of log_level."""
        return LOG_LEVELS[self.log_level]


def _is_str(value: Any) -> bool:
    return isinstance(value, str)


def _is_non_empty_str(value: Any) -> bool:
    return isinstance(value, str) and bool(value)


def _is_port(value: Any) -> bool:
    return is_int(value) and 0 < value < 65536


def _is_positive_int(value: Any) -> bool:
    return is_int(value) and value > 0


def _is_non_negative_int(value: Any) -> bool:
    return is_int(value) and value >= 0


def _is_positive_number(value: Any) -> bool:
    return (is_int(value) or isinstance(value, float)) and value > 0


def _is_str_list(value: Any) -> bool:
    return isinstance(value, list) and all(
        _is_non_empty_str(item) for item in value)


def _is_log_level(value: Any) -> bool:
    return isinstance(value, str) and value in LOG_LEVELS


_FIELD_CHECKS: dict[str, Any] = {
    'mqtt_host': _is_non_empty_str,
    'mqtt_port': _is_port,
    'mqtt_client_id': _is_non_empty_str,
    'mqtt_username': _is_str,
    'mqtt_password': _is_str,
    'mqtt_keepalive': _is_positive_int,
    'agent_socket_path': _is_non_empty_str,
    'bind_id': _is_non_negative_int,
    'agent_keys': _is_str_list,
    'gateway_did': _is_non_empty_str,
    'request_timeout': _is_positive_number,
    'sweep_interval': _is_positive_number,
    'strict_forward': lambda value: isinstance(value, bool),
    'driven_command': _is_str,
    'topic_command': _is_non_empty_str,
    'topic_ack': _is_non_empty_str,
    'topic_response': _is_non_empty_str,
    'topic_report': _is_non_empty_str,
    'log_level': _is_log_level,
}


def _check_value(key: str, value: Any) -> None:
    if not _FIELD_CHECKS[key](value):
        raise MiioConfigError(f'invalid config value, {key}, {value!r}')


def load_config(path: str) -> MiioBridgeConfig:
    """Load a yaml or json config file."""
    try:
        if path.endswith('.json'):
            data = load_json_file(path)
        else:
            data = load_yaml_file(path)
    except (OSError, ValueError, yaml.YAMLError) as err:
        raise MiioConfigError(
            f'load config error, {path}, {err}',
            MiioErrorCode.CODE_CONFIG_LOAD_ERROR) from err
    _LOGGER.info('load config, %s', path)
    return MiioBridgeConfig.from_dict(data)
