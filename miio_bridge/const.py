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

Constants.
"""

# MQTT topics
TOPIC_COMMAND: str = 'miio/command'
TOPIC_COMMAND_ACK: str = 'miio/command_ack'
TOPIC_RESPONSE: str = 'miio/response'
TOPIC_REPORT: str = 'openmiio/resport'

# Pseudo address used to route a message to another gateway on the LAN
LANBOX_ADDRESS: int = 524288

METHOD_AUTO_CONTROL: str = 'auto.control'
METHOD_AUTO_FORWARD: str = 'auto.forward'
METHOD_LANBOX_EVENT: str = 'lanbox.event'
METHOD_LANBOX_CONTROL: str = 'lanbox.control'

NAME_RES_WRITE: str = '/lumi/gw/res/write'
NAME_HUB_INTEREST: str = 'hub_interest'
NAME_WRITE: str = 'write'
NAME_READ: str = 'read'
NAME_READ_DONE: str = 'read_done'
NAME_IFTTT: str = 'ifttt'
NAME_RES_UNSUBSCRIBE: str = 'res_unsubscribe'

IFTTT_SYNC_SUBSCRIBE: str = 'sync/subscribe'
IFTTT_DEL_SUBSCRIBE: str = 'del/subscribe'

# Issuer key of the interest set declared through MQTT when no gateway did
# is configured
LOCAL_ISSUER: str = 'local'

DEFAULT_MQTT_HOST: str = 'localhost'
DEFAULT_MQTT_PORT: int = 1883
DEFAULT_MQTT_CLIENT_ID: str = 'agent2mqtt'
MQTT_KEEPALIVE: int = 20
MQTT_QOS: int = 0

DEFAULT_AGENT_SOCKET_PATH: str = '/tmp/miio_agent.socket'
DEFAULT_BIND_ID: int = 0
AGENT_MSG_LEN: int = 4096
AGENT_RECONNECT_INTERVAL_MS: int = 500
AGENT_SEND_BACKLOG: int = 32
AGENT_REGISTER_KEYS: list[str] = [
    'auto.report',
    'auto.forward',
    'lanbox.event',
    'auto.ifttt',
    'auto.cross.ifttt',
    'matter.control',
    'matter.event',
    'mtbr.control',
]

DRIVEN_COMMAND: str = 'ha_driven'

# Seconds
DEFAULT_REQUEST_TIMEOUT: float = 10.0
DEFAULT_SWEEP_INTERVAL: float = 1.0

DEFAULT_LOG_LEVEL: str = 'info'
LOG_LEVELS: dict[str, str] = {
    'error': 'ERROR',
    'warn': 'WARNING',
    'info': 'INFO',
    'debug': 'DEBUG',
    'trace': 'DEBUG',
}
