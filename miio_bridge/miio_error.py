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

miio bridge error code and exception.
"""
import json
from enum import Enum
from typing import Any


class MiioErrorCode(Enum):
    """miio bridge error code."""
    # Base error code
    CODE_UNKNOWN = -10000
    CODE_UNAVAILABLE = -10001
    CODE_INVALID_PARAMS = -10002
    CODE_MALFORMED_ENVELOPE = -10003
    CODE_MALFORMED_ENCODING = -10004
    CODE_DUPLICATE_ID = -10005
    CODE_TIMEOUT = -10006
    CODE_NOT_FOUND = -10007
    CODE_INTEREST_POLICY = -10008
    # Transport error code, -10020
    CODE_TRANSPORT_UNAVAILABLE = -10020
    CODE_TRANSPORT_SEND_ERROR = -10021
    # Event loop error code, -10030
    CODE_EV_INVALID_PARAMS = -10030
    CODE_EV_NOT_STARTED = -10031
    # Config error code, -10040
    CODE_CONFIG_INVALID = -10040
    CODE_CONFIG_LOAD_ERROR = -10041


class MiioError(Exception):
    """miio bridge error."""
    code: MiioErrorCode
    message: Any

    def __init__(
        self,  message: Any, code: MiioErrorCode = MiioErrorCode.CODE_UNKNOWN
    ) -> None:
        self.message = message
        self.code = code
        super().__init__(self.message)

    def to_str(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)

    def to_dict(self) -> dict:
        return {'code': self.code.value, 'message': str(self.message)}


class MiioMalformedEnvelope(MiioError):
    def __init__(
        self, message: Any,
        code: MiioErrorCode = MiioErrorCode.CODE_MALFORMED_ENVELOPE
    ) -> None:
        super().__init__(message, code)


class MiioMalformedEncoding(MiioError):
    def __init__(
        self, message: Any,
        code: MiioErrorCode = MiioErrorCode.CODE_MALFORMED_ENCODING
    ) -> None:
        super().__init__(message, code)


class MiioDuplicateId(MiioError):
    def __init__(
        self, message: Any,
        code: MiioErrorCode = MiioErrorCode.CODE_DUPLICATE_ID
    ) -> None:
        super().__init__(message, code)


class MiioNotFound(MiioError):
    def __init__(
        self, message: Any,
        code: MiioErrorCode = MiioErrorCode.CODE_NOT_FOUND
    ) -> None:
        super().__init__(message, code)


class MiioRequestTimeout(MiioError):
    def __init__(
        self, message: Any,
        code: MiioErrorCode = MiioErrorCode.CODE_TIMEOUT
    ) -> None:
        super().__init__(message, code)


class MiioInterestPolicyViolation(MiioError):
    def __init__(
        self, message: Any,
        code: MiioErrorCode = MiioErrorCode.CODE_INTEREST_POLICY
    ) -> None:
        super().__init__(message, code)


class MiioTransportError(MiioError):
    ...


class MiioEvError(MiioError):
    ...


class MiioConfigError(MiioError):
    def __init__(
        self, message: Any,
        code: MiioErrorCode = MiioErrorCode.CODE_CONFIG_INVALID
    ) -> None:
        super().__init__(message, code)
