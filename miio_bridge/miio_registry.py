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

LAN subscription registry.

Two tiers of state are kept for the gateways of the LAN:
- interest, the hubs a gateway is willing to talk to. hub_interest replaces
  the whole set.
- subscription edges (subscriber, target, rid), the resources a gateway
  wants auto.forward events for. sync/subscribe adds edges, del/subscribe
  and res_unsubscribe remove them.
Nothing is persisted, remote gateways subscribe again after a restart.
"""
import logging
import threading
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Callable, Iterable, Optional

# pylint: disable=relative-beyond-top-level
from .const import IFTTT_DEL_SUBSCRIBE, IFTTT_SYNC_SUBSCRIBE
from .miio_error import MiioError, MiioErrorCode

_LOGGER = logging.getLogger(__name__)


class MiioRegistryChangeType(Enum):
    """Registry change type."""
    SUBSCRIBE = 0
    UNSUBSCRIBE = auto()
    RES_UNSUBSCRIBE = auto()
    INTEREST = auto()


@dataclass(frozen=True)
class MiioSubscriptionEdge:
    """subscriber receives auto.forward when rid of target changes."""
    subscriber: str
    target: str
    rid: str


@dataclass
class MiioRegistryChange:
    """Registry change.

    added and removed hold MiioSubscriptionEdge items, or hubs for
    INTEREST.
    """
    type_: MiioRegistryChangeType
    # pid of subscribe events, issuer of interest events
    subscriber: Optional[str] = None
    added: list[Any] = field(default_factory=list)
    removed: list[Any] = field(default_factory=list)
    task: Any = None


class MiioRegistry:
    """Interest sets and subscription edges of the LAN gateways."""
    _lock: threading.RLock
    # (subscriber, target) -> rids
    _edges: dict[tuple[str, str], set[str]]
    _interest: dict[str, frozenset[str]]
    # pid -> time of its last sync/subscribe, diagnostics only
    _sync_time: dict[str, Any]
    _sub_list_registry_change: dict[
        str, Callable[[MiioRegistryChange], None]]

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._edges = {}
        self._interest = {}
        self._sync_time = {}
        self._sub_list_registry_change = {}

    def sub_registry_change(
        self, key: str, handler: Callable[[MiioRegistryChange], None]
    ) -> None:
        self._sub_list_registry_change[key] = handler

    def unsub_registry_change(self, key: str) -> None:
        self._sub_list_registry_change.pop(key, None)

    def sync_subscribe(
        self, pid: str, data: list[dict], time: Any = None
    ) -> list[MiioSubscriptionEdge]:
        """Add edges (pid, did, rid), return the edges that were absent.

        time is advisory, out of order values are accepted and edges are
        never replaced.
        """
        self.__check_did(pid, 'pid')
        for item in data:
            self.__check_did(
                item.get('did', None) if isinstance(item, dict) else None,
                'did')
        added: list[MiioSubscriptionEdge] = []
        with self._lock:
            for item in data:
                did = item['did']
                rids = self._edges.setdefault((pid, did), set())
                for rid in item.get('rids', None) or []:
                    if rid in rids:
                        continue
                    rids.add(rid)
                    added.append(MiioSubscriptionEdge(pid, did, rid))
                if not rids:
                    self._edges.pop((pid, did), None)
            if time is not None:
                last_time = self._sync_time.get(pid, None)
                if last_time is not None and _lt(time, last_time):
                    _LOGGER.debug(
                        'out of order sync/subscribe, %s, %s < %s',
                        pid, time, last_time)
                else:
                    self._sync_time[pid] = time
        _LOGGER.info('sync/subscribe, %s, added %s', pid, len(added))
        if added:
            self.__notify(MiioRegistryChange(
                type_=MiioRegistryChangeType.SUBSCRIBE, subscriber=pid,
                added=added))
        return added

    def del_subscribe(
        self, pid: str, del_subscribe_did: str, rids: Iterable[str],
        did: Optional[str] = None
    ) -> list[MiioSubscriptionEdge]:
        """Remove edges (pid, del_subscribe_did, rid), absent edges are
        ignored."""
        self.__check_did(pid, 'pid')
        self.__check_did(del_subscribe_did, 'delSubscribeDid')
        removed: list[MiioSubscriptionEdge] = []
        with self._lock:
            current = self._edges.get((pid, del_subscribe_did), None)
            if current:
                for rid in rids:
                    if rid not in current:
                        continue
                    current.discard(rid)
                    removed.append(
                        MiioSubscriptionEdge(pid, del_subscribe_did, rid))
                if not current:
                    del self._edges[(pid, del_subscribe_did)]
        _LOGGER.info(
            'del/subscribe, %s, %s, %s, removed %s',
            pid, did, del_subscribe_did, len(removed))
        if removed:
            self.__notify(MiioRegistryChange(
                type_=MiioRegistryChangeType.UNSUBSCRIBE, subscriber=pid,
                removed=removed))
        return removed

    def res_unsubscribe(
        self, did: str, reslist: Iterable[str], task: Any = None
    ) -> list[MiioSubscriptionEdge]:
        """Remove every edge targeting a did of reslist, whoever the
        subscriber is."""
        targets = set(reslist)
        removed: list[MiioSubscriptionEdge] = []
        with self._lock:
            for key in list(self._edges.keys()):
                subscriber, target = key
                if target not in targets:
                    continue
                removed.extend(
                    MiioSubscriptionEdge(subscriber, target, rid)
                    for rid in sorted(self._edges.pop(key)))
        _LOGGER.info(
            'res_unsubscribe, %s, %s, removed %s', did, sorted(targets),
            len(removed))
        if removed:
            self.__notify(MiioRegistryChange(
                type_=MiioRegistryChangeType.RES_UNSUBSCRIBE, subscriber=did,
                removed=removed, task=task))
        return removed

    def hub_interest(
        self, issuer: str, hublist: Iterable[Any], task: Any = None
    ) -> MiioRegistryChange:
        """Replace the interest set of issuer."""
        self.__check_did(issuer, 'issuer')
        hubs: set[str] = set()
        for entry in hublist:
            hub = _hub_key(entry)
            if hub is None:
                _LOGGER.warning('ignore invalid hublist entry, %s', entry)
                continue
            hubs.add(hub)
        with self._lock:
            old = self._interest.get(issuer, frozenset())
            self._interest[issuer] = frozenset(hubs)
        change = MiioRegistryChange(
            type_=MiioRegistryChangeType.INTEREST, subscriber=issuer,
            added=sorted(hubs - old), removed=sorted(old - hubs), task=task)
        _LOGGER.info('hub_interest, %s, %s', issuer, sorted(hubs))
        if change.added or change.removed:
            self.__notify(change)
        return change

    def apply_ifttt(self, value: dict) -> list[MiioSubscriptionEdge]:
        """Apply the value of a lanbox.control ifttt message."""
        method = value.get('method', None)
        if method == IFTTT_SYNC_SUBSCRIBE:
            return self.sync_subscribe(
                pid=value.get('pid', None), data=value.get('data', None) or [],
                time=value.get('time', None))
        if method == IFTTT_DEL_SUBSCRIBE:
            return self.del_subscribe(
                pid=value.get('pid', None),
                del_subscribe_did=value.get('delSubscribeDid', None),
                rids=value.get('data', None) or [],
                did=value.get('did', None))
        raise MiioError(
            f'unsupported ifttt method, {method}',
            MiioErrorCode.CODE_INVALID_PARAMS)

    def edges(self) -> set[MiioSubscriptionEdge]:
        with self._lock:
            return {
                MiioSubscriptionEdge(subscriber, target, rid)
                for (subscriber, target), rids in self._edges.items()
                for rid in rids}

    def has_edge(self, subscriber: str, target: str, rid: str) -> bool:
        with self._lock:
            return rid in self._edges.get((subscriber, target), ())

    def subscribers(self, target: str, rid: str) -> set[str]:
        with self._lock:
            return {
                subscriber for (subscriber, target_), rids
                in self._edges.items() if target_ == target and rid in rids}

    def interest(self, issuer: str) -> frozenset[str]:
        with self._lock:
            return self._interest.get(issuer, frozenset())

    def is_interested(self, issuer: str, hub: str) -> bool:
        return hub in self.interest(issuer)

    def clear(self) -> None:
        with self._lock:
            self._edges.clear()
            self._interest.clear()
            self._sync_time.clear()

    def __notify(self, change: MiioRegistryChange) -> None:
        for key, handler in list(self._sub_list_registry_change.items()):
            try:
                handler(change)
            except Exception as err:  # pylint: disable=broad-exception-caught
                _LOGGER.error(
                    'registry change handler error, %s, %s', key, err)

    @staticmethod
    def __check_did(did: Any, name: str) -> None:
        if not isinstance(did, str) or not did:
            raise MiioError(
                f'invalid {name}, {did!r}', MiioErrorCode.CODE_INVALID_PARAMS)


def _hub_key(entry: Any) -> Optional[str]:
    if isinstance(entry, str) and entry:
        return entry
    if isinstance(entry, dict) and isinstance(entry.get('did', None), str):
        return entry['did'] or None
    return None


def _lt(left: Any, right: Any) -> bool:
    try:
        return left < right
    except TypeError:
        return False
