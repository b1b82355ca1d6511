# -*- coding: utf-8 -*-
"""Unit test for miio_router.py."""
import json
from typing import Optional
import pytest

# pylint: disable=import-outside-toplevel, unused-argument

TOPIC_ACK: str = 'miio/command_ack'
TOPIC_RESPONSE: str = 'miio/response'
TOPIC_REPORT: str = 'openmiio/resport'


def _build_router(
    transport, clock, gateway_did: Optional[str] = None,
    strict_forward: bool = True
):
    from miio_bridge.miio_correlator import MiioCorrelator
    from miio_bridge.miio_registry import MiioRegistry
    from miio_bridge.miio_router import MiioRouter

    return MiioRouter(
        registry=MiioRegistry(),
        correlator=MiioCorrelator(default_timeout=10, clock=clock),
        publish=transport.publish, send=transport.send,
        gateway_did=gateway_did, strict_forward=strict_forward)


def _command(
    msg_id: int, method: str, name: str, value, to_addr: int = 524288
) -> bytes:
    return json.dumps({
        '_to': to_addr, 'id': msg_id, 'method': method,
        'params': {'name': name, 'value': value}}).encode('utf-8')


def _error_code(payload: bytes) -> int:
    return json.loads(payload)['error']['code']


def _declare_interest(router, did: str) -> None:
    router.registry.hub_interest(issuer=router.issuer, hublist=[did])


@pytest.mark.github
@pytest.mark.asyncio
async def test_read_end_to_end(fake_transport, fake_clock, test_hub_did):
    router = _build_router(fake_transport, fake_clock)
    router.handle_command(_command(
        122, 'lanbox.event', 'hub_interest', {'hublist': [test_hub_did]}))
    router.handle_command(_command(
        123, 'lanbox.control', 'read', {
            'did': test_hub_did, 'sdid': test_hub_did,
            'value': ['0.4.85']}))
    assert len(fake_transport.sent) == 2
    assert json.loads(fake_transport.sent[1]) == {
        '_to': 524288, 'id': 123, 'method': 'lanbox.control',
        'params': {'name': 'read', 'value': {
            'did': test_hub_did, 'sdid': test_hub_did,
            'value': ['0.4.85']}}}
    assert 123 in router.correlator

    router.handle_gateway(b'{"id":123,"result":{"0.4.85":"250"}}')
    responses = fake_transport.published_on(TOPIC_RESPONSE)
    assert len(responses) == 1
    response = json.loads(responses[0])
    assert response['id'] == 123
    assert response['_from'] == 524288
    assert response['method'] == 'lanbox.event'
    assert response['params']['name'] == 'read_done'
    assert response['params']['value']['result'] == {'0.4.85': '250'}
    assert response['params']['value']['did'] == test_hub_did
    assert 123 not in router.correlator


@pytest.mark.github
@pytest.mark.asyncio
async def test_read_ack_then_read_done(
    fake_transport, fake_clock, test_hub_did
):
    router = _build_router(fake_transport, fake_clock)
    _declare_interest(router, test_hub_did)
    router.handle_command(_command(
        124, 'lanbox.control', 'read',
        {'did': test_hub_did, 'value': ['0.4.85']}))
    ack = b'{"id":124,"result":{"code":0,"message":"ok"}}'
    router.handle_gateway(ack)
    assert fake_transport.published_on(TOPIC_ACK) == [ack]
    assert 124 in router.correlator

    read_done = json.dumps({
        '_from': 524288, 'id': 124, 'method': 'lanbox.event',
        'params': {'name': 'read_done', 'value': {
            'did': test_hub_did, 'result': {'0.4.85': '250'}}}})
    router.handle_gateway(read_done)
    assert fake_transport.published_on(TOPIC_RESPONSE) == [read_done]
    assert len(router.correlator) == 0

    # Duplicate read_done is dropped
    router.handle_gateway(read_done)
    assert len(fake_transport.published_on(TOPIC_RESPONSE)) == 1


@pytest.mark.github
@pytest.mark.asyncio
async def test_read_error_reply(fake_transport, fake_clock, test_hub_did):
    router = _build_router(fake_transport, fake_clock)
    _declare_interest(router, test_hub_did)
    router.handle_command(_command(
        125, 'lanbox.control', 'read',
        {'did': test_hub_did, 'value': ['0.4.85']}))
    reply = b'{"id":125,"error":{"code":-1,"message":"offline"}}'
    router.handle_gateway(reply)
    assert fake_transport.published_on(TOPIC_RESPONSE) == [reply]
    assert len(router.correlator) == 0


@pytest.mark.github
@pytest.mark.asyncio
async def test_res_write(fake_transport, fake_clock):
    router = _build_router(fake_transport, fake_clock)
    router.handle_command(_command(
        7, 'auto.control', '/lumi/gw/res/write',
        {'did': 'lumi.158d0001', 'res_list': [
            {'res_name': '4.1.85', 'value': 1}]}))
    assert len(fake_transport.sent) == 1
    reply = b'{"_from":4,"id":7,"result":{"code":0}}'
    router.handle_gateway(reply)
    assert fake_transport.published_on(TOPIC_RESPONSE) == [reply]
    # Unmatched replies pass through as acks
    unknown = b'{"id":8,"result":{"code":0}}'
    router.handle_gateway(unknown)
    assert fake_transport.published_on(TOPIC_ACK) == [unknown]


@pytest.mark.github
@pytest.mark.asyncio
async def test_interest_policy(fake_transport, fake_clock, test_hub_did):
    from miio_bridge.miio_error import MiioErrorCode

    router = _build_router(fake_transport, fake_clock)
    write = {'did': test_hub_did, 'value': {'0.4.85': '1'}}
    router.handle_command(_command(10, 'lanbox.control', 'write', write))
    assert fake_transport.sent == []
    responses = fake_transport.published_on(TOPIC_RESPONSE)
    assert len(responses) == 1
    assert json.loads(responses[0])['id'] == 10
    assert _error_code(responses[0]) == (
        MiioErrorCode.CODE_INTEREST_POLICY.value)
    assert len(router.correlator) == 0

    router.handle_command(_command(
        11, 'lanbox.event', 'hub_interest', {'hublist': [test_hub_did]}))
    assert router.registry.is_interested(router.issuer, test_hub_did)
    assert len(fake_transport.sent) == 1
    # hub_interest is not correlated
    assert len(router.correlator) == 0

    router.handle_command(_command(12, 'lanbox.control', 'write', write))
    assert len(fake_transport.sent) == 2
    assert 12 in router.correlator


@pytest.mark.github
@pytest.mark.asyncio
async def test_local_gateway_skips_interest(
    fake_transport, fake_clock, test_gateway_did
):
    router = _build_router(
        fake_transport, fake_clock, gateway_did=test_gateway_did)
    router.handle_command(_command(
        13, 'lanbox.control', 'write',
        {'did': test_gateway_did, 'value': {'0.4.85': '1'}}))
    assert len(fake_transport.sent) == 1
    assert fake_transport.published == []


@pytest.mark.github
@pytest.mark.asyncio
async def test_interest_shrink_rejects_pending(
    fake_transport, fake_clock, test_hub_did, test_remote_did
):
    from miio_bridge.miio_error import MiioErrorCode

    router = _build_router(fake_transport, fake_clock)
    await router.start_async()
    router.handle_command(_command(
        20, 'lanbox.event', 'hub_interest',
        {'hublist': [test_hub_did, test_remote_did]}))
    router.handle_command(_command(
        21, 'lanbox.control', 'read',
        {'did': test_hub_did, 'value': ['0.4.85']}))
    router.handle_command(_command(
        22, 'lanbox.control', 'read',
        {'did': test_remote_did, 'value': ['0.4.85']}))
    assert len(router.correlator) == 2

    router.handle_command(_command(
        23, 'lanbox.event', 'hub_interest', {'hublist': [test_remote_did]}))
    responses = fake_transport.published_on(TOPIC_RESPONSE)
    assert len(responses) == 1
    assert json.loads(responses[0])['id'] == 21
    assert _error_code(responses[0]) == (
        MiioErrorCode.CODE_INTEREST_POLICY.value)
    assert 21 not in router.correlator
    assert 22 in router.correlator
    await router.stop_async()


@pytest.mark.github
@pytest.mark.asyncio
async def test_duplicate_id(fake_transport, fake_clock, test_hub_did):
    from miio_bridge.miio_error import MiioErrorCode

    router = _build_router(fake_transport, fake_clock)
    _declare_interest(router, test_hub_did)
    write = {'did': test_hub_did, 'value': {'0.4.85': '1'}}
    router.handle_command(_command(30, 'lanbox.control', 'write', write))
    router.handle_command(_command(30, 'lanbox.control', 'write', write))
    assert len(fake_transport.sent) == 1
    responses = fake_transport.published_on(TOPIC_RESPONSE)
    assert len(responses) == 1
    assert _error_code(responses[0]) == MiioErrorCode.CODE_DUPLICATE_ID.value
    assert 30 in router.correlator


@pytest.mark.github
@pytest.mark.asyncio
async def test_transport_unavailable(
    fake_transport, fake_clock, test_hub_did
):
    from miio_bridge.miio_error import MiioErrorCode

    router = _build_router(fake_transport, fake_clock)
    _declare_interest(router, test_hub_did)
    fake_transport.send_result = False
    router.handle_command(_command(
        31, 'lanbox.control', 'write', {'did': test_hub_did}))
    responses = fake_transport.published_on(TOPIC_RESPONSE)
    assert len(responses) == 1
    assert _error_code(responses[0]) == (
        MiioErrorCode.CODE_TRANSPORT_UNAVAILABLE.value)
    assert len(router.correlator) == 0


@pytest.mark.github
@pytest.mark.asyncio
async def test_malformed_command(fake_transport, fake_clock):
    router = _build_router(fake_transport, fake_clock)
    router.handle_command(b'{"id":1,"method":"lanbox.control"}')
    router.handle_command(b'\xff\xfe')
    router.handle_command(_command(2, 'lanbox.control', 'reboot', {}))
    assert fake_transport.sent == []
    assert fake_transport.published == []


@pytest.mark.github
@pytest.mark.asyncio
async def test_ifttt_command(
    fake_transport, fake_clock, test_gateway_did, test_hub_did
):
    router = _build_router(
        fake_transport, fake_clock, gateway_did=test_gateway_did)
    router.handle_command(_command(40, 'lanbox.control', 'ifttt', {
        'method': 'sync/subscribe', 'pid': test_gateway_did,
        'time': 1700000000,
        'data': [{'did': test_hub_did, 'rids': ['0.4.85']}]}))
    assert router.registry.has_edge(test_gateway_did, test_hub_did, '0.4.85')
    assert len(fake_transport.sent) == 1

    router.handle_command(_command(41, 'lanbox.control', 'ifttt', {
        'method': 'del/subscribe', 'pid': test_gateway_did,
        'did': test_gateway_did, 'delSubscribeDid': test_hub_did,
        'data': ['0.4.85']}))
    assert router.registry.edges() == set()
    assert len(fake_transport.sent) == 2


@pytest.mark.github
@pytest.mark.asyncio
async def test_gateway_registry_events(
    fake_transport, fake_clock, test_gateway_did, test_hub_did,
    test_remote_did
):
    router = _build_router(
        fake_transport, fake_clock, gateway_did=test_gateway_did)
    # A remote gateway subscribes to us
    subscribe = json.dumps({
        '_from': 524288, 'method': 'lanbox.control',
        'params': {'name': 'ifttt', 'value': {
            'method': 'sync/subscribe', 'pid': test_remote_did,
            'data': [{'did': test_gateway_did, 'rids': ['0.4.85']}]}}})
    router.handle_gateway(subscribe)
    assert router.registry.has_edge(
        test_remote_did, test_gateway_did, '0.4.85')

    interest = json.dumps({
        '_from': 524288, 'method': 'lanbox.event',
        'params': {'name': 'hub_interest', 'value': {
            'did': test_remote_did, 'hublist': [test_gateway_did]}}})
    router.handle_gateway(interest)
    assert router.registry.interest(test_remote_did) == {test_gateway_did}

    unsubscribe = json.dumps({
        '_from': 524288, 'method': 'lanbox.event',
        'params': {'name': 'res_unsubscribe', 'value': {
            'did': test_gateway_did, 'reslist': [test_gateway_did]}}})
    router.handle_gateway(unsubscribe)
    assert router.registry.edges() == set()
    assert fake_transport.published_on(TOPIC_REPORT) == [
        subscribe, interest, unsubscribe]


@pytest.mark.github
@pytest.mark.asyncio
async def test_auto_forward(
    fake_transport, fake_clock, test_gateway_did, test_hub_did
):
    router = _build_router(
        fake_transport, fake_clock, gateway_did=test_gateway_did)
    forward = json.dumps({
        '_from': 524288, 'method': 'auto.forward',
        'params': {'name': 'lanbox', 'value': {
            'did': test_hub_did,
            'res_list': [
                {'res_name': '0.4.85', 'value': '323530'},
                {'res_name': '8.0.2116', 'value': '31'}]}}})
    # No subscription yet
    router.handle_gateway(forward)
    assert fake_transport.published == []

    router.registry.sync_subscribe(pid=test_gateway_did, data=[
        {'did': test_hub_did, 'rids': ['0.4.85']}])
    router.handle_gateway(forward)
    reports = fake_transport.published_on(TOPIC_REPORT)
    assert len(reports) == 1
    report = json.loads(reports[0])
    assert report['method'] == 'auto.forward'
    assert report['_from'] == 524288
    assert report['params']['value']['did'] == test_hub_did
    assert report['params']['value']['res_list'] == [
        {'res_name': '0.4.85', 'value': '250',
         'subscribers': [test_gateway_did]}]

    # Bad hex drops the whole message
    router.handle_gateway(json.dumps({
        'method': 'auto.forward', 'params': {'value': {
            'did': test_hub_did,
            'res_list': [{'res_name': '0.4.85', 'value': '3235'},
                         {'res_name': '0.4.85', 'value': '32 5'}]}}}))
    assert len(fake_transport.published_on(TOPIC_REPORT)) == 1


@pytest.mark.github
@pytest.mark.asyncio
async def test_auto_forward_not_strict(
    fake_transport, fake_clock, test_hub_did
):
    router = _build_router(fake_transport, fake_clock, strict_forward=False)
    router.handle_gateway(json.dumps({
        'method': 'auto.forward', 'params': {'value': {
            'did': test_hub_did,
            'res_list': [{'res_name': '0.4.85', 'value': '323530'}]}}}))
    report = json.loads(fake_transport.published_on(TOPIC_REPORT)[0])
    assert report['params']['value']['res_list'] == [
        {'res_name': '0.4.85', 'value': '250', 'subscribers': []}]


@pytest.mark.github
@pytest.mark.asyncio
async def test_passthrough_events(fake_transport, fake_clock):
    router = _build_router(fake_transport, fake_clock)
    report = b'{"method":"auto.report","params":{"did":"lumi.1"}}'
    router.handle_gateway(report)
    # Loose id and address of unknown events are kept as received
    event = b'{"_from":"gw","id":"a1","method":"matter.event","params":{}}'
    router.handle_gateway(event)
    router.handle_gateway(b'not json')
    assert fake_transport.published == [
        (TOPIC_REPORT, report), (TOPIC_REPORT, event)]


@pytest.mark.github
@pytest.mark.asyncio
async def test_sweep_timeout(fake_transport, fake_clock, test_hub_did):
    from miio_bridge.miio_error import MiioErrorCode

    router = _build_router(fake_transport, fake_clock)
    _declare_interest(router, test_hub_did)
    router.handle_command(_command(
        50, 'lanbox.control', 'read',
        {'did': test_hub_did, 'value': ['0.4.85']}))
    fake_clock.advance(5)
    assert router.sweep() == []
    fake_clock.advance(5)
    expired = router.sweep()
    assert [req.msg_id for req in expired] == [50]
    responses = fake_transport.published_on(TOPIC_RESPONSE)
    assert len(responses) == 1
    assert json.loads(responses[0])['_from'] == 524288
    assert _error_code(responses[0]) == MiioErrorCode.CODE_TIMEOUT.value

    # Late read_done is dropped
    router.handle_gateway(json.dumps({
        '_from': 524288, 'id': 50, 'method': 'lanbox.event',
        'params': {'name': 'read_done', 'value': {'result': {}}}}))
    assert len(fake_transport.published_on(TOPIC_RESPONSE)) == 1


@pytest.mark.github
@pytest.mark.asyncio
async def test_router_queue(fake_transport, fake_clock, test_hub_did):
    router = _build_router(fake_transport, fake_clock)
    _declare_interest(router, test_hub_did)
    await router.start_async()
    command = _command(
        60, 'lanbox.control', 'write', {'did': test_hub_did})
    router.on_mqtt_message('miio/command', command)
    # Other topics are ignored
    router.on_mqtt_message('miio/other', _command(
        61, 'lanbox.control', 'write', {'did': test_hub_did}))
    router.on_gateway_message(b'{"id":60,"result":{"code":0}}')
    # Invalid payloads are dropped, the loop goes on
    router.on_gateway_message(None)
    router.on_gateway_message(b'{"method":"auto.report","params":{}}')
    await router.join_async()

    assert len(fake_transport.sent) == 1
    assert fake_transport.published == [
        (TOPIC_RESPONSE, b'{"id":60,"result":{"code":0}}'),
        (TOPIC_REPORT, b'{"method":"auto.report","params":{}}')]
    await router.stop_async()


@pytest.mark.github
@pytest.mark.asyncio
async def test_send_error_leaves_nothing_pending(
    fake_transport, fake_clock
):
    from miio_bridge.miio_error import (
        MiioErrorCode, MiioTransportError)

    def send(payload: bytes) -> bool:
        raise MiioTransportError(
            'message too long', MiioErrorCode.CODE_TRANSPORT_SEND_ERROR)

    fake_transport.send = send
    router = _build_router(fake_transport, fake_clock)
    command = _command(
        7, 'auto.control', '/lumi/gw/res/write',
        {'did': 'lumi.158d0001', 'res_list': []})
    router.handle_command(command)
    assert 7 not in router.correlator
    # Same id again gets the same error, not a duplicate id
    router.handle_command(command)
    fake_clock.advance(11)
    assert router.sweep() == []
    assert [
        _error_code(payload)
        for payload in fake_transport.published_on(TOPIC_RESPONSE)] == [
            MiioErrorCode.CODE_TRANSPORT_SEND_ERROR.value,
            MiioErrorCode.CODE_TRANSPORT_SEND_ERROR.value]


@pytest.mark.github
@pytest.mark.asyncio
async def test_local_address_skips_interest(
    fake_transport, fake_clock, test_hub_did
):
    from miio_bridge.miio_error import MiioErrorCode

    router = _build_router(fake_transport, fake_clock)
    await router.start_async()
    # Addressed to the local gateway, not through the LAN box
    router.handle_command(_command(
        70, 'lanbox.control', 'read',
        {'did': test_hub_did, 'value': ['0.4.85']}, to_addr=4))
    assert len(fake_transport.sent) == 1
    assert json.loads(fake_transport.sent[0])['_to'] == 4
    assert 70 in router.correlator

    # Through the LAN box the same hub needs interest
    router.handle_command(_command(
        71, 'lanbox.control', 'read',
        {'did': test_hub_did, 'value': ['0.4.85']}))
    assert len(fake_transport.sent) == 1
    responses = fake_transport.published_on(TOPIC_RESPONSE)
    assert [_error_code(payload) for payload in responses] == [
        MiioErrorCode.CODE_INTEREST_POLICY.value]

    # Local requests survive an interest set change
    router.handle_command(_command(
        72, 'lanbox.event', 'hub_interest', {'hublist': [test_hub_did]}))
    router.handle_command(_command(
        73, 'lanbox.event', 'hub_interest', {'hublist': []}))
    assert 70 in router.correlator
    assert len(fake_transport.published_on(TOPIC_RESPONSE)) == 1
    await router.stop_async()
