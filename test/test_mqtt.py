# -*- coding: utf-8 -*-
"""Unit test for miio_mqtt.py.
No broker is needed, the client never connects.
"""
import pytest

# pylint: disable=import-outside-toplevel, unused-argument


@pytest.mark.github
@pytest.mark.asyncio
async def test_mqtt_client_cmd():
    from miio_bridge.miio_error import MiioTransportError
    from miio_bridge.miio_mqtt import MiioMqttClient

    async def on_state(key: str, state: bool):
        pass

    client = MiioMqttClient(host='127.0.0.1', client_id='miio_bridge_test')
    assert client.client_id == 'miio_bridge_test'
    assert not client.mqtt_state
    assert client.sub_mqtt_state('test', on_state)
    assert client.sub_topic('miio/command', lambda topic, payload: None)
    # Queued, dropped by the loop thread while disconnected
    assert client.publish('miio/response', b'{}')
    assert client.unsub_topic('miio/command')
    assert client.unsub_mqtt_state('test')
    assert client.disconnect()
    with pytest.raises(MiioTransportError):
        client.sub_topic('', lambda topic, payload: None)
    with pytest.raises(MiioTransportError):
        client.sub_mqtt_state('test', None)

    client.deinit()
    assert not client.publish('miio/response', b'{}')
    assert not client.connect()
    # Twice is fine
    client.deinit()
