# -*- coding: utf-8 -*-
"""Unit test for miio_config.py and the command line."""
import json
import pytest

# pylint: disable=import-outside-toplevel, unused-argument


@pytest.mark.github
def test_config_default():
    from miio_bridge.const import AGENT_REGISTER_KEYS, TOPIC_REPORT
    from miio_bridge.miio_config import MiioBridgeConfig

    config = MiioBridgeConfig.from_dict(None)
    assert config.mqtt_host == 'localhost'
    assert config.mqtt_port == 1883
    assert config.agent_socket_path == '/tmp/miio_agent.socket'
    assert config.bind_id == 0
    assert config.agent_keys == AGENT_REGISTER_KEYS
    assert config.agent_keys is not AGENT_REGISTER_KEYS
    assert config.topic_report == TOPIC_REPORT
    assert config.strict_forward
    assert config.driven_command == ''
    assert config.gateway_did is None
    assert config.level == 'INFO'
    assert config.to_dict()['mqtt_client_id'] == 'agent2mqtt'


@pytest.mark.github
def test_config_update(test_gateway_did: str):
    from miio_bridge.miio_config import MiioBridgeConfig

    config = MiioBridgeConfig.from_dict({
        'mqtt_host': '192.168.1.10', 'bind_id': 8,
        'gateway_did': test_gateway_did, 'request_timeout': 2.5,
        'agent_keys': ['auto.forward'], 'log_level': 'trace'})
    assert config.mqtt_host == '192.168.1.10'
    assert config.bind_id == 8
    assert config.gateway_did == test_gateway_did
    assert config.request_timeout == 2.5
    assert config.agent_keys == ['auto.forward']
    assert config.level == 'DEBUG'
    # None values keep the current value
    config.update(mqtt_host=None, mqtt_port=1884)
    assert config.mqtt_host == '192.168.1.10'
    assert config.mqtt_port == 1884


@pytest.mark.github
@pytest.mark.parametrize('data', [
    {'unknown': 1},
    {'mqtt_port': 0},
    {'mqtt_port': '1883'},
    {'mqtt_host': ''},
    {'bind_id': -1},
    {'bind_id': True},
    {'request_timeout': 0},
    {'strict_forward': 1},
    {'agent_keys': 'auto.forward'},
    {'agent_keys': ['']},
    {'log_level': 'verbose'},
    {'log_level': ['info']},
])
def test_config_invalid(data: dict):
    from miio_bridge.miio_config import MiioBridgeConfig
    from miio_bridge.miio_error import MiioConfigError, MiioErrorCode

    with pytest.raises(MiioConfigError) as exc_info:
        MiioBridgeConfig.from_dict(data)
    assert exc_info.value.code == MiioErrorCode.CODE_CONFIG_INVALID


@pytest.mark.github
def test_config_not_mapping():
    from miio_bridge.miio_config import MiioBridgeConfig
    from miio_bridge.miio_error import MiioConfigError

    with pytest.raises(MiioConfigError):
        MiioBridgeConfig.from_dict(['mqtt_host'])


@pytest.mark.github
def test_load_config(tmp_path, test_gateway_did: str):
    from miio_bridge.miio_config import load_config

    yaml_file = tmp_path / 'miio_bridge.yaml'
    yaml_file.write_text(
        'mqtt_host: 10.0.0.2\n'
        'bind_id: 8\n'
        f'gateway_did: {test_gateway_did}\n'
        'strict_forward: false\n'
        'agent_keys:\n'
        '  - auto.forward\n'
        '  - lanbox.event\n', encoding='utf-8')
    config = load_config(str(yaml_file))
    assert config.mqtt_host == '10.0.0.2'
    assert config.bind_id == 8
    assert config.gateway_did == test_gateway_did
    assert not config.strict_forward
    assert config.agent_keys == ['auto.forward', 'lanbox.event']

    json_file = tmp_path / 'miio_bridge.json'
    json_file.write_text(
        json.dumps({'mqtt_port': 8883, 'log_level': 'debug'}),
        encoding='utf-8')
    config = load_config(str(json_file))
    assert config.mqtt_port == 8883
    assert config.level == 'DEBUG'

    # Empty yaml is the default config
    empty_file = tmp_path / 'empty.yaml'
    empty_file.write_text('', encoding='utf-8')
    assert load_config(str(empty_file)).mqtt_port == 1883


@pytest.mark.github
def test_load_config_error(tmp_path):
    from miio_bridge.miio_config import load_config
    from miio_bridge.miio_error import MiioConfigError, MiioErrorCode

    with pytest.raises(MiioConfigError) as exc_info:
        load_config(str(tmp_path / 'none.yaml'))
    assert exc_info.value.code == MiioErrorCode.CODE_CONFIG_LOAD_ERROR

    bad_json = tmp_path / 'bad.json'
    bad_json.write_text('{"mqtt_host":', encoding='utf-8')
    with pytest.raises(MiioConfigError) as exc_info:
        load_config(str(bad_json))
    assert exc_info.value.code == MiioErrorCode.CODE_CONFIG_LOAD_ERROR

    bad_yaml = tmp_path / 'bad.yaml'
    bad_yaml.write_text('mqtt_host: [1, 2\n', encoding='utf-8')
    with pytest.raises(MiioConfigError) as exc_info:
        load_config(str(bad_yaml))
    assert exc_info.value.code == MiioErrorCode.CODE_CONFIG_LOAD_ERROR


@pytest.mark.github
def test_build_config(tmp_path):
    from miio_bridge.__main__ import build_config, build_parser
    from miio_bridge.const import DRIVEN_COMMAND

    parser = build_parser()
    config = build_config(parser.parse_args([]))
    assert config.mqtt_host == 'localhost'
    assert config.driven_command == ''

    config_file = tmp_path / 'miio_bridge.yaml'
    config_file.write_text(
        'mqtt_host: 10.0.0.2\nbind_id: 3\nlog_level: warn\n',
        encoding='utf-8')
    config = build_config(parser.parse_args([
        '-c', str(config_file), '-m', '10.0.0.9', '-l', 'debug',
        '--driven']))
    # Command line values override the config file
    assert config.mqtt_host == '10.0.0.9'
    assert config.bind_id == 3
    assert config.log_level == 'debug'
    assert config.driven_command == DRIVEN_COMMAND

    args = parser.parse_args(['-b', '8', '-a', '/tmp/agent.socket'])
    config = build_config(args)
    assert config.bind_id == 8
    assert config.agent_socket_path == '/tmp/agent.socket'
    with pytest.raises(SystemExit):
        parser.parse_args(['-l', 'verbose'])


@pytest.mark.github
def test_main_invalid_config(tmp_path, capsys):
    from miio_bridge.__main__ import main

    config_file = tmp_path / 'miio_bridge.yaml'
    config_file.write_text('mqtt_port: 0\n', encoding='utf-8')
    assert main(['-c', str(config_file)]) == 2
    assert 'invalid config' in capsys.readouterr().err
