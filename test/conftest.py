# -*- coding: utf-8 -*-
"""Pytest fixtures."""
import logging
import pytest

TEST_GATEWAY_DID: str = 'lumi.54ef4410001a2b3c'
TEST_HUB_DID: str = 'lumi.54ef4410004d5e6f'
TEST_REMOTE_DID: str = 'lumi.54ef441000778899'
TEST_LANBOX_ADDRESS: int = 524288

_LOGGER = logging.getLogger(__name__)


@pytest.fixture(scope='session', autouse=True)
def set_logger():
    logger = logging.getLogger()
    logger.setLevel(logging.DEBUG)
    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.INFO)
    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)
    _LOGGER.info('set logger, %s', logger)


@pytest.fixture(scope='session')
def test_gateway_did() -> str:
    return TEST_GATEWAY_DID


@pytest.fixture(scope='session')
def test_hub_did() -> str:
    return TEST_HUB_DID


@pytest.fixture(scope='session')
def test_remote_did() -> str:
    return TEST_REMOTE_DID


@pytest.fixture(scope='session')
def test_lanbox_address() -> int:
    return TEST_LANBOX_ADDRESS


class FakeClock:
    """Monotonic clock moved by hand."""

    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeTransport:
    """In memory MQTT and agent transport."""

    def __init__(self) -> None:
        self.published: list[tuple[str, bytes]] = []
        self.sent: list[bytes] = []
        self.send_result: bool = True

    def publish(self, topic: str, payload) -> bool:
        self.published.append((topic, payload))
        return True

    def send(self, payload: bytes) -> bool:
        if self.send_result:
            self.sent.append(payload)
        return self.send_result

    def published_on(self, topic: str) -> list:
        return [payload for topic_, payload in self.published
                if topic_ == topic]


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport()
