# -*- coding: utf-8 -*-
"""Unit test for miio_ev.py."""
import os
import socket
import pytest

# pylint: disable=import-outside-toplevel, disable=unused-argument


@pytest.mark.github
def test_mev_timer_and_fd():
    from miio_bridge.miio_ev import MiioEventLoop, TimeoutHandle

    mev = MiioEventLoop()
    assert mev
    event_fd: int = os.eventfd(0, os.O_NONBLOCK)
    assert event_fd
    timer4: TimeoutHandle = None
    events: list[int] = []

    def event_handler(event_fd):
        value: int = os.eventfd_read(event_fd)
        events.append(value)
        if value == 1:
            mev.clear_timeout(timer4)
        elif value == 3:
            mev.set_read_handler(event_fd, None, None)
            os.close(event_fd)

    def timer1_handler(event_fd):
        os.eventfd_write(event_fd, 1)

    def timer2_handler(event_fd):
        os.eventfd_write(event_fd, 1)
        os.eventfd_write(event_fd, 1)

    def timer3_handler(event_fd):
        os.eventfd_write(event_fd, 3)

    def timer4_handler(event_fd):
        raise ValueError('unreachable code')

    assert mev.set_read_handler(event_fd, event_handler, event_fd)

    mev.set_timeout(100, timer1_handler, event_fd)
    mev.set_timeout(200, timer2_handler, event_fd)
    mev.set_timeout(300, timer3_handler, event_fd)
    timer4 = mev.set_timeout(400, timer4_handler, event_fd)

    mev.loop_forever()
    # Loop will exit when there are no timers or fd handlers.
    assert events == [1, 2, 3]
    mev.loop_stop()
    assert not mev.running


@pytest.mark.github
def test_mev_timer_order():
    from miio_bridge.miio_ev import MiioEventLoop

    mev = MiioEventLoop()
    fired: list[str] = []
    mev.set_timeout(50, fired.append, 'b')
    mev.set_timeout(0, fired.append, 'a')
    mev.set_timeout(50, fired.append, 'c')
    mev.loop_forever()
    assert fired == ['a', 'b', 'c']
    mev.loop_stop()


@pytest.mark.github
def test_mev_socket_handler():
    from miio_bridge.miio_ev import MiioEventLoop

    mev = MiioEventLoop()
    left, right = socket.socketpair(socket.AF_UNIX, socket.SOCK_SEQPACKET)
    received: list[bytes] = []

    def read_handler(sock: socket.socket):
        received.append(sock.recv(4096))
        if len(received) == 2:
            mev.set_read_handler(sock, None)

    def write_handler(sock: socket.socket):
        # Writable at once, send both then stop writing
        sock.send(b'{"id":1}')
        sock.send(b'{"id":2}')
        mev.set_write_handler(sock, None)

    assert mev.set_read_handler(right, read_handler, right)
    assert mev.set_write_handler(left, write_handler, left)
    mev.loop_forever()
    assert received == [b'{"id":1}', b'{"id":2}']
    mev.loop_stop()
    left.close()
    right.close()


@pytest.mark.github
def test_mev_invalid_params():
    from miio_bridge.miio_ev import MiioEventLoop
    from miio_bridge.miio_error import MiioErrorCode, MiioEvError

    mev = MiioEventLoop()
    with pytest.raises(MiioEvError) as exc_info:
        mev.set_timeout(None, print)
    assert exc_info.value.code == MiioErrorCode.CODE_EV_INVALID_PARAMS
    with pytest.raises(MiioEvError):
        mev.set_read_handler(None, print)
    # Removing a handler that was never set is a no-op
    assert mev.set_read_handler(0, None)
    mev.loop_stop()
    with pytest.raises(MiioEvError) as exc_info:
        mev.set_read_handler(0, print)
    assert exc_info.value.code == MiioErrorCode.CODE_EV_NOT_STARTED
