import time
import pytest
from ipychan.channels import SyncChannel
from ipychan.errors import NotAlive
from ipychan.transport import ChannelKind
from .kernel_utils import *


def _shell(kernel, session, **kw)->SyncChannel:
    return SyncChannel(ChannelKind.SHELL, kernel.connection.endpoint("shell"), session, **kw)


def test_start_is_idempotent(kernel, session):
    chan = _shell(kernel, session)
    chan.start(b"client")
    sock = chan.socket
    chan.start(b"client")
    assert chan.socket is sock
    assert chan.is_alive()
    chan.stop()


def test_stop_is_idempotent(kernel, session):
    chan = _shell(kernel, session)
    chan.stop()
    chan.start()
    chan.stop()
    assert not chan.is_alive()
    chan.stop()
    assert chan.socket is None


def test_stop_tolerates_closed_socket(kernel, session):
    transport = RecordingTransport()
    chan = _shell(kernel, session, transport=transport)
    chan.start()
    chan.socket.close(0)
    chan.stop()
    assert not chan.is_alive()
    assert len(transport.closes) == 1


def test_kind_and_endpoint_are_read_only(kernel, session):
    chan = _shell(kernel, session)
    with pytest.raises(AttributeError): chan.kind = ChannelKind.IOPUB
    with pytest.raises(AttributeError): chan.endpoint = "tcp://127.0.0.1:1"
    assert chan.kind == ChannelKind.SHELL


def test_shell_round_trip(kernel, session):
    chan = _shell(kernel, session)
    chan.start(b"client")
    try:
        sent = chan.send("kernel_info_request", {})
        assert chan.socket.poll(TIMEOUT * 1000)
        reply = chan.receive()
        assert reply["msg_type"] == "kernel_info_reply"
        assert parent_id(reply) == sent["header"]["msg_id"]
        assert reply["content"]["implementation"] == "stub"
        assert kernel.received[0][1] == [b"client"]
    finally: chan.stop()


def test_recv_with_identity_returns_envelope(kernel, session):
    chan = SyncChannel("control", kernel.connection.endpoint("control"), session)
    chan.start(b"ctl")
    try:
        chan.send("interrupt_request", {})
        assert chan.socket.poll(TIMEOUT * 1000)
        idents, msg = chan.recv_with_identity()
        assert idents == []
        assert msg["msg_type"] == "interrupt_reply"
    finally: chan.stop()


def test_iopub_subscribes_on_start(kernel, session):
    chan = SyncChannel("iopub", kernel.connection.endpoint("iopub"), session)
    chan.start()
    try:
        msg = None
        end = time.monotonic() + TIMEOUT
        while msg is None and time.monotonic() < end:
            kernel.publish("stream", dict(name="stdout", text="hi"))
            if chan.socket.poll(100): msg = chan.receive()
        assert msg is not None
        assert msg["msg_type"] == "stream" and msg["content"]["text"] == "hi"
    finally: chan.stop()


def test_send_on_stopped_channel_raises(kernel, session):
    chan = _shell(kernel, session)
    with pytest.raises(NotAlive): chan.send("kernel_info_request", {})
    with pytest.raises(NotAlive): chan.receive()
