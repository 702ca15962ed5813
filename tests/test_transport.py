import json
import pytest
import zmq
from ipychan.errors import SocketAlreadyClosed
from ipychan.transport import ChannelKind, ConnectionInfo, ZmqTransport, env_float


def _conn_dict(**kw):
    return dict(transport="tcp", ip="127.0.0.1", shell_port=5001, iopub_port=5002, stdin_port=5003, control_port=5004,
        hb_port=5005, key="abc", signature_scheme="hmac-sha256") | kw


def test_connection_from_file(tmp_path):
    path = tmp_path / "kernel.json"
    path.write_text(json.dumps(_conn_dict()), encoding="utf-8")
    conn = ConnectionInfo.from_file(str(path))
    assert conn.endpoint(ChannelKind.SHELL) == "tcp://127.0.0.1:5001"
    assert conn.endpoint("iopub") == "tcp://127.0.0.1:5002"
    assert conn.endpoint(ChannelKind.HEARTBEAT) == "tcp://127.0.0.1:5005"
    assert conn.key == "abc"


def test_ipc_endpoint():
    conn = ConnectionInfo.from_dict(_conn_dict(transport="ipc", ip="/tmp/kernel"))
    assert conn.endpoint("control") == "ipc:///tmp/kernel-5004"


def test_env_float(monkeypatch):
    monkeypatch.setenv("IPYCHAN_TEST_FLOAT", "2.5")
    assert env_float("IPYCHAN_TEST_FLOAT", 1.0) == 2.5
    monkeypatch.setenv("IPYCHAN_TEST_FLOAT", "soon")
    assert env_float("IPYCHAN_TEST_FLOAT", 1.0) == 1.0
    monkeypatch.delenv("IPYCHAN_TEST_FLOAT")
    assert env_float("IPYCHAN_TEST_FLOAT", 3.0) == 3.0


@pytest.mark.parametrize("kind,socket_type,identity", [("shell", zmq.DEALER, b"client-1"), ("iopub", zmq.SUB, b"client-1"),
    ("heartbeat", zmq.REQ, b"")])
def test_connect_socket_types(kind, socket_type, identity):
    transport = ZmqTransport()
    sock = transport.connect(kind, "tcp://127.0.0.1:5999", identity="client-1")
    try:
        assert sock.socket_type == socket_type
        assert sock.identity == identity
    finally: transport.close(sock, linger=0)


def test_recv_nonblocking_would_block():
    transport = ZmqTransport()
    sock = transport.connect("shell", "tcp://127.0.0.1:5999")
    try: assert transport.recv(sock, nonblocking=True) is None
    finally: transport.close(sock, linger=0)


def test_close_twice_raises_already_closed():
    transport = ZmqTransport()
    sock = transport.connect("control", "tcp://127.0.0.1:5999")
    transport.close(sock, linger=0)
    with pytest.raises(SocketAlreadyClosed): transport.close(sock)
