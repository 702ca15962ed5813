import errno, json, logging, os
from dataclasses import dataclass
from enum import Enum
import zmq
from .errors import SocketAlreadyClosed

log = logging.getLogger("ipychan.transport")


class ChannelKind(str, Enum):
    SHELL = "shell"
    CONTROL = "control"
    STDIN = "stdin"
    IOPUB = "iopub"
    HEARTBEAT = "heartbeat"

socket_types = {ChannelKind.SHELL: zmq.DEALER, ChannelKind.CONTROL: zmq.DEALER, ChannelKind.STDIN: zmq.DEALER,
    ChannelKind.IOPUB: zmq.SUB, ChannelKind.HEARTBEAT: zmq.REQ}


def env_float(name:str, default:float)->float:
    "Return float env var `name`, or `default` on missing/invalid."
    raw = os.environ.get(name)
    if raw is None: return default
    try: return float(raw)
    except ValueError: return default


@dataclass
class ConnectionInfo:
    transport:str
    ip:str
    shell_port:int
    iopub_port:int
    stdin_port:int
    control_port:int
    hb_port:int
    key:str
    signature_scheme:str

    @classmethod
    def from_dict(cls, data: dict)->"ConnectionInfo":
        return cls(transport=data.get("transport", "tcp"), ip=data.get("ip", "127.0.0.1"), shell_port=int(data["shell_port"]),
            iopub_port=int(data["iopub_port"]), stdin_port=int(data["stdin_port"]), control_port=int(data["control_port"]),
            hb_port=int(data["hb_port"]), key=data.get("key", ""), signature_scheme=data.get("signature_scheme", "hmac-sha256"))

    @classmethod
    def from_file(cls, path:str)->"ConnectionInfo":
        "Load connection info from JSON connection file at `path`."
        with open(path, encoding="utf-8") as f: return cls.from_dict(json.load(f))

    def addr(self, port:int)->str:
        if self.transport == "ipc": return f"ipc://{self.ip}-{port}"
        return f"{self.transport}://{self.ip}:{port}"

    def endpoint(self, kind:ChannelKind|str)->str:
        "Return the address of the `kind` channel."
        kind = ChannelKind(kind)
        port = self.hb_port if kind == ChannelKind.HEARTBEAT else getattr(self, f"{kind.value}_port")
        return self.addr(port)


def _as_bytes(identity)->bytes|None:
    if identity is None or isinstance(identity, bytes): return identity
    return str(identity).encode("utf-8")


class ZmqTransport:
    "Connect, send, receive and close client-side zmq sockets for each channel kind."

    def __init__(self, context: zmq.Context|None=None): self.context = context or zmq.Context.instance()

    def connect(self, kind:ChannelKind|str, endpoint:str, identity=None, context: zmq.Context|None=None)->zmq.Socket:
        """Connect a socket of the type used by `kind` to `endpoint`, routed as `identity`.

        Heartbeat sockets ignore `identity`: the kernel's REP socket would keep routing a reused identity to the
        pipe of the socket it replaces."""
        kind = ChannelKind(kind)
        sock = (context or self.context).socket(socket_types[kind])
        if kind != ChannelKind.HEARTBEAT and (ident := _as_bytes(identity)): sock.identity = ident
        sock.connect(endpoint)
        if kind == ChannelKind.IOPUB: sock.setsockopt(zmq.SUBSCRIBE, b"")
        log.debug("connected %s socket to %s", kind.value, endpoint)
        return sock

    def send(self, sock: zmq.Socket, payload):
        "Send `payload` (bytes or a list of frames), blocking until zmq accepts it."
        frames = list(payload) if isinstance(payload, (list, tuple)) else [payload]
        sock.send_multipart(frames)

    def recv(self, sock: zmq.Socket, nonblocking:bool=False)->list[bytes]|None:
        "Receive a multipart payload; returns None when `nonblocking` and nothing is waiting."
        try: return sock.recv_multipart(zmq.NOBLOCK if nonblocking else 0)
        except zmq.Again: return None

    def close(self, sock: zmq.Socket, linger:int|None=None):
        "Close `sock`; raises SocketAlreadyClosed if zmq already dropped it."
        if sock.closed: raise SocketAlreadyClosed(f"socket {sock!r} already closed")
        try: sock.close(linger)
        except zmq.ZMQError as err:
            if err.errno == errno.ENOTSOCK: raise SocketAlreadyClosed(str(err)) from err
            raise
