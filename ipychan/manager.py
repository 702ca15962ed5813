import logging
from fastcore.basics import store_attr
from jupyter_client.session import Session
from .channels import AsyncChannel, HeartbeatChannel, SyncChannel
from .debug import dbg
from .ioloop import IOLoopWorker
from .transport import ChannelKind, ConnectionInfo, ZmqTransport

log = logging.getLogger("ipychan.manager")
request_kinds = (ChannelKind.SHELL, ChannelKind.CONTROL, ChannelKind.STDIN, ChannelKind.IOPUB)


class KernelChannels:
    "Owns the five channels to one kernel and starts/stops them together."

    def __init__(self, connection: ConnectionInfo, session: Session|None=None, async_mode:bool=False,
        time_to_dead:float|None=None, transport: ZmqTransport|None=None):
        store_attr("connection,async_mode,time_to_dead")
        self.session = session or Session(key=connection.key.encode(), signature_scheme=connection.signature_scheme)
        self.transport = transport or ZmqTransport()
        self.worker = None
        self._channels = {}

    @classmethod
    def from_connection_file(cls, path:str, **kwargs)->"KernelChannels":
        return cls(ConnectionInfo.from_file(path), **kwargs)

    def _ensure_worker(self)->IOLoopWorker:
        if self.worker is None:
            self.worker = IOLoopWorker(self.session, self.transport)
            self.worker.start()
        return self.worker

    def channel(self, kind:ChannelKind|str):
        "Return the `kind` channel, creating it on first use."
        kind = ChannelKind(kind)
        if (chan := self._channels.get(kind)) is not None: return chan
        endpoint = self.connection.endpoint(kind)
        if kind == ChannelKind.HEARTBEAT:
            chan = HeartbeatChannel(endpoint, self.session, self.transport, time_to_dead=self.time_to_dead)
        elif self.async_mode: chan = AsyncChannel(kind, endpoint, self._ensure_worker())
        else: chan = SyncChannel(kind, endpoint, self.session, self.transport)
        self._channels[kind] = chan
        return chan

    @property
    def shell_channel(self): return self.channel(ChannelKind.SHELL)

    @property
    def control_channel(self): return self.channel(ChannelKind.CONTROL)

    @property
    def stdin_channel(self): return self.channel(ChannelKind.STDIN)

    @property
    def iopub_channel(self): return self.channel(ChannelKind.IOPUB)

    @property
    def hb_channel(self)->HeartbeatChannel: return self.channel(ChannelKind.HEARTBEAT)

    def start_channels(self, shell:bool=True, iopub:bool=True, stdin:bool=True, hb:bool=True, control:bool=True):
        "Start the selected channels, routed by this session's identity."
        wanted = dict(shell=shell, iopub=iopub, stdin=stdin, heartbeat=hb, control=control)
        identity = self.session.bsession
        for kind in (*request_kinds, ChannelKind.HEARTBEAT):
            if not wanted[kind.value]: continue
            dbg(f"starting {kind.value} channel")
            self.channel(kind).start(identity)

    def stop_channels(self):
        "Stop every channel, then the I/O loop worker."
        for chan in self._channels.values(): chan.stop()
        if self.worker is not None:
            self.worker.stop()
            self.worker.join(timeout=1)
            if self.worker.is_alive(): log.warning("I/O loop worker did not exit")
            self.worker = None
            self._channels = {k: c for k, c in self._channels.items() if not isinstance(c, AsyncChannel)}

    @property
    def channels_running(self)->bool: return any(chan.is_alive() for chan in self._channels.values())

    def __enter__(self):
        self.start_channels()
        return self

    def __exit__(self, *exc): self.stop_channels()
