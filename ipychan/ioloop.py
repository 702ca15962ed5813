import asyncio, logging, sys, threading
from dataclasses import dataclass
from enum import Enum
from fastcore.basics import store_attr
import zmq, zmq.asyncio
from jupyter_client.session import Session
from . import debug as _dbg_mod
from .debug import dbg
from .errors import SocketAlreadyClosed, StartupTimeout
from .transport import ChannelKind, ZmqTransport, env_float

log = logging.getLogger("ipychan.ioloop")
worker_stop = object()


class ChannelStatus(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"


@dataclass
class StartChannel:
    kind:ChannelKind
    endpoint:str
    identity:bytes|None = None

@dataclass
class StopChannel:
    kind:ChannelKind

@dataclass
class SendMessage:
    kind:ChannelKind
    msg_type:str
    content:dict|None = None
    parent:dict|None = None
    metadata:dict|None = None


class IOLoopWorker(threading.Thread):
    "I/O loop thread owning the sockets of attached AsyncChannels; driven by posted instructions."

    def __init__(self, session: Session, transport: ZmqTransport|None=None, context: zmq.asyncio.Context|None=None):
        super().__init__(daemon=True, name="ipychan-ioloop")
        store_attr("session")
        self.transport = transport or ZmqTransport()
        self.context = context or zmq.asyncio.Context.shadow(self.transport.context)
        self.loop, self.inbox = None, None
        self.backlog, self.lock = [], threading.Lock()
        self.closing = False
        self.ready = threading.Event()
        self.channels, self.sockets, self.tasks = {}, {}, {}
        self.sent = 0
        self.send_errors = 0
        self.handlers = {StartChannel: self._start_channel, StopChannel: self._stop_channel, SendMessage: self._send}

    def attach(self, channel):
        "Register `channel` as the delivery target for its kind."
        self.channels[channel.kind] = channel

    def post(self, instruction):
        "Queue `instruction` for the loop; safe from any thread. Held in a backlog until the loop runs."
        with self.lock:
            loop = self.loop
            if loop is None:
                if self.closing: dbg(f"dropping {type(instruction).__name__}: I/O loop gone")
                else: self.backlog.append(instruction)
                return
        try: loop.call_soon_threadsafe(self.inbox.put_nowait, instruction)
        except RuntimeError: dbg(f"dropping {type(instruction).__name__}: I/O loop closed")

    def start(self, timeout:float|None=None):
        "Start the loop thread and wait until it accepts instructions."
        super().start()
        if timeout is None: timeout = env_float("IPYCHAN_WORKER_READY_TIMEOUT", 5.0)
        if not self.ready.wait(timeout): raise StartupTimeout(f"I/O loop not ready after {timeout}s")

    def stop(self):
        "Ask the loop to close every socket and exit."
        self.post(worker_stop)
        self.closing = True

    def run(self):
        loop = asyncio.new_event_loop()
        if sys.platform.startswith("win") and not isinstance(loop, asyncio.SelectorEventLoop):
            log.warning("Windows event loop may not support zmq.asyncio; consider SelectorEventLoop policy.")
        asyncio.set_event_loop(loop)
        with self.lock:
            self.inbox = asyncio.Queue()
            for item in self.backlog: self.inbox.put_nowait(item)
            self.backlog.clear()
            self.loop = loop
        self.ready.set()
        try: loop.run_until_complete(self._consume_inbox())
        finally:
            with self.lock: self.loop, self.closing = None, True
            self.ready.clear()
            receivers = list(self.tasks.values())
            for kind in list(self.sockets): self._stop_channel(StopChannel(kind))
            if receivers: loop.run_until_complete(asyncio.gather(*receivers, return_exceptions=True))
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()
            asyncio.set_event_loop(None)
            dbg("I/O loop exited")

    async def _consume_inbox(self):
        dbg("I/O loop started")
        while True:
            item = await self.inbox.get()
            if item is worker_stop: return
            handler = self.handlers.get(type(item))
            if handler is None:
                log.warning("Unknown instruction %r", item)
                continue
            try:
                res = handler(item)
                if asyncio.iscoroutine(res): await res
            except Exception as exc: log.error("%s failed: %s", type(item).__name__, exc, exc_info=exc)

    def _start_channel(self, ins: StartChannel):
        kind = ChannelKind(ins.kind)
        channel = self.channels.get(kind)
        if channel is None:
            log.warning("start-channel for unattached %s channel", kind.value)
            return
        if kind in self.sockets:
            channel.set_status(ChannelStatus.RUNNING)
            return
        channel.set_status(ChannelStatus.STARTING)
        try: sock = self.transport.connect(kind, ins.endpoint, ins.identity, context=self.context)
        except Exception:
            channel.set_status(ChannelStatus.STOPPED)
            raise
        self.sockets[kind] = sock
        self.tasks[kind] = asyncio.get_running_loop().create_task(self._recv_loop(channel, sock))
        channel.set_status(ChannelStatus.RUNNING, expect=ChannelStatus.STARTING)
        dbg(f"{kind.value} channel running on {ins.endpoint}")

    def _stop_channel(self, ins: StopChannel):
        kind = ChannelKind(ins.kind)
        if (task := self.tasks.pop(kind, None)) is not None: task.cancel()
        if (sock := self.sockets.pop(kind, None)) is not None:
            try: self.transport.close(sock, linger=0)
            except SocketAlreadyClosed: pass
        if (channel := self.channels.get(kind)) is not None: channel.set_status(ChannelStatus.STOPPED)
        dbg(f"{kind.value} channel stopped")

    async def _send(self, ins: SendMessage):
        kind = ChannelKind(ins.kind)
        sock = self.sockets.get(kind)
        if sock is None:
            self.send_errors += 1
            log.warning("%s send dropped: channel not running", kind.value)
            return
        msg = self.session.msg(ins.msg_type, ins.content or {}, parent=ins.parent, metadata=ins.metadata)
        _dbg_mod.tlog(log, f"{kind.value} send", msg)
        frames = self.session.serialize(msg)
        try:
            fut = sock.send_multipart(frames)
            if asyncio.isfuture(fut): await fut
            self.sent += 1
        except Exception as exc:
            self.send_errors += 1
            log.error("%s send error: %s", kind.value, exc, exc_info=exc)

    async def _recv_loop(self, channel, sock: zmq.asyncio.Socket):
        label = channel.kind.value
        while True:
            try: msg_list = await sock.recv_multipart(copy=False)
            except zmq.ZMQError as e:
                dbg(f"{label} RECV error: {type(e).__name__}: {e}")
                return
            idents, msg_list = self.session.feed_identities(msg_list, copy=False)
            try: msg = self.session.deserialize(msg_list, content=True, copy=False)
            except ValueError as err:
                if "Duplicate Signature" not in str(err): log.warning("Bad message signature on %s", label, exc_info=True)
                continue
            _dbg_mod.tlog(log, f"{label} recv", msg)
            channel.enqueue_delivery([bytes(i) for i in idents], msg)
