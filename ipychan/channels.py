"""Client-side kernel channels.

`SyncChannel` talks to its socket on the caller's thread. `AsyncChannel` hands socket I/O to an
`IOLoopWorker` and buffers arrivals in a `MessageQueue`. `HeartbeatChannel` probes the kernel's
heartbeat socket from a `RepeatingTimer` and reconnects after a missed reply.
"""
import logging, threading
from abc import ABC, abstractmethod
from collections import deque
from fastcore.basics import store_attr
from jupyter_client.session import Session
from .debug import dbg
from .errors import NotAlive, ReceiveTimeout, SocketAlreadyClosed, StartupTimeout
from .ioloop import ChannelStatus, IOLoopWorker, SendMessage, StartChannel, StopChannel
from .transport import ChannelKind, ZmqTransport, env_float

log = logging.getLogger("ipychan.channels")


class MessageQueue:
    "FIFO of (idents, msg) pairs that starts at `capacity` and doubles instead of dropping."

    def __init__(self, capacity:int=10):
        self.capacity = capacity
        self.items = deque()
        self.cond = threading.Condition()

    def __len__(self):
        with self.cond: return len(self.items)

    def put(self, idents: list[bytes], msg: dict):
        with self.cond:
            if len(self.items) >= self.capacity:
                self.capacity *= 2
                dbg(f"message queue grown to {self.capacity}")
            self.items.append((idents, msg))
            self.cond.notify()

    def get(self, timeout:float|None=None)->tuple|None:
        "Pop the oldest pair. Without `timeout` return None when empty; with it wait, then raise ReceiveTimeout."
        with self.cond:
            if timeout is not None and not self.cond.wait_for(lambda: len(self.items) > 0, timeout):
                raise ReceiveTimeout(f"no message within {timeout}s")
            return self.items.popleft() if self.items else None


class Channel(ABC):
    "Typed path to a kernel: fixed kind and endpoint plus the start/stop contract."

    def __init__(self, kind:ChannelKind|str, endpoint:str):
        self._kind = ChannelKind(kind)
        self._endpoint = endpoint

    @property
    def kind(self)->ChannelKind: return self._kind

    @property
    def endpoint(self)->str: return self._endpoint

    @abstractmethod
    def start(self, identity=None): ...

    @abstractmethod
    def stop(self): ...

    @abstractmethod
    def is_alive(self)->bool: ...

    def __repr__(self): return f"<{type(self).__name__} {self.kind.value} {self.endpoint} alive={self.is_alive()}>"


class SyncChannel(Channel):
    "Channel whose sends and receives block the calling thread."

    def __init__(self, kind:ChannelKind|str, endpoint:str, session: Session|None=None, transport: ZmqTransport|None=None):
        super().__init__(kind, endpoint)
        self.session = session
        self.transport = transport or ZmqTransport()
        self.socket = None

    def is_alive(self)->bool: return self.socket is not None

    def start(self, identity=None):
        "Connect the socket, routed as `identity`; no-op if already connected."
        if self.is_alive(): return
        self.socket = self.transport.connect(self.kind, self.endpoint, identity)

    def stop(self):
        if not self.is_alive(): return
        self._close_socket()

    def _close_socket(self, linger:int|None=None):
        sock, self.socket = self.socket, None
        if sock is None: return
        try: self.transport.close(sock, linger)
        except SocketAlreadyClosed: dbg(f"{self.kind.value} socket already closed")

    def _require_alive(self, op:str):
        if not self.is_alive(): raise NotAlive(f"{op} on stopped {self.kind.value} channel")

    def send(self, msg_type, content: dict|None=None, parent: dict|None=None, metadata: dict|None=None,
        buffers: list[bytes]|None=None)->dict:
        "Sign and send a message; `msg_type` may also be a full message dict. Returns the sent message."
        self._require_alive("send")
        return self.session.send(self.socket, msg_type, content, parent=parent, metadata=metadata, buffers=buffers)

    def recv_with_identity(self)->tuple:
        "Block for the next message and return (idents, msg)."
        self._require_alive("receive")
        return self.session.recv(self.socket, mode=0)

    def receive(self)->dict:
        "Block for the next message, dropping the identity envelope."
        return self.recv_with_identity()[1]


class AsyncChannel(Channel):
    "Channel whose socket lives on an IOLoopWorker; arrivals are buffered for polling."

    def __init__(self, kind:ChannelKind|str, endpoint:str, worker: IOLoopWorker|None, capacity:int=10,
        start_timeout:float|None=None):
        super().__init__(kind, endpoint)
        self.worker = worker
        self.queue = MessageQueue(capacity)
        self.status = ChannelStatus.STOPPED
        self.status_cond = threading.Condition()
        self.start_timeout = env_float("IPYCHAN_START_TIMEOUT", 0.5) if start_timeout is None else start_timeout
        if worker is not None: worker.attach(self)

    def is_alive(self)->bool: return self.worker is not None and self.status != ChannelStatus.STOPPED

    def set_status(self, status: ChannelStatus, expect: ChannelStatus|None=None)->bool:
        "Worker-side transition; skipped unless the current status is `expect` (when given)."
        with self.status_cond:
            if expect is not None and self.status != expect: return False
            self.status = ChannelStatus(status)
            self.status_cond.notify_all()
        return True

    def start(self, identity=None):
        "Ask the worker to open the socket and wait until it confirms, else raise StartupTimeout."
        if self.is_alive(): return
        if self.worker is None: raise StartupTimeout(f"{self.kind.value} channel has no I/O loop worker")
        self.worker.post(StartChannel(self.kind, self.endpoint, identity))
        with self.status_cond: ok = self.status_cond.wait_for(self.is_alive, self.start_timeout)
        if not ok: raise StartupTimeout(f"{self.kind.value} channel not alive after {self.start_timeout}s")

    def stop(self):
        "Tell the worker to close the socket; does not wait for it."
        if not self.is_alive(): return
        self.worker.post(StopChannel(self.kind))
        self.set_status(ChannelStatus.STOPPED)

    def send(self, msg_type:str, content: dict|None=None, parent: dict|None=None, metadata: dict|None=None):
        if self.worker is None: raise NotAlive(f"send on {self.kind.value} channel without an I/O loop worker")
        self.worker.post(SendMessage(self.kind, msg_type, content, parent, metadata))

    def enqueue_delivery(self, idents: list[bytes], msg: dict): self.queue.put(idents, msg)

    def receive(self, timeout:float|None=None)->tuple|None:
        "Return the oldest (idents, msg); see `MessageQueue.get` for `timeout`."
        return self.queue.get(timeout)

    def get_message(self, timeout:float|None=None)->dict|None:
        item = self.receive(timeout)
        return None if item is None else item[1]

    def msg_ready(self)->bool: return len(self.queue) > 0


_active_timers = set()
_timers_lock = threading.Lock()

def active_timers()->set:
    "Snapshot of the timers currently scheduled."
    with _timers_lock: return set(_active_timers)


class RepeatingTimer(threading.Thread):
    "Call `callback` immediately and then every `interval` seconds until cancelled."

    def __init__(self, interval:float, callback, name:str="heartbeat-timer"):
        super().__init__(daemon=True, name=name)
        store_attr("interval,callback")
        self.cancelled = threading.Event()

    def start(self):
        with _timers_lock: _active_timers.add(self)
        super().start()

    def run(self):
        try:
            while not self.cancelled.is_set():
                try: self.callback()
                except Exception: log.exception("%s callback failed", self.name)
                if self.cancelled.wait(self.interval): break
        finally: self._unregister()

    def cancel(self):
        self.cancelled.set()
        self._unregister()

    def _unregister(self):
        with _timers_lock: _active_timers.discard(self)

    @property
    def active(self)->bool:
        with _timers_lock: return self in _active_timers


class HeartbeatChannel(SyncChannel):
    """Liveness monitor on the kernel's heartbeat socket.

    Each timer firing checks for the reply to the previous probe, replaces the socket when it is missing, and
    sends a new probe unless paused. Channels start paused; call `unpause` to begin probing.
    """
    probe = b"ping"

    def __init__(self, endpoint:str, session: Session|None=None, transport: ZmqTransport|None=None,
        time_to_dead:float|None=None):
        super().__init__(ChannelKind.HEARTBEAT, endpoint, session, transport)
        self.time_to_dead = env_float("IPYCHAN_TIME_TO_DEAD", 1.0) if time_to_dead is None else time_to_dead
        self.timer = None
        self.identity = None
        self.beating, self.paused, self.sent = True, True, False
        self.reconnects = self.cycles = 0
        self.lock = threading.RLock()

    def is_alive(self)->bool:
        timer = self.timer
        return timer is not None and timer.active

    def start(self, identity=None):
        "Connect and start probing every `time_to_dead` seconds, first cycle immediately."
        if self.is_alive(): return
        with self.lock:
            self._close_socket(linger=0)
            self.identity = identity
            self._connect()
            self.beating, self.paused, self.sent = True, True, False
            self.timer = RepeatingTimer(self.time_to_dead, self.beat)
        self.timer.start()

    def stop(self):
        if self.timer is None and self.socket is None: return
        timer, self.timer = self.timer, None
        if timer is not None:
            timer.cancel()
            if timer is not threading.current_thread() and timer.is_alive(): timer.join(timeout=1)
        with self.lock: self._close_socket(linger=0)

    def beat(self):
        "Run one probe cycle."
        with self.lock:
            if self.timer is None: return
            self.cycles += 1
            # a failed reconnect leaves no socket; retry before probing
            if self.socket is None: self._connect()
            elif self.sent:
                self.sent = False
                if self.transport.recv(self.socket, nonblocking=True) is None: self._reconnect()
                elif not self.beating:
                    log.info("Heartbeat on %s recovered", self.endpoint)
                    self.beating = True
            if self.paused: return
            self.transport.send(self.socket, self.probe)
            self.sent = True

    def _connect(self): self.socket = self.transport.connect(self.kind, self.endpoint, self.identity)

    def _reconnect(self):
        if self.beating: log.warning("Heartbeat on %s missed; reconnecting", self.endpoint)
        self.beating = False
        self._close_socket(linger=0)
        self.reconnects += 1
        self._connect()

    def _require_alive(self, op:str):
        if not self.is_alive(): raise NotAlive(f"{op} on stopped heartbeat channel")

    def is_beating(self)->bool:
        self._require_alive("is_beating")
        with self.lock: return self.beating

    def pause(self):
        "Stop sending probes; socket and timer stay up."
        self._require_alive("pause")
        with self.lock: self.paused = True

    def unpause(self):
        self._require_alive("unpause")
        with self.lock: self.paused = False
