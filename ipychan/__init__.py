from importlib.metadata import PackageNotFoundError, version
from .channels import AsyncChannel, Channel, HeartbeatChannel, MessageQueue, SyncChannel
from .errors import ChannelError, NotAlive, ReceiveTimeout, SocketAlreadyClosed, StartupTimeout
from .manager import KernelChannels
from .transport import ChannelKind, ConnectionInfo

try:
    __version__ = version("ipychan")
except PackageNotFoundError:  # pragma: no cover - local editable without metadata
    __version__ = "0.0.0+local"

__all__ = ["AsyncChannel", "Channel", "ChannelError", "ChannelKind", "ConnectionInfo", "HeartbeatChannel",
    "KernelChannels", "MessageQueue", "NotAlive", "ReceiveTimeout", "SocketAlreadyClosed", "StartupTimeout",
    "SyncChannel", "__version__"]
