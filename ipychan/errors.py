class ChannelError(Exception):
    "Base class for channel lifecycle errors."


class StartupTimeout(ChannelError, TimeoutError):
    "An async channel did not report alive before the startup deadline."


class ReceiveTimeout(ChannelError, TimeoutError):
    "No message arrived before the receive deadline."


class NotAlive(ChannelError, RuntimeError):
    "Operation requires a running channel."


class SocketAlreadyClosed(ChannelError):
    "The transport no longer has a socket for this handle."
