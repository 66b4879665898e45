"""muxclaw: chat-channel to coding-agent bridge over a filesystem job queue."""

__version__ = "0.1.0"
