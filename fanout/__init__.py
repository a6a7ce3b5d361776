"""fanout: backoff condition poller and parallel shell job runner."""

__version__ = "0.1.0"
