"""Realtime change feed and live guestbook for the portfolio backend."""

from .realtime import ChangeFeedClient, ConnectionStatus, Subscription


def main() -> int:
    """Entrypoint proxy that defers importing the runtime until needed."""

    from .service import main as _service_main

    return _service_main()


__all__ = ["ChangeFeedClient", "ConnectionStatus", "Subscription", "main"]
