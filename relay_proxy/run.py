#!/usr/bin/env python3
"""
Relay Proxy - Launcher Script
Run this script to start the proxy server.
"""

import logging
import sys

from .app import create_app
from .config import get_config


LOG_FORMAT = '[%(asctime)s] [%(levelname)s] %(name)s: %(message)s'


def configure_logging(level: str) -> None:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root = logging.getLogger()
    root.addHandler(handler)
    root.setLevel(level.upper())


def main():
    """Start the proxy server."""
    config = get_config()
    configure_logging(config.LOG_LEVEL)
    app = create_app(config)

    print("=" * 60)
    print("  Relay Proxy - rewriting reverse proxy")
    print("=" * 60)
    print(f"  Server:    http://{config.HOST}:{config.PORT}")
    print("  Endpoint:  /go?url=<encoded target>")
    print(f"  Cache:     {config.MAX_CACHE_SIZE} documents, {config.CACHE_TTL:g}s TTL")
    print(f"  Debug:     {config.DEBUG}")
    print("=" * 60)
    print("  Press Ctrl+C to stop the server")
    print("=" * 60)

    try:
        app.run(
            host=config.HOST,
            port=config.PORT,
            debug=config.DEBUG,
            threaded=True
        )
    except KeyboardInterrupt:
        print("\n\nServer stopped.")
        sys.exit(0)


if __name__ == '__main__':
    main()
