"""mcp-toolhost: JSON-RPC server exposing a registry of schema-described tools."""

import asyncio
import logging
import sys

from .config import ConfigError, ServerConfig
from .server import build_dispatcher, create_app, serve_stdio


def main(config: ServerConfig = None):
    """
    Main entry point for the tool host.

    Loads configuration from the environment, registers the built-in tools
    and serves over the configured transport until interrupted.
    """
    config = config or ServerConfig.from_environment()

    # stdout carries protocol traffic on the stdio transport; log to stderr.
    logging.basicConfig(
        level=config.log_level,
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    dispatcher = build_dispatcher(config)

    if config.transport == "stdio":
        try:
            asyncio.run(serve_stdio(dispatcher))
        finally:
            dispatcher.close()
        return

    import uvicorn

    uvicorn.run(
        create_app(dispatcher),
        host=config.host,
        port=config.port,
        log_level=config.log_level.lower(),
    )


def run():
    """Synchronous wrapper for main() to use as console script entry point."""
    try:
        main()
    except KeyboardInterrupt:
        print("\nmcp-toolhost stopped.", file=sys.stderr)
        sys.exit(0)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(2)
    except Exception as e:
        print(f"Fatal error: {e}", file=sys.stderr)
        sys.exit(1)


__version__ = "0.1.0"
__all__ = ["main", "run", "create_app", "build_dispatcher", "serve_stdio"]
