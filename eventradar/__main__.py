"""Entry point for running the eventradar HTTP server."""

import argparse
import logging
import sys

import structlog
import uvicorn

from eventradar.models.config import RadarConfig


def configure_logging(level_name: str) -> None:
    """Route stdlib and structlog output through one level setting."""
    level = getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler()],
    )
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(level),
    )

    # Reduce verbosity for third-party libraries
    logging.getLogger("asyncpg").setLevel(logging.WARNING)
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def main(argv=None) -> int:
    """Run the HTTP server."""
    config = RadarConfig()

    parser = argparse.ArgumentParser(description="eventradar API server")
    parser.add_argument("--host", default=config.http_host, help="Interface to bind")
    parser.add_argument("--port", type=int, default=config.http_port, help="Port to listen on")
    parser.add_argument("--log-level", default=config.log_level, help="Logging level")
    args = parser.parse_args(argv)

    configure_logging(args.log_level)
    logging.getLogger(__name__).info(f"Starting HTTP server on {args.host}:{args.port}")

    uvicorn.run(
        "eventradar.http_server:app",
        host=args.host,
        port=args.port,
        reload=config.debug,
        log_level=args.log_level.lower(),
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
