"""
API Weaver Server Entry Point

Command-line entry point that configures logging, loads configuration from
the environment and runs one of the four services under uvicorn:

    api-weaver --service api            # all-in-one API server (PORT, default 5000)
    api-weaver --service content        # content MCP service (CONTENT_MCP_PORT)
    api-weaver --service integration    # integration MCP service (INTEGRATION_MCP_PORT)
    api-weaver --service gateway        # gateway in front of both (GATEWAY_PORT)
"""

import argparse
import logging
import logging.handlers
import os
import sys
from pathlib import Path
from typing import List, Optional

import uvicorn

from ..config import Config
from .app import create_app
from .state import ServiceKind


def setup_logging(log_level: str = "INFO", log_dir: str = "") -> logging.Logger:
    """
    Set up console and optional rotating file logging.

    Args:
        log_level: Root log level name
        log_dir: Directory for api-weaver.log; empty disables file logging

    Returns:
        Logger instance for the main module
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(
        logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )
    root_logger.addHandler(console_handler)

    logger = logging.getLogger(__name__)

    if log_dir:
        try:
            Path(log_dir).mkdir(parents=True, exist_ok=True)
            file_handler = logging.handlers.RotatingFileHandler(
                os.path.join(log_dir, "api-weaver.log"),
                maxBytes=10 * 1024 * 1024,  # 10MB
                backupCount=5,
            )
            file_handler.setLevel(logging.DEBUG)  # More verbose in files
            file_handler.setFormatter(
                logging.Formatter(
                    "%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s"
                )
            )
            root_logger.addHandler(file_handler)
        except OSError as e:
            logger.warning(f"Could not set up file logging: {e}")

    return logger


def default_port(config: Config, service: ServiceKind) -> int:
    if service is ServiceKind.CONTENT:
        return config.content_mcp_port
    if service is ServiceKind.INTEGRATION:
        return config.integration_mcp_port
    if service is ServiceKind.GATEWAY:
        return config.gateway_port
    return config.port


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="api-weaver",
        description="Run an API Weaver service",
    )
    parser.add_argument(
        "--service",
        choices=[kind.value for kind in ServiceKind],
        default=ServiceKind.API.value,
        help="Which service to run (default: api)",
    )
    parser.add_argument("--host", help="Bind address (default: HOST or 0.0.0.0)")
    parser.add_argument("--port", type=int, help="Bind port (default depends on --service)")
    parser.add_argument("--log-level", help="Log level (default: LOG_LEVEL or INFO)")
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """Parse arguments, configure logging and serve until interrupted."""
    args = build_parser().parse_args(argv)

    try:
        config = Config.load_runtime_config()
    except ValueError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        sys.exit(2)

    log_level = args.log_level or config.log_level
    logger = setup_logging(log_level, config.log_dir)

    service = ServiceKind(args.service)
    host = args.host or config.host
    port = args.port or default_port(config, service)

    if not config.api_key:
        logger.warning("API_KEY is not set; every protected route will answer 500")

    app = create_app(config, service)
    logger.info(f"Listening on: {host}:{port}")
    uvicorn.run(app, host=host, port=port, log_level=log_level.lower(), access_log=True)


if __name__ == "__main__":
    main()
