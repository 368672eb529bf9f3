"""
SWARMGRAPH MAIN - Entry Point and CLI

Commands:
    serve    - Start the HTTP/WebSocket server
    config   - Print the effective configuration as JSON

Usage:
    # Start with config/swarmgraph.toml
    python main.py serve

    # Explicit config file and listener
    python main.py serve --config deploy/prod.toml --host 0.0.0.0 --port 9000

    # Development server with auto-reload
    python main.py serve --reload

    # Show what the server would run with
    python main.py config --config deploy/prod.toml
"""
import logging
import os
import sys
from pathlib import Path

# Add swarmgraph to path for imports
sys.path.insert(0, str(Path(__file__).parent))

from infrastructure.config import (
    CONFIG_ENV_VAR,
    ConfigError,
    configure_logging,
    load_config,
    resolve_config_path,
)


logger = logging.getLogger("swarmgraph.main")

CONFIG_HELP = f"Path to TOML config (default: ${CONFIG_ENV_VAR} or config/swarmgraph.toml)"


def run_server(host: str, port: int, workers: int = 1, reload: bool = False):
    """Run the API server with Granian."""
    from granian import Granian
    from granian.constants import Interfaces

    logger.info(f"Starting SwarmGraph server on {host}:{port}")

    granian = Granian(
        target="api.routes:app",
        address=host,
        port=port,
        interface=Interfaces.ASGI,
        workers=workers,
        reload=reload,
    )

    granian.serve()


def cmd_serve(args):
    """Handle serve command."""
    config = load_config(args.config)
    configure_logging(args.log_level or config.logging.level)

    # Granian imports api.routes in its own worker; pass the file along
    os.environ[CONFIG_ENV_VAR] = str(resolve_config_path(args.config).resolve())

    host = args.host or config.server.host
    port = args.port or config.server.port
    run_server(host, port, reload=args.reload)


def cmd_config(args):
    """Handle config command."""
    import msgspec

    config = load_config(args.config)
    print(msgspec.json.format(msgspec.json.encode(config.to_dict()), indent=2).decode())


def main():
    """Main entry point with subcommands."""
    import argparse

    parser = argparse.ArgumentParser(
        description="SwarmGraph - Live Graph of Multi-Agent Swarm Activity",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # serve command
    serve_parser = subparsers.add_parser("serve", help="Start API server")
    serve_parser.add_argument("--config", help=CONFIG_HELP)
    serve_parser.add_argument("--host", help="Host to bind to (overrides [server] host)")
    serve_parser.add_argument("--port", type=int, help="Port to bind to (overrides [server] port)")
    serve_parser.add_argument("--reload", action="store_true", help="Reload on source changes")
    serve_parser.add_argument("--log-level", help="Overrides [logging] level")
    serve_parser.set_defaults(func=cmd_serve)

    # config command
    config_parser = subparsers.add_parser("config", help="Print effective configuration")
    config_parser.add_argument("--config", help=CONFIG_HELP)
    config_parser.set_defaults(func=cmd_config)

    args = parser.parse_args()

    if args.command is None:
        # Default to serve
        args = parser.parse_args(["serve"])

    try:
        args.func(args)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
