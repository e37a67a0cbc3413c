"""WhatsApp MCP CLI - Command-line interface for the WhatsApp MCP bridge.

This module provides command-line tools for:
- Starting the MCP server (stdio or streamable HTTP)
- Inspecting the effective configuration
- Listing the exposed tools

Example:
    # Start over stdio (for local MCP clients)
    whatsapp-mcp serve

    # Start the streamable HTTP transport
    whatsapp-mcp serve --transport http --port 3000

    # Show the merged configuration
    whatsapp-mcp config show
"""

import argparse
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path

from whatsapp_mcp.observability import configure_logging
from whatsapp_mcp.server.config import Config, load_config
from whatsapp_mcp.tools.catalog import get_tool_catalog

logger = logging.getLogger(__name__)


def _load(args: argparse.Namespace) -> Config:
    config = load_config(Path(args.config) if args.config else None)

    overrides = {}
    if getattr(args, "host", None):
        overrides["host"] = args.host
    if getattr(args, "port", None):
        overrides["port"] = args.port
    if overrides:
        config.http = replace(config.http, **overrides)

    if getattr(args, "transport", None):
        config.server = replace(config.server, transport=args.transport)

    return config


# =============================================================================
# Commands
# =============================================================================


def serve_command(args: argparse.Namespace) -> int:
    """Start the MCP server.

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    from whatsapp_mcp.server.main import serve

    try:
        config = _load(args)
    except ValueError as e:
        logger.error("Invalid configuration: %s", e)
        return 1

    configure_logging(
        args.log_level or config.server.log_level,
        structured=config.observability.structured_logging,
        log_file=config.server.log_file,
    )

    try:
        serve(config)
        return 0
    except KeyboardInterrupt:
        return 0


def config_show(args: argparse.Namespace) -> int:
    """Print the effective configuration as JSON."""
    try:
        config = _load(args)
    except ValueError as e:
        logger.error("Invalid configuration: %s", e)
        return 1

    print(json.dumps(config.to_dict(), indent=2))
    return 0


def tools_list(args: argparse.Namespace) -> int:
    """Print the exposed tools."""
    catalog = get_tool_catalog()
    if args.json:
        payload = [
            {"name": name, "description": meta["description"], "inputSchema": meta["parameters"]}
            for name, meta in catalog.items()
        ]
        print(json.dumps(payload, indent=2))
        return 0

    width = max(len(name) for name in catalog)
    for name, meta in catalog.items():
        print(f"{name.ljust(width)}  {meta['description']}")
    return 0


# =============================================================================
# Main CLI
# =============================================================================


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI.

    Returns:
        Configured ArgumentParser
    """
    parser = argparse.ArgumentParser(
        prog="whatsapp-mcp",
        description="WhatsApp MCP - bridge a WhatsApp Web session to MCP clients",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Start over stdio
  whatsapp-mcp serve

  # Start the streamable HTTP transport
  whatsapp-mcp serve --transport http --host 0.0.0.0 --port 3000

  # Show the merged configuration
  whatsapp-mcp config show --config whatsapp_mcp.yml

  # List tools
  whatsapp-mcp tools list
        """,
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Set logging level (default: from configuration)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    # serve
    serve_parser = subparsers.add_parser("serve", help="Start the MCP server")
    serve_parser.add_argument("--transport", choices=["stdio", "http"], help="Transport mode")
    serve_parser.add_argument("--host", help="HTTP bind address")
    serve_parser.add_argument("--port", type=int, help="HTTP bind port")
    serve_parser.add_argument("--config", "-c", help="Path to whatsapp_mcp.yml")
    serve_parser.set_defaults(func=serve_command)

    # config show
    config_parser = subparsers.add_parser("config", help="Configuration commands")
    config_subparsers = config_parser.add_subparsers(dest="config_command", help="Config subcommand")
    show_parser = config_subparsers.add_parser("show", help="Show the effective configuration")
    show_parser.add_argument("--config", "-c", help="Path to whatsapp_mcp.yml")
    show_parser.set_defaults(func=config_show)

    # tools list
    tools_parser = subparsers.add_parser("tools", help="Tool catalog commands")
    tools_subparsers = tools_parser.add_subparsers(dest="tools_command", help="Tools subcommand")
    list_parser = tools_subparsers.add_parser("list", help="List the exposed tools")
    list_parser.add_argument("--json", action="store_true", help="Print names, descriptions and schemas as JSON")
    list_parser.set_defaults(func=tools_list)

    return parser


def main() -> int:
    """Main entry point for the CLI.

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    parser = create_parser()
    args = parser.parse_args()

    # Configure logging (serve reconfigures it from the loaded configuration)
    logging.basicConfig(
        level=getattr(logging, args.log_level or "INFO"),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    if not args.command:
        parser.print_help()
        return 1

    if hasattr(args, "func"):
        return args.func(args)

    if args.command == "config":
        parser.parse_args(["config", "--help"])
    elif args.command == "tools":
        parser.parse_args(["tools", "--help"])
    else:
        parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
