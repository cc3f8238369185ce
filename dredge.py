"""
dredge - command line client for the Docker Registry V2 API

Lists repositories and tags, shows manifests and checks that a registry
speaks the V2 API.
"""

import argparse
import asyncio
import json
import sys
from typing import List, Optional

import httpx
import yaml

from config_manager import ConfigManager, RegistryConfig
from debug_logger import ContextLogger, LOG_LEVELS, configure_logging
from mock_data import MOCK_REGISTRY_URL, MockRegistryData
from registry_client import ManifestInfo, RegistryClient, __version__
from registry_errors import ConfigError, OperationNotSupported, RegistryError

logger = ContextLogger("dredge")

# Name of the tag used when `show` gets none
LATEST = "latest"

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_UNSUPPORTED = 2


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(prog="dredge", description="A Docker Registry CLI tool")

    parser.add_argument(
        "-r", "--registry",
        help="Registry host or URL (default: registry_url from the config file)"
    )

    parser.add_argument(
        "-c", "--config",
        help="Path to a JSON config file (default: platform config directory)"
    )

    parser.add_argument(
        "--log-level",
        choices=list(LOG_LEVELS),
        nargs="?",
        const="info",
        default=None,
        metavar="LEVEL",
        help="Logging level: " + ", ".join(LOG_LEVELS) + " (default: info)"
    )

    parser.add_argument(
        "--log-file",
        help="Write logs to this file instead of stderr"
    )

    parser.add_argument(
        "--timeout",
        type=float,
        help="Timeout in seconds for each HTTP request"
    )

    parser.add_argument(
        "--deadline",
        type=float,
        help="Abort the whole command after this many seconds"
    )

    parser.add_argument(
        "--max-pages",
        type=int,
        help="Maximum number of pages to follow when listing"
    )

    parser.add_argument(
        "--insecure",
        action="store_true",
        help="Do not verify the registry TLS certificate"
    )

    parser.add_argument(
        "--mock",
        action="store_true",
        help="Use a built-in mock registry instead of the network"
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"dredge {__version__}"
    )

    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")
    subparsers.required = True

    catalog = subparsers.add_parser("catalog", help="List the repositories in the registry")
    catalog.add_argument("-n", "--page-size", type=int, help="Number of repositories per page")

    tags = subparsers.add_parser("tags", help="List the tags of a repository")
    tags.add_argument("name", help="Repository name")

    show = subparsers.add_parser("show", help="Show the manifest of a tagged image")
    show.add_argument("image", help="Repository name")
    show.add_argument("tag", nargs="?", default=LATEST, help="Tag or digest (default: latest)")
    show.add_argument(
        "-o", "--output",
        choices=["yaml", "json"],
        default="yaml",
        help="Output format (default: yaml)"
    )

    delete = subparsers.add_parser("delete", help="Delete the manifest of a tagged image")
    delete.add_argument("image", help="Repository name")
    delete.add_argument("tag", help="Tag to delete")

    subparsers.add_parser("check", help="Check that the registry supports the V2 API")

    return parser.parse_args(argv)


def load_config(args: argparse.Namespace) -> RegistryConfig:
    """Merge the config file with command line overrides"""
    config_manager = ConfigManager(config_file=args.config)
    if not config_manager.explicit and config_manager.ensure_config():
        logger.info("Created default config file", config_file=config_manager.config_file)
    logger.debug("Configuration", **config_manager.get_config_info())
    config = config_manager.get_registry_config()

    if args.mock:
        config.registry_url = MOCK_REGISTRY_URL
    elif args.registry:
        config.registry_url = args.registry
    if args.log_level:
        config.log_level = args.log_level
    if args.timeout is not None:
        config.timeout = args.timeout
    if args.max_pages is not None:
        config.max_pages = args.max_pages
    if args.insecure:
        config.verify_tls = False
    if getattr(args, "page_size", None) is not None:
        config.page_size = args.page_size

    if args.deadline is not None and args.deadline <= 0:
        raise ConfigError("deadline must be a positive number")

    config.validate()
    return config


def render_manifest(info: ManifestInfo, output: str) -> str:
    """Render a manifest and its identifying headers as YAML or JSON"""
    data = info.to_dict()
    if output == "json":
        return json.dumps(data, indent=2)
    return yaml.safe_dump(data, sort_keys=False, default_flow_style=False).rstrip("\n")


async def run_command(args: argparse.Namespace, config: RegistryConfig,
                      transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
    """Dispatch one subcommand and print its result to stdout"""
    if args.command == "delete":
        raise OperationNotSupported(f"Deleting {args.image}:{args.tag} is not supported")

    async with RegistryClient(config, transport=transport) as client:
        try:
            if args.command == "check":
                await client.check_api_version()
                print("Ok")
            elif args.command == "catalog":
                for repository in await client.get_catalog():
                    print(repository)
            elif args.command == "tags":
                for tag in await client.get_tags(args.name):
                    print(tag)
            elif args.command == "show":
                info = await client.get_manifest(args.image, args.tag)
                print(render_manifest(info, args.output))
        finally:
            logger.debug("API calls made", count=len(client.api_calls))


def main(argv: Optional[List[str]] = None, transport: Optional[httpx.AsyncBaseTransport] = None) -> int:
    """Main entry point"""
    args = parse_arguments(argv)
    configure_logging(args.log_level or "info", args.log_file)

    try:
        config = load_config(args)
        if config.log_level != (args.log_level or "info"):
            configure_logging(config.log_level, args.log_file)

        if args.mock and transport is None:
            transport = MockRegistryData().transport()

        logger.debug("Running command", command=args.command, registry=config.registry_url)
        operation = run_command(args, config, transport=transport)
        if args.deadline is not None:
            asyncio.run(asyncio.wait_for(operation, timeout=args.deadline))
        else:
            asyncio.run(operation)
    except OperationNotSupported as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_UNSUPPORTED
    except RegistryError as e:
        logger.debug("Command failed", error_type=type(e).__name__)
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_ERROR
    except asyncio.TimeoutError:
        print(f"Error: {args.command} did not finish within {args.deadline} seconds", file=sys.stderr)
        return EXIT_ERROR

    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
