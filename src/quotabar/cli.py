import argparse

from quotabar.config import Config


def parse_args(argv: "list[str] | None" = None) -> "Config":
    """
    builds the Config from the environment, with command line
    flags taking precedence.
    """
    parser = argparse.ArgumentParser(
        prog="quotabar",
        description="Usage, quota and cost monitor for LLM providers",
    )
    parser.add_argument(
        "--providers",
        dest="providers",
        default=None,
        help="Comma separated provider ids to fetch (default: all)",
    )
    parser.add_argument(
        "--watch",
        dest="watch",
        action="store_true",
        help="Keep fetching on a fixed interval until interrupted",
    )
    parser.add_argument(
        "--watch.interval",
        dest="refresh_interval",
        type=float,
        default=None,
        help="Seconds between fetch cycles in watch mode (default: 300)",
    )
    parser.add_argument(
        "--fetch.timeout",
        dest="fetch_timeout",
        type=float,
        default=None,
        help="Per-provider fetch timeout in seconds (default: 30)",
    )
    parser.add_argument(
        "--web.listen-address",
        dest="listen_address",
        default="",
        help="Address to expose metrics on, e.g. :9186 (default: disabled)",
    )
    parser.add_argument(
        "--debug.capture-dir",
        dest="debug_capture_dir",
        default=None,
        help="Write raw provider payloads to this directory (sensitive)",
    )
    parser.add_argument(
        "--credentials.skip-import",
        dest="skip_credential_import",
        action="store_true",
        help="Do not copy OAuth tokens from provider tool files at startup",
    )
    parser.add_argument(
        "--log.level",
        dest="log_level",
        default="info",
        choices=["debug", "info", "warning", "error"],
        help="Log level (default: info)",
    )

    args = parser.parse_args(argv)
    config = Config.from_env()
    if args.providers is not None:
        config.providers = [p.strip().lower() for p in args.providers.split(",") if p.strip()]
    if args.refresh_interval is not None:
        if args.refresh_interval <= 0:
            parser.error("--watch.interval must be positive")
        config.refresh_interval = args.refresh_interval
    if args.fetch_timeout is not None:
        if args.fetch_timeout <= 0:
            parser.error("--fetch.timeout must be positive")
        config.fetch_timeout = args.fetch_timeout
    if args.debug_capture_dir is not None:
        config.debug_capture_dir = args.debug_capture_dir
    if args.skip_credential_import:
        config.import_credentials = False
    config.watch = args.watch
    config.listen_address = args.listen_address
    config.log_level = args.log_level
    return config
