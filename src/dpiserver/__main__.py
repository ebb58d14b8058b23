"""
=============================================================================
DPISERVER CLI ENTRY POINT
=============================================================================

    # As started by the browser's launcher (listening socket on stdin)
    python -m dpiserver file

    # Development: bind a Unix socket or a TCP port yourself
    python -m dpiserver zip --socket /tmp/zip.dpi --archiver 7z
    python -m dpiserver man --port 5000 --log-level DEBUG

    # Filter daemons talk to their one peer over stdin/stdout
    python -m dpiserver dls --dls-dir ~/.dillo/dls

    # Gopher downloader
    python -m dpiserver gopher --download gopher://example.org/0/a.txt a.txt

Settings come from the DPI_* environment variables (see DaemonConfig);
command-line flags override them.

=============================================================================
"""

import argparse
import sys

from . import __version__
from .config import ARCHIVER_CHOICES, LOG_LEVELS, DaemonConfig
from .daemon import Daemon, setup_logging
from .handlers import HANDLERS
from .handlers.gopher import download


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dpiserver",
        description="Local-resource protocol daemons (file, zip, man, dls, gopher)",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m dpiserver file                          # listening socket on stdin
  python -m dpiserver file --port 5000              # bind a TCP port
  python -m dpiserver zip --socket /tmp/zip.dpi     # bind a Unix socket
  python -m dpiserver gopher --download URL FILE    # save a gopher item
        """
    )

    parser.add_argument(
        "daemon",
        choices=sorted(HANDLERS),
        help="Which daemon to run"
    )

    # ─────────────────────────────────────────────────────────────────────
    # LISTENING ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    listening = parser.add_argument_group("listening")
    listening.add_argument(
        "--socket", "-s",
        dest="socket_path",
        help="Bind a Unix domain socket at this path"
    )
    listening.add_argument(
        "--host", "-H",
        help="Host for --port (default: 127.0.0.1)"
    )
    listening.add_argument(
        "--port", "-p",
        type=int,
        help="Bind a TCP port instead of using the inherited socket"
    )
    listening.add_argument(
        "--listen-fd",
        type=int,
        help="Descriptor of an inherited listening socket (default: 0)"
    )

    # ─────────────────────────────────────────────────────────────────────
    # SECURITY ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    security = parser.add_argument_group("security")
    security.add_argument(
        "--keys-file",
        help="Shared secret file (default: ~/.dillo/dpid_comm_keys)"
    )
    security.add_argument(
        "--no-auth",
        action="store_true",
        help="Do not require an auth record (development only)"
    )

    # ─────────────────────────────────────────────────────────────────────
    # BACKEND ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    backends = parser.add_argument_group("backends")
    backends.add_argument(
        "--archiver",
        choices=ARCHIVER_CHOICES,
        help="External archiver for the zip daemon (default: unzip)"
    )
    backends.add_argument(
        "--dls-dir",
        help="Directory with local scripts for the dls daemon"
    )
    backends.add_argument(
        "--legacy-style",
        action="store_true",
        help="Start with plain <pre> listings instead of tables"
    )
    backends.add_argument(
        "--show-hidden",
        action="store_true",
        help="List dotfiles and editor backups too"
    )
    backends.add_argument(
        "--download",
        nargs=2,
        metavar=("URL", "OUTPUT"),
        help="gopher only: save the item at URL to OUTPUT and exit"
    )

    # ─────────────────────────────────────────────────────────────────────
    # META ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--log-level", "-l",
        choices=LOG_LEVELS,
        help="Logging level (default: INFO)"
    )
    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"dpiserver {__version__}"
    )
    return parser


def config_from_args(args: argparse.Namespace) -> DaemonConfig:
    """Start from the environment and apply the flags that were given."""
    config = DaemonConfig.from_env()

    for name in ("socket_path", "host", "port", "listen_fd", "keys_file",
                 "archiver", "dls_dir", "log_level"):
        value = getattr(args, name)
        if value is not None:
            setattr(config, name, value)

    if args.no_auth:
        config.require_auth = False
    if args.legacy_style:
        config.legacy_style = True
    if args.show_hidden:
        config.hide_dotfiles = False
    return config


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        config = config_from_args(args)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    setup_logging(config.log_level)

    if args.download:
        if args.daemon != "gopher":
            parser.error("--download is only available for the gopher daemon")
        url, output = args.download
        return download(url, output)

    try:
        daemon = Daemon(args.daemon, config)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    try:
        return daemon.run()
    except OSError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
