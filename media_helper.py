"""
MediaHelper entry point.

    media-helper                 resident mode: commands on stdin, MediaInfo lines on stdout
    media-helper toggle|next|previous
                                 one-shot transport command, then exit
    media-helper update          print one MediaInfo line, then exit
    media-helper --once          same as "update"
"""
import argparse
import asyncio
import sys

from media_session.config import DEBUG, HELPER, VERSION
from media_session.logging_config import get_logger, setup_logging
from media_session import COMMANDS, HelperProcess
from media_session.sources import get_source, list_source_names

logger = get_logger("media_helper")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="media-helper", description="Native media session bridge")
    parser.add_argument("command", nargs="?", type=str.lower, choices=COMMANDS,
                        help="run one command and exit")
    parser.add_argument("--once", action="store_true", help="print one MediaInfo line and exit")
    parser.add_argument("--source", default=HELPER["source"],
                        help=f"session source: auto, {', '.join(list_source_names())}")
    parser.add_argument("--log-level", default=DEBUG["log_level"], help="console log level")
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)

    setup_logging(
        console_level=args.log_level,
        console=DEBUG["log_to_console"],
        log_file=DEBUG["log_file"],
        max_bytes=DEBUG["log_rotation"]["max_bytes"],
        backup_count=DEBUG["log_rotation"]["backup_count"],
    )

    source = get_source(args.source)
    if source is None:
        logger.error(f"No usable session source ({args.source}) on this host")
        return 1

    helper = HelperProcess(
        source,
        debounce=HELPER["debounce_ms"] / 1000,
        poll_interval=HELPER["poll_interval"],
        thumbnail_size=HELPER["thumbnail_size"],
    )

    try:
        if args.command or args.once:
            return asyncio.run(helper.run_once(args.command))
        return asyncio.run(helper.run())
    except KeyboardInterrupt:
        return 0
    except Exception as e:
        logger.critical(f"Helper crashed: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
