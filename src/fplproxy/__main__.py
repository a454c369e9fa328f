from .core import FplProxy
from .endpoints import FplEndpoints
from .fetching.results import FetchFailed, FetchSuccess
from .setup import setup_logging, load_config, LOGLEVEL_MAPPING
import argparse
import asyncio
import json
import sys
import logging


CONFIGFILE = "config/fplproxy_config.yaml"
LOGFILE_ENABLED_DEFAULT = False
LOGFILE = "logs/fplproxy.log"


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        prog='fplproxy',
        description='Fetch FPL API resources through the caching, retrying proxy core.'
    )
    parser.add_argument('--config', default=CONFIGFILE, help='Path to the YAML config file')
    parser.add_argument('--status', action='store_true',
                        help='Print the health document after fetching')
    parser.add_argument('resources', nargs='*', metavar='RESOURCE',
                        help="Resources as name[:arg...], e.g. bootstrap live:12 picks:123:12")
    return parser.parse_args(argv)


async def run(proxy: FplProxy, resources, show_status: bool) -> int:
    logger = logging.getLogger(__name__)
    exit_code = 0
    try:
        for resource_arg in resources:
            name, *args = resource_arg.split(':')
            try:
                result = await proxy.get_resource(name, *args)
            except ValueError as e:
                logger.error("%s", e)
                exit_code = 2
                continue

            if isinstance(result, FetchSuccess):
                print(json.dumps(result.payload, indent=2))
            elif isinstance(result, FetchFailed):
                print(json.dumps(result.error.to_error_body(f"Failed to fetch {resource_arg}"), indent=2))
                exit_code = 1
            else:
                logger.info("Fetch of %s cancelled", resource_arg)

        if show_status:
            print(json.dumps(proxy.get_health(), indent=2, default=str))
    finally:
        await proxy.shutdown()
    return exit_code


def main(argv=None) -> int:
    # Configure a basic logger to be able to log even before the configuration is loaded
    setup_logging(level=logging.INFO)
    logger = logging.getLogger(__name__)

    args = parse_args(argv)
    logger.info('Looking for config file at %s', args.config)
    config = load_config(args.config)

    loglevel = config.get('loglevel', 'info')
    logfile_enabled = config.get('logfile_enabled', LOGFILE_ENABLED_DEFAULT)
    log_everything = config.get('log_everything', False)
    max_logfile_size = config.get('max_logfile_size', 1024)
    logfile = config.get('logfile_path', LOGFILE) if logfile_enabled else None

    setup_logging(level=LOGLEVEL_MAPPING.get(loglevel, logging.INFO), logfile=logfile,
                  max_logfile_size_kb=max_logfile_size)

    # Reduce the default loglevel for the HTTP stack
    if not log_everything:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)
        logging.getLogger("asyncio").setLevel(logging.WARNING)

    if not args.resources and not args.status:
        logger.error("Nothing to do. Available resources: %s",
                     ', '.join(FplEndpoints().names))
        return 2

    proxy = FplProxy(config)
    try:
        return asyncio.run(run(proxy, args.resources, args.status))
    except KeyboardInterrupt:
        print("Shutting down")
        return 130


if __name__ == "__main__":
    sys.exit(main())
