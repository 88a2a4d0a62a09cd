#!/usr/bin/env python3
"""
htp-sync: HTTP Time Protocol client

Main entry point. This program:
1. Polls the Date header of one or more web servers
2. Refines each 1-second timestamp to a sub-second offset by bisection
3. Rejects false tickers and averages the rest
4. Reports the offset, or slews/steps the clock and tunes the kernel frequency

Usage:
    # Query only (default), debug output
    htp-sync -d www.example.com www.example.org

    # Adjust time smoothly
    htp-sync -a www.example.com

    # Daemon with kernel frequency discipline and a drift file
    htp-sync -D -x -f /var/lib/htp-sync/drift www.example.com https://www.example.org

    # Everything from a config file
    htp-sync --config /etc/htp-sync/config.toml
"""

import argparse
import logging
import logging.handlers
import os
import sys
from typing import Any, Dict, List, Optional

from . import __version__
from .config import ConfigError, SyncConfig, load_config
from .daemon import AlreadyRunningError, daemonize
from .engine.poll_scheduler import NoQuorumError, PollScheduler
from .interfaces.sync_result import CorrectionMode
from .output.clock_controller import ClockController
from .output.privileges import NullPrivileges, drop_privileges
from .timing.aggregator import MultiHostAggregator

logger = logging.getLogger('htp-sync')


def setup_logging(debug: int = 0, use_syslog: bool = False) -> None:
    """Configure the root logger once; verbosity comes from the config."""
    level = logging.DEBUG if debug else logging.INFO
    if use_syslog:
        handler = logging.handlers.SysLogHandler(address='/dev/log')
        handler.setFormatter(logging.Formatter('htp-sync[%(process)d]: %(message)s'))
        logging.basicConfig(level=level, handlers=[handler], force=True)
    else:
        logging.basicConfig(
            level=level,
            format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S',
            force=True
        )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='htp-sync',
        description='htp-sync: synchronize the system clock with web server Date headers',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Hosts:
    [http://|https://]host[:port][/path]   (maximum of 16)
    port defaults to 80 (443 for https) and 8080 for a proxy server
        """
    )

    parser.add_argument('hosts', nargs='*', metavar='host', help='Web server hostname or IP address')
    parser.add_argument('--config', '-c', help='Path to TOML configuration file')

    mode = parser.add_mutually_exclusive_group()
    mode.add_argument('-q', dest='mode', action='store_const', const='report',
                      help="Query only, don't make time changes (default)")
    mode.add_argument('-a', dest='mode', action='store_const', const='slew',
                      help='Adjust time smoothly')
    mode.add_argument('-s', dest='mode', action='store_const', const='step',
                      help='Set time')
    mode.add_argument('-x', dest='mode', action='store_const', const='frequency',
                      help='Adjust time and kernel clock frequency')

    parser.add_argument('-0', dest='http_version', action='store_const', const='0',
                        help='HTTP/1.0 request')
    ip = parser.add_mutually_exclusive_group()
    ip.add_argument('-4', dest='ip_version', action='store_const', const=4,
                    help='Force IPv4 name resolution only')
    ip.add_argument('-6', dest='ip_version', action='store_const', const=6,
                    help='Force IPv6 name resolution only')

    parser.add_argument('-d', dest='debug', action='count', help='Debug mode (repeat for more)')
    parser.add_argument('-D', dest='daemon', action='store_const', const=True, help='Daemon mode')
    parser.add_argument('-F', dest='foreground', action='store_const', const=True,
                        help='Run daemon in foreground')
    parser.add_argument('-i', dest='pid_file', help='Pid file')
    parser.add_argument('-l', dest='syslog', action='store_const', const=True,
                        help='Use syslog for output')
    parser.add_argument('-m', dest='min_sleep', type=int, help='Minimum poll interval (s)')
    parser.add_argument('-M', dest='max_sleep', type=int, help='Maximum poll interval (s)')
    parser.add_argument('-n', dest='use_proxy_env', action='store_const', const=False,
                        help='No proxy (ignore http_proxy environment variable)')
    parser.add_argument('-p', dest='precision', type=int, help='Precision, 1..9 (probes per host)')
    parser.add_argument('-P', dest='proxy', metavar='proxy[:port]', help='Proxy server')
    parser.add_argument('-t', dest='time_limit', action='store_const', const=False,
                        help='Turn off sanity time check')
    parser.add_argument('-u', dest='user', metavar='user[:group]', help='Run daemon as user')
    parser.add_argument('-k', dest='verify_cert', action='store_const', const=False,
                        help='Do not verify TLS certificates')
    parser.add_argument('-f', dest='drift_file', help='Drift file')
    parser.add_argument('--timeout', type=float, help='Socket timeout in seconds')
    parser.add_argument('-v', '--version', action='version', version=f'htp-sync version {__version__}')
    return parser


def build_config(args: argparse.Namespace, environ=None) -> SyncConfig:
    """Merge the config file with command-line overrides and validate."""
    settings: Dict[str, Any] = load_config(args.config)

    overrides = {
        key: getattr(args, key)
        for key in ('mode', 'http_version', 'ip_version', 'debug', 'daemon', 'foreground',
                    'pid_file', 'syslog', 'min_sleep', 'max_sleep', 'use_proxy_env',
                    'precision', 'proxy', 'time_limit', 'verify_cert', 'drift_file', 'timeout')
        if getattr(args, key) is not None
    }
    settings.update(overrides)
    if args.hosts:
        settings['hosts'] = list(args.hosts)
    if args.user:
        user, _, group = args.user.partition(':')
        settings['user'] = user
        settings['group'] = group or None

    config = SyncConfig.from_dict(settings)
    if config.daemon:
        config.syslog = True
    return config.validate(environ)


def build_scheduler(config: SyncConfig, privileges=None, clock=None) -> PollScheduler:
    aggregator = MultiHostAggregator(config)
    controller = ClockController(
        config.mode,
        clock=clock,
        privileges=privileges or NullPrivileges(),
        drift_file=config.drift_file,
        max_sleep=config.max_sleep,
    )
    return PollScheduler(config, aggregator, controller)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(args.debug or 0)

    try:
        config = build_config(args)
    except ConfigError as e:
        logger.error(str(e))
        return 1

    setup_logging(config.debug, config.syslog)

    # One must be root to change the system time
    if (config.mode.mutates_clock or config.continuous) and os.getuid() != 0:
        logger.error("Only root can change time")
        return 1

    if config.daemon:
        try:
            daemonize(config.pid_file)
        except AlreadyRunningError as e:
            logger.error(str(e))
            return 1

    if config.continuous:
        logger.info(f"htp-sync version {__version__} started")

    privileges = None
    if config.user:
        try:
            privileges = drop_privileges(config.user, config.group)
        except (KeyError, OSError) as e:
            logger.error(str(e))
            return 1

    scheduler = build_scheduler(config, privileges)

    if config.continuous:
        scheduler.run()
        return 0

    try:
        result = scheduler.run_once()
    except NoQuorumError as e:
        logger.error(str(e))
        return 1

    if config.mode is CorrectionMode.REPORT and config.debug:
        logger.info(f"{len(result.kept)} of {len(result.estimates)} servers used")
    return 0


if __name__ == '__main__':
    sys.exit(main())
