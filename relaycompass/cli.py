import logging
import signal
import sys
import threading
import time
from pathlib import Path
from typing import Optional

import click
from rich.console import Console

from . import __version__
from .api import LocationClient
from .config import (
    DEFAULT_TIMEOUT_MS, DEFAULT_WORKERS, DISTANCE_STEP, MAX_DISTANCE_LIMIT,
    MAX_TIMEOUT_MS, MAX_WORKERS, MIN_TIMEOUT_MS, MIN_WORKERS, Config,
)
from .distance import filter_by_distance
from .errors import CompassError, OperationCancelled
from .logging_setup import LOG_LEVELS, parse_log_level, setup_logging
from .models import AntiCensorship, IPVersion, Location, UserLocation
from .output import ConsoleOutput, sort_by_latency
from .probe import Dispatcher, PingerFactory
from .relays import get_locations, get_relays_file_path, parse_relays_file


logger = logging.getLogger(__name__)

console = Console()


def load_locations(config: Config) -> list[Location]:
    """Read relays.json and apply the relay filters"""
    start = time.perf_counter()
    path = config.relays_file or get_relays_file_path()
    data = parse_relays_file(path)
    locations, _ = get_locations(
        data,
        anti_censorship=config.anti_censorship,
        daita=config.daita,
        ip_version=config.ip_version,
    )
    logger.debug("Get locations completed in %.3fs", time.perf_counter() - start)
    return locations


def fetch_user_location(cancel: threading.Event) -> UserLocation:
    """Ask the Mullvad API where we are"""
    start = time.perf_counter()
    with LocationClient() as client:
        user = client.get_user_location(cancel)
    logger.debug("User location fetch completed in %.3fs", time.perf_counter() - start)
    return user


def ping(config: Config, locations: list[Location], output: ConsoleOutput,
         cancel: threading.Event) -> list[Location]:
    """Ping locations with a progress bar"""
    dispatcher = Dispatcher(
        timeout_ms=config.timeout_ms,
        workers=config.workers,
        ip_version=config.ip_version,
        factory=PingerFactory(),
    )

    start = time.perf_counter()
    progress, task_id = output.create_progress(len(locations))
    with progress:
        results = dispatcher.run(
            locations,
            cancel=cancel,
            on_result=lambda _: progress.advance(task_id),
        )
    logger.debug("Ping locations completed in %.3fs", time.perf_counter() - start)
    return results


def run_best_server(config: Config, locations: list[Location], user: UserLocation,
                    output: ConsoleOutput, cancel: threading.Event):
    """Widen the search radius until relays are found, then show the fastest"""
    radius = DISTANCE_STEP
    nearby: list[Location] = []

    while not nearby:
        if cancel.is_set():
            raise OperationCancelled()

        nearby = filter_by_distance(locations, user.latitude, user.longitude, radius)
        if not nearby:
            radius += DISTANCE_STEP
            if radius > MAX_DISTANCE_LIMIT:
                raise CompassError(
                    f"no servers found within maximum search radius of {MAX_DISTANCE_LIMIT:.0f} km"
                )

    logger.debug("%d servers found within %.0f km", len(nearby), radius)

    ranked = sort_by_latency(ping(config, nearby, output, cancel))
    if ranked:
        output.print_best_server(ranked[0], config.ip_version)


def run_table(config: Config, locations: list[Location], user: UserLocation,
              output: ConsoleOutput, cancel: threading.Event):
    """Ping every relay within --max-distance and print them ranked"""
    limit = config.distance_limit
    nearby = filter_by_distance(locations, user.latitude, user.longitude, limit)

    if not nearby:
        output.print_message(f"No servers found within {limit:.0f} km of your location")
        return

    output.print_table(sort_by_latency(ping(config, nearby, output, cancel)), config.ip_version)


def run(config: Config, output: ConsoleOutput, cancel: threading.Event):
    """Full pipeline: relays -> user location -> distance -> ping -> output"""
    locations = load_locations(config)
    if not locations:
        raise CompassError("no servers found")
    logger.debug("Found %d matching servers", len(locations))

    user = fetch_user_location(cancel)

    if user.mullvad_exit_ip:
        output.print_message(
            "You are currently connected to Mullvad VPN. Pinging Mullvad servers "
            "from a Mullvad server does not provide meaningful results.\n"
            "Your location info:"
        )
        output.print_user_location(user)
        return

    if config.best_server_mode:
        run_best_server(config, locations, user, output, cancel)
    else:
        run_table(config, locations, user, output, cancel)


@click.command()
@click.option('-m', '--max-distance', type=click.FloatRange(min=0, min_open=True, max=MAX_DISTANCE_LIMIT),
              help='Maximum distance in km from your location (default: 500)')
@click.option('-a', '--anti-censorship', type=click.Choice([p.value for p in AntiCensorship if p.value]),
              help='Only relays supporting this anti-censorship protocol')
@click.option('-d', '--daita', is_flag=True,
              help='Only relays with DAITA enabled')
@click.option('-6', '--ipv6', is_flag=True,
              help='Ping IPv6 addresses')
@click.option('-t', '--timeout', default=DEFAULT_TIMEOUT_MS, type=click.IntRange(MIN_TIMEOUT_MS, MAX_TIMEOUT_MS),
              help='Ping timeout in milliseconds (default: 500)')
@click.option('-w', '--workers', default=DEFAULT_WORKERS, type=click.IntRange(MIN_WORKERS, MAX_WORKERS),
              help='Number of concurrent ping workers (default: 25)')
@click.option('-l', '--log-level', default='error', type=click.Choice(list(LOG_LEVELS), case_sensitive=False),
              help='Log level (default: error)')
@click.option('--relays-file', type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help='Use this relays.json instead of the Mullvad app cache')
@click.version_option(__version__, '-v', '--version', prog_name='relaycompass')
def main(max_distance: Optional[float], anti_censorship: Optional[str], daita: bool,
         ipv6: bool, timeout: int, workers: int, log_level: str,
         relays_file: Optional[Path]):
    """
    RelayCompass - find the Mullvad VPN relays with the lowest latency.

    Without filter options (-m, -a, -d, -6) only the single best relay
    near you is shown. With any filter option every matching relay is
    listed in a table, sorted by latency.

    Examples:

        relaycompass

        relaycompass -m 1000 -t 300

        relaycompass -a quic -6
    """
    setup_logging(parse_log_level(log_level))

    config = Config(
        max_distance=max_distance,
        anti_censorship=AntiCensorship.parse(anti_censorship or ''),
        daita=daita,
        ip_version=IPVersion.IPV6 if ipv6 else IPVersion.IPV4,
        timeout_ms=timeout,
        workers=workers,
        log_level=log_level,
        relays_file=relays_file,
    )
    logger.debug("Config: %s", config)

    output = ConsoleOutput(console)
    cancel = threading.Event()

    def on_signal(signum, frame):
        cancel.set()

    previous = {
        sig: signal.signal(sig, on_signal)
        for sig in (signal.SIGINT, signal.SIGTERM)
    }

    start = time.perf_counter()
    try:
        run(config, output, cancel)
    except OperationCancelled:
        console.print("\n[yellow]Interrupted[/]")
        sys.exit(130)
    except PermissionError as e:
        output.print_error(
            f"{e}. Unprivileged ICMP sockets are not permitted for this user "
            "(check net.ipv4.ping_group_range)."
        )
        sys.exit(1)
    except (CompassError, OSError) as e:
        output.print_error(str(e))
        sys.exit(1)
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)
        logger.debug("Total operation completed in %.3fs", time.perf_counter() - start)


if __name__ == '__main__':
    main()
