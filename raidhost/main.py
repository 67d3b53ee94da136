"""
raidhost - Automated raid hosting for Pokemon Scarlet/Violet

Connects every configured console, then keeps each one cycling through the
raid hosting loop:
- Request queue (user requests first, then the scheduled rotation)
- Seed injection and read-back verification
- Teleport to the den, open the lobby, wait for players
- Battle resolution and cooldown

Usage:
    raidhost --config pool.json [--catalog raids.txt] [--dens dens.json]
    raidhost --dry-run -v
"""

import argparse
import logging
import sys
import time
from pathlib import Path
from typing import Optional

from .config import PoolConfig, SessionConfig, load_config
from .console.cancel import CancelToken
from .console.mock_console import MockConsole
from .exceptions import CatalogFormatError, ConfigError, InvalidSlotIndexError, QueueFullError
from .games.pokemon_sv.den_locations import CoordinateSource
from .games.pokemon_sv.raid_catalog import load_catalog, parse_line
from .games.pokemon_sv.region_map import RegionMap
from .raids.request_queue import Priority, RaidRequest, RequestQueue
from .raids.supervisor import BotPoolSupervisor
from .tracking.raid_history import RaidHistory

logger = logging.getLogger(__name__)

STATUS_INTERVAL = 60.0


def _dry_run_coordinates(region_map: RegionMap) -> CoordinateSource:
    tables: dict[str, dict[str, tuple[float, float, float]]] = {}
    for region in region_map:
        tables[region.region_id] = {
            region_map.den_id(i): (float(i), 0.0, float(i))
            for i in range(region.first_index, region.last_index + 1)
        }
    return CoordinateSource.from_mapping(tables)


def _mock_transport(region_map: RegionMap):
    def build(session: SessionConfig, cancel: CancelToken) -> MockConsole:
        return MockConsole.with_raid_layout(region_map, cancel=cancel)
    return build


def build_supervisor(
    config: PoolConfig,
    dry_run: bool = False,
    catalog_path: Optional[str] = None,
    dens_path: Optional[str] = None,
    history_path: Optional[str] = None,
) -> BotPoolSupervisor:
    """Wire queue, catalog, coordinates and history into a supervisor."""
    region_map = RegionMap()

    catalog_path = catalog_path or config.catalog_path
    catalog = load_catalog(Path(catalog_path)) if catalog_path else []
    logger.info(f"Rotation catalog: {len(catalog)} raid(s)")

    dens_path = dens_path or config.dens_path
    if dens_path:
        coordinates = CoordinateSource.from_json(Path(dens_path))
    elif dry_run:
        coordinates = _dry_run_coordinates(region_map)
    else:
        raise ConfigError("No den coordinates configured (dens_path or --dens)")

    history_path = history_path or config.history_path
    history = RaidHistory.load(Path(history_path)) if history_path else RaidHistory()

    queue = RequestQueue(config.queue_max_per_user, config.queue_max_total)
    supervisor = BotPoolSupervisor(
        config, queue, coordinates, catalog=catalog, history=history, region_map=region_map,
    )
    factory = _mock_transport(region_map) if dry_run else None
    for session in config.sessions:
        supervisor.add_session(session, factory)
    return supervisor


def _log_statuses(supervisor: BotPoolSupervisor) -> None:
    for snapshot in supervisor.statuses().values():
        logger.info(snapshot.status_line())


def run(supervisor: BotPoolSupervisor) -> None:
    """Start every session and block until they all end or Ctrl+C."""
    logger.info("=" * 50)
    logger.info(f"raidhost starting {len(supervisor.statuses())} session(s)")
    logger.info("=" * 50)
    supervisor.start()

    last_status = time.monotonic()
    try:
        while not all(supervisor.join(sid, timeout=0) for sid in supervisor.statuses()):
            time.sleep(1.0)
            if time.monotonic() - last_status >= STATUS_INTERVAL:
                _log_statuses(supervisor)
                last_status = time.monotonic()
    except KeyboardInterrupt:
        logger.info("Stopping (Ctrl+C)...")
        supervisor.shutdown(drain=False)
    finally:
        _log_statuses(supervisor)
        if supervisor.history is not None:
            for line in supervisor.history.summary().splitlines():
                logger.info(line)


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="raidhost - Automated raid hosting bot")
    parser.add_argument("--config", type=Path, help="Pool configuration (JSON)")
    parser.add_argument("--catalog", help="Rotation catalog (seed-species-stars-progress per line)")
    parser.add_argument("--dens", help="Den coordinates (JSON)")
    parser.add_argument("--history", help="Write raid history to this JSON file")
    parser.add_argument(
        "--request",
        action="append",
        default=[],
        metavar="SEED-SPECIES-STARS-PROGRESS",
        help="Queue a user request before starting (repeatable)"
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        default=False,
        help="Run against an in-memory console instead of real hardware"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        datefmt='%H:%M:%S'
    )

    try:
        if args.config:
            config = load_config(args.config)
        elif args.dry_run:
            config = PoolConfig(sessions=[SessionConfig("dry-run", "localhost", slots=[0, 69, 94])])
            config.bot.cooldown_seconds = 2.0
            config.bot.poll_interval = 0.2
        else:
            parser.error("--config is required unless --dry-run is given")
        supervisor = build_supervisor(
            config, args.dry_run, args.catalog, args.dens, args.history,
        )
        for text in args.request:
            request = RaidRequest.from_definition(parse_line(text), Priority.USER, requester="cli")
            supervisor.queue.enqueue(request)
    except (ConfigError, CatalogFormatError, InvalidSlotIndexError, QueueFullError, OSError,
            ValueError) as e:
        logger.error(str(e))
        return 1

    run(supervisor)
    return 0


if __name__ == "__main__":
    sys.exit(main())
