"""Command-line prefetch run against an XYZ tile server."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from domain import PrefetchOptions, load_options
from infrastructure.http import make_http_session, resolve_cache_dir
from prefetch import PrefetchManager, StatsSnapshot, get_category_name
from tiles import MapSurface, TileLayer, XyzSource, lonlat_to_web_mercator

logger = logging.getLogger(__name__)


def setup_logging(level: str = 'INFO', log_file: Path | None = None) -> None:
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(str(log_file), encoding='utf-8'))
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
    )


def parse_target(raw: str) -> tuple[tuple[float, float], float]:
    """'lon,lat,zoom' -> ((x, y) in EPSG:3857, zoom)."""
    try:
        lon, lat, zoom = (float(part) for part in raw.split(','))
    except ValueError:
        msg = f'Expected lon,lat,zoom, got {raw!r}'
        raise argparse.ArgumentTypeError(msg) from None
    return lonlat_to_web_mercator(lon, lat), zoom


def parse_size(raw: str) -> tuple[int, int]:
    try:
        width, height = (int(part) for part in raw.lower().split('x'))
    except ValueError:
        msg = f'Expected WIDTHxHEIGHT, got {raw!r}'
        raise argparse.ArgumentTypeError(msg) from None
    return width, height


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Warm tile caches around a view and at anticipated destinations.',
    )
    parser.add_argument(
        'url',
        help='Active layer URL template, e.g. https://{a-c}.tile.example/{z}/{x}/{y}.png',
    )
    parser.add_argument(
        '--center',
        type=parse_target,
        required=True,
        help='Current view as lon,lat,zoom',
    )
    parser.add_argument(
        '--size',
        type=parse_size,
        default=(1024, 768),
        help='Viewport size in px (WIDTHxHEIGHT)',
    )
    parser.add_argument(
        '--background',
        action='append',
        default=[],
        metavar='URL',
        help='Background layer URL template (repeatable, earlier loads first)',
    )
    parser.add_argument(
        '--target',
        type=parse_target,
        action='append',
        default=[],
        help='Next navigation target as lon,lat,zoom (repeatable)',
    )
    parser.add_argument('--profile', help='Prefetch profile name or path to a .toml file')
    parser.add_argument('--max-concurrent', type=int, help='Override max concurrent prefetches')
    parser.add_argument(
        '--timeout', type=float, default=120.0, help='Give up waiting after N seconds'
    )
    parser.add_argument('--no-cache', action='store_true', help='Disable the on-disk HTTP cache')
    parser.add_argument('--log-level', default='INFO')
    parser.add_argument('--log-file', type=Path)
    return parser


def format_stats(snapshot: StatsSnapshot) -> str:
    lines = [
        f'queued={snapshot.queued} loading={snapshot.loading} '
        f'loaded={snapshot.loaded} errors={snapshot.errors}',
    ]
    for category, counts in snapshot.categories.items():
        lines.append(
            f'  {get_category_name(category):<18} loaded={counts.loaded} '
            f'errors={counts.errors} queued={counts.queued}',
        )
    for error in snapshot.recent_errors[:5]:
        lines.append(f'  ! {error.layer_name} {error.tile_coord}: {error.reason}')
    return '\n'.join(lines)


async def run(args: argparse.Namespace) -> StatsSnapshot:
    options = load_options(args.profile) if args.profile else PrefetchOptions()
    if args.max_concurrent is not None:
        options = options.model_copy(update={'max_concurrent_prefetches': args.max_concurrent})
    center, zoom = args.center

    cache_dir = None if args.no_cache else resolve_cache_dir()
    async with make_http_session(cache_dir) as client:
        active = TileLayer(XyzSource(args.url, client), name='active')
        surface = MapSurface(center, zoom, args.size)
        surface.add_layer(active)

        manager = PrefetchManager(surface, options, loop=asyncio.get_running_loop())
        try:
            for index, url in enumerate(args.background):
                layer = TileLayer(
                    XyzSource(url, client), name=f'background-{index}', visible=False
                )
                manager.add_background_layer(layer, priority=index)
            manager.set_next_targets(args.target)
            surface.render()
            manager.set_active_layer(active)

            done: asyncio.Future[StatsSnapshot] = asyncio.get_running_loop().create_future()

            def on_idle(snapshot: StatsSnapshot | None) -> None:
                if not done.done():
                    done.set_result(snapshot or manager.get_stats())

            manager.on_idle(on_idle, timeout=args.timeout)
            snapshot = await done
        finally:
            manager.dispose()
    return snapshot


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level, args.log_file)
    logger.info('Starting tile prefetch for %s', args.url)
    try:
        snapshot = asyncio.run(run(args))
    except FileNotFoundError as e:
        logger.error('%s', e)
        return 2
    except KeyboardInterrupt:
        logger.info('Interrupted')
        return 130
    print(format_stats(snapshot))
    return 0 if snapshot.idle else 1


if __name__ == '__main__':
    sys.exit(main())
