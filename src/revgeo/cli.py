"""
Command-line tool for trying out reverse-geocode providers.

    revgeo --config providers.json reverse 46.1733/21.2937
    revgeo --config providers.json geocode "1600 Amphitheatre Pkwy" --country US
    revgeo --config providers.json batch points.csv out.csv --workers 8
"""

from __future__ import annotations

import logging
import sys
import time
from argparse import ArgumentParser, Namespace
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Optional

import pandas as pd
from colorama import Fore, Style
from tqdm import tqdm

from .config import GeocoderConfig, load_config
from .errors import ConfigFileError
from .models import GeoPoint, ResolvedAddress
from .registry import build_services, close_services
from .service import ReverseGeocodeService
from .settings import settings

logger = logging.getLogger(__name__)

ADDRESS_COLUMNS = [
    "full_address",
    "street_address",
    "city",
    "state_province",
    "postal_code",
    "country_code",
    "speed_limit_kph",
]


def _status(label: str, ok: bool, detail: str = "") -> None:
    padding = max(4, 28 - len(label))
    state = f"{Fore.GREEN}OK{Style.RESET_ALL}" if ok else f"{Fore.RED}Failed{Style.RESET_ALL}"
    suffix = f": {detail}" if detail else ""
    print(f'{label} {"-" * padding}> {state}{suffix}')


def _print_address(address: ResolvedAddress) -> None:
    if address.is_empty():
        print(f"  {Fore.YELLOW}(no address available at this location){Style.RESET_ALL}")
        return
    print(f"  Address : {address.full_address}")
    print(f"  Street  : {address.street_address or ''}")
    print(f"  City    : {address.city or ''}")
    print(f"  State   : {address.state_province or ''}")
    print(f"  Postal  : {address.postal_code or ''}")
    print(f"  Country : {address.country_code or ''}")
    if address.speed_limit_kph is not None:
        print(f"  Limit   : {address.speed_limit_kph:.1f} km/h")


def select_service(
    services: dict[str, ReverseGeocodeService],
    config: GeocoderConfig,
    name: Optional[str] = None,
) -> ReverseGeocodeService:
    """Pick the requested service, else the configured default, else the first one."""
    name = name or settings.default_provider or config.default
    if name is None:
        if not services:
            raise ValueError("No providers configured")
        return next(iter(services.values()))
    try:
        return services[name]
    except KeyError as e:
        raise ValueError(f"Unknown provider '{name}'. Configured: {sorted(services)}") from e


def cmd_reverse(service: ReverseGeocodeService, args: Namespace) -> int:
    point = GeoPoint.parse(args.point)
    if not point.is_valid():
        _status(f"{service.get_name()} -- {point}", False, "invalid point")
        return 2

    exit_code = 0
    for _ in range(args.repeat):
        start = time.perf_counter()
        address = service.get_reverse_geocode(point, locale=args.locale, may_cache=not args.moving)
        elapsed_ms = (time.perf_counter() - start) * 1000
        label = f"{service.get_name()} -- {point}"
        if address is None:
            _status(label, False, f"no result ({elapsed_ms:.0f}ms)")
            exit_code = 1
            continue
        _status(label, True, f"{elapsed_ms:.0f}ms")
        _print_address(address)

    if service.failover.remaining_s() > 0:
        print(f"  {Fore.YELLOW}Diverted to '{service.fallback.get_name()}' for another "
              f"{service.failover.remaining_s():.0f}s{Style.RESET_ALL}")
    return exit_code


def cmd_geocode(service: ReverseGeocodeService, args: Namespace) -> int:
    start = time.perf_counter()
    point = service.get_geocode(args.address, country=args.country)
    elapsed_ms = (time.perf_counter() - start) * 1000
    label = f"{service.get_name()} -- geocode"
    if point is None:
        _status(label, False, f"not found ({elapsed_ms:.0f}ms)")
        return 1
    _status(label, True, f"{elapsed_ms:.0f}ms")
    print(f"  {args.address} => {point}")
    return 0


def resolve_frame(
    service: ReverseGeocodeService,
    df: pd.DataFrame,
    lat_col: str = "latitude",
    lon_col: str = "longitude",
    locale: Optional[str] = None,
    may_cache: bool = True,
    n_workers: int = 4,
    show_progress: bool = True,
) -> pd.DataFrame:
    """
    Resolve every row of df and return a copy with the address columns added.

    Rows whose point cannot be resolved get empty (NaN) address columns.
    """
    missing = [c for c in (lat_col, lon_col) if c not in df.columns]
    if missing:
        raise ValueError(f"Missing columns: {missing}")

    points = [GeoPoint(float(lat), float(lon)) for lat, lon in zip(df[lat_col], df[lon_col])]
    results: list[Optional[ResolvedAddress]] = [None] * len(points)

    with ThreadPoolExecutor(max_workers=max(1, n_workers)) as executor:
        future_to_idx = {
            executor.submit(service.get_reverse_geocode, point, locale, may_cache): idx
            for idx, point in enumerate(points)
        }
        with tqdm(total=len(future_to_idx), desc="Reverse geocoding", disable=not show_progress) as pbar:
            for future in as_completed(future_to_idx):
                idx = future_to_idx[future]
                try:
                    results[idx] = future.result()
                except Exception as e:
                    logger.error(f"Error resolving {points[idx]}: {e}")
                    results[idx] = None
                pbar.update(1)

    out = df.copy()
    for column in ADDRESS_COLUMNS:
        out[column] = [getattr(r, column) if r is not None else None for r in results]
    out["resolved"] = [r is not None for r in results]
    return out


def cmd_batch(service: ReverseGeocodeService, args: Namespace) -> int:
    df = pd.read_csv(args.input)
    out = resolve_frame(
        service,
        df,
        lat_col=args.lat_col,
        lon_col=args.lon_col,
        locale=args.locale,
        may_cache=not args.moving,
        n_workers=args.workers,
    )
    args.output.parent.mkdir(parents=True, exist_ok=True)
    out.to_csv(args.output, index=False)

    resolved = int(out["resolved"].sum())
    _status(f"{service.get_name()} -- batch", resolved == len(out), f"{resolved}/{len(out)} resolved -> {args.output}")
    if service.cache is not None:
        stats = service.cache.stats()
        print(f"  cache: {stats['size']} entries, {stats['hits']} hits, {stats['misses']} misses")
    return 0 if resolved == len(out) else 1


def build_parser() -> ArgumentParser:
    parser = ArgumentParser(prog="revgeo", description="Reverse-geocode points with failover and caching")
    parser.add_argument('--config', '-c', type=Path, default=settings.config_file,
                        help="JSON provider configuration (default: REVGEO_CONFIG_FILE)")
    parser.add_argument('--provider', '-p', type=str, default=None)
    parser.add_argument('--locale', '-l', type=str, default=settings.locale)
    parser.add_argument('--log-level', type=str, default=settings.log_level)
    sub = parser.add_subparsers(dest='command', required=True)

    reverse = sub.add_parser('reverse', help="Resolve one point")
    reverse.add_argument('point', help="'<lat>/<lon>' or '<lat>,<lon>'")
    reverse.add_argument('--moving', '-m', action='store_true', help="Subject is moving (disables the cache)")
    reverse.add_argument('--repeat', '-r', type=int, default=1)

    geocode = sub.add_parser('geocode', help="Forward-geocode an address")
    geocode.add_argument('address')
    geocode.add_argument('--country', type=str, default=None)

    batch = sub.add_parser('batch', help="Resolve every row of a CSV")
    batch.add_argument('input', type=Path)
    batch.add_argument('output', type=Path)
    batch.add_argument('--lat-col', type=str, default='latitude')
    batch.add_argument('--lon-col', type=str, default='longitude')
    batch.add_argument('--workers', '-w', type=int, default=4)
    batch.add_argument('--moving', '-m', action='store_true')
    return parser


COMMANDS = {
    'reverse': cmd_reverse,
    'geocode': cmd_geocode,
    'batch': cmd_batch,
}


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )

    if args.config is None:
        parser.error("no configuration file given (use --config or REVGEO_CONFIG_FILE)")

    try:
        config = load_config(args.config)
    except ConfigFileError as e:
        _status(f"Config {e.path}", False, str(e))
        print(e.summary())
        return 2

    services: dict[str, ReverseGeocodeService] = {}
    try:
        services = build_services(config)
        service = select_service(services, config, args.provider)
        return COMMANDS[args.command](service, args)
    except ValueError as e:
        _status(args.command, False, str(e))
        return 2
    finally:
        close_services(services)


if __name__ == '__main__':
    sys.exit(main())
