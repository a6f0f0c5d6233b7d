"""
ProxiSync CLI entrypoint.

Quick local checks of the geometry and gazetteer without running the API:
- `geocode "Lekki Phase 1, Lagos"`
- `reverse-geocode 6.45 3.47`
- `distance 6.5244 3.3792 9.0765 7.3986`
- `obfuscate 6.5244 3.3792 --radius-m 200`
"""

from __future__ import annotations

import argparse
import json
from typing import Any

from proxisync.config.settings import get_settings
from proxisync.core.geo import format_distance, haversine_km, offset_within_radius
from proxisync.core.logging import configure_logging
from proxisync.geocoding.resolver import GeocodingResolver


def _resolver() -> GeocodingResolver:
    return GeocodingResolver(settings=get_settings().geocoding)


def _emit(args: argparse.Namespace, payload: dict[str, Any], text: str) -> None:
    if args.json:
        print(json.dumps(payload, ensure_ascii=False, indent=2))
    else:
        print(text)


def _cmd_geocode(args: argparse.Namespace) -> int:
    point = _resolver().geocode(args.text)
    if point is None:
        _emit(args, {"query": args.text, "coordinates": None}, f"{args.text!r}: not found")
        return 1
    _emit(
        args,
        {"query": args.text, "coordinates": {"lat": point.lat, "lng": point.lng}},
        f"{args.text!r}: {point.lat:.4f}, {point.lng:.4f}",
    )
    return 0


def _cmd_reverse(args: argparse.Namespace) -> int:
    name = _resolver().reverse_geocode(args.lat, args.lng)
    _emit(args, {"lat": args.lat, "lng": args.lng, "name": name}, name or "no named place nearby")
    return 0 if name else 1


def _cmd_distance(args: argparse.Namespace) -> int:
    km = haversine_km(args.lat1, args.lng1, args.lat2, args.lng2)
    _emit(args, {"distance_km": km}, f"{km:.3f} km ({format_distance(km)})")
    return 0


def _cmd_obfuscate(args: argparse.Namespace) -> int:
    radius = args.radius_m if args.radius_m is not None else get_settings().privacy.obfuscation_radius_m
    point = offset_within_radius(args.lat, args.lng, float(radius))
    _emit(
        args,
        {"lat": point.lat, "lng": point.lng, "radius_m": radius},
        f"{point.lat:.6f}, {point.lng:.6f} (radius {radius} m)",
    )
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the ProxiSync CLI."""
    parser = argparse.ArgumentParser(prog="proxisync")
    parser.add_argument("--json", action="store_true", help="Output machine-readable JSON")
    sub = parser.add_subparsers(dest="command", required=True)

    geo = sub.add_parser("geocode", help="Resolve a place name against the gazetteer.")
    geo.add_argument("text")
    geo.set_defaults(func=_cmd_geocode)

    rev = sub.add_parser("reverse-geocode", help="Nearest named place within the cutoff.")
    rev.add_argument("lat", type=float)
    rev.add_argument("lng", type=float)
    rev.set_defaults(func=_cmd_reverse)

    dist = sub.add_parser("distance", help="Great-circle distance between two points.")
    dist.add_argument("lat1", type=float)
    dist.add_argument("lng1", type=float)
    dist.add_argument("lat2", type=float)
    dist.add_argument("lng2", type=float)
    dist.set_defaults(func=_cmd_distance)

    obf = sub.add_parser("obfuscate", help="Random point inside a privacy radius.")
    obf.add_argument("lat", type=float)
    obf.add_argument("lng", type=float)
    obf.add_argument("--radius-m", type=float, default=None)
    obf.set_defaults(func=_cmd_obfuscate)
    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint callable used by `python -m proxisync.cli`."""
    configure_logging()
    parser = build_parser()
    args = parser.parse_args(argv)
    func: Any = getattr(args, "func")
    return int(func(args))


if __name__ == "__main__":
    raise SystemExit(main())
