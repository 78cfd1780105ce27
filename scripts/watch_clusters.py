"""
Subscribe to the cluster channel for a viewport and print every update.

Example:
    python scripts/watch_clusters.py --url ws://localhost:5174/socket \
        --bounds 42.45,42.30,-70.95,-71.20 --zoom 11 --category restaurant
"""
import argparse
import asyncio
import logging
import sys
from pathlib import Path

project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from routewise.clustering import ClusterSubscription, WebSocketTransport
from routewise.config import CLUSTER_SOCKET_PATH, LOG_LEVEL, PORT

LOGGER = logging.getLogger("routewise.watch_clusters")


def parse_bounds(raw: str):
    try:
        north, south, east, west = [float(x) for x in raw.split(",")]
    except ValueError as exc:
        raise argparse.ArgumentTypeError("bounds must be north,south,east,west") from exc
    return {"north": north, "south": south, "east": east, "west": west}


def print_update(sub: ClusterSubscription) -> None:
    line = (
        f"[{sub.state.value:>12}] clusters={sub.total_clusters} "
        f"singles={sub.single_pois} multi={sub.multi_poi_clusters}"
    )
    if sub.last_update_reason:
        line += f" reason={sub.last_update_reason}"
    if sub.error:
        line += f" error={sub.error!r}"
    print(line, flush=True)


async def watch(args) -> int:
    filters = {}
    if args.category:
        filters["categories"] = args.category
    if args.min_rating is not None:
        filters["min_rating"] = args.min_rating

    sub = ClusterSubscription(
        lambda: WebSocketTransport(args.url, {"token": args.token}),
        args.bounds,
        args.zoom,
        filters,
        on_change=print_update,
    )
    async with sub:
        if sub.terminal:
            return 1
        if args.duration > 0:
            await asyncio.sleep(args.duration)
        else:
            await asyncio.Event().wait()
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Watch live POI clusters for a map viewport.")
    parser.add_argument("--url", default=f"ws://localhost:{PORT}{CLUSTER_SOCKET_PATH}", help="Cluster socket URL")
    parser.add_argument("--bounds", type=parse_bounds, required=True, help="north,south,east,west")
    parser.add_argument("--zoom", type=float, default=10.0)
    parser.add_argument("--category", action="append", help="Category filter; may be repeated")
    parser.add_argument("--min-rating", type=float, default=None)
    parser.add_argument("--token", default=None, help="Auth token; enables interest-based default filters")
    parser.add_argument("--duration", type=float, default=0, help="Seconds to watch (0 = until interrupted)")
    parser.add_argument("--log-level", default=LOG_LEVEL)
    args = parser.parse_args(argv)

    logging.basicConfig(level=args.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    try:
        return asyncio.run(watch(args))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
