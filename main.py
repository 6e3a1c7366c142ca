"""CLI entry point for the job map engine."""

import argparse
import asyncio
import json
import logging
import sys

from src.core.config import Settings
from src.core.db import fetch_jobs, init_db
from src.core.exceptions import JobMapError
from src.core.schemas import ErrorResponse, QueryParams
from src.pipeline.cluster import build_index
from src.pipeline.ingest import run_import
from src.pipeline.spatial import parse_bbox
from src.service.context import ServiceContext
from src.service.query import JobQueryService

logger = logging.getLogger(__name__)

WORLD_BBOX = "-180,-85,180,85"


def _add_common(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config",
        default="config/settings.yaml",
        help="Path to settings YAML file (default: config/settings.yaml)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Job map engine - import, query and cluster geolocated job offers",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # --- import subcommand ---
    import_parser = subparsers.add_parser("import", help="Run one import into the job store")
    _add_common(import_parser)
    import_parser.add_argument(
        "--pages",
        type=int,
        nargs="+",
        help="Page numbers to fetch (default: importer.pages from config)",
    )

    # --- query subcommand ---
    query_parser = subparsers.add_parser("query", help="Query jobs and print JSON")
    _add_common(query_parser)
    query_parser.add_argument("--keyword", help="Free-text keyword")
    query_parser.add_argument("--city", help="City / location text")
    query_parser.add_argument("--min-salary", type=int, help="Minimum salary")
    query_parser.add_argument("--max-salary", type=int, help="Maximum salary")
    query_parser.add_argument("--page", type=int, default=1, help="Result page (default: 1)")
    query_parser.add_argument(
        "--per-page", type=int, default=20, help="Results per page, 1..100 (default: 20)",
    )
    query_parser.add_argument("--bbox", help="Bounding box: 4 comma-separated numbers")
    query_parser.add_argument(
        "--bbox-order",
        default="auto",
        choices=["auto", "lonlat", "latlon"],
        help="Axis order of --bbox (default: auto-detect)",
    )
    query_parser.add_argument("--lat", type=float, help="Radius search centre latitude")
    query_parser.add_argument("--lon", type=float, help="Radius search centre longitude")
    query_parser.add_argument("--radius-km", type=float, help="Radius search distance in km")
    query_parser.add_argument(
        "--sort",
        choices=["salary_desc", "salary_asc", "date_desc"],
        help="Sort order",
    )
    query_parser.add_argument(
        "--store",
        action="store_true",
        help="Query the local job store instead of the upstream API",
    )

    # --- clusters subcommand ---
    clusters_parser = subparsers.add_parser(
        "clusters",
        help="Print map clusters for stored jobs",
    )
    _add_common(clusters_parser)
    clusters_parser.add_argument(
        "--bbox",
        default=WORLD_BBOX,
        help=f"Viewport as minLon,minLat,maxLon,maxLat (default: {WORLD_BBOX})",
    )
    clusters_parser.add_argument("--zoom", type=float, default=5, help="Map zoom (default: 5)")
    clusters_parser.add_argument(
        "--expand",
        type=int,
        metavar="CLUSTER_ID",
        help="Print the job ids inside this cluster instead",
    )
    clusters_parser.add_argument(
        "--limit",
        type=int,
        default=1000,
        help="Maximum stored jobs to cluster (default: 1000)",
    )

    return parser.parse_args(argv)


def setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


async def cmd_import(settings: Settings, pages: list[int] | None) -> int:
    """Run the import pipeline and print its summary."""
    if not settings.credentials.has_adzuna:
        print("Error: ADZUNA_APP_ID and ADZUNA_APP_KEY must be set", file=sys.stderr)
        return 1

    async with ServiceContext(settings) as ctx:
        summary = await run_import(
            ctx.source,
            ctx.resolver,
            ctx.conn,
            pages=pages or settings.importer.pages,
            results_per_page=settings.importer.results_per_page,
        )

    print(f"\nImport complete: {summary.fetched} fetched, {summary.normalized} normalized, "
          f"{summary.geocoded} geocoded, {summary.imported} written to DB.")
    print(json.dumps({"imported": summary.imported}))
    return 0


async def cmd_query(settings: Settings, args: argparse.Namespace) -> int:
    """Run one query and print the JSON response."""
    params = QueryParams(
        keyword=args.keyword,
        city=args.city,
        min_salary=args.min_salary,
        max_salary=args.max_salary,
        page=args.page,
        results_per_page=args.per_page,
        bbox=args.bbox,
        bbox_order=args.bbox_order,
        center_lat=args.lat,
        center_lon=args.lon,
        radius_km=args.radius_km,
        sort=args.sort,
        use_store=args.store,
    )
    async with ServiceContext(settings) as ctx:
        service = JobQueryService(settings, ctx.source, ctx.resolver, ctx.rate_limiter, ctx.conn)
        response = await service.query(params, client_id="cli")

    print(response.model_dump_json(indent=2, exclude_none=True))
    return 1 if isinstance(response, ErrorResponse) else 0


def cmd_clusters(settings: Settings, args: argparse.Namespace) -> int:
    """Cluster stored jobs and print the features in the viewport."""
    bbox = parse_bbox(args.bbox, "lonlat")
    if bbox is None:
        print(f"Error: invalid bbox {args.bbox!r}", file=sys.stderr)
        return 1

    conn = init_db(settings.database.path)
    try:
        jobs = fetch_jobs(conn, limit_rows=args.limit)
    finally:
        conn.close()

    index = build_index(jobs, settings.clustering)
    logger.info("Clustering %d located jobs", len(index))

    if args.expand is not None:
        try:
            job_ids = index.expand(args.expand)
        except ValueError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
        print(json.dumps({
            "cluster_id": args.expand,
            "expansion_zoom": index.get_cluster_expansion_zoom(args.expand),
            "job_ids": job_ids,
        }, indent=2))
        return 0

    features = index.get_clusters(bbox, args.zoom)
    print(json.dumps([f.model_dump(exclude_none=True) for f in features], indent=2))
    return 0


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    setup_logging(args.verbose)

    try:
        settings = Settings.from_yaml(args.config)
    except (FileNotFoundError, ValueError) as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        if args.command == "import":
            code = asyncio.run(cmd_import(settings, args.pages))
        elif args.command == "query":
            code = asyncio.run(cmd_query(settings, args))
        else:
            code = cmd_clusters(settings, args)
    except JobMapError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    if code:
        sys.exit(code)


if __name__ == "__main__":
    main()
