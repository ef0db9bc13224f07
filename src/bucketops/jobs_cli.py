"""CLI entry point for bucketops-jobs: job maintenance against the metadata store."""

import argparse
import asyncio
import sys
from pathlib import Path

from bucketops.config import MetadataConfig, load_config
from bucketops.jobs import JobTracker
from bucketops.metadata import create_metadata_store
from bucketops.metadata.models import JobQuery, JobStatus, TransferJob


def _add_store_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config", type=Path, default=Path("bucketops.yaml"),
        help="Config file path (default: bucketops.yaml)",
    )
    parser.add_argument(
        "--db", type=str, default=None,
        help="SQLite database path (overrides config)",
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="bucketops-jobs",
        description="BucketOps job maintenance tool",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    sweep_parser = subparsers.add_parser(
        "sweep-stale", help="Fail jobs left running by a process that died"
    )
    _add_store_args(sweep_parser)
    sweep_parser.add_argument(
        "--max-age", type=int, default=None,
        help="Seconds after which a running job counts as stale "
        "(default: metadata.stale_job_seconds)",
    )

    list_parser = subparsers.add_parser("list", help="Print jobs, newest first")
    _add_store_args(list_parser)
    list_parser.add_argument(
        "--status", choices=[s.value for s in JobStatus], default=None,
        help="Only jobs with this status",
    )
    list_parser.add_argument(
        "--container", type=str, default=None,
        help="Only jobs on this container",
    )
    list_parser.add_argument(
        "--limit", type=int, default=20,
        help="Maximum rows to print (default: 20)",
    )

    return parser.parse_args(argv)


def resolve_metadata_config(args: argparse.Namespace) -> MetadataConfig:
    """The metadata section to open: ``--db`` wins over the config file.

    Raises:
        FileNotFoundError: If no ``--db`` was given and the config is missing.
    """
    if args.db:
        return MetadataConfig(engine="sqlite", sqlite_path=args.db)
    return load_config(args.config).metadata


async def sweep_stale(config: MetadataConfig, max_age_seconds: int) -> list[str]:
    """Open the store, fail stale running jobs, and close it again."""
    store = create_metadata_store(config)
    await store.init_db()
    try:
        return await JobTracker(store).sweep_stale(max_age_seconds)
    finally:
        await store.close()


async def list_jobs(config: MetadataConfig, query: JobQuery) -> tuple[list[TransferJob], int]:
    store = create_metadata_store(config)
    await store.init_db()
    try:
        return await JobTracker(store).list_jobs(query)
    finally:
        await store.close()


def format_job(job: TransferJob) -> str:
    total = "?" if job.total_items is None else str(job.total_items)
    return "\t".join(
        [
            job.job_id,
            job.status,
            job.operation_type,
            job.container_name or "-",
            f"{job.processed_items}/{total}",
            str(job.error_count),
            job.started_at,
        ]
    )


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    try:
        config = resolve_metadata_config(args)
    except FileNotFoundError:
        print(f"Error: config file not found: {args.config}", file=sys.stderr)
        return 1
    except Exception as e:
        print(f"Error reading config: {e}", file=sys.stderr)
        return 1

    if args.command == "sweep-stale":
        max_age = config.stale_job_seconds if args.max_age is None else args.max_age
        try:
            swept = asyncio.run(sweep_stale(config, max_age))
        except Exception as e:
            print(f"Error sweeping jobs: {e}", file=sys.stderr)
            return 1
        for job_id in swept:
            print(job_id)
        print(f"Swept {len(swept)} stale job(s)", file=sys.stderr)

    elif args.command == "list":
        query = JobQuery(status=args.status, container_name=args.container, limit=args.limit)
        try:
            jobs, total = asyncio.run(list_jobs(config, query))
        except Exception as e:
            print(f"Error listing jobs: {e}", file=sys.stderr)
            return 1
        for job in jobs:
            print(format_job(job))
        print(f"{len(jobs)} of {total} job(s)", file=sys.stderr)

    return 0


def entry_point() -> None:
    """Console script entry point."""
    sys.exit(main())


if __name__ == "__main__":
    entry_point()
