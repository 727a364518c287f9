"""Cron entry point for pruning finished conversion jobs and stale scratch dirs."""

from __future__ import annotations

import argparse
import sys
import time
from dataclasses import dataclass
from pathlib import Path

from src.sceneconv.config import load_config
from src.sceneconv.domain.models import JobState
from src.sceneconv.infrastructure.queue import init_queue
from src.sceneconv.main import queue_config_from
from src.sceneconv.media.scratch import ScratchStore


@dataclass(slots=True)
class PruneSummary:
    jobs_removed: int
    scratch_removed: int
    dry_run: bool


def _stale_scratch_dirs(store: ScratchStore, *, max_age_seconds: float, now: float) -> list[Path]:
    return [
        directory
        for directory in store.iter_directories()
        if now - directory.stat().st_mtime > max_age_seconds
    ]


def perform_prune(*, dry_run: bool, keep: int | None = None, scratch_age_hours: float = 24.0) -> PruneSummary:
    """Prune terminal jobs beyond the retention window and abandoned scratch dirs."""
    config = load_config()
    queue = init_queue(queue_config_from(config))
    retained = config.queue.retained_finished_jobs if keep is None else keep
    scratch = ScratchStore(config.storage.scratch_root)
    stale = _stale_scratch_dirs(scratch, max_age_seconds=scratch_age_hours * 3600, now=time.time())

    try:
        if dry_run:
            prunable = sum(
                max(len(queue.list_jobs(state=state)) - max(retained, 0), 0)
                for state in (JobState.COMPLETED, JobState.FAILED)
            )
            return PruneSummary(
                jobs_removed=prunable,
                scratch_removed=len(stale),
                dry_run=True,
            )

        removed_jobs = queue.prune_finished(keep=retained)
        for directory in stale:
            scratch.discard(directory)
        return PruneSummary(jobs_removed=removed_jobs, scratch_removed=len(stale), dry_run=False)
    finally:
        queue.close()


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Prune finished conversion jobs.")
    parser.add_argument("--dry-run", action="store_true", help="Only report counts without deleting anything.")
    parser.add_argument("--keep", type=int, default=None, help="Finished jobs to retain per terminal state.")
    parser.add_argument(
        "--scratch-age-hours",
        type=float,
        default=24.0,
        help="Remove scratch directories untouched for longer than this.",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv or [])
    try:
        summary = perform_prune(dry_run=args.dry_run, keep=args.keep, scratch_age_hours=args.scratch_age_hours)
    except Exception as exc:
        print(f"prune failed: {exc}", file=sys.stderr)
        return 2
    mode = "dry-run" if summary.dry_run else "removed"
    print(f"jobs {mode}: {summary.jobs_removed}, scratch dirs {mode}: {summary.scratch_removed}")
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
