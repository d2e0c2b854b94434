"""Helpers shared by the indexing modules: queries, genesis reading and scheduling."""

from __future__ import annotations

import itertools
import json
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from pathlib import Path
from typing import Any, Callable, Iterable, Sequence

_log = logging.getLogger(__name__)

# gRPC metadata header telling the node at which height to run a query.
GRPC_BLOCK_HEIGHT_HEADER = "x-cosmos-block-height"

TXS_PER_PAGE = 100


def remove_duplicate_values(values: Iterable[str]) -> list[str]:
    """Return the values without duplicates, keeping the first occurrence order."""
    return list(dict.fromkeys(values))


def height_request_metadata(
    metadata: Sequence[tuple[str, str]] | None, height: int
) -> list[tuple[str, str]]:
    """Return the given gRPC metadata with the block height header appended."""
    return [*(metadata or ()), (GRPC_BLOCK_HEIGHT_HEADER, str(height))]


def query_txs(node: Any, query: str) -> list[Any]:
    """Fetch every transaction matching ``query``, page by page.

    ``node.tx_search(query, page=, per_page=, order_by=)`` must return an
    object with ``txs`` and ``total_count`` attributes.
    """
    txs: list[Any] = []
    for page in itertools.count(1):
        try:
            result = node.tx_search(query, page=page, per_page=TXS_PER_PAGE, order_by="")
        except Exception as err:
            raise RuntimeError(f"error while running tx search: {err}") from err
        txs.extend(result.txs)
        if len(txs) >= result.total_count or not result.txs:
            return txs
    return txs


def read_genesis_file(path: str | Path) -> dict[str, Any]:
    """Read and parse the genesis document stored at ``path``."""
    try:
        raw = Path(path).read_bytes()
    except OSError as err:
        raise OSError(f"failed to read genesis file: {err}") from err
    try:
        doc = json.loads(raw)
    except ValueError as err:
        raise ValueError(f"failed to unmarshal genesis doc: {err}") from err
    if not isinstance(doc, dict):
        raise ValueError("failed to unmarshal genesis doc: not a JSON object")
    return doc


def read_genesis(genesis_file_path: str | Path | None, node: Any) -> Any:
    """Read the genesis from the file if a path is given, otherwise ask the node."""
    if genesis_file_path:
        return read_genesis_file(genesis_file_path)
    try:
        return node.genesis()
    except Exception as err:
        raise RuntimeError(f"failed to get genesis: {err}") from err


def watch_method(method: Callable[[], Any]) -> threading.Thread:
    """Run ``method`` in a background thread, logging any exception it raises."""

    def run() -> None:
        try:
            method()
        except Exception:
            _log.exception("error while running watched method")

    thread = threading.Thread(target=run, daemon=True)
    thread.start()
    return thread


@dataclass
class _Job:
    action: Callable[[], Any]
    first_due: Callable[[datetime], datetime]
    next_due: Callable[[datetime], datetime]
    next_run: datetime | None = None


def _upcoming(time_of_day: time, now: datetime, *, inclusive: bool) -> datetime:
    candidate = datetime.combine(now.date(), time_of_day).replace(tzinfo=now.tzinfo)
    if candidate > now or (inclusive and candidate == now):
        return candidate
    return candidate + timedelta(days=1)


class Scheduler:
    """A minimal scheduler of periodic jobs, driven by calls to ``run_pending``."""

    def __init__(self) -> None:
        self._jobs: list[_Job] = []

    def every(self, interval: timedelta, job: Callable[[], Any]) -> None:
        """Run ``job`` on the first check and then every ``interval``."""
        if interval <= timedelta(0):
            raise ValueError("interval must be positive")
        self._jobs.append(_Job(job, lambda now: now, lambda now: now + interval))

    def daily_at(self, time_of_day: time, job: Callable[[], Any]) -> None:
        """Run ``job`` once a day at ``time_of_day``."""
        self._jobs.append(
            _Job(
                job,
                lambda now: _upcoming(time_of_day, now, inclusive=True),
                lambda now: _upcoming(time_of_day, now, inclusive=False),
            )
        )

    def run_pending(self, now: datetime | None = None) -> int:
        """Run the jobs that are due at ``now`` and return how many ran."""
        now = now or datetime.now()
        ran = 0
        for job in self._jobs:
            if job.next_run is None:
                job.next_run = job.first_due(now)
            if job.next_run <= now:
                job.action()
                job.next_run = job.next_due(now)
                ran += 1
        return ran