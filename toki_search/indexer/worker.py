"""Background worker for periodic search index syncing.

Each cycle syncs every configured project one after another, which keeps the
embedding provider's request rate flat. A project that fails is logged and
skipped; the loop keeps going. The first cycle starts one interval after the
worker starts so the hosting process can finish booting.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Callable, Iterable, List, Union

import structlog

from toki_search.common.errors import SearchError
from toki_search.search.models import SyncStats

from .indexer import SearchIndexer

logger = structlog.get_logger("index_worker")


@dataclass(frozen=True)
class IndexTarget:
    """An organization/project pair to keep indexed."""
    organization: str
    project: str

    def __str__(self) -> str:
        return f"{self.organization}/{self.project}"


IndexerFactory = Callable[[IndexTarget], SearchIndexer]
TargetsProvider = Union[Iterable[IndexTarget], Callable[[], Iterable[IndexTarget]]]


class SearchIndexWorker:
    """Runs ``SearchIndexer.sync_project`` over all targets on an interval.

    Parameters
    - indexer_factory: Builds an indexer for one target (each target may
      need its own source client)
    - targets: Targets to sync, or a callable returning the current targets;
      a callable is re-evaluated every cycle
    - interval_seconds: Delay before the first cycle and between cycles
    """

    def __init__(
        self,
        indexer_factory: IndexerFactory,
        targets: TargetsProvider,
        interval_seconds: float = 3600.0,
    ):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be greater than zero")
        self.indexer_factory = indexer_factory
        self.targets = targets
        self.interval_seconds = interval_seconds
        self._stop_event = asyncio.Event()

    @classmethod
    def from_config(
        cls,
        config: Any,
        indexer_factory: IndexerFactory,
        targets: TargetsProvider,
    ) -> "SearchIndexWorker":
        """Build from an ``IndexerConfig``."""
        return cls(indexer_factory, targets, config.toki_indexer_sync_interval_seconds)

    def _current_targets(self) -> List[IndexTarget]:
        targets = self.targets() if callable(self.targets) else self.targets
        return list(targets)

    async def run_once(self) -> SyncStats:
        """Run one sync cycle over every target and return the totals."""
        totals = SyncStats()
        targets = self._current_targets()

        if not targets:
            logger.info("No projects configured, skipping sync cycle")
            return totals

        logger.info("Starting search index sync cycle", targets=len(targets))

        for target in targets:
            try:
                indexer = self.indexer_factory(target)
                stats = await indexer.sync_project(target.organization, target.project)
            except SearchError as e:
                logger.error("Project sync failed", target=str(target), error=str(e))
                totals.errors += 1
                continue

            logger.info(
                "Project sync completed",
                target=str(target),
                prs=stats.prs_indexed,
                work_items=stats.work_items_indexed,
                deleted=stats.documents_deleted,
            )
            totals.add(stats)

        logger.info(
            "Search index sync cycle completed",
            targets=len(targets),
            prs=totals.prs_indexed,
            work_items=totals.work_items_indexed,
            deleted=totals.documents_deleted,
            errors=totals.errors,
        )
        return totals

    async def _wait_interval(self) -> bool:
        """Sleep one interval; return ``True`` if a stop was requested."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
        except asyncio.TimeoutError:
            return False
        return True

    async def run_forever(self) -> None:
        """Loop until ``stop`` is called or the task is cancelled."""
        logger.info("Search indexer background task started", interval_secs=self.interval_seconds)

        while not await self._wait_interval():
            await self.run_once()

        logger.info("Search indexer background task stopped")

    def stop(self) -> None:
        """Ask ``run_forever`` to exit after the current cycle."""
        self._stop_event.set()


async def run_search_index_worker(
    indexer_factory: IndexerFactory,
    targets: TargetsProvider,
    interval_seconds: float = 3600.0,
) -> None:
    """Run a ``SearchIndexWorker`` until cancelled."""
    worker = SearchIndexWorker(indexer_factory, targets, interval_seconds)
    await worker.run_forever()
