"""In-memory storage for migration runs."""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from ..models.mapping import FieldMapping
from ..models.migration import MigrationStatus
from ..models.record import SourceRecord
from ..orchestrator import MigrationOrchestrator

logger = logging.getLogger(__name__)

# Finished runs kept for inspection; older ones are evicted first
MAX_FINISHED_RUNS = 100


@dataclass
class MigrationRun:
    """A planned run and everything needed to execute it."""
    orchestrator: MigrationOrchestrator
    records: List[SourceRecord]
    mappings: List[FieldMapping]
    # Set when a start is accepted, before the background task runs
    started: bool = False

    @property
    def id(self) -> str:
        return self.orchestrator.plan.id

    @property
    def status(self) -> MigrationStatus:
        progress = self.orchestrator.progress
        if progress is not None:
            return progress.status
        return MigrationStatus.RUNNING if self.started else MigrationStatus.PENDING

    @property
    def is_running(self) -> bool:
        return self.status == MigrationStatus.RUNNING


class MigrationStorage:
    """Keeps active runs and the most recent finished ones."""

    def __init__(self, max_finished_runs: int = MAX_FINISHED_RUNS):
        self.max_finished_runs = max_finished_runs
        self._runs: Dict[str, MigrationRun] = {}

    def add(self, run: MigrationRun) -> MigrationRun:
        self._evict_finished()
        self._runs[run.id] = run
        return run

    def _evict_finished(self):
        finished = [run_id for run_id, run in self._runs.items() if run.status.is_terminal]
        for run_id in finished[:max(0, len(finished) - self.max_finished_runs)]:
            del self._runs[run_id]
            logger.info(f"Evicted finished migration {run_id}")

    def get(self, run_id: str) -> Optional[MigrationRun]:
        return self._runs.get(run_id)

    def list_all(self) -> List[MigrationRun]:
        return list(self._runs.values())

    def delete(self, run_id: str) -> bool:
        return self._runs.pop(run_id, None) is not None

    def clear(self):
        self._runs.clear()


migration_storage = MigrationStorage()
