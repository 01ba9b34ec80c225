"""
Run Store
=========
Bounded in-memory registry of recent runs, read by the status API.
Oldest runs are evicted first once the limit is reached.
"""
from collections import OrderedDict
from typing import List, Optional

from mergegate.core.config import RUN_STORE_LIMIT
from mergegate.models.pipeline_run import PipelineRun


class RunStore:

    def __init__(self, limit: int = RUN_STORE_LIMIT) -> None:
        self._runs: "OrderedDict[str, PipelineRun]" = OrderedDict()
        self._limit = max(1, limit)

    def add(self, run: PipelineRun) -> None:
        self._runs[run.run_id] = run
        self._runs.move_to_end(run.run_id)
        while len(self._runs) > self._limit:
            self._runs.popitem(last=False)

    def get(self, run_id: str) -> Optional[PipelineRun]:
        return self._runs.get(run_id)

    def recent(self, limit: int = 50) -> List[PipelineRun]:
        """Newest first."""
        return list(reversed(self._runs.values()))[:limit]

    def __len__(self) -> int:
        return len(self._runs)
