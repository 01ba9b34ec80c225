"""
Results Writer
==============
Persists every finished PipelineRun so the outcome survives the process and
stays inspectable regardless of whether the notification was delivered.

Layout under RESULTS_DIR:
    <run_id>.json  — full run (stages, step results, report)
    runs.jsonl     — one summary line per run, append-only
"""
import json
import logging
import os

from mergegate.core.config import RESULTS_DIR
from mergegate.models.pipeline_run import PipelineRun

logger = logging.getLogger(__name__)

INDEX_FILE = "runs.jsonl"


class ResultsWriter:
    """
    Service responsible for writing run records to disk.
    """

    def __init__(self, results_dir: str = RESULTS_DIR) -> None:
        self.results_dir = results_dir

    def write_run(self, run: PipelineRun) -> bool:
        """
        Write `<run_id>.json` and append the summary to the index.
        Returns False (and logs) on any filesystem error.
        """
        try:
            os.makedirs(self.results_dir, exist_ok=True)

            run_path = os.path.abspath(os.path.join(self.results_dir, f"{run.run_id}.json"))
            data = run.model_dump(mode="json")
            data["summary"] = run.summary()

            with open(run_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)

            with open(os.path.join(self.results_dir, INDEX_FILE), "a", encoding="utf-8") as f:
                f.write(json.dumps(run.summary()) + "\n")

            logger.info("Run %s written to %s", run.run_id, run_path)
            return True

        except (OSError, TypeError, ValueError) as e:
            logger.error("Failed to write results for run %s: %s", run.run_id, e, exc_info=True)
            return False

    def read_index(self) -> list[dict]:
        """All persisted run summaries, oldest first. Corrupt lines are skipped."""
        path = os.path.join(self.results_dir, INDEX_FILE)
        if not os.path.isfile(path):
            return []

        summaries: list[dict] = []
        with open(path, "r", encoding="utf-8") as f:
            for line_no, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    summaries.append(json.loads(line))
                except json.JSONDecodeError:
                    logger.warning("Skipping corrupt line %d in %s", line_no, path)
        return summaries
