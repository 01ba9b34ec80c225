"""
Pipeline Service
================
Wires configuration and capabilities into a ready-to-use pipeline:

    PipelineConfig → GitAgent + StepRunner + Notifier → Orchestrator
    → registered on a TriggerListener

The FastAPI app keeps one PipelineService on `app.state.pipeline`.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import HTTPException, Request

from mergegate.agents.git_agent import GitAgent
from mergegate.agents.orchestrator import Orchestrator
from mergegate.agents.trigger_listener import TriggerListener
from mergegate.core.config import (
    GITHUB_TOKEN,
    PIPELINE_CONFIG,
    REPO_PATH,
    REPO_URL,
    RESULTS_DIR,
)
from mergegate.executor.step_runner import build_step_runner
from mergegate.parser.pipeline_config import PipelineConfig, load_pipeline_config
from mergegate.services.notifier import build_notifier
from mergegate.services.repo_service import ensure_workspace
from mergegate.services.results_writer import ResultsWriter
from mergegate.services.run_store import RunStore

logger = logging.getLogger(__name__)


@dataclass
class PipelineService:
    config: PipelineConfig
    listener: TriggerListener
    run_store: RunStore
    orchestrator: Optional[Orchestrator] = None
    results_writer: Optional[ResultsWriter] = None


def build_pipeline_service(
    config_path: str = PIPELINE_CONFIG,
    repo_path: str = REPO_PATH,
    results_dir: str = RESULTS_DIR,
) -> PipelineService:
    """Build the production pipeline from environment + pipeline YAML."""
    config = load_pipeline_config(config_path)
    workdir = ensure_workspace(repo_path, REPO_URL, GITHUB_TOKEN)

    run_store = RunStore()
    results_writer = ResultsWriter(results_dir)
    orchestrator = Orchestrator(
        config=config,
        vcs=GitAgent(workdir),
        runner=build_step_runner(),
        notifier=build_notifier(),
        workdir=workdir,
        results_writer=results_writer,
        run_store=run_store,
    )

    listener = TriggerListener()
    listener.register(config.branch_pair, orchestrator.run)

    logger.info("Pipeline ready: %s, working clone %s", config.branch_pair, workdir)
    return PipelineService(
        config=config,
        listener=listener,
        run_store=run_store,
        orchestrator=orchestrator,
        results_writer=results_writer,
    )


def get_pipeline_service(request: Request) -> PipelineService:
    """FastAPI dependency: the app's PipelineService."""
    service = getattr(request.app.state, "pipeline", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Pipeline not initialised")
    return service
