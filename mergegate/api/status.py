"""
GET /status
Active and queued commits per branch pair, plus the configured steps.
"""
from fastapi import APIRouter, Depends

from mergegate.services.pipeline_service import PipelineService, get_pipeline_service

router = APIRouter()


@router.get("/status")
async def get_status(service: PipelineService = Depends(get_pipeline_service)):
    return {
        "lanes": service.listener.snapshot(),
        "steps": [step.name for step in service.config.steps],
        "runs_in_memory": len(service.run_store),
    }
