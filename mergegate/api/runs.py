"""
GET /runs, GET /runs/{run_id}
Run summaries for humans and dashboards. In-memory runs are served first;
older runs fall back to the persisted index.
"""
from fastapi import APIRouter, Depends, HTTPException, Query

from mergegate.services.pipeline_service import PipelineService, get_pipeline_service

router = APIRouter(prefix="/runs", tags=["Runs"])


@router.get("")
async def list_runs(
    limit: int = Query(default=50, ge=1, le=500),
    service: PipelineService = Depends(get_pipeline_service),
):
    runs = [run.summary() for run in service.run_store.recent(limit)]
    if not runs and service.results_writer is not None:
        runs = list(reversed(service.results_writer.read_index()))[:limit]
    return {"runs": runs}


@router.get("/{run_id}")
async def get_run(run_id: str, service: PipelineService = Depends(get_pipeline_service)):
    run = service.run_store.get(run_id)
    if run is None:
        raise HTTPException(status_code=404, detail=f"Run {run_id} not found")
    data = run.model_dump(mode="json")
    data["summary"] = run.summary()
    return data
