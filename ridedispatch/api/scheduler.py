"""Periodic job control API endpoints."""
from fastapi import APIRouter

from ridedispatch.dispatch.scheduler import scheduler
from ridedispatch.errors import NotFound

router = APIRouter()


@router.get("/status")
def scheduler_status():
    """Get the state of every periodic job."""
    return {"jobs": scheduler.status()}


@router.post("/run/{job_name}")
def run_job(job_name: str):
    """Run one tick of a job now, outside its timer."""
    if job_name not in scheduler.jobs:
        raise NotFound(f"Unknown job: {job_name}")
    result = scheduler.run(job_name)
    return {"job": job_name, "result": result}
