"""Download queue endpoints.

- POST /downloads - Queue a download
- GET /downloads - Queue status and tasks
- GET /downloads/{task_id} - One task
- POST /downloads/{task_id}/pause|resume|stop - Control a task
- PUT /downloads/limit - Change the concurrency limit
"""

from dataclasses import replace
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from fastapi import status as http_status
from pydantic import BaseModel, Field

from fastboot_flasher.download.queue import MAX_CONCURRENT, MIN_CONCURRENT, DownloadTask
from fastboot_flasher.download.transfer import DownloadError
from fastboot_flasher.services import ProvisioningServices
from web.deps import get_services

router = APIRouter()


class DownloadRequest(BaseModel):
    """Request body for queueing a download."""

    url: str
    file_name: str | None = None
    overwrite: bool = False
    resume: bool = True
    sha256: str | None = None


class LimitRequest(BaseModel):
    """Request body for changing the concurrency limit."""

    limit: int = Field(ge=MIN_CONCURRENT, le=MAX_CONCURRENT)


def _task_to_dict(task: DownloadTask) -> dict[str, Any]:
    """Convert a download task to a dictionary."""
    progress = task.progress
    return {
        "id": task.id,
        "url": task.url,
        "destination_dir": str(task.destination_dir),
        "state": task.state.value,
        "created_at": task.created_at.isoformat(),
        "error": task.error,
        "progress": {
            "percent": progress.percent,
            "speed": progress.speed,
            "downloaded": progress.downloaded,
            "total": progress.total,
            "warning": progress.warning,
        }
        if progress
        else None,
    }


def _not_found(task_id: str, action: str) -> HTTPException:
    return HTTPException(
        status_code=http_status.HTTP_404_NOT_FOUND,
        detail={
            "code": "task_not_found",
            "message": f"No download {task_id} that can be {action}",
        },
    )


@router.post("", status_code=http_status.HTTP_202_ACCEPTED)
def submit_download(
    request: DownloadRequest,
    services: ProvisioningServices = Depends(get_services),
) -> dict[str, Any]:
    """Queue a download into the configured download directory.

    Raises:
        HTTPException: If the URL is rejected or the queue is closed.
    """
    options = replace(
        services.queue.default_options,
        file_name=request.file_name,
        overwrite=request.overwrite,
        resume=request.resume,
        expected_checksum=request.sha256,
    )
    try:
        handle = services.queue.submit(request.url, services.settings.download_dir, options)
    except DownloadError as e:
        raise HTTPException(
            status_code=http_status.HTTP_400_BAD_REQUEST,
            detail={"code": e.code, "message": str(e)},
        ) from None

    task = services.queue.get_task(handle.id)
    if task is None:
        return {"id": handle.id, "url": handle.url}
    return _task_to_dict(task)


@router.get("")
def list_downloads(services: ProvisioningServices = Depends(get_services)) -> dict[str, Any]:
    """Queue counters and all known tasks."""
    status = services.queue.status()
    return {
        "active": status.active,
        "queued": status.queued,
        "max_concurrent": status.max_concurrent,
        "tasks": [_task_to_dict(task) for task in services.queue.list_tasks()],
    }


@router.put("/limit")
def set_limit(
    request: LimitRequest,
    services: ProvisioningServices = Depends(get_services),
) -> dict[str, int]:
    """Change the download concurrency limit."""
    return {"max_concurrent": services.queue.set_concurrency_limit(request.limit)}


@router.get("/{task_id}")
def get_download(
    task_id: str,
    services: ProvisioningServices = Depends(get_services),
) -> dict[str, Any]:
    """Get one download task.

    Raises:
        HTTPException: If the task is unknown.
    """
    task = services.queue.get_task(task_id)
    if task is None:
        raise HTTPException(
            status_code=http_status.HTTP_404_NOT_FOUND,
            detail={"code": "task_not_found", "message": f"Download not found: {task_id}"},
        )
    return _task_to_dict(task)


@router.post("/{task_id}/pause")
def pause_download(
    task_id: str,
    services: ProvisioningServices = Depends(get_services),
) -> dict[str, Any]:
    """Pause an active download."""
    if not services.queue.pause(task_id):
        raise _not_found(task_id, "paused")
    return {"id": task_id, "state": "paused"}


@router.post("/{task_id}/resume")
def resume_download(
    task_id: str,
    services: ProvisioningServices = Depends(get_services),
) -> dict[str, Any]:
    """Resume a paused download."""
    if not services.queue.resume(task_id):
        raise _not_found(task_id, "resumed")
    return {"id": task_id, "state": "active"}


@router.post("/{task_id}/stop")
def stop_download(
    task_id: str,
    services: ProvisioningServices = Depends(get_services),
) -> dict[str, Any]:
    """Stop a queued, active or paused download."""
    if not services.queue.stop(task_id):
        raise _not_found(task_id, "stopped")
    return {"id": task_id, "stopped": True}
