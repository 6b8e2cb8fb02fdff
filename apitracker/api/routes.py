"""Route handlers for the apitracker REST API (mounted under ``/api/v1``)."""

from __future__ import annotations

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse

from apitracker.api.schemas import (
    APIResourceModel,
    ErrorResponse,
    HealthResponse,
    ReadyResponse,
    ResourcesResponse,
)
from apitracker.discovery.client import split_group_version
from apitracker.discovery.errors import ResourceTrackerNotStartedError

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Liveness probe; always 200 while the process serves requests."""
    from apitracker import __version__

    return HealthResponse(version=__version__)


@router.get(
    "/ready",
    response_model=ReadyResponse,
    responses={503: {"model": ReadyResponse}},
)
async def ready(request: Request) -> ReadyResponse | JSONResponse:
    """Readiness probe; 200 once the first collection has completed."""
    tracker = request.app.state.tracker
    if not tracker.ready:
        return JSONResponse(status_code=503, content=ReadyResponse(ready=False).model_dump())

    try:
        group_versions = len(tracker.get_api_resources())
    except ResourceTrackerNotStartedError:
        group_versions = 0
    return ReadyResponse(ready=True, group_versions=group_versions, crd_uids=tracker.crd_uid_count())


@router.get(
    "/resources",
    response_model=ResourcesResponse,
    responses={503: {"model": ErrorResponse}},
)
async def resources(
    request: Request,
    group: str | None = Query(default=None, description="Only return group-versions of this API group"),
) -> ResourcesResponse | JSONResponse:
    """Return the current API resource snapshot.

    ``group=""`` selects the core group.
    """
    tracker = request.app.state.tracker
    try:
        snapshot = tracker.get_api_resources()
    except ResourceTrackerNotStartedError as exc:
        return JSONResponse(
            status_code=503,
            content=ErrorResponse(error="TRACKER_NOT_READY", detail=str(exc)).model_dump(),
        )

    selected = {
        gv: items for gv, items in sorted(snapshot.items()) if group is None or split_group_version(gv)[0] == group
    }
    return ResourcesResponse(
        group_versions=len(selected),
        resources={
            gv: [
                APIResourceModel(
                    name=r.name,
                    namespaced=r.namespaced,
                    kind=r.kind,
                    verbs=sorted(r.verbs),
                    singular_name=r.singular_name,
                    short_names=list(r.short_names),
                    categories=list(r.categories),
                )
                for r in items
            ]
            for gv, items in selected.items()
        },
    )
