"""Pydantic response models for the apitracker REST API."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class ErrorResponse(BaseModel):
    """Error envelope returned by every non-2xx response."""

    error: str
    detail: str


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str


class ReadyResponse(BaseModel):
    ready: bool
    group_versions: int = 0
    crd_uids: int = 0


class APIResourceModel(BaseModel):
    """One resource descriptor in the discovery wire shape."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    namespaced: bool
    kind: str
    verbs: list[str]
    singular_name: str = Field(default="", alias="singularName")
    short_names: list[str] = Field(default_factory=list, alias="shortNames")
    categories: list[str] = Field(default_factory=list)


class ResourcesResponse(BaseModel):
    """Snapshot of served API resources keyed by group-version."""

    group_versions: int
    resources: dict[str, list[APIResourceModel]]
