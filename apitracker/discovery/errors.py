"""Exceptions raised by the discovery package."""

from __future__ import annotations


class ResourceTrackerNotStartedError(Exception):
    """Raised when the snapshot is read before the first successful collection.

    Recoverable: callers should requeue and retry once the tracker converges.
    """

    def __init__(self) -> None:
        super().__init__("resource tracker not started")


class DiscoveryError(Exception):
    """A discovery or CRD listing request failed.

    Transient from the tracker's point of view: the failing cycle is dropped and
    the next scheduled cycle retries.
    """

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class GroupVersionNotFoundError(DiscoveryError):
    """The API server does not (or no longer) serve a group-version."""

    def __init__(self, group_version: str) -> None:
        super().__init__(f"group version {group_version!r} not served", status=404)
        self.group_version = group_version


class TrackerSetupError(Exception):
    """Raised by ``ResourceTracker.start`` when initial setup cannot complete."""

    def __init__(self, stage: str, cause: Exception) -> None:
        super().__init__(f"resource tracker setup failed during {stage}: {cause}")
        self.stage = stage
        self.cause = cause


class CRDWaitTimeoutError(Exception):
    """Raised when CRDs do not become Established within the allotted time."""

    def __init__(self, crd_name: str, timeout: float) -> None:
        super().__init__(f"CRD {crd_name!r} not established within {timeout:g}s")
        self.crd_name = crd_name
        self.timeout = timeout
