from __future__ import annotations


class PipelineError(Exception):
    """Base class for enrichment pipeline failures."""


class FetchError(PipelineError):
    def __init__(
        self,
        message: str,
        *,
        url: str = "",
        status_code: int | None = None,
        attempts: int = 0,
        retryable: bool = False,
    ) -> None:
        super().__init__(message)
        self.url = url
        self.status_code = status_code
        self.attempts = attempts
        self.retryable = retryable


class StorageError(PipelineError):
    pass


class RunInProgressError(PipelineError):
    def __init__(self, owner: str | None) -> None:
        super().__init__(f"RUN_IN_PROGRESS owner={owner}")
        self.owner = owner
