"""
Error taxonomy for the reply engine.
"""

from typing import Optional


class ReplyEngineError(Exception):
    """Base class for all reply engine errors."""


class ValidationError(ReplyEngineError):
    """Missing or malformed input. Reported to the caller, never retried."""


class UpstreamAnalysisError(ReplyEngineError):
    """An external classification, translation, generation or embedding call failed."""

    def __init__(self, operation: str, message: str, attempts: int = 1, cause: Optional[BaseException] = None):
        super().__init__(f"{operation} failed after {attempts} attempt(s): {message}")
        self.operation = operation
        self.attempts = attempts
        self.cause = cause


class IndexEmptyError(ReplyEngineError):
    """No vectors exist for the requested embedding model version."""

    def __init__(self, model_version: str):
        super().__init__(f"No vectors indexed for model version '{model_version}'")
        self.model_version = model_version


class InvalidTargetLanguageError(ReplyEngineError):
    """The requested translation target is not a supported language."""

    def __init__(self, code: Optional[str]):
        super().__init__(f"Unsupported target language: {code!r}")
        self.code = code


class PipelineTimeoutError(ReplyEngineError):
    """The overall request deadline expired before the reply was finalized."""

    def __init__(self, deadline_seconds: float, stage: Optional[str] = None):
        where = f" during {stage}" if stage else ""
        super().__init__(f"Request exceeded its {deadline_seconds:.1f}s deadline{where}")
        self.deadline_seconds = deadline_seconds
        self.stage = stage


class PartialResultWarning(UserWarning):
    """A pipeline step degraded; the reply is complete but confidence is reduced."""

    def __init__(self, stage: str, reason: str):
        super().__init__(f"{stage}: {reason}")
        self.stage = stage
        self.reason = reason

    def to_dict(self):
        return {"stage": self.stage, "reason": self.reason}
