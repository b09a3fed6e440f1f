from __future__ import annotations


class StudioError(RuntimeError):
    """Base class for failures raised by the production pipeline."""


class TransientProviderError(StudioError):
    """Raised when the generative service is throttled, unreachable or flaky."""


class GenerationJobError(TransientProviderError):
    """Raised when a long-running generation operation reports a failure."""


class GenerationTimeout(TransientProviderError):
    """Raised when a generation operation does not finish within the poll budget."""


class EmptyResult(StudioError):
    """Raised when the provider reports success but returns no usable media."""


class ValidationError(ValueError):
    """Raised when plans, transitions or settings cannot be processed."""


class NothingToStitch(ValidationError):
    """Raised when the assembler is asked to combine zero clips."""


class AssemblyError(StudioError):
    """Raised when the transcoding engine fails."""

    def __init__(self, message: str, diagnostics: str = "") -> None:
        super().__init__(message)
        self.diagnostics = diagnostics

    def __str__(self) -> str:
        base = super().__str__()
        if self.diagnostics:
            return f"{base}: {self.diagnostics.strip()[-2000:]}"
        return base


class DraftingFailed(StudioError):
    """Raised when a scene could not be drafted within its retry budget."""

    def __init__(self, scene_index: int, last_error: BaseException | None) -> None:
        detail = str(last_error) if last_error else "unknown error"
        super().__init__(f"Failed to draft scene {scene_index + 1} after retries. Last error: {detail}")
        self.scene_index = scene_index
        self.last_error = last_error
