"""Error taxonomy for the generation orchestration flow.

Routes translate these into HTTP answers; background paths catch them and
record an ``error`` status instead of letting them escape.
"""


class CarouselError(Exception):
    """Base class for all orchestration errors."""


class ValidationError(CarouselError):
    """Malformed generation request. Answered with 400, never retried."""


class UpstreamDispatchError(CarouselError):
    """The workflow engine webhook was unreachable, non-2xx, or refused the job."""


class PersistenceError(CarouselError):
    """Blob store or record store write failed."""


class GenerationNotFoundError(PersistenceError):
    """The owning generation row is not visible yet."""

    def __init__(self, generation_id: str):
        super().__init__(f"Generation not found: {generation_id}")
        self.generation_id = generation_id


class ReconciliationAmbiguous(CarouselError):
    """No engine execution matches the generation yet. Treated as pending."""


class TerminalEngineError(CarouselError):
    """The engine reported the job as failed."""


class EngineApiError(CarouselError):
    """The engine's read API (execution listing, status lookup) failed. Transient."""
