"""Exceptions raised by the data-quality pipeline."""


class PipelineError(Exception):
    """Base class for pipeline errors."""


class ConfigurationError(PipelineError):
    """Required configuration is missing or invalid; the invocation cannot start."""


class PlaceNotFoundError(PipelineError):
    """Referenced place does not exist."""

    def __init__(self, place_id: int):
        super().__init__(f"Place not found: {place_id}")
        self.place_id = place_id


class PhotoNotFoundError(PipelineError):
    """Referenced place photo does not exist."""

    def __init__(self, photo_id: int):
        super().__init__(f"Photo not found: {photo_id}")
        self.photo_id = photo_id


class JobNotFoundError(PipelineError):
    """Referenced refresh job does not exist."""

    def __init__(self, job_id: int):
        super().__init__(f"Refresh job not found: {job_id}")
        self.job_id = job_id


class InvalidJobTransitionError(PipelineError):
    """A refresh job transition was requested from a state that does not allow it."""

    def __init__(self, job_id: int, current_status: str, target_status: str):
        super().__init__(
            f"Refresh job {job_id} cannot move from {current_status} to {target_status}"
        )
        self.job_id = job_id
        self.current_status = current_status
        self.target_status = target_status
