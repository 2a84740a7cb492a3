class GenerationError(Exception):
    """Something went wrong producing content."""


class EmptyResponse(GenerationError):
    pass


class SchemaMismatch(GenerationError):
    pass


class UpstreamFailure(GenerationError):
    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class RateLimited(UpstreamFailure):
    pass
