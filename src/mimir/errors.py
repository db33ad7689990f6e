"""Error types shared by the store, the extraction pipeline and the CLI."""


class MimirError(Exception):
    """Base class for errors reported to the caller instead of crashing.

    Attributes:
        exit_code: Process exit code the CLI should return.
    """

    exit_code: int = 1

    def __init__(self, message: str, exit_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if exit_code is not None:
            self.exit_code = exit_code


class UserError(MimirError):
    """Invalid input: bad flag values, TTLs, references, enum values, files."""


class NotFoundError(MimirError):
    """Nothing matched: get/search/list/remove/graph found no facts."""

    exit_code = 2


class GenerationError(MimirError):
    """The text-generation service failed to produce a usable response."""


class GeneratorUnreachableError(GenerationError):
    """The generation service could not be reached at all."""


class GeneratorTimeoutError(GenerationError):
    """The generation service did not answer within the request timeout."""


class GeneratorHTTPError(GenerationError):
    """The generation service answered with a non-2xx status."""

    def __init__(self, status_code: int, body: str, engine: str = "ollama") -> None:
        super().__init__(f"{engine} request failed ({status_code}): {body}")
        self.status_code = status_code
        self.body = body


class GeneratorPayloadError(GenerationError):
    """The generation service answered, but the payload is unusable."""
