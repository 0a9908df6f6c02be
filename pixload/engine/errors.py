"""Engine exceptions."""


class PixloadError(Exception):
    """Base class for errors raised by the load engine."""


class SetupFailure(PixloadError):
    """A bootstrap call failed; the run must abort before generating load."""

    def __init__(self, step: str, status: int | None = None, detail: str = "") -> None:
        self.step = step
        self.status = status
        self.detail = detail
        message = f"scenario setup failed at {step}"
        if status is not None:
            message += f" (status={status})"
        if detail:
            message += f": {detail}"
        super().__init__(message)
