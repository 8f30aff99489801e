from __future__ import annotations


class FlowError(Exception):
    pass


class BackendUnavailable(FlowError):
    """A generation backend could not be reached or rejected the request."""

    def __init__(self, provider: str, message: str) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.message = message


class ToolNotDeclared(FlowError):
    pass
