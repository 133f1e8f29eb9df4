"""
Error taxonomy for the vignette engine.

Content and persistence errors are recoverable: the engine returns them to
the caller inside a result object. InvalidTransitionError is a programming
error and is always raised.
"""

from __future__ import annotations


class VignetteError(Exception):
    """Base class for recoverable vignette errors."""

    pass


class NotFoundError(VignetteError):
    """Raised when a vignette id does not exist in the content store."""

    def __init__(self, vignette_id: str):
        self.vignette_id = vignette_id
        super().__init__(f"Vignette not found: {vignette_id}")


class InvalidVignetteError(VignetteError):
    """Raised when vignette content violates the node graph invariants."""

    def __init__(self, vignette_id: str, problems: list[str]):
        self.vignette_id = vignette_id
        self.problems = list(problems)
        summary = "; ".join(self.problems) or "unknown problem"
        super().__init__(f"Invalid vignette {vignette_id}: {summary}")


class InvalidChoiceError(VignetteError):
    """Raised when a choice id is not offered by the current node."""

    def __init__(self, node_id: str, choice_id: str):
        self.node_id = node_id
        self.choice_id = choice_id
        super().__init__(f"Choice {choice_id!r} is not available at node {node_id!r}")


class PersistenceIOError(VignetteError):
    """Raised by a persistence gateway when a read or write fails."""

    def __init__(self, operation: str, message: str):
        self.operation = operation
        super().__init__(f"{operation} failed: {message}")


class InvalidTransitionError(RuntimeError):
    """Raised when an engine operation is called in a state that does not allow it."""

    def __init__(self, operation: str, state: str):
        self.operation = operation
        self.state = state
        super().__init__(f"{operation} is not valid in state {state}")
