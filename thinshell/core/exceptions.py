from typing import Optional


class ThinShellError(Exception):
    """Base class for domain-specific errors."""


class ConfigurationError(ThinShellError):
    """Raised when a setup or initial state is inconsistent with the chosen formulation."""


class DofIndexError(ThinShellError, IndexError):
    """Raised when a DOF index falls outside ``[0, total DOFs)``."""

    def __init__(self, index: int, ndofs: int, message: Optional[str] = None):
        if message is None:
            message = f"DOF index {index} is outside the valid range [0, {ndofs})."
        super().__init__(message)
        self.index = index
        self.ndofs = ndofs
