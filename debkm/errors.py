"""Exceptions raised by debkm operations."""


class DebkmError(Exception):
    """Base class for every error debkm reports to the user."""


class PreconditionError(DebkmError):
    """The requested operation was refused before anything was changed."""


class CurrentKernelProtected(PreconditionError):
    def __init__(self, kernel: str):
        super().__init__(f"The current running kernel cannot be removed: {kernel}")
        self.kernel = kernel


class MutationError(DebkmError):
    """A privileged command exited non-zero."""

    def __init__(self, message: str, returncode: int = 1):
        super().__init__(message)
        self.returncode = returncode


class GrubConfigError(MutationError):
    """Writing the GRUB defaults file failed."""
