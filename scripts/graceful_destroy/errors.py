from __future__ import annotations


class UsageError(RuntimeError):
    """Bad arguments, failed identity check or declined confirmation (exit 2)."""


class CapabilityUnavailable(RuntimeError):
    """The cluster API cannot be reached; cluster phases degrade to no-ops."""


class StackDeleteFailed(RuntimeError):
    def __init__(self, stack: str, status: str):
        super().__init__(f"stack {stack} failed to delete (status: {status})")
        self.stack = stack
        self.status = status
