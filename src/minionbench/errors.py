# Copyright (c) 2025 Vahab Jabrayilov (vjabrayilov@cs.columbia.edu)
# Copyright (c) 2025 DAPLab of Columbia University (https://daplab.cs.columbia.edu/)
# Copyright (c) 2025 The Trustees of Columbia University in the City of New York

from __future__ import annotations

from typing import List, Optional


class MinionbenchError(Exception):
    """Base class for errors raised by minionbench."""


class EmptyInputError(MinionbenchError, ValueError):
    """Raised when picking from an empty sequence."""


class ConfigError(MinionbenchError, ValueError):
    """Invalid behavior or file configuration."""

    def __init__(self, message: str, problems: Optional[List[str]] = None):
        super().__init__(message)
        self.problems = list(problems or [])


class OperationFailure(MinionbenchError):
    """A single workload operation against the data store failed."""

    def __init__(self, operation: str, message: str, status: Optional[int] = None):
        super().__init__(f"{operation}: {message}")
        self.operation = operation
        self.status = status


class RunFailure(MinionbenchError):
    """An exception escaped a behavior's init or run phase."""

    def __init__(self, behavior: str, phase: str, cause: BaseException):
        super().__init__(f"{behavior} failed during {phase}: {cause}")
        self.behavior = behavior
        self.phase = phase
        self.cause = cause


class DeliveryFailure(MinionbenchError):
    """A flushed batch could not be delivered to its sink."""

    def __init__(self, target: str, message: str, status: Optional[int] = None):
        super().__init__(f"delivery to {target} failed: {message}")
        self.target = target
        self.status = status
