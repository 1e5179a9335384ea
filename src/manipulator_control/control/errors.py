"""
Control Errors
==============

Exception taxonomy shared by the kinematic model, the trajectory planner
and the motion controller.

All errors are raised synchronously to the caller. None of them is retried
by the control core; the loop driver decides how an aborted tick is handled.

Author: Manipulator Control Project Team
License: MIT
"""


class MotionControlError(Exception):
    """Base exception for motion-control errors."""
    pass


class DimensionMismatch(MotionControlError, ValueError):
    """Raised when a vector or matrix does not have the expected size."""

    def __init__(self, name: str, expected: int, actual: int) -> None:
        self.name = name
        self.expected = expected
        self.actual = actual
        super().__init__(f"{name}: expected length {expected}, got {actual}")


class InvalidProfile(MotionControlError, ValueError):
    """Raised when trajectory parameters cannot form a valid segment."""
    pass


class ModelNotReady(MotionControlError, RuntimeError):
    """Raised when state-dependent quantities are queried before the first update."""
    pass


class InvalidDescription(MotionControlError, ValueError):
    """Raised when a kinematic description cannot form a usable chain."""
    pass
