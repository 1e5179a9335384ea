"""
Integration Module
==================

Wires model, planner and controller into a fixed-rate tracking loop.

Components:
    - ControlLoopDriver: Read → plan → control → send cycle
    - StateSource / CommandSink: Transport interfaces the driver talks to
    - RunConfig: YAML-backed configuration of a complete run
    - create_simulation_driver: Driver wired to a simulated arm

Author: Manipulator Control Project Team
License: MIT
"""

from .driver import (
    StateSource,
    CommandSink,
    FaultPolicy,
    DriverConfig,
    TickResult,
    ControlLoopDriver,
    create_simulation_driver,
)

from .config import (
    TrajectoryConfig,
    RunConfig,
)

__version__ = "0.1.0"

__all__ = [
    "StateSource",
    "CommandSink",
    "FaultPolicy",
    "DriverConfig",
    "TickResult",
    "ControlLoopDriver",
    "create_simulation_driver",
    "TrajectoryConfig",
    "RunConfig",
]
