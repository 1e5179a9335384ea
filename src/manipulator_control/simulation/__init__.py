"""
Simulation Module
=================

Torque-driven rigid-body simulation of the manipulator, used as state
source and command sink when no hardware is attached.

Components:
    - SimulatedArm: Forward-dynamics integration of joint torques
    - SimulatorConfig: Time step, gravity, damping, initial configuration

Author: Manipulator Control Project Team
License: MIT
"""

from .arm_simulator import (
    DEFAULT_INITIAL_POSITIONS,
    SimulatorConfig,
    SimulatedArm,
)

__version__ = "0.1.0"

__all__ = [
    "DEFAULT_INITIAL_POSITIONS",
    "SimulatorConfig",
    "SimulatedArm",
]
