"""
Manipulator Control
===================

Cartesian trajectory tracking for fixed-base serial manipulators with
model-based torque control.

Subpackages:
    - control: Kinematics, dynamics, trajectory planning and control laws
    - simulation: Torque-driven simulated arm
    - integration: Fixed-rate control loop and run configuration
    - io: URDF robot-description loading

Author: Manipulator Control Project Team
License: MIT
"""

__version__ = "0.1.0"
