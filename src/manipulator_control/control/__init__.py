"""
Control Module
==============

Motion generation and model-based torque control for a fixed-base
serial manipulator.

Key Components:
    - Kinematics: Pose/twist value types and the kinematic chain description
    - Model: Forward/inverse kinematics, Jacobians and rigid-body dynamics
    - Trajectory: Linear and circular Cartesian segments with trapezoidal timing
    - Controller: Joint-space and operational-space inverse-dynamics control

Data Flow (one control tick):
    joint state → model.update → planner.sample(t)
    → model.inverse_kinematics / jacobian → controller → joint torques

Author: Manipulator Control Project Team
License: MIT
"""

from .errors import (
    MotionControlError,
    DimensionMismatch,
    InvalidProfile,
    ModelNotReady,
    InvalidDescription,
)

from .kinematics import (
    Transform,
    Twist,
    JointType,
    JointLimits,
    LinkInertia,
    Joint,
    KinematicChain,
)

from .model import (
    RobotState,
    JointStateSample,
    JointTarget,
    IKSolution,
    KinematicChainModel,
)

from .trajectory import (
    PathShape,
    VelocityProfile,
    TrajectorySegment,
    TrajectorySample,
    TrajectoryPlanner,
)

from .controller import (
    ControlMode,
    JointSpaceGains,
    CartesianGains,
    CartesianTarget,
    ControllerConfig,
    MotionController,
)

__version__ = "0.1.0"

__all__ = [
    # Errors
    "MotionControlError",
    "DimensionMismatch",
    "InvalidProfile",
    "ModelNotReady",
    "InvalidDescription",
    # Kinematics
    "Transform",
    "Twist",
    "JointType",
    "JointLimits",
    "LinkInertia",
    "Joint",
    "KinematicChain",
    # Model
    "RobotState",
    "JointStateSample",
    "JointTarget",
    "IKSolution",
    "KinematicChainModel",
    # Trajectory
    "PathShape",
    "VelocityProfile",
    "TrajectorySegment",
    "TrajectorySample",
    "TrajectoryPlanner",
    # Controller
    "ControlMode",
    "JointSpaceGains",
    "CartesianGains",
    "CartesianTarget",
    "ControllerConfig",
    "MotionController",
]
