"""
Motion Controller Module
========================

Model-based torque control laws for a serial manipulator.

Control Modes:
    - JOINT_SPACE: Inverse-dynamics control on joint targets
    - OPERATIONAL_SPACE: Inverse-dynamics control on Cartesian targets

Control Laws:

    Joint Space:
        a = q̈_d + K_d·(q̇_d - q̇) + K_p·(q_d - q)
        τ = M(q)·a + C(q, q̇) + G(q)

    Operational Space:
        e   = [p_d - p;  e_o(R_d, R)]
        ẍ*  = ẍ_d + K_d·(ẋ_d - J·q̇) + K_p·e
        q̈*  = J⁺·(ẍ* - J̇·q̇) + (I - J⁺J)·(-k_n·q̇)
        τ   = M(q)·q̈* + C(q, q̇) + G(q)

        The null-space term damps self-motion of redundant joints without
        disturbing the end-effector.

Damping gains default to K_d = 2·ζ·√K_p.

Both laws are stateless: the same (state, desired, gains) always yields the
same torque. There is no integral term.

Author: Manipulator Control Project Team
License: MIT
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Optional, Union
import numpy as np
from numpy.typing import NDArray

from .errors import DimensionMismatch
from .kinematics import Transform, Twist
from .model import JointTarget, KinematicChainModel

logger = logging.getLogger(__name__)

FloatArray = NDArray[np.floating]

Gain = Union[float, FloatArray]


# =============================================================================
# Enums and Configuration
# =============================================================================

class ControlMode(Enum):
    """Torque control law."""
    JOINT_SPACE = auto()          # Joint-space inverse dynamics
    OPERATIONAL_SPACE = auto()    # Cartesian inverse dynamics


def _expand_gain(name: str, value: Gain, size: int) -> FloatArray:
    """Broadcast a scalar or per-axis gain to a vector."""
    gain = np.asarray(value, dtype=float)
    if gain.ndim == 0:
        gain = np.full(size, float(gain))
    else:
        gain = gain.ravel()
        if gain.size != size:
            raise DimensionMismatch(name, size, gain.size)
    if np.any(gain < 0):
        raise ValueError(f"{name} must be non-negative")
    return gain


def critical_damping(kp: Gain, damping_ratio: float) -> FloatArray:
    """Damping gain 2·ζ·√K_p."""
    return 2.0 * damping_ratio * np.sqrt(np.asarray(kp, dtype=float))


@dataclass
class JointSpaceGains:
    """
    Gains for joint-space inverse-dynamics control.

    Attributes:
        kp: Position gain (scalar or per joint)
        kd: Velocity gain (scalar or per joint)
    """
    kp: Gain = 70.0
    kd: Gain = 7.0

    def __post_init__(self) -> None:
        """Validate gains."""
        if np.any(np.asarray(self.kp) < 0) or np.any(np.asarray(self.kd) < 0):
            raise ValueError("joint gains must be non-negative")


@dataclass
class CartesianGains:
    """
    Gains for operational-space inverse-dynamics control.

    Attributes:
        kp: Translational stiffness (scalar or per axis)
        ko: Rotational stiffness (scalar or per axis)
        kd: Translational damping, 2·ζ_p·√kp if None
        kdo: Rotational damping, 2·ζ_o·√ko if None
        damping_ratio_position: ζ_p
        damping_ratio_orientation: ζ_o
        null_space_damping: Joint damping k_n applied in the null space
    """
    kp: Gain = 70.0
    ko: Gain = 35.0
    kd: Optional[Gain] = None
    kdo: Optional[Gain] = None
    damping_ratio_position: float = 0.4
    damping_ratio_orientation: float = 0.5
    null_space_damping: float = 10.0

    def __post_init__(self) -> None:
        """Derive missing damping gains."""
        if self.damping_ratio_position < 0 or self.damping_ratio_orientation < 0:
            raise ValueError("damping ratios must be non-negative")
        if self.null_space_damping < 0:
            raise ValueError("null_space_damping must be non-negative")
        if np.any(np.asarray(self.kp) < 0) or np.any(np.asarray(self.ko) < 0):
            raise ValueError("stiffness gains must be non-negative")

        if self.kd is None:
            self.kd = critical_damping(self.kp, self.damping_ratio_position)
        if self.kdo is None:
            self.kdo = critical_damping(self.ko, self.damping_ratio_orientation)


@dataclass
class CartesianTarget:
    """
    Desired end-effector motion.

    Attributes:
        pose: Desired pose
        twist: Desired twist
        acceleration: Desired linear/angular acceleration
    """
    pose: Transform
    twist: Twist = field(default_factory=Twist.zero)
    acceleration: Twist = field(default_factory=Twist.zero)


@dataclass
class ControllerConfig:
    """
    Configuration for the motion controller.

    Attributes:
        mode: Control law in use, fixed for the run
        joint_gains: Gains for JOINT_SPACE
        cartesian_gains: Gains for OPERATIONAL_SPACE
    """
    mode: ControlMode = ControlMode.JOINT_SPACE
    joint_gains: JointSpaceGains = field(default_factory=JointSpaceGains)
    cartesian_gains: CartesianGains = field(default_factory=CartesianGains)


# =============================================================================
# Motion Controller
# =============================================================================

class MotionController:
    """
    Computes joint torques from the model state and a desired motion.

    Example:
        >>> controller = MotionController(model, ControllerConfig())
        >>> model.update(q, q_dot)
        >>> tau = controller.compute_torques(JointTarget(q_d, dq_d, ddq_d))
    """

    def __init__(
        self,
        model: KinematicChainModel,
        config: Optional[ControllerConfig] = None
    ) -> None:
        """
        Initialize the controller.

        Args:
            model: Kinematic/dynamic model shared with the loop driver
            config: Control law and gains
        """
        self.model = model
        self.config = config or ControllerConfig()

        logger.info(f"MotionController initialized: {self.config.mode.name}")

    @property
    def mode(self) -> ControlMode:
        return self.config.mode

    def compute_torques(
        self,
        desired: Union[JointTarget, CartesianTarget]
    ) -> FloatArray:
        """
        Torques for the configured control law.

        Args:
            desired: JointTarget for JOINT_SPACE, CartesianTarget for
                OPERATIONAL_SPACE

        Returns:
            Joint torques, length N
        """
        if self.config.mode == ControlMode.JOINT_SPACE:
            if not isinstance(desired, JointTarget):
                raise TypeError("JOINT_SPACE control expects a JointTarget")
            return self.joint_space_torques(desired)

        if not isinstance(desired, CartesianTarget):
            raise TypeError("OPERATIONAL_SPACE control expects a CartesianTarget")
        return self.operational_space_torques(desired)

    def joint_space_torques(
        self,
        target: JointTarget,
        gains: Optional[JointSpaceGains] = None
    ) -> FloatArray:
        """
        Joint-space inverse-dynamics law.

        Args:
            target: Desired (q, q̇, q̈)
            gains: Gains, configured joint gains if None

        Returns:
            Joint torques, length N

        Raises:
            ModelNotReady: Before the model's first update
            DimensionMismatch: If a target vector does not have length N
        """
        state = self.model.state
        n = self.model.n_joints
        gains = gains or self.config.joint_gains

        for name, vector in (("q_d", target.q), ("q_dot_d", target.q_dot), ("q_ddot_d", target.q_ddot)):
            if vector.size != n:
                raise DimensionMismatch(name, n, vector.size)

        kp = _expand_gain("kp", gains.kp, n)
        kd = _expand_gain("kd", gains.kd, n)

        a = (
            target.q_ddot
            + kd * (target.q_dot - state.q_dot)
            + kp * (target.q - state.q)
        )

        M = self.model.mass_matrix()
        return M @ a + self.model.bias_term()

    def operational_space_torques(
        self,
        target: CartesianTarget,
        gains: Optional[CartesianGains] = None
    ) -> FloatArray:
        """
        Operational-space inverse-dynamics law.

        Args:
            target: Desired pose, twist and acceleration
            gains: Gains, configured Cartesian gains if None

        Returns:
            Joint torques, length N

        Raises:
            ModelNotReady: Before the model's first update
        """
        state = self.model.state
        n = self.model.n_joints
        gains = gains or self.config.cartesian_gains

        Kp = np.concatenate([_expand_gain("kp", gains.kp, 3), _expand_gain("ko", gains.ko, 3)])
        Kd = np.concatenate([_expand_gain("kd", gains.kd, 3), _expand_gain("kdo", gains.kdo, 3)])

        J = self.model.jacobian()
        J_dot = self.model.jacobian_dot()
        pose = self.model.end_effector_pose()

        # Task-space errors
        error = self.model.pose_error(target.pose, pose)
        error_dot = target.twist.as_vector() - J @ state.q_dot

        x_ddot_cmd = target.acceleration.as_vector() + Kd * error_dot + Kp * error

        # Task acceleration plus null-space damping
        J_pinv = self.model.damped_pseudo_inverse(J)
        q_ddot = J_pinv @ (x_ddot_cmd - J_dot @ state.q_dot)

        null_space = np.eye(n) - J_pinv @ J
        q_ddot = q_ddot + null_space @ (-gains.null_space_damping * state.q_dot)

        M = self.model.mass_matrix()
        return M @ q_ddot + self.model.bias_term()
