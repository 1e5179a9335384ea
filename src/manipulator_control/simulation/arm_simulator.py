"""
Arm Simulator Module
====================

Rigid-body simulation of a serial manipulator driven by joint torques.

The simulator plays both external roles of the control loop: it is the
state source (joint positions/velocities) and the command sink (joint
torques). Every torque command advances the simulation by one time step.

Dynamics:
    M(q)·q̈ = τ - C(q, q̇) - G(q) - D·q̇

    solved with a Cholesky factorisation of the mass matrix and integrated
    with semi-implicit Euler:

        q̇ ← q̇ + q̈·dt
        q  ← q + q̇·dt

Joint position limits are enforced by clamping; the velocity of a joint
that hits its limit is zeroed.

Author: Manipulator Control Project Team
License: MIT
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Tuple
import numpy as np
from numpy.typing import NDArray
from scipy.linalg import cho_factor, cho_solve, LinAlgError

from ..control.errors import DimensionMismatch
from ..control.kinematics import KinematicChain
from ..control.model import JointStateSample, KinematicChainModel, STANDARD_GRAVITY

logger = logging.getLogger(__name__)

# Initial configuration of the built-in LBR iiwa arm, used by the default run
DEFAULT_INITIAL_POSITIONS = (0.0, 1.57, -1.57, -1.2, 1.57, -1.57, -0.37)


@dataclass
class SimulatorConfig:
    """
    Configuration for the arm simulator.

    Attributes:
        time_step: Integration step per torque command (seconds)
        gravity: Gravity vector (m/s^2)
        joint_damping: Viscous damping per joint (Nm·s/rad), scalar or tuple
        initial_positions: Joint positions at reset (zeros if None)
        enforce_torque_limits: Clip commands to the joints' effort limits
    """
    time_step: float = 0.002
    gravity: Tuple[float, float, float] = STANDARD_GRAVITY
    joint_damping: Tuple[float, ...] = (0.0,)
    initial_positions: Optional[Tuple[float, ...]] = None
    enforce_torque_limits: bool = True

    def __post_init__(self) -> None:
        if self.time_step <= 0:
            raise ValueError("time_step must be positive")
        if self.time_step > 0.01:
            logger.warning("Large time step may cause instability")
        if any(d < 0 for d in self.joint_damping):
            raise ValueError("joint_damping must be non-negative")


class SimulatedArm:
    """
    Torque-driven simulated manipulator.

    Example:
        >>> arm = SimulatedArm(KinematicChain.default_arm())
        >>> sample = arm.read()
        >>> arm.send(np.zeros(7))   # falls under gravity for one step
    """

    def __init__(
        self,
        chain: KinematicChain,
        config: Optional[SimulatorConfig] = None
    ) -> None:
        """
        Initialize the simulator.

        Args:
            chain: Kinematic chain with inertial parameters
            config: Simulator configuration
        """
        self.config = config or SimulatorConfig()
        self.chain = chain
        self.n_joints = chain.n_joints

        # Plant model, separate from any controller model
        self._plant = KinematicChainModel(chain, gravity=self.config.gravity)

        damping = np.asarray(self.config.joint_damping, dtype=float)
        if damping.size == 1:
            damping = np.full(self.n_joints, float(damping[0]))
        elif damping.size != self.n_joints:
            raise DimensionMismatch("joint_damping", self.n_joints, damping.size)
        self._damping = damping

        limits = chain.joint_limits
        self._lower = np.array([lim.lower for lim in limits])
        self._upper = np.array([lim.upper for lim in limits])
        self._max_torque = np.array([lim.effort for lim in limits])

        self._positions = np.zeros(self.n_joints)
        self._velocities = np.zeros(self.n_joints)
        self._last_torque = np.zeros(self.n_joints)
        self._time = 0.0
        self._step_count = 0

        self.reset()

        logger.info(
            f"SimulatedArm: {self.n_joints} joints, dt={self.config.time_step}s"
        )

    def reset(self, positions: Optional[NDArray] = None) -> None:
        """
        Reset to a configuration at rest.

        Args:
            positions: Joint positions, configured initial positions if None
        """
        if positions is None and self.config.initial_positions is not None:
            positions = self.config.initial_positions

        if positions is None:
            self._positions = np.zeros(self.n_joints)
        else:
            positions = np.asarray(positions, dtype=float).ravel()
            if positions.size != self.n_joints:
                raise DimensionMismatch("positions", self.n_joints, positions.size)
            self._positions = positions.copy()

        self._velocities = np.zeros(self.n_joints)
        self._last_torque = np.zeros(self.n_joints)
        self._time = 0.0
        self._step_count = 0

    def read(self) -> JointStateSample:
        """Current joint state."""
        return JointStateSample(
            positions=self._positions.copy(),
            velocities=self._velocities.copy(),
            timestamp=self._time
        )

    def send(self, torque: NDArray) -> None:
        """
        Apply joint torques for one time step.

        Args:
            torque: Joint torques, length N

        Raises:
            DimensionMismatch: If torque does not have length N
        """
        torque = np.asarray(torque, dtype=float).ravel()
        if torque.size != self.n_joints:
            raise DimensionMismatch("torque", self.n_joints, torque.size)

        if self.config.enforce_torque_limits:
            torque = np.clip(torque, -self._max_torque, self._max_torque)
        self._last_torque = torque

        self.step(torque)

    def step(self, torque: NDArray) -> None:
        """Advance the dynamics by one time step under the given torque."""
        dt = self.config.time_step

        self._plant.update(self._positions, self._velocities)
        M = self._plant.mass_matrix()
        bias = self._plant.bias_term()
        rhs = torque - bias - self._damping * self._velocities

        try:
            accelerations = cho_solve(cho_factor(M), rhs)
        except LinAlgError:
            logger.warning("Mass matrix not positive definite, using least squares")
            accelerations = np.linalg.lstsq(M, rhs, rcond=None)[0]

        # Semi-implicit Euler
        self._velocities = self._velocities + accelerations * dt
        self._positions = self._positions + self._velocities * dt

        # Stop at joint limits
        below = self._positions < self._lower
        above = self._positions > self._upper
        if np.any(below | above):
            self._positions = np.clip(self._positions, self._lower, self._upper)
            self._velocities[below | above] = 0.0

        self._time += dt
        self._step_count += 1

    @property
    def positions(self) -> NDArray:
        return self._positions.copy()

    @property
    def velocities(self) -> NDArray:
        return self._velocities.copy()

    @property
    def last_torque(self) -> NDArray:
        return self._last_torque.copy()

    @property
    def simulation_time(self) -> float:
        """Current simulation time."""
        return self._time

    @property
    def step_count(self) -> int:
        """Number of simulation steps."""
        return self._step_count
