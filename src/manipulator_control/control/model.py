"""
Kinematic Chain Model
=====================

State-holding kinematic and dynamic model of a serial manipulator.

The model wraps an immutable KinematicChain, stores the latest measured
joint state and evaluates, on demand, everything the controller needs:

    - Forward kinematics of the end-effector
    - Geometric Jacobian (linear stacked over angular, base frame)
    - Jacobian time derivative
    - Numerical inverse kinematics (Levenberg-Marquardt)
    - Damped pseudo-inverse velocity mapping
    - Rigid-body dynamics terms M(q), C(q, q̇), G(q)

Mathematical Background:

    Damped Pseudo-Inverse (SVD form):
        J = U Σ Vᵀ
        J⁺ = V · diag(σᵢ / (σᵢ² + λ²)) · Uᵀ

        Bounded for rank-deficient J; equals the Moore-Penrose inverse as
        λ → 0.

    Inverse Kinematics (Levenberg-Marquardt):
        Δq = J_wᵀ (J_w J_wᵀ + μ² I)⁻¹ e_w

        with e_w = W·e the weighted 6D pose error and J_w = W·J. μ shrinks
        after an accepted step and grows after a rejected one, never below
        the configured damping.

    Recursive Newton-Euler (base-frame vectors):
        Forward pass (base → tip):
            ω_i  = ω_{i-1} + z_i q̇_i                         (revolute)
            ω̇_i  = ω̇_{i-1} + z_i q̈_i + ω_{i-1} × z_i q̇_i
            a_i  = a_{i-1} + ω̇_{i-1} × r_i + ω_{i-1} × (ω_{i-1} × r_i)
                   [+ z_i q̈_i + 2 ω_{i-1} × z_i q̇_i          (prismatic)]
        Backward pass (tip → base):
            f_i  = m_i a_ci + f_{i+1}
            n_i  = I_i ω̇_i + ω_i × I_i ω_i + c_i × m_i a_ci
                   + n_{i+1} + r_{i+1} × f_{i+1}
            τ_i  = z_i · n_i   (revolute)   or   z_i · f_i   (prismatic)

        Gravity enters as an upward acceleration of the base, a_0 = -g.
        C(q, q̇) + G(q) = RNEA(q, q̇, 0) in a single pass.

    Mass Matrix (composite link Jacobians):
        M(q) = Σᵢ mᵢ J_vᵢᵀ J_vᵢ + J_ωᵢᵀ Iᵢ J_ωᵢ

        with J_vᵢ, J_ωᵢ the Jacobians of link i's centre of mass, all
        taken from one pass over the joint frames.

Caching:
    Joint frames, Jacobian, mass matrix and bias torques at the current
    state are computed once and reused until the next update().

Thread Safety:
    Not thread-safe. One control tick owns the model at a time; update()
    swaps the whole RobotState so readers never see half of an update.

Author: Manipulator Control Project Team
License: MIT
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple, Union
import numpy as np
from numpy.typing import NDArray

from .errors import DimensionMismatch, InvalidDescription, ModelNotReady
from .kinematics import (
    JointType,
    KinematicChain,
    Transform,
    Twist,
    orientation_error,
)

logger = logging.getLogger(__name__)

FloatArray = NDArray[np.floating]

STANDARD_GRAVITY = (0.0, 0.0, -9.81)

# Upper bound of the Levenberg-Marquardt damping
IK_MAX_DAMPING = 1e6


def _cross(a: FloatArray, b: FloatArray) -> FloatArray:
    """Cross product of two 3-vectors, cheaper than np.cross for one pair."""
    return np.array([
        a[1] * b[2] - a[2] * b[1],
        a[2] * b[0] - a[0] * b[2],
        a[0] * b[1] - a[1] * b[0]
    ])


# =============================================================================
# Data Classes
# =============================================================================

@dataclass(frozen=True)
class RobotState:
    """
    Measured joint state.

    Attributes:
        q: Joint positions (rad or m)
        q_dot: Joint velocities (rad/s or m/s)
    """
    q: FloatArray
    q_dot: FloatArray

    def __post_init__(self) -> None:
        """Own read-only copies of the inputs."""
        q = np.array(self.q, dtype=float)
        q_dot = np.array(self.q_dot, dtype=float)
        q.setflags(write=False)
        q_dot.setflags(write=False)
        object.__setattr__(self, "q", q)
        object.__setattr__(self, "q_dot", q_dot)


@dataclass
class JointStateSample:
    """
    One joint-state measurement as delivered by a state source.

    Attributes:
        positions: Joint positions, ordered like the chain's movable joints
        velocities: Joint velocities
        timestamp: Measurement time (s), 0.0 if unknown
    """
    positions: FloatArray
    velocities: FloatArray
    timestamp: float = 0.0

    def __post_init__(self) -> None:
        """Convert to numpy arrays."""
        self.positions = np.asarray(self.positions, dtype=float).ravel()
        self.velocities = np.asarray(self.velocities, dtype=float).ravel()


@dataclass
class JointTarget:
    """
    Desired joint-space motion for one control tick.

    Attributes:
        q: Desired positions
        q_dot: Desired velocities
        q_ddot: Desired accelerations
    """
    q: FloatArray
    q_dot: FloatArray
    q_ddot: FloatArray

    def __post_init__(self) -> None:
        """Convert to numpy arrays."""
        self.q = np.asarray(self.q, dtype=float).ravel()
        self.q_dot = np.asarray(self.q_dot, dtype=float).ravel()
        self.q_ddot = np.asarray(self.q_ddot, dtype=float).ravel()


@dataclass
class IKSolution:
    """
    Result of a numerical inverse kinematics solve.

    A non-converged solution is still the best estimate found; callers that
    need a guarantee check ``residual`` themselves.

    Attributes:
        q: Best joint configuration found
        residual: Weighted 6D pose-error norm at q
        iterations: Iterations performed
        converged: Whether residual fell below the tolerance
    """
    q: FloatArray
    residual: float
    iterations: int
    converged: bool


# =============================================================================
# Kinematic Chain Model
# =============================================================================

class KinematicChainModel:
    """
    Kinematic and dynamic model of a manipulator at its current state.

    Example:
        >>> model = KinematicChainModel(KinematicChain.default_arm())
        >>> model.update(q, q_dot)
        >>> pose = model.end_effector_pose()
        >>> J = model.jacobian()
        >>> tau_g = model.gravity_term()
        >>>
        >>> q_d = model.inverse_kinematics(q, target_pose)
    """

    def __init__(
        self,
        chain: KinematicChain,
        gravity: Tuple[float, float, float] = STANDARD_GRAVITY,
        ik_max_iterations: int = 100,
        ik_tolerance: float = 1e-5,
        ik_damping: float = 1e-3,
        ik_weights: Optional[FloatArray] = None,
        pinv_damping: float = 1e-3
    ) -> None:
        """
        Initialize the model.

        Args:
            chain: Kinematic chain description
            gravity: Gravity vector in the base frame (m/s²)
            ik_max_iterations: Iteration cap for inverse kinematics
            ik_tolerance: Weighted pose-error norm treated as converged
            ik_damping: Minimum Levenberg-Marquardt damping
            ik_weights: Per-component weights of the 6D pose error
            pinv_damping: Damping factor λ of the velocity pseudo-inverse
        """
        if ik_max_iterations < 1:
            raise ValueError("ik_max_iterations must be at least 1")
        if ik_tolerance <= 0:
            raise ValueError("ik_tolerance must be positive")
        if ik_damping <= 0 or pinv_damping <= 0:
            raise ValueError("damping factors must be positive")

        self._chain = chain
        self._n = chain.n_joints
        self._gravity = np.asarray(gravity, dtype=float).reshape(3)

        self.ik_max_iterations = ik_max_iterations
        self.ik_tolerance = ik_tolerance
        self.ik_damping = ik_damping
        self.pinv_damping = pinv_damping

        if ik_weights is None:
            ik_weights = np.array([1.0, 1.0, 1.0, 0.1, 0.1, 0.1])
        self._ik_weights = np.asarray(ik_weights, dtype=float).reshape(6)

        self._ee_offset = Transform.identity()
        self._ee_attached = False
        self._state: Optional[RobotState] = None
        self._cache: Dict[str, object] = {}

        logger.info(
            f"KinematicChainModel initialized: chain '{chain.name}', "
            f"{self._n} joints"
        )

    # =========================================================================
    # State
    # =========================================================================

    @property
    def chain(self) -> KinematicChain:
        return self._chain

    @property
    def n_joints(self) -> int:
        return self._n

    @property
    def is_ready(self) -> bool:
        """True once update() has been called at least once."""
        return self._state is not None

    @property
    def state(self) -> RobotState:
        """Latest joint state."""
        return self._require_state()

    def update(self, q: FloatArray, q_dot: FloatArray) -> None:
        """
        Replace the robot state.

        Args:
            q: Joint positions, length N
            q_dot: Joint velocities, length N

        Raises:
            DimensionMismatch: If either vector does not have length N
        """
        q = self._joint_vector("q", q)
        q_dot = self._joint_vector("q_dot", q_dot)
        self._state = RobotState(q, q_dot)
        self._cache = {}

    def attach_end_effector(self, offset: Transform) -> None:
        """
        Set the fixed flange → end-effector offset. Allowed once.

        Raises:
            InvalidDescription: If an end-effector is already attached
        """
        if self._ee_attached:
            raise InvalidDescription("end-effector offset is already attached")
        self._ee_offset = Transform(offset.matrix.copy())
        self._ee_attached = True
        self._cache = {}
        logger.info(f"End-effector attached at offset {self._ee_offset.position}")

    def _require_state(self) -> RobotState:
        if self._state is None:
            raise ModelNotReady("model has not received a joint state yet")
        return self._state

    def _joint_vector(self, name: str, value: FloatArray) -> FloatArray:
        vector = np.asarray(value, dtype=float).ravel()
        if vector.size != self._n:
            raise DimensionMismatch(name, self._n, vector.size)
        return vector

    # =========================================================================
    # Kinematics
    # =========================================================================

    def _frames(self, q: FloatArray) -> Tuple[List[FloatArray], FloatArray]:
        """
        Base-frame transforms of every joint frame and of the end-effector.

        Args:
            q: Joint positions, length N

        Returns:
            Tuple of (one 4x4 per joint in the chain, 4x4 end-effector frame)
        """
        T = np.eye(4)
        frames = []
        k = 0

        for joint in self._chain.joints:
            if joint.is_movable:
                T = T @ joint.local_transform(q[k])
                k += 1
            else:
                T = T @ joint.origin.matrix
            frames.append(T)

        T_ee = T @ self._chain.tip_transform.matrix @ self._ee_offset.matrix
        return frames, T_ee

    def _cached(self, key: str, compute):
        """Value of key at the current state, computed on first use."""
        if key not in self._cache:
            self._cache[key] = compute()
        return self._cache[key]

    def _state_frames(self) -> Tuple[List[FloatArray], FloatArray]:
        q = self._require_state().q
        return self._cached("frames", lambda: self._frames(q))

    def _joint_axes(
        self,
        frames: List[FloatArray]
    ) -> Tuple[FloatArray, FloatArray, NDArray[np.bool_]]:
        """
        Base-frame axes and origins of the movable joints.

        Returns:
            Tuple of (N x 3 axes, N x 3 origins, N revolute flags)
        """
        axes = np.zeros((self._n, 3))
        origins = np.zeros((self._n, 3))
        revolute = np.zeros(self._n, dtype=bool)
        k = 0

        for joint, T in zip(self._chain.joints, frames):
            if not joint.is_movable:
                continue
            axes[k] = T[:3, :3] @ joint.axis
            origins[k] = T[:3, 3]
            revolute[k] = joint.joint_type == JointType.REVOLUTE
            k += 1

        return axes, origins, revolute

    def _jacobian_from_frames(
        self,
        frames: List[FloatArray],
        T_ee: FloatArray
    ) -> FloatArray:
        axes, origins, revolute = self._joint_axes(frames)
        linear = np.where(revolute[:, None], np.cross(axes, T_ee[:3, 3] - origins), axes)
        angular = axes * revolute[:, None]
        return np.vstack([linear.T, angular.T])

    def forward_kinematics(self, q: FloatArray) -> Transform:
        """
        End-effector pose at an arbitrary configuration.

        Raises:
            DimensionMismatch: If q does not have length N
        """
        q = self._joint_vector("q", q)
        _, T_ee = self._frames(q)
        return Transform(T_ee)

    def end_effector_pose(self) -> Transform:
        """End-effector pose at the current state."""
        _, T_ee = self._state_frames()
        return Transform(T_ee.copy())

    def jacobian_at(self, q: FloatArray) -> FloatArray:
        """
        Geometric Jacobian at an arbitrary configuration.

        The Jacobian relates joint velocities to end-effector
        linear and angular velocities:

            [v]   [J_v]
            [ω] = [J_ω] · q̇

        Returns:
            6 x N Jacobian matrix
        """
        q = self._joint_vector("q", q)
        return self._jacobian_from_frames(*self._frames(q))

    def jacobian(self) -> FloatArray:
        """Geometric Jacobian at the current state."""
        J = self._cached("jacobian", lambda: self._jacobian_from_frames(*self._state_frames()))
        return J.copy()

    def jacobian_dot(self, step: float = 1e-5) -> FloatArray:
        """
        Time derivative of the Jacobian at the current state.

        Central difference of J along the current joint velocity:
            J̇ ≈ (J(q + h·q̇) - J(q - h·q̇)) / 2h

        Returns:
            6 x N matrix
        """
        state = self._require_state()
        q, q_dot = state.q, state.q_dot

        def compute():
            return (
                self.jacobian_at(q + step * q_dot) - self.jacobian_at(q - step * q_dot)
            ) / (2.0 * step)

        return self._cached(f"jacobian_dot:{step}", compute).copy()

    def pose_error(self, target: Transform, current: Transform) -> FloatArray:
        """
        6D pose error [position; orientation] from current to target.

        The orientation part is the quaternion-vector residual, which avoids
        Euler-angle singularities.
        """
        e_p = target.matrix[:3, 3] - current.matrix[:3, 3]
        e_o = orientation_error(target.matrix[:3, :3], current.matrix[:3, :3])
        return np.concatenate([e_p, e_o])

    def damped_pseudo_inverse(self, J: FloatArray) -> FloatArray:
        """
        Damped pseudo-inverse of a Jacobian.

        Args:
            J: 6 x N Jacobian

        Returns:
            N x 6 matrix, finite even when J is rank-deficient
        """
        J = np.asarray(J, dtype=float)
        if J.ndim != 2 or J.shape[0] != 6:
            raise DimensionMismatch("J rows", 6, J.shape[0] if J.ndim == 2 else J.size)
        if J.shape[1] != self._n:
            raise DimensionMismatch("J columns", self._n, J.shape[1])

        U, S, Vt = np.linalg.svd(J, full_matrices=False)
        S_inv = S / (S ** 2 + self.pinv_damping ** 2)

        return (Vt.T * S_inv) @ U.T

    def desired_joint_velocity(
        self,
        twist: Union[Twist, FloatArray],
        J: FloatArray
    ) -> FloatArray:
        """
        Map a desired end-effector twist to joint velocities.

            q̇_d = J⁺ · ẋ_d

        Args:
            twist: Desired twist (Twist or stacked 6-vector)
            J: 6 x N Jacobian at the current state

        Returns:
            Joint velocities, length N
        """
        if isinstance(twist, Twist):
            x_dot = twist.as_vector()
        else:
            x_dot = np.asarray(twist, dtype=float).ravel()
            if x_dot.size != 6:
                raise DimensionMismatch("twist", 6, x_dot.size)

        return self.damped_pseudo_inverse(J) @ x_dot

    def solve_inverse_kinematics(
        self,
        q_seed: FloatArray,
        target: Transform
    ) -> IKSolution:
        """
        Levenberg-Marquardt inverse kinematics.

        The damping μ is capped at IK_MAX_DAMPING; a step rejected at the
        cap ends the search at the best configuration found.

        Args:
            q_seed: Starting configuration, length N
            target: Desired end-effector pose

        Returns:
            IKSolution holding the best configuration found
        """
        q = self._joint_vector("q_seed", q_seed).copy()
        W = self._ik_weights

        frames, T_ee = self._frames(q)
        error = W * self.pose_error(target, Transform(T_ee))
        J = self._jacobian_from_frames(frames, T_ee)
        cost = float(np.linalg.norm(error))
        mu = self.ik_damping
        iterations = 0

        while cost >= self.ik_tolerance and iterations < self.ik_max_iterations:
            iterations += 1

            J_w = W[:, None] * J
            A = J_w @ J_w.T + (mu ** 2) * np.eye(6)
            dq = J_w.T @ np.linalg.solve(A, error)

            q_new = q + dq
            frames, T_ee = self._frames(q_new)
            error_new = W * self.pose_error(target, Transform(T_ee))
            cost_new = float(np.linalg.norm(error_new))

            if cost_new < cost:
                q, error, cost = q_new, error_new, cost_new
                J = self._jacobian_from_frames(frames, T_ee)
                mu = max(mu * 0.5, self.ik_damping)
            elif mu >= IK_MAX_DAMPING:
                break
            else:
                mu = min(mu * 10.0, IK_MAX_DAMPING)

        converged = cost < self.ik_tolerance
        logger.debug(
            f"IK {'converged' if converged else 'stopped'} after {iterations} "
            f"iterations, residual {cost:.2e}"
        )

        return IKSolution(q=q, residual=cost, iterations=iterations, converged=converged)

    def inverse_kinematics(self, q_seed: FloatArray, target: Transform) -> FloatArray:
        """
        Joint configuration reaching target, best effort.

        Non-convergence is not reported as an error; use
        solve_inverse_kinematics() to inspect the residual.
        """
        return self.solve_inverse_kinematics(q_seed, target).q

    # =========================================================================
    # Dynamics
    # =========================================================================

    def inverse_dynamics(
        self,
        q: FloatArray,
        q_dot: FloatArray,
        q_ddot: FloatArray,
        gravity: bool = True
    ) -> FloatArray:
        """
        Joint torques producing q̈ at (q, q̇), recursive Newton-Euler.

        Args:
            q: Joint positions
            q_dot: Joint velocities
            q_ddot: Joint accelerations
            gravity: Whether to include gravity loading

        Returns:
            Joint torques (forces for prismatic joints), length N
        """
        q = self._joint_vector("q", q)
        q_dot = self._joint_vector("q_dot", q_dot)
        q_ddot = self._joint_vector("q_ddot", q_ddot)

        frames, _ = self._frames(q)
        return self._rnea(frames, q_dot, q_ddot, gravity)

    def _rnea(
        self,
        frames: List[FloatArray],
        q_dot: FloatArray,
        q_ddot: FloatArray,
        gravity: bool
    ) -> FloatArray:
        joints = self._chain.joints

        omega = np.zeros(3)
        omega_dot = np.zeros(3)
        acc = -self._gravity if gravity else np.zeros(3)
        p_prev = np.zeros(3)

        origins, axes, com_offsets, forces, moments = [], [], [], [], []
        k = 0

        # Forward pass: velocities and accelerations
        for joint, T in zip(joints, frames):
            R = T[:3, :3]
            p = T[:3, 3]
            z = R @ joint.axis
            r = p - p_prev

            acc = acc + _cross(omega_dot, r) + _cross(omega, _cross(omega, r))

            if joint.joint_type == JointType.REVOLUTE:
                qd, qdd = q_dot[k], q_ddot[k]
                omega_dot = omega_dot + z * qdd + _cross(omega, z * qd)
                omega = omega + z * qd
            elif joint.joint_type == JointType.PRISMATIC:
                qd, qdd = q_dot[k], q_ddot[k]
                acc = acc + z * qdd + 2.0 * _cross(omega, z * qd)

            if joint.is_movable:
                k += 1

            inertia = joint.inertia
            c = R @ inertia.com
            acc_com = acc + _cross(omega_dot, c) + _cross(omega, _cross(omega, c))
            I_world = R @ inertia.inertia @ R.T

            origins.append(p)
            axes.append(z)
            com_offsets.append(c)
            forces.append(inertia.mass * acc_com)
            moments.append(I_world @ omega_dot + _cross(omega, I_world @ omega))

            p_prev = p

        # Backward pass: forces and moments
        tau = np.zeros(self._n)
        f = np.zeros(3)
        n = np.zeros(3)
        p_child = None
        k = self._n - 1

        for i in range(len(joints) - 1, -1, -1):
            f_child, n_child = f, n
            lever = p_child - origins[i] if p_child is not None else np.zeros(3)

            f = forces[i] + f_child
            n = (
                moments[i] + n_child
                + _cross(com_offsets[i], forces[i])
                + _cross(lever, f_child)
            )

            joint_type = joints[i].joint_type
            if joint_type == JointType.REVOLUTE:
                tau[k] = axes[i] @ n
                k -= 1
            elif joint_type == JointType.PRISMATIC:
                tau[k] = axes[i] @ f
                k -= 1

            p_child = origins[i]

        return tau

    def _mass_matrix_from_frames(self, frames: List[FloatArray]) -> FloatArray:
        axes, origins, revolute = self._joint_axes(frames)
        angular_axes = axes * revolute[:, None]

        M = np.zeros((self._n, self._n))
        k = 0

        for joint, T in zip(self._chain.joints, frames):
            if joint.is_movable:
                k += 1
            inertia = joint.inertia
            if k == 0 or (inertia.mass == 0.0 and not inertia.inertia.any()):
                continue

            R = T[:3, :3]
            c = T[:3, 3] + R @ inertia.com

            # Rows are the centre-of-mass Jacobian columns of joints 1..k
            J_v = np.where(
                revolute[:k, None], np.cross(axes[:k], c - origins[:k]), axes[:k]
            )
            J_w = angular_axes[:k]
            I_world = R @ inertia.inertia @ R.T

            M[:k, :k] += inertia.mass * (J_v @ J_v.T) + J_w @ I_world @ J_w.T

        return 0.5 * (M + M.T)

    def mass_matrix(self) -> FloatArray:
        """
        Joint-space inertia matrix M(q) at the current state.

        Returns:
            Symmetric N x N matrix
        """
        M = self._cached(
            "mass_matrix", lambda: self._mass_matrix_from_frames(self._state_frames()[0])
        )
        return M.copy()

    def bias_term(self) -> FloatArray:
        """Coriolis, centrifugal and gravity torques C(q, q̇)·q̇ + G(q) in one pass."""
        q_dot = self._require_state().q_dot

        def compute():
            return self._rnea(self._state_frames()[0], q_dot, np.zeros(self._n), True)

        return self._cached("bias", compute).copy()

    def coriolis_term(self) -> FloatArray:
        """Coriolis and centrifugal torques C(q, q̇)·q̇ at the current state."""
        q_dot = self._require_state().q_dot

        def compute():
            return self._rnea(self._state_frames()[0], q_dot, np.zeros(self._n), False)

        return self._cached("coriolis", compute).copy()

    def gravity_term(self) -> FloatArray:
        """Gravity torques G(q) at the current state."""
        self._require_state()
        zeros = np.zeros(self._n)
        return self._cached(
            "gravity", lambda: self._rnea(self._state_frames()[0], zeros, zeros, True)
        ).copy()
