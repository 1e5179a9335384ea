"""
Kinematics Module
=================

Geometric value types and the kinematic-chain description for a fixed-base
serial manipulator.

Mathematical Background:

    Joint Motion:
        Each joint frame is placed on its parent by a constant origin
        transform. The joint variable then moves the child frame:

        Revolute (axis a, angle q), Rodrigues formula:
            R(q) = I + sin(q)·[a]ₓ + (1 - cos(q))·[a]ₓ²

        Prismatic (axis a, displacement q):
            p(q) = a·q

    Chain Composition:
        T_ee(q) = T_0 · (O_1·M_1(q_1)) · ... · (O_n·M_n(q_n)) · T_tip

        where O_i is the joint origin, M_i the joint motion and T_tip the
        fixed transform from the last link to the end-effector flange.

    Orientation Error:
        The rotation taking the current orientation to the desired one is
        expressed as a unit quaternion q_e = q_d ⊗ q_c⁻¹ (scalar part made
        non-negative). The error vector is 2·vec(q_e), which equals the
        axis-angle vector for small errors and has no Euler-angle
        singularities.

Default Arm:
    7 revolute joints laid out like a KUKA LBR iiwa 14, with approximate
    link masses and inertias.

Author: Manipulator Control Project Team
License: MIT
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Optional, Tuple, List, Sequence
import numpy as np
from numpy.typing import NDArray

from .errors import InvalidDescription

logger = logging.getLogger(__name__)

# Type aliases
FloatArray = NDArray[np.floating]


# =============================================================================
# Rotation Helpers
# =============================================================================

def skew(v: FloatArray) -> FloatArray:
    """Skew-symmetric cross-product matrix [v]ₓ."""
    return np.array([
        [0.0, -v[2], v[1]],
        [v[2], 0.0, -v[0]],
        [-v[1], v[0], 0.0]
    ])


def axis_angle_to_rotation_matrix(axis: FloatArray, angle: float) -> FloatArray:
    """Rotation about a unit axis (Rodrigues formula)."""
    K = skew(axis)
    return np.eye(3) + np.sin(angle) * K + (1.0 - np.cos(angle)) * (K @ K)


def quaternion_multiply(q1: FloatArray, q2: FloatArray) -> FloatArray:
    """Hamilton product of two [w, x, y, z] quaternions."""
    w1, x1, y1, z1 = q1
    w2, x2, y2, z2 = q2
    return np.array([
        w1*w2 - x1*x2 - y1*y2 - z1*z2,
        w1*x2 + x1*w2 + y1*z2 - z1*y2,
        w1*y2 - x1*z2 + y1*w2 + z1*x2,
        w1*z2 + x1*y2 - y1*x2 + z1*w2
    ])


def quaternion_conjugate(q: FloatArray) -> FloatArray:
    """Conjugate (inverse for unit quaternions)."""
    return np.array([q[0], -q[1], -q[2], -q[3]])


def orientation_error(
    target_rotation: FloatArray,
    current_rotation: FloatArray
) -> FloatArray:
    """
    Orientation error vector between two rotation matrices.

    Args:
        target_rotation: Desired 3x3 rotation (base frame)
        current_rotation: Current 3x3 rotation (base frame)

    Returns:
        3-vector 2·vec(q_target ⊗ q_current⁻¹), expressed in the base frame
    """
    q_t = Transform.rotation_matrix_to_quaternion(target_rotation)
    q_c = Transform.rotation_matrix_to_quaternion(current_rotation)

    q_e = quaternion_multiply(q_t, quaternion_conjugate(q_c))

    # q and -q are the same rotation; take the short way round
    if q_e[0] < 0:
        q_e = -q_e

    return 2.0 * q_e[1:]


# =============================================================================
# Data Classes
# =============================================================================

@dataclass
class Transform:
    """
    Rigid body transformation (SE(3)).

    Represents position and orientation in 3D space using
    a 4x4 homogeneous transformation matrix. Used throughout as the
    Cartesian pose type.

    Attributes:
        matrix: 4x4 homogeneous transformation matrix
    """
    matrix: FloatArray = field(default_factory=lambda: np.eye(4))

    def __post_init__(self) -> None:
        """Ensure matrix is proper shape."""
        self.matrix = np.asarray(self.matrix, dtype=float).reshape(4, 4)

    @classmethod
    def identity(cls) -> "Transform":
        """Identity transform."""
        return cls(np.eye(4))

    @classmethod
    def from_position_rotation(
        cls,
        position: FloatArray,
        rotation: Optional[FloatArray] = None
    ) -> "Transform":
        """
        Create transform from position and rotation matrix.

        Args:
            position: [x, y, z] position
            rotation: 3x3 rotation matrix (identity if None)

        Returns:
            Transform instance
        """
        matrix = np.eye(4)
        if rotation is not None:
            matrix[:3, :3] = rotation
        matrix[:3, 3] = np.asarray(position, dtype=float).reshape(3)
        return cls(matrix)

    @classmethod
    def from_position_quaternion(
        cls,
        position: FloatArray,
        quaternion: FloatArray
    ) -> "Transform":
        """
        Create transform from position and quaternion.

        Args:
            position: [x, y, z] position
            quaternion: [w, x, y, z] quaternion

        Returns:
            Transform instance
        """
        rotation = cls._quaternion_to_rotation_matrix(quaternion)
        return cls.from_position_rotation(position, rotation)

    @classmethod
    def from_position_rpy(
        cls,
        position: FloatArray,
        rpy: FloatArray
    ) -> "Transform":
        """
        Create transform from position and roll-pitch-yaw angles.

        Args:
            position: [x, y, z] position
            rpy: [roll, pitch, yaw] in radians (fixed-axis XYZ, as in URDF)

        Returns:
            Transform instance
        """
        rotation = cls._rpy_to_rotation_matrix(rpy)
        return cls.from_position_rotation(position, rotation)

    @staticmethod
    def _quaternion_to_rotation_matrix(q: FloatArray) -> FloatArray:
        """Convert quaternion [w, x, y, z] to 3x3 rotation matrix."""
        w, x, y, z = q[0], q[1], q[2], q[3]

        # Normalize quaternion
        norm = np.sqrt(w*w + x*x + y*y + z*z)
        if norm < 1e-10:
            return np.eye(3)
        w, x, y, z = w/norm, x/norm, y/norm, z/norm

        return np.array([
            [1 - 2*(y*y + z*z), 2*(x*y - w*z), 2*(x*z + w*y)],
            [2*(x*y + w*z), 1 - 2*(x*x + z*z), 2*(y*z - w*x)],
            [2*(x*z - w*y), 2*(y*z + w*x), 1 - 2*(x*x + y*y)]
        ])

    @staticmethod
    def _rpy_to_rotation_matrix(rpy: FloatArray) -> FloatArray:
        """Convert roll-pitch-yaw to 3x3 rotation matrix (XYZ convention)."""
        roll, pitch, yaw = rpy[0], rpy[1], rpy[2]

        cr, sr = np.cos(roll), np.sin(roll)
        cp, sp = np.cos(pitch), np.sin(pitch)
        cy, sy = np.cos(yaw), np.sin(yaw)

        return np.array([
            [cy*cp, cy*sp*sr - sy*cr, cy*sp*cr + sy*sr],
            [sy*cp, sy*sp*sr + cy*cr, sy*sp*cr - cy*sr],
            [-sp, cp*sr, cp*cr]
        ])

    @staticmethod
    def rotation_matrix_to_quaternion(R: FloatArray) -> FloatArray:
        """Convert a 3x3 rotation matrix to a unit quaternion [w, x, y, z]."""
        trace = np.trace(R)

        if trace > 0:
            s = 0.5 / np.sqrt(trace + 1.0)
            w = 0.25 / s
            x = (R[2, 1] - R[1, 2]) * s
            y = (R[0, 2] - R[2, 0]) * s
            z = (R[1, 0] - R[0, 1]) * s
        elif R[0, 0] > R[1, 1] and R[0, 0] > R[2, 2]:
            s = 2.0 * np.sqrt(1.0 + R[0, 0] - R[1, 1] - R[2, 2])
            w = (R[2, 1] - R[1, 2]) / s
            x = 0.25 * s
            y = (R[0, 1] + R[1, 0]) / s
            z = (R[0, 2] + R[2, 0]) / s
        elif R[1, 1] > R[2, 2]:
            s = 2.0 * np.sqrt(1.0 + R[1, 1] - R[0, 0] - R[2, 2])
            w = (R[0, 2] - R[2, 0]) / s
            x = (R[0, 1] + R[1, 0]) / s
            y = 0.25 * s
            z = (R[1, 2] + R[2, 1]) / s
        else:
            s = 2.0 * np.sqrt(1.0 + R[2, 2] - R[0, 0] - R[1, 1])
            w = (R[1, 0] - R[0, 1]) / s
            x = (R[0, 2] + R[2, 0]) / s
            y = (R[1, 2] + R[2, 1]) / s
            z = 0.25 * s

        q = np.array([w, x, y, z])
        return q / np.linalg.norm(q)

    @property
    def position(self) -> FloatArray:
        """Get position vector [x, y, z]."""
        return self.matrix[:3, 3].copy()

    @property
    def rotation(self) -> FloatArray:
        """Get 3x3 rotation matrix."""
        return self.matrix[:3, :3].copy()

    @property
    def quaternion(self) -> FloatArray:
        """Get quaternion [w, x, y, z] from rotation matrix."""
        return self.rotation_matrix_to_quaternion(self.matrix[:3, :3])

    @property
    def rpy(self) -> FloatArray:
        """Get roll-pitch-yaw angles from rotation matrix."""
        R = self.matrix[:3, :3]

        # Handle gimbal lock
        if abs(R[2, 0]) >= 1.0 - 1e-6:
            yaw = 0.0
            if R[2, 0] < 0:
                pitch = np.pi / 2
                roll = np.arctan2(R[0, 1], R[0, 2])
            else:
                pitch = -np.pi / 2
                roll = np.arctan2(-R[0, 1], -R[0, 2])
        else:
            pitch = np.arcsin(-R[2, 0])
            roll = np.arctan2(R[2, 1] / np.cos(pitch), R[2, 2] / np.cos(pitch))
            yaw = np.arctan2(R[1, 0] / np.cos(pitch), R[0, 0] / np.cos(pitch))

        return np.array([roll, pitch, yaw])

    def inverse(self) -> "Transform":
        """Compute inverse transform."""
        R_inv = self.matrix[:3, :3].T
        p_inv = -R_inv @ self.matrix[:3, 3]

        return Transform.from_position_rotation(p_inv, R_inv)

    def __matmul__(self, other: "Transform") -> "Transform":
        """Matrix multiplication (composition) of transforms."""
        return Transform(self.matrix @ other.matrix)

    def transform_point(self, point: FloatArray) -> FloatArray:
        """Transform a 3D point."""
        return self.matrix[:3, :3] @ np.asarray(point) + self.matrix[:3, 3]

    def distance_to(self, other: "Transform") -> Tuple[float, float]:
        """
        Compute distance to another transform.

        Returns:
            Tuple of (position_distance, rotation_distance)
            Rotation distance is angle in radians.
        """
        pos_dist = float(np.linalg.norm(self.position - other.position))

        # Rotation distance using quaternion geodesic
        dot = abs(np.dot(self.quaternion, other.quaternion))
        dot = min(1.0, dot)  # Clamp for numerical stability
        rot_dist = 2.0 * np.arccos(dot)

        return pos_dist, float(rot_dist)


@dataclass(frozen=True)
class Twist:
    """
    Cartesian velocity (or acceleration) of a frame.

    Attributes:
        linear: Linear component [vx, vy, vz]
        angular: Angular component [wx, wy, wz]
    """
    linear: FloatArray = field(default_factory=lambda: np.zeros(3))
    angular: FloatArray = field(default_factory=lambda: np.zeros(3))

    def __post_init__(self) -> None:
        object.__setattr__(self, "linear", np.asarray(self.linear, dtype=float).reshape(3))
        object.__setattr__(self, "angular", np.asarray(self.angular, dtype=float).reshape(3))

    @classmethod
    def zero(cls) -> "Twist":
        return cls()

    @classmethod
    def from_vector(cls, vector: FloatArray) -> "Twist":
        """Build from a stacked [linear; angular] 6-vector."""
        vector = np.asarray(vector, dtype=float).reshape(6)
        return cls(vector[:3], vector[3:])

    def as_vector(self) -> FloatArray:
        """Stacked [linear; angular] 6-vector."""
        return np.concatenate([self.linear, self.angular])


class JointType(Enum):
    """Joint type in the kinematic tree."""
    REVOLUTE = auto()
    PRISMATIC = auto()
    FIXED = auto()


@dataclass(frozen=True)
class JointLimits:
    """
    Joint limits and constraints.

    Attributes:
        lower: Lower position limit (rad or m)
        upper: Upper position limit (rad or m)
        velocity: Maximum velocity (rad/s or m/s)
        effort: Maximum torque (Nm) or force (N)
    """
    lower: float = -np.inf
    upper: float = np.inf
    velocity: float = np.inf
    effort: float = np.inf

    def __post_init__(self) -> None:
        """Validate limits."""
        if self.lower >= self.upper:
            raise ValueError(f"lower ({self.lower}) must be < upper ({self.upper})")
        if self.velocity <= 0:
            raise ValueError("velocity must be positive")
        if self.effort <= 0:
            raise ValueError("effort must be positive")

    def clamp(self, value: float) -> float:
        """Clamp value to position limits."""
        return float(np.clip(value, self.lower, self.upper))

    def is_within(self, value: float, margin: float = 0.0) -> bool:
        """Check if value is within limits with optional margin."""
        return (self.lower + margin) <= value <= (self.upper - margin)


@dataclass(frozen=True)
class LinkInertia:
    """
    Inertial parameters of a rigid link.

    Attributes:
        mass: Link mass (kg)
        com: Centre of mass in the link frame (m)
        inertia: 3x3 rotational inertia about the CoM, link-frame axes (kg·m²)
    """
    mass: float = 0.0
    com: FloatArray = field(default_factory=lambda: np.zeros(3))
    inertia: FloatArray = field(default_factory=lambda: np.zeros((3, 3)))

    def __post_init__(self) -> None:
        com = np.asarray(self.com, dtype=float).reshape(3)
        inertia = np.asarray(self.inertia, dtype=float).reshape(3, 3)

        if self.mass < 0:
            raise InvalidDescription(f"link mass must be non-negative, got {self.mass}")
        if not np.allclose(inertia, inertia.T, atol=1e-9):
            raise InvalidDescription("link inertia must be symmetric")
        if np.min(np.linalg.eigvalsh(inertia)) < -1e-9:
            raise InvalidDescription("link inertia must be positive semi-definite")

        object.__setattr__(self, "com", com)
        object.__setattr__(self, "inertia", inertia)

    @classmethod
    def from_principal(
        cls,
        mass: float,
        com: Sequence[float],
        ixx: float,
        iyy: float,
        izz: float,
        ixy: float = 0.0,
        ixz: float = 0.0,
        iyz: float = 0.0
    ) -> "LinkInertia":
        """Build from URDF-style inertia tensor components."""
        inertia = np.array([
            [ixx, ixy, ixz],
            [ixy, iyy, iyz],
            [ixz, iyz, izz]
        ])
        return cls(mass=mass, com=np.asarray(com, dtype=float), inertia=inertia)


@dataclass(frozen=True)
class Joint:
    """
    A joint together with the link it moves.

    Attributes:
        name: Joint name
        joint_type: Revolute, prismatic or fixed
        origin: Parent frame → joint frame at zero joint value
        axis: Unit motion axis in the joint frame
        limits: Position/velocity/effort limits
        inertia: Inertial parameters of the child link (joint-frame coordinates)
    """
    name: str
    joint_type: JointType = JointType.REVOLUTE
    origin: Transform = field(default_factory=Transform.identity)
    axis: FloatArray = field(default_factory=lambda: np.array([0.0, 0.0, 1.0]))
    limits: JointLimits = field(default_factory=JointLimits)
    inertia: LinkInertia = field(default_factory=LinkInertia)

    def __post_init__(self) -> None:
        axis = np.asarray(self.axis, dtype=float).reshape(3)
        norm = np.linalg.norm(axis)

        if self.joint_type != JointType.FIXED:
            if norm < 1e-9:
                raise InvalidDescription(f"joint '{self.name}' has a zero motion axis")
            axis = axis / norm

        object.__setattr__(self, "axis", axis)

    @property
    def is_movable(self) -> bool:
        return self.joint_type != JointType.FIXED

    def motion(self, q: float) -> FloatArray:
        """
        Joint-frame motion for joint value q.

        Args:
            q: Joint angle (rad) or displacement (m)

        Returns:
            4x4 homogeneous transform
        """
        T = np.eye(4)
        if self.joint_type == JointType.REVOLUTE:
            T[:3, :3] = axis_angle_to_rotation_matrix(self.axis, q)
        elif self.joint_type == JointType.PRISMATIC:
            T[:3, 3] = self.axis * q
        return T

    def local_transform(self, q: float) -> FloatArray:
        """Parent frame → child link frame at joint value q."""
        return self.origin.matrix @ self.motion(q)


# =============================================================================
# Kinematic Chain
# =============================================================================

@dataclass(frozen=True)
class KinematicChain:
    """
    Immutable serial kinematic chain rooted at a fixed base.

    Joints are ordered from base to tip. Fixed joints are allowed anywhere
    in the list; only movable joints contribute a joint variable, so all
    joint-space vectors have length ``n_joints``.

    Example:
        >>> chain = KinematicChain.default_arm()
        >>> chain.n_joints
        7
    """
    joints: Tuple[Joint, ...]
    tip_transform: Transform = field(default_factory=Transform.identity)
    name: str = "chain"

    def __post_init__(self) -> None:
        joints = tuple(self.joints)
        if len(joints) == 0:
            raise InvalidDescription("kinematic chain needs at least one joint")
        if not any(j.is_movable for j in joints):
            raise InvalidDescription("kinematic chain has no movable joints")

        object.__setattr__(self, "joints", joints)
        logger.info(
            f"KinematicChain '{self.name}': {len(joints)} joints, "
            f"{self.n_joints} movable"
        )

    @property
    def n_joints(self) -> int:
        """Number of movable joints (N)."""
        return sum(1 for j in self.joints if j.is_movable)

    @property
    def movable_joints(self) -> List[Joint]:
        return [j for j in self.joints if j.is_movable]

    @property
    def joint_names(self) -> List[str]:
        return [j.name for j in self.movable_joints]

    @property
    def joint_limits(self) -> List[JointLimits]:
        return [j.limits for j in self.movable_joints]

    @property
    def total_mass(self) -> float:
        return float(sum(j.inertia.mass for j in self.joints))

    @classmethod
    def default_arm(cls) -> "KinematicChain":
        """
        Create a default 7-DOF arm with LBR iiwa 14 geometry.

        Returns:
            KinematicChain with joint origins, limits and link inertias
        """
        pi = np.pi

        # (origin xyz, origin rpy)
        origins = [
            ([0.0, 0.0, 0.1575], [0.0, 0.0, 0.0]),
            ([0.0, 0.0, 0.2025], [pi/2, 0.0, pi]),
            ([0.0, 0.2045, 0.0], [pi/2, 0.0, pi]),
            ([0.0, 0.0, 0.2155], [pi/2, 0.0, 0.0]),
            ([0.0, 0.1845, 0.0], [-pi/2, pi, 0.0]),
            ([0.0, 0.0, 0.2155], [pi/2, 0.0, 0.0]),
            ([0.0, 0.081, 0.0], [-pi/2, pi, 0.0]),
        ]

        # (mass, com, ixx, iyy, izz)
        inertias = [
            (4.0, [0.0, -0.03, 0.12], 0.1, 0.09, 0.02),
            (4.0, [0.0003, 0.059, 0.042], 0.05, 0.018, 0.044),
            (3.0, [0.0, 0.03, 0.13], 0.08, 0.075, 0.01),
            (2.7, [0.0, 0.067, 0.034], 0.03, 0.01, 0.029),
            (1.7, [0.0001, 0.021, 0.076], 0.02, 0.018, 0.005),
            (1.8, [0.0, 0.0006, 0.0004], 0.005, 0.0036, 0.0047),
            (0.3, [0.0, 0.0, 0.02], 0.001, 0.001, 0.001),
        ]

        position_limits = [2.9671, 2.0944, 2.9671, 2.0944, 2.9671, 2.0944, 3.0543]
        velocity_limits = [1.4835, 1.4835, 1.7453, 1.3090, 2.2689, 2.3562, 2.3562]
        effort_limits = [320.0, 320.0, 176.0, 176.0, 110.0, 40.0, 40.0]

        joints = []
        for i in range(7):
            xyz, rpy = origins[i]
            mass, com, ixx, iyy, izz = inertias[i]
            joints.append(Joint(
                name=f"joint_{i + 1}",
                joint_type=JointType.REVOLUTE,
                origin=Transform.from_position_rpy(xyz, rpy),
                axis=np.array([0.0, 0.0, 1.0]),
                limits=JointLimits(
                    lower=-position_limits[i],
                    upper=position_limits[i],
                    velocity=velocity_limits[i],
                    effort=effort_limits[i]
                ),
                inertia=LinkInertia.from_principal(mass, com, ixx, iyy, izz)
            ))

        # Flange
        tip = Transform.from_position_rpy([0.0, 0.0, 0.045], [0.0, 0.0, 0.0])

        return cls(joints=tuple(joints), tip_transform=tip, name="iiwa14")
