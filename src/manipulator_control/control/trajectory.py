"""
Trajectory Planning Module
==========================

Cartesian end-effector trajectories along a single linear or circular
segment, timed by a scalar path-progress profile.

Mathematical Background:

    Path Progress:
        A scalar s(t) ∈ [0, 1] runs from the start (s = 0) to the end of
        the path (s = 1). Positions, velocities and accelerations follow
        from the path geometry p(s) by the chain rule:

            ṗ = p'(s)·ṡ
            p̈ = p''(s)·ṡ² + p'(s)·s̈

    Trapezoidal Velocity Profile:
        With total duration T and acceleration time Tₐ (0 < Tₐ ≤ T/2), the
        cruise acceleration that makes s(T) = 1 is

            s̈_c = 1 / (Tₐ·(T - Tₐ))

            Phase 1: Acceleration    0 ≤ t ≤ Tₐ       s = ½·s̈_c·t²
            Phase 2: Cruise          Tₐ < t < T - Tₐ  s = s̈_c·Tₐ·(t - Tₐ/2)
            Phase 3: Deceleration    T - Tₐ ≤ t ≤ T   s = 1 - ½·s̈_c·(T - t)²

        s and ṡ are continuous; s̈ is piecewise constant and steps at the
        phase boundaries.

    Cubic Profile:
        s(τ) = 3τ² - 2τ³,  τ = t/T
        Zero velocity at both ends, no cruise phase.

    Path Shapes:
        Linear:    p(s) = p₀ + s·(p₁ - p₀)
        Circular:  θ = 2π·s about the centre c in the plane of (u, v)
                   p(s) = c + r·(u·cos θ + v·sin θ)

Sampling is a pure function of time: the planner holds no mutable state
and can be queried in any order.

Author: Manipulator Control Project Team
License: MIT
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum, auto
from typing import Optional, Tuple, List
import numpy as np
from numpy.typing import NDArray

from .errors import DimensionMismatch, InvalidProfile

logger = logging.getLogger(__name__)

FloatArray = NDArray[np.floating]

# Circle in the base y-z plane
DEFAULT_CIRCLE_PLANE = ((0.0, -1.0, 0.0), (0.0, 0.0, -1.0))


# =============================================================================
# Configuration
# =============================================================================

class PathShape(Enum):
    """Geometric shape of a trajectory segment."""
    LINEAR = auto()       # Straight line between two points
    CIRCULAR = auto()     # Full circle about the start point


class VelocityProfile(Enum):
    """Scalar timing law applied along the path."""
    TRAPEZOIDAL = auto()  # Accelerate, cruise, decelerate
    CUBIC = auto()        # Cubic polynomial, rest to rest


def _point(name: str, value: FloatArray) -> FloatArray:
    """Validate a 3D point or vector."""
    point = np.asarray(value, dtype=float).ravel()
    if point.size != 3:
        raise DimensionMismatch(name, 3, point.size)
    if not np.all(np.isfinite(point)):
        raise InvalidProfile(f"{name} must be finite, got {point}")
    return point


@dataclass(frozen=True)
class TrajectorySegment:
    """
    Immutable description of one planned segment.

    Attributes:
        shape: Linear or circular path
        duration: Total duration T (s)
        acc_duration: Acceleration-phase duration Tₐ (s)
        start: Start point (linear) or circle centre (circular)
        end: End point (linear only)
        radius: Circle radius (circular only)
        plane: Orthonormal (u, v) spanning the circle plane (circular only)
        profile: Velocity profile along the path
    """
    shape: PathShape
    duration: float
    acc_duration: float
    start: FloatArray
    end: Optional[FloatArray] = None
    radius: Optional[float] = None
    plane: Optional[Tuple[FloatArray, FloatArray]] = None
    profile: VelocityProfile = VelocityProfile.TRAPEZOIDAL

    def __post_init__(self) -> None:
        """Validate timing and geometry."""
        T, Ta = self.duration, self.acc_duration

        if not np.isfinite(T) or T <= 0:
            raise InvalidProfile(f"duration must be positive, got {T}")
        if not np.isfinite(Ta) or Ta <= 0 or Ta > T / 2:
            raise InvalidProfile(
                f"acc_duration must satisfy 0 < Ta <= T/2, got Ta={Ta}, T={T}"
            )

        object.__setattr__(self, "start", _point("start", self.start))

        if self.shape == PathShape.LINEAR:
            if self.end is None:
                raise InvalidProfile("linear segment needs an end point")
            object.__setattr__(self, "end", _point("end", self.end))

        elif self.shape == PathShape.CIRCULAR:
            if self.radius is None or not np.isfinite(self.radius) or self.radius <= 0:
                raise InvalidProfile(f"radius must be positive, got {self.radius}")

            u_raw, v_raw = self.plane if self.plane is not None else DEFAULT_CIRCLE_PLANE
            u = _point("plane u", u_raw)
            v = _point("plane v", v_raw)

            # Gram-Schmidt
            if np.linalg.norm(u) < 1e-9:
                raise InvalidProfile("circle plane axis u is zero")
            u = u / np.linalg.norm(u)
            v = v - (v @ u) * u
            if np.linalg.norm(v) < 1e-9:
                raise InvalidProfile("circle plane axes are parallel")
            v = v / np.linalg.norm(v)

            object.__setattr__(self, "plane", (u, v))

    @property
    def cruise_acceleration(self) -> float:
        """s̈ during the acceleration phase of the trapezoidal profile."""
        return 1.0 / (self.acc_duration * (self.duration - self.acc_duration))

    @property
    def path_length(self) -> float:
        """Length of the geometric path (m)."""
        if self.shape == PathShape.LINEAR:
            return float(np.linalg.norm(self.end - self.start))
        return float(2.0 * np.pi * self.radius)


@dataclass(frozen=True)
class TrajectorySample:
    """
    Desired Cartesian motion at one instant.

    Attributes:
        time: Query time after clamping to [0, T] (s)
        position: Desired position [x, y, z]
        velocity: Desired linear velocity
        acceleration: Desired linear acceleration
        s: Path progress in [0, 1]
        s_dot: First derivative of s
        s_ddot: Second derivative of s
    """
    time: float
    position: FloatArray
    velocity: FloatArray
    acceleration: FloatArray
    s: float
    s_dot: float
    s_ddot: float


# =============================================================================
# Scalar Profiles
# =============================================================================

def trapezoidal_profile(
    t: float,
    duration: float,
    acc_duration: float
) -> Tuple[float, float, float]:
    """
    Trapezoidal path progress.

    Args:
        t: Time, already clamped to [0, duration]
        duration: Total duration T
        acc_duration: Acceleration-phase duration Tₐ

    Returns:
        Tuple of (s, s_dot, s_ddot)
    """
    if t >= duration:
        return 1.0, 0.0, 0.0

    acc_c = 1.0 / (acc_duration * (duration - acc_duration))

    if t <= acc_duration:
        # Acceleration phase
        return 0.5 * acc_c * t**2, acc_c * t, acc_c
    elif t < duration - acc_duration:
        # Cruise phase
        return acc_c * acc_duration * (t - acc_duration / 2), acc_c * acc_duration, 0.0
    else:
        # Deceleration phase
        remaining = duration - t
        return 1.0 - 0.5 * acc_c * remaining**2, acc_c * remaining, -acc_c


def cubic_profile(t: float, duration: float) -> Tuple[float, float, float]:
    """
    Cubic rest-to-rest path progress.

    Returns:
        Tuple of (s, s_dot, s_ddot)
    """
    if t >= duration:
        return 1.0, 0.0, 0.0

    tau = t / duration
    s = 3 * tau**2 - 2 * tau**3
    s_dot = (6 * tau - 6 * tau**2) / duration
    s_ddot = (6 - 12 * tau) / duration**2

    return s, s_dot, s_ddot


# =============================================================================
# Trajectory Planner
# =============================================================================

class TrajectoryPlanner:
    """
    Time-parameterised Cartesian trajectory for one segment.

    Example:
        >>> planner = TrajectoryPlanner.linear(
        ...     duration=10.0,
        ...     acc_duration=1.5,
        ...     start=[0.5, 0.3, 0.4],
        ...     end=[0.5, -0.3, 0.4]
        ... )
        >>> sample = planner.sample(5.0)
        >>> sample.s
        0.5
    """

    def __init__(self, segment: TrajectorySegment) -> None:
        """
        Initialize the planner.

        Args:
            segment: Validated segment description
        """
        self.segment = segment

        logger.info(
            f"TrajectoryPlanner: {segment.shape.name} path, "
            f"{segment.profile.name} profile, T={segment.duration}s, "
            f"Ta={segment.acc_duration}s, length={segment.path_length:.3f}m"
        )

    @classmethod
    def linear(
        cls,
        duration: float,
        acc_duration: float,
        start: FloatArray,
        end: FloatArray,
        profile: VelocityProfile = VelocityProfile.TRAPEZOIDAL
    ) -> "TrajectoryPlanner":
        """
        Plan a straight-line segment.

        Raises:
            InvalidProfile: If timing or geometry is invalid
        """
        return cls(TrajectorySegment(
            shape=PathShape.LINEAR,
            duration=duration,
            acc_duration=acc_duration,
            start=start,
            end=end,
            profile=profile
        ))

    @classmethod
    def circular(
        cls,
        duration: float,
        acc_duration: float,
        center: FloatArray,
        radius: float,
        plane: Optional[Tuple[FloatArray, FloatArray]] = None,
        profile: VelocityProfile = VelocityProfile.TRAPEZOIDAL
    ) -> "TrajectoryPlanner":
        """
        Plan one full circle about a centre point.

        Args:
            duration: Total duration T
            acc_duration: Acceleration-phase duration Tₐ
            center: Circle centre (the start point of the plan)
            radius: Circle radius (m)
            plane: Axes (u, v) of the circle plane, y-z plane if None
            profile: Velocity profile

        Raises:
            InvalidProfile: If timing or geometry is invalid
        """
        return cls(TrajectorySegment(
            shape=PathShape.CIRCULAR,
            duration=duration,
            acc_duration=acc_duration,
            start=center,
            radius=radius,
            plane=plane,
            profile=profile
        ))

    @property
    def duration(self) -> float:
        return self.segment.duration

    def progress(self, t: float) -> Tuple[float, float, float]:
        """
        Path progress at time t, clamped to [0, T].

        Returns:
            Tuple of (s, s_dot, s_ddot)
        """
        seg = self.segment
        t = min(max(float(t), 0.0), seg.duration)

        if seg.profile == VelocityProfile.CUBIC:
            return cubic_profile(t, seg.duration)
        return trapezoidal_profile(t, seg.duration, seg.acc_duration)

    def sample(self, t: float) -> TrajectorySample:
        """
        Desired position, velocity and acceleration at time t.

        Times before 0 return the start sample, times after T the end
        sample (zero velocity and acceleration).

        Args:
            t: Time since the start of the segment (s)

        Returns:
            TrajectorySample
        """
        seg = self.segment
        t_clamped = min(max(float(t), 0.0), seg.duration)
        s, s_dot, s_ddot = self.progress(t_clamped)

        if seg.shape == PathShape.LINEAR:
            delta = seg.end - seg.start
            position = seg.start + s * delta
            velocity = s_dot * delta
            acceleration = s_ddot * delta
        else:
            u, v = seg.plane
            r = seg.radius

            theta = 2.0 * np.pi * s
            theta_dot = 2.0 * np.pi * s_dot
            theta_ddot = 2.0 * np.pi * s_ddot

            radial = u * np.cos(theta) + v * np.sin(theta)
            tangent = -u * np.sin(theta) + v * np.cos(theta)

            position = seg.start + r * radial
            velocity = r * theta_dot * tangent
            acceleration = r * (theta_ddot * tangent - theta_dot**2 * radial)

        return TrajectorySample(
            time=t_clamped,
            position=position,
            velocity=velocity,
            acceleration=acceleration,
            s=s,
            s_dot=s_dot,
            s_ddot=s_ddot
        )

    def discretize(self, timestep: float) -> List[TrajectorySample]:
        """
        Sample the whole segment at a fixed timestep.

        Args:
            timestep: Sampling period (s)

        Returns:
            Samples from t = 0 to t = T inclusive
        """
        if timestep <= 0:
            raise ValueError("timestep must be positive")

        n_points = int(np.ceil(self.segment.duration / timestep)) + 1
        times = np.linspace(0.0, self.segment.duration, n_points)

        return [self.sample(t) for t in times]
