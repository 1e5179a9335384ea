"""
Run Configuration Module
========================

Aggregated configuration of one trajectory-tracking run: trajectory,
controller, loop driver, simulator and robot description.

Configurations load from and save to YAML. Enum fields are written by name
and accepted either as names or as enum members, so a saved file loads back
into an equal configuration.

Example YAML:
    trajectory:
      shape: LINEAR
      duration: 10.0
      acc_duration: 1.5
    controller:
      mode: JOINT_SPACE
      joint_gains: {kp: 70.0, kd: 7.0}
    driver:
      control_rate_hz: 500.0

Author: Manipulator Control Project Team
License: MIT
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple
import numpy as np
import yaml

from ..control.controller import (
    CartesianGains,
    ControlMode,
    ControllerConfig,
    JointSpaceGains,
)
from ..control.trajectory import PathShape, VelocityProfile
from ..simulation.arm_simulator import SimulatorConfig
from .driver import DriverConfig, FaultPolicy

logger = logging.getLogger(__name__)


def _enum_value(enum_cls, value):
    """Accept an enum member or its (case-insensitive) name."""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls[str(value).upper()]
    except KeyError:
        options = ", ".join(m.name for m in enum_cls)
        raise ValueError(
            f"unknown {enum_cls.__name__} '{value}', expected one of {options}"
        ) from None


def _plain(value: Any) -> Any:
    """Convert a config value to YAML-safe builtins."""
    if isinstance(value, Enum):
        return value.name
    if isinstance(value, np.ndarray):
        return value.tolist() if value.ndim else float(value)
    if isinstance(value, np.generic):
        return value.item()
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


@dataclass
class TrajectoryConfig:
    """
    Configuration of the Cartesian trajectory.

    Attributes:
        shape: LINEAR or CIRCULAR path
        profile: Scalar timing law
        duration: Total duration T (s)
        acc_duration: Acceleration phase Tₐ (s)
        end: Linear end point; start point mirrored in y if None
        radius: Circle radius (m)
        plane: Circle plane axes (u, v); y-z plane if None
    """
    shape: PathShape = PathShape.LINEAR
    profile: VelocityProfile = VelocityProfile.TRAPEZOIDAL
    duration: float = 10.0
    acc_duration: float = 1.5
    end: Optional[Tuple[float, float, float]] = None
    radius: float = 0.1
    plane: Optional[Tuple[Tuple[float, float, float], Tuple[float, float, float]]] = None

    def __post_init__(self) -> None:
        self.shape = _enum_value(PathShape, self.shape)
        self.profile = _enum_value(VelocityProfile, self.profile)
        if self.duration <= 0:
            raise ValueError("duration must be positive")
        if self.radius <= 0:
            raise ValueError("radius must be positive")
        if self.end is not None:
            self.end = tuple(float(v) for v in self.end)
            if len(self.end) != 3:
                raise ValueError("end must have 3 coordinates")
        if self.plane is not None:
            self.plane = tuple(tuple(float(v) for v in axis) for axis in self.plane)


@dataclass
class RunConfig:
    """
    Complete configuration of a tracking run.

    Attributes:
        trajectory: Path and timing
        controller: Control law and gains
        driver: Loop rate, hold window and fault policy
        simulator: Simulated arm parameters
        end_effector_xyz: Flange → end-effector translation (m)
        end_effector_rpy: Flange → end-effector rotation (rad)
        urdf_path: Robot description, built-in 7-DOF arm if None
        base_link: URDF base link name
        tip_link: URDF tip link name
    """
    trajectory: TrajectoryConfig = field(default_factory=TrajectoryConfig)
    controller: ControllerConfig = field(default_factory=ControllerConfig)
    driver: DriverConfig = field(default_factory=DriverConfig)
    simulator: SimulatorConfig = field(default_factory=SimulatorConfig)
    end_effector_xyz: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    end_effector_rpy: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    urdf_path: Optional[str] = None
    base_link: str = "iiwa_link_0"
    tip_link: str = "iiwa_link_ee"

    def __post_init__(self) -> None:
        self.end_effector_xyz = tuple(float(v) for v in self.end_effector_xyz)
        self.end_effector_rpy = tuple(float(v) for v in self.end_effector_rpy)
        if len(self.end_effector_xyz) != 3 or len(self.end_effector_rpy) != 3:
            raise ValueError("end-effector offset needs 3 translation and 3 rotation values")

        if abs(self.simulator.time_step - self.driver.control_period) > 1e-12:
            logger.warning(
                f"Simulator step {self.simulator.time_step}s differs from control "
                f"period {self.driver.control_period}s"
            )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RunConfig":
        """Build from nested dictionaries as found in a YAML file."""
        data = dict(data or {})

        controller_data = dict(data.pop("controller", {}) or {})
        controller = ControllerConfig(
            mode=_enum_value(ControlMode, controller_data.get("mode", "JOINT_SPACE")),
            joint_gains=JointSpaceGains(**controller_data.get("joint_gains", {})),
            cartesian_gains=CartesianGains(**controller_data.get("cartesian_gains", {})),
        )

        driver_data = dict(data.pop("driver", {}) or {})
        if "fault_policy" in driver_data:
            driver_data["fault_policy"] = _enum_value(FaultPolicy, driver_data["fault_policy"])

        simulator_data = dict(data.pop("simulator", {}) or {})
        for key in ("gravity", "joint_damping", "initial_positions"):
            if simulator_data.get(key) is not None:
                simulator_data[key] = tuple(simulator_data[key])

        return cls(
            trajectory=TrajectoryConfig(**(data.pop("trajectory", {}) or {})),
            controller=controller,
            driver=DriverConfig(**driver_data),
            simulator=SimulatorConfig(**simulator_data),
            **data
        )

    @classmethod
    def from_yaml(cls, path: str) -> "RunConfig":
        """
        Load configuration from a YAML file.

        Args:
            path: Path to YAML configuration file

        Returns:
            RunConfig instance
        """
        with open(path, "r") as f:
            data = yaml.safe_load(f)

        logger.info(f"Loaded run configuration from {path}")
        return cls.from_dict(data)

    def to_dict(self) -> Dict[str, Any]:
        """Nested dictionaries of YAML-safe values."""
        traj = self.trajectory
        joint_gains = self.controller.joint_gains
        cart_gains = self.controller.cartesian_gains
        sim = self.simulator

        return {
            "trajectory": {
                "shape": _plain(traj.shape),
                "profile": _plain(traj.profile),
                "duration": traj.duration,
                "acc_duration": traj.acc_duration,
                "end": _plain(traj.end),
                "radius": traj.radius,
                "plane": _plain(traj.plane),
            },
            "controller": {
                "mode": _plain(self.controller.mode),
                "joint_gains": {
                    "kp": _plain(joint_gains.kp),
                    "kd": _plain(joint_gains.kd),
                },
                "cartesian_gains": {
                    "kp": _plain(cart_gains.kp),
                    "ko": _plain(cart_gains.ko),
                    "kd": _plain(cart_gains.kd),
                    "kdo": _plain(cart_gains.kdo),
                    "damping_ratio_position": cart_gains.damping_ratio_position,
                    "damping_ratio_orientation": cart_gains.damping_ratio_orientation,
                    "null_space_damping": cart_gains.null_space_damping,
                },
            },
            "driver": {
                "control_rate_hz": self.driver.control_rate_hz,
                "init_time_slot": self.driver.init_time_slot,
                "fault_policy": _plain(self.driver.fault_policy),
                "ik_residual_warning": self.driver.ik_residual_warning,
            },
            "simulator": {
                "time_step": sim.time_step,
                "gravity": _plain(sim.gravity),
                "joint_damping": _plain(sim.joint_damping),
                "initial_positions": _plain(sim.initial_positions),
                "enforce_torque_limits": sim.enforce_torque_limits,
            },
            "end_effector_xyz": _plain(self.end_effector_xyz),
            "end_effector_rpy": _plain(self.end_effector_rpy),
            "urdf_path": self.urdf_path,
            "base_link": self.base_link,
            "tip_link": self.tip_link,
        }

    def to_yaml(self, path: str) -> None:
        """
        Save configuration to a YAML file.

        Args:
            path: Path to save configuration
        """
        with open(path, "w") as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)
