"""
Control Loop Driver Module
==========================

Fixed-rate orchestration of one trajectory-tracking run.

Each tick reads a joint-state measurement, updates the model, samples the
planner, forms the desired motion for the active control law, computes
joint torques and hands them to the command sink.

Tick (JOINT_SPACE):
    sample = source.read()          → model.update(q, q̇)
    x_d, ẋ_d = planner.sample(t - t_hold)
    q_d   = IK(q, [x_d, R₀])         seeded from the measured q
    q̇_d  = J⁺ · [ẋ_d; 0]
    q̈_d  = 0
    τ     = controller(q_d, q̇_d, q̈_d) → sink.send(τ)

Tick (OPERATIONAL_SPACE):
    CartesianTarget([x_d, R₀], [ẋ_d; 0], [ẍ_d; 0]) → controller → sink

R₀ is the end-effector orientation captured at start(); the path only
moves the position. During the initial hold window (t < t_hold) the
planner is sampled at 0 so the arm settles on the start of the path.

Fault Handling:
    Any MotionControlError inside a tick aborts that tick. The model keeps
    its last good state and the sink receives either the previous command
    (HOLD_LAST) or zero torque (ZERO_TORQUE).

Author: Manipulator Control Project Team
License: MIT
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, replace
from enum import Enum, auto
from typing import TYPE_CHECKING, List, Optional, Protocol
import numpy as np
from numpy.typing import NDArray

from ..control.controller import (
    CartesianTarget,
    ControlMode,
    MotionController,
)
from ..control.errors import ModelNotReady, MotionControlError
from ..control.kinematics import KinematicChain, Transform, Twist
from ..control.model import JointStateSample, JointTarget, KinematicChainModel
from ..control.trajectory import PathShape, TrajectoryPlanner
from ..io.urdf import load_urdf
from ..simulation.arm_simulator import DEFAULT_INITIAL_POSITIONS, SimulatedArm

if TYPE_CHECKING:
    from .config import RunConfig

logger = logging.getLogger(__name__)

FloatArray = NDArray[np.floating]


# =============================================================================
# Transport Interfaces
# =============================================================================

class StateSource(Protocol):
    """Provider of joint-state measurements."""

    def read(self) -> Optional[JointStateSample]:
        """Latest measurement, or None when nothing new arrived."""
        ...


class CommandSink(Protocol):
    """Consumer of joint torque commands."""

    def send(self, torque: FloatArray) -> None:
        ...


# =============================================================================
# Configuration and Results
# =============================================================================

class FaultPolicy(Enum):
    """Command sent when a tick is aborted."""
    HOLD_LAST = auto()      # Resend the previous command
    ZERO_TORQUE = auto()    # Command zero torque


@dataclass
class DriverConfig:
    """
    Configuration for the control loop driver.

    Attributes:
        control_rate_hz: Loop frequency
        init_time_slot: Hold window before the trajectory starts (s)
        fault_policy: Command on an aborted tick
        ik_residual_warning: IK residual above which a warning is logged
    """
    control_rate_hz: float = 500.0
    init_time_slot: float = 0.0
    fault_policy: FaultPolicy = FaultPolicy.HOLD_LAST
    ik_residual_warning: float = 1e-3

    def __post_init__(self) -> None:
        if self.control_rate_hz <= 0:
            raise ValueError("control_rate_hz must be positive")
        if self.init_time_slot < 0:
            raise ValueError("init_time_slot must be non-negative")
        if self.ik_residual_warning <= 0:
            raise ValueError("ik_residual_warning must be positive")

    @property
    def control_period(self) -> float:
        return 1.0 / self.control_rate_hz


@dataclass
class TickResult:
    """
    Outcome of one control tick.

    Attributes:
        time: Loop time of the tick (s)
        torque: Torque handed to the sink
        position_error: Desired minus measured end-effector position (m)
        ik_residual: Weighted IK residual (JOINT_SPACE only)
        applied: False if the tick was aborted and the fault policy applied
        fault: Error that aborted the tick
        finished: Trajectory time has run out
    """
    time: float
    torque: FloatArray
    position_error: FloatArray
    ik_residual: Optional[float] = None
    applied: bool = True
    fault: Optional[MotionControlError] = None
    finished: bool = False


# =============================================================================
# Control Loop Driver
# =============================================================================

class ControlLoopDriver:
    """
    Runs the read → plan → control → send cycle at a fixed rate.

    Example:
        >>> driver = ControlLoopDriver(model, planner, controller, arm, arm)
        >>> results = driver.run(realtime=False)
        >>> max(np.linalg.norm(r.position_error) for r in results)
    """

    def __init__(
        self,
        model: KinematicChainModel,
        planner: TrajectoryPlanner,
        controller: MotionController,
        source: StateSource,
        sink: CommandSink,
        config: Optional[DriverConfig] = None
    ) -> None:
        """
        Initialize the driver.

        Args:
            model: Model shared with the controller
            planner: Cartesian trajectory to track
            controller: Torque control law
            source: Joint-state provider
            sink: Torque consumer
            config: Driver configuration
        """
        if controller.model is not model:
            raise ValueError("controller must use the driver's model")

        self.model = model
        self.planner = planner
        self.controller = controller
        self.source = source
        self.sink = sink
        self.config = config or DriverConfig()

        n = model.n_joints
        self._last_torque = np.zeros(n)
        self._desired_rotation: Optional[FloatArray] = None
        self._stop_event = threading.Event()
        self._tick_count = 0
        self._fault_count = 0

        logger.info(
            f"ControlLoopDriver: {controller.mode.name}, "
            f"{self.config.control_rate_hz:.0f} Hz, "
            f"fault policy {self.config.fault_policy.name}"
        )

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def end_time(self) -> float:
        """Loop time at which the trajectory is complete."""
        return self.planner.duration + self.config.init_time_slot

    @property
    def is_started(self) -> bool:
        return self._desired_rotation is not None

    @property
    def desired_rotation(self) -> Optional[FloatArray]:
        """End-effector orientation held along the path."""
        if self._desired_rotation is None:
            return None
        return self._desired_rotation.copy()

    @property
    def last_torque(self) -> FloatArray:
        return self._last_torque.copy()

    @property
    def tick_count(self) -> int:
        return self._tick_count

    @property
    def fault_count(self) -> int:
        return self._fault_count

    # =========================================================================
    # Loop
    # =========================================================================

    def start(self) -> None:
        """
        Take the first measurement and capture the orientation to hold.

        Raises:
            ModelNotReady: If no measurement is available yet
        """
        sample = self.source.read()
        if sample is not None:
            self.model.update(sample.positions, sample.velocities)
        elif not self.model.is_ready:
            raise ModelNotReady("no joint state available to start the driver")

        pose = self.model.end_effector_pose()
        self._desired_rotation = pose.rotation.copy()
        self._stop_event.clear()

        logger.info(f"Driver started at end-effector position {np.round(pose.position, 4)}")

    def tick(self, t: float) -> TickResult:
        """
        Run one control cycle.

        Args:
            t: Loop time since start (s)

        Returns:
            TickResult for this cycle
        """
        if not self.is_started:
            self.start()

        position_error = np.zeros(3)
        ik_residual = None

        try:
            sample = self.source.read()
            if sample is not None:
                self.model.update(sample.positions, sample.velocities)

            desired = self.planner.sample(max(t - self.config.init_time_slot, 0.0))
            desired_pose = Transform.from_position_rotation(
                desired.position, self._desired_rotation
            )
            position_error = desired.position - self.model.end_effector_pose().position

            if self.controller.mode == ControlMode.JOINT_SPACE:
                state = self.model.state
                solution = self.model.solve_inverse_kinematics(state.q, desired_pose)
                ik_residual = solution.residual
                if ik_residual > self.config.ik_residual_warning:
                    logger.warning(f"IK residual {ik_residual:.2e} at t={t:.3f}s")

                q_dot_d = self.model.desired_joint_velocity(
                    Twist(linear=desired.velocity), self.model.jacobian()
                )
                target = JointTarget(solution.q, q_dot_d, np.zeros(self.model.n_joints))
            else:
                target = CartesianTarget(
                    pose=desired_pose,
                    twist=Twist(linear=desired.velocity),
                    acceleration=Twist(linear=desired.acceleration)
                )

            torque = self.controller.compute_torques(target)
            fault = None

        except MotionControlError as e:
            self._fault_count += 1
            fault = e
            if self.config.fault_policy == FaultPolicy.ZERO_TORQUE:
                torque = np.zeros(self.model.n_joints)
            else:
                torque = self._last_torque.copy()
            logger.warning(
                f"Tick at t={t:.3f}s aborted ({type(e).__name__}: {e}), "
                f"applying {self.config.fault_policy.name}"
            )

        self.sink.send(torque)
        self._last_torque = np.asarray(torque, dtype=float).copy()
        self._tick_count += 1

        return TickResult(
            time=t,
            torque=self._last_torque.copy(),
            position_error=position_error,
            ik_residual=ik_residual,
            applied=fault is None,
            fault=fault,
            finished=t > self.end_time
        )

    def run(
        self,
        duration: Optional[float] = None,
        realtime: bool = True
    ) -> List[TickResult]:
        """
        Tick until the trajectory is finished or stop() is called.

        Args:
            duration: Loop time to run (s), trajectory end if None
            realtime: Pace ticks against the wall clock; otherwise advance
                virtual time by one control period per tick

        Returns:
            TickResult of every tick
        """
        end_time = self.end_time if duration is None else float(duration)
        period = self.config.control_period

        self.start()
        results: List[TickResult] = []

        logger.info(
            f"Control loop running for {end_time:.2f}s "
            f"({'realtime' if realtime else 'virtual time'})"
        )

        loop_begin = time.perf_counter()
        k = 0
        while not self._stop_event.is_set():
            tick_start = time.perf_counter()
            t = (tick_start - loop_begin) if realtime else k * period

            result = self.tick(t)
            results.append(result)
            k += 1

            if t > end_time:
                break

            if realtime:
                # Maintain loop rate
                elapsed = time.perf_counter() - tick_start
                sleep_time = period - elapsed
                if sleep_time > 0:
                    time.sleep(sleep_time)
                elif elapsed > period * 1.5:
                    logger.warning(f"Control loop overrun: {elapsed*1000:.1f}ms")

        errors = [np.linalg.norm(r.position_error) for r in results if r.applied]
        logger.info(
            f"Control loop finished: {len(results)} ticks, "
            f"{sum(not r.applied for r in results)} aborted, "
            f"max position error {max(errors, default=0.0):.4f}m"
        )
        return results

    def stop(self) -> None:
        """Request the running loop to return after the current tick."""
        self._stop_event.set()
        logger.info("Driver stop requested")


# =============================================================================
# Factory
# =============================================================================

def create_simulation_driver(config: Optional["RunConfig"] = None) -> ControlLoopDriver:
    """
    Build a complete simulated tracking run.

    The chain comes from the configured URDF or the built-in 7-DOF arm.
    The built-in arm starts at DEFAULT_INITIAL_POSITIONS unless the
    simulator configuration sets initial positions; a URDF chain starts at
    zero by default.
    The path starts at the end-effector position of the simulator's initial
    configuration; a linear path without an explicit end point goes to the
    start mirrored in y.

    Args:
        config: Run configuration, defaults if None

    Returns:
        ControlLoopDriver wired to a SimulatedArm
    """
    from .config import RunConfig

    config = config or RunConfig()

    sim_config = config.simulator
    if config.urdf_path:
        chain = load_urdf(config.urdf_path, config.base_link, config.tip_link)
    else:
        chain = KinematicChain.default_arm()
        if sim_config.initial_positions is None:
            sim_config = replace(sim_config, initial_positions=DEFAULT_INITIAL_POSITIONS)

    arm = SimulatedArm(chain, sim_config)

    model = KinematicChainModel(chain, gravity=config.simulator.gravity)
    model.attach_end_effector(
        Transform.from_position_rpy(config.end_effector_xyz, config.end_effector_rpy)
    )
    sample = arm.read()
    model.update(sample.positions, sample.velocities)
    start = model.end_effector_pose().position

    traj = config.trajectory
    if traj.shape == PathShape.LINEAR:
        end = np.array(traj.end) if traj.end is not None else start * np.array([1.0, -1.0, 1.0])
        planner = TrajectoryPlanner.linear(
            traj.duration, traj.acc_duration, start, end, profile=traj.profile
        )
    else:
        planner = TrajectoryPlanner.circular(
            traj.duration, traj.acc_duration, start, traj.radius,
            plane=traj.plane, profile=traj.profile
        )

    controller = MotionController(model, config.controller)

    return ControlLoopDriver(model, planner, controller, arm, arm, config.driver)
