#!/usr/bin/env python3
"""
Trajectory Tracking Demo
========================

Runs one Cartesian trajectory on the simulated 7-DOF arm and reports the
end-effector tracking error.

Usage:
    python scripts/run_trajectory.py
    python scripts/run_trajectory.py --config configs/default.yaml
    python scripts/run_trajectory.py --shape circular --mode operational
    python scripts/run_trajectory.py --realtime --verbose

Author: Manipulator Control Project Team
License: MIT
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

# Add src/ to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root / "src"))

import numpy as np

from manipulator_control.control import ControlMode, PathShape, VelocityProfile
from manipulator_control.integration import RunConfig, create_simulation_driver

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def build_config(args: argparse.Namespace) -> RunConfig:
    """Load the run configuration and apply command-line overrides."""
    config = RunConfig.from_yaml(args.config) if args.config else RunConfig()

    if args.shape:
        config.trajectory.shape = PathShape[args.shape.upper()]
    if args.profile:
        config.trajectory.profile = VelocityProfile[args.profile.upper()]
    if args.mode:
        config.controller.mode = (
            ControlMode.OPERATIONAL_SPACE if args.mode == "operational"
            else ControlMode.JOINT_SPACE
        )
    if args.duration is not None:
        config.trajectory.duration = args.duration
        config.trajectory.acc_duration = min(config.trajectory.acc_duration, args.duration / 2)

    return config


def run(config: RunConfig, realtime: bool) -> None:
    """Run the loop and print a tracking summary."""
    driver = create_simulation_driver(config)

    print("\n" + "=" * 60)
    print("TRAJECTORY TRACKING")
    print("=" * 60)
    print(f"   Path: {config.trajectory.shape.name}, {config.trajectory.profile.name}")
    print(f"   Control: {config.controller.mode.name}")
    print(f"   Duration: {config.trajectory.duration}s at {config.driver.control_rate_hz:.0f} Hz")

    results = driver.run(realtime=realtime)

    errors = np.array([np.linalg.norm(r.position_error) for r in results if r.applied])
    report_every = max(len(results) // 10, 1)
    for result in results[::report_every]:
        # Error in centimetres
        print(
            f"   t={result.time:6.2f}s | error (cm): "
            f"{np.round(result.position_error * 100, 3)}"
        )

    print(f"\nResults:")
    print(f"   Ticks: {len(results)} ({driver.fault_count} aborted)")
    if errors.size:
        print(f"   Mean position error: {errors.mean() * 100:.3f} cm")
        print(f"   Max position error: {errors.max() * 100:.3f} cm")
        print(f"   Final position error: {errors[-1] * 100:.3f} cm")


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Manipulator trajectory tracking demo")
    parser.add_argument(
        "--config", "-c", type=str, default=None, help="YAML run configuration"
    )
    parser.add_argument(
        "--shape", choices=["linear", "circular"], default=None, help="Path shape"
    )
    parser.add_argument(
        "--profile", choices=["trapezoidal", "cubic"], default=None, help="Velocity profile"
    )
    parser.add_argument(
        "--mode", choices=["joint", "operational"], default=None, help="Control law"
    )
    parser.add_argument(
        "--duration", "-d", type=float, default=None, help="Trajectory duration in seconds"
    )
    parser.add_argument(
        "--realtime", action="store_true", help="Pace the loop against the wall clock"
    )
    parser.add_argument(
        "--save-config", type=str, default=None, help="Write the effective configuration"
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Enable verbose logging"
    )

    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    config = build_config(args)
    if args.save_config:
        config.to_yaml(args.save_config)
        logger.info(f"Configuration written to {args.save_config}")

    try:
        run(config, realtime=args.realtime)
    except Exception as e:
        logger.error(f"Run failed: {e}")
        raise


if __name__ == "__main__":
    main()
