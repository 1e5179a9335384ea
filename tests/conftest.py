"""
Pytest Configuration and Fixtures
==================================

Shared test configuration and fixtures for all test modules.
Handles path setup for importing the package from src/.

Author: Manipulator Control Project Team
License: MIT
"""

import sys
from pathlib import Path

# Add src/ to path for imports
project_root = Path(__file__).parent.parent
src_root = project_root / "src"
if str(src_root) not in sys.path:
    sys.path.insert(0, str(src_root))

import pytest
import numpy as np

from manipulator_control.control.kinematics import (
    Joint,
    JointType,
    KinematicChain,
    LinkInertia,
    Transform,
)
from manipulator_control.control.model import KinematicChainModel

# Planar arm links: point masses at the link tips
PLANAR_LENGTHS = (0.5, 0.4, 0.3)
PLANAR_MASSES = (2.0, 1.5, 1.0)


# =============================================================================
# Global Fixtures
# =============================================================================

@pytest.fixture(scope="session")
def random_seed():
    """Set random seed for reproducibility."""
    np.random.seed(42)
    return 42


@pytest.fixture(scope="session")
def project_root_path():
    """Get project root path."""
    return project_root


# =============================================================================
# Chain Fixtures
# =============================================================================

def make_planar_chain(n_links: int = 2) -> KinematicChain:
    """
    Planar arm in the x-y plane, all joints about z.

    Links are 0.5 m, 0.4 m, 0.3 m long with point masses at their tips.
    """
    lengths = PLANAR_LENGTHS[:n_links]
    masses = PLANAR_MASSES[:n_links]

    joints = []
    offset = 0.0
    for i, (length, mass) in enumerate(zip(lengths, masses)):
        joints.append(Joint(
            name=f"joint_{i + 1}",
            joint_type=JointType.REVOLUTE,
            origin=Transform.from_position_rotation([offset, 0.0, 0.0]),
            axis=[0.0, 0.0, 1.0],
            inertia=LinkInertia(mass=mass, com=[length, 0.0, 0.0])
        ))
        offset = length

    tip = Transform.from_position_rotation([lengths[-1], 0.0, 0.0])
    return KinematicChain(joints=tuple(joints), tip_transform=tip, name=f"planar{n_links}")


@pytest.fixture
def planar_chain():
    """Planar two-link arm."""
    return make_planar_chain(2)


@pytest.fixture
def planar3_chain():
    """Planar three-link arm (square Jacobian in the plane)."""
    return make_planar_chain(3)


@pytest.fixture
def planar_model(planar_chain):
    """Model of the planar arm with gravity along -y."""
    return KinematicChainModel(planar_chain, gravity=(0.0, -9.81, 0.0))


@pytest.fixture
def default_chain():
    """Built-in 7-DOF arm."""
    return KinematicChain.default_arm()


@pytest.fixture
def arm_model(default_chain):
    """Model of the built-in arm at its default configuration."""
    model = KinematicChainModel(default_chain)
    model.update(
        np.array([0.0, 1.57, -1.57, -1.2, 1.57, -1.57, -0.37]),
        np.zeros(7)
    )
    return model


# =============================================================================
# Markers
# =============================================================================

def pytest_configure(config):
    """Add custom markers."""
    config.addinivalue_line("markers", "slow: marks tests as slow")
    config.addinivalue_line("markers", "integration: marks integration tests")
