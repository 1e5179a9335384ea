"""
Unit Tests for Kinematics Types
===============================

Tests for poses, twists, orientation error and the kinematic chain
description.

Author: Manipulator Control Project Team
License: MIT
"""

import numpy as np
import pytest

from manipulator_control.control.errors import InvalidDescription
from manipulator_control.control.kinematics import (
    Joint,
    JointLimits,
    JointType,
    KinematicChain,
    LinkInertia,
    Transform,
    Twist,
    axis_angle_to_rotation_matrix,
    orientation_error,
)

# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def joint_limits():
    """Symmetric revolute limits."""
    return JointLimits(lower=-np.pi, upper=np.pi, velocity=2.0, effort=50.0)


# =============================================================================
# Transform Tests
# =============================================================================


class TestTransform:
    """Tests for Transform class."""

    def test_identity_transform(self):
        """Test identity transform creation."""
        t = Transform.identity()
        assert np.allclose(t.matrix, np.eye(4))
        assert np.allclose(t.position, [0, 0, 0])

    def test_from_position_rotation(self):
        """Test creation from position and rotation."""
        position = np.array([1.0, 2.0, 3.0])
        rotation = axis_angle_to_rotation_matrix(np.array([0.0, 0.0, 1.0]), 0.3)

        t = Transform.from_position_rotation(position, rotation)

        assert np.allclose(t.position, position)
        assert np.allclose(t.rotation, rotation)

    def test_from_rpy(self):
        """Yaw of 90° maps the x axis onto y."""
        t = Transform.from_position_rpy([0, 0, 0], [0, 0, np.pi / 2])

        x_axis = t.rotation @ np.array([1, 0, 0])
        assert np.allclose(x_axis, [0, 1, 0], atol=1e-10)

    def test_quaternion_conversion(self):
        """Test rotation matrix <-> quaternion conversion."""
        t = Transform.from_position_rpy([0.1, 0.2, 0.3], [0.3, -0.5, 1.2])

        t2 = Transform.from_position_quaternion(t.position, t.quaternion)

        assert np.allclose(t.rotation, t2.rotation, atol=1e-10)
        assert np.isclose(np.linalg.norm(t.quaternion), 1.0)

    def test_rpy_round_trip(self):
        """Test rpy property recovers the construction angles."""
        rpy = np.array([0.2, -0.4, 0.9])
        t = Transform.from_position_rpy([0, 0, 0], rpy)
        assert np.allclose(t.rpy, rpy, atol=1e-10)

    def test_transform_composition(self):
        """Test composing transforms."""
        t1 = Transform.from_position_rotation([1, 0, 0])
        t2 = Transform.from_position_rotation([0, 1, 0])

        t_combined = t1 @ t2

        assert np.allclose(t_combined.position, [1, 1, 0])

    def test_inverse_transform(self):
        """Test transform inverse."""
        t = Transform.from_position_rpy([1, 2, 3], [0.1, 0.2, 0.3])

        identity = t @ t.inverse()

        assert np.allclose(identity.matrix, np.eye(4), atol=1e-10)

    def test_transform_point(self):
        """Test transforming a point."""
        t = Transform.from_position_rpy([1, 0, 0], [0, 0, np.pi / 2])

        transformed = t.transform_point(np.array([1, 0, 0]))

        assert np.allclose(transformed, [1, 1, 0])

    def test_distance_to(self):
        """Test distance computation between transforms."""
        t1 = Transform.identity()
        t2 = Transform.from_position_rotation([1, 0, 0])

        pos_dist, rot_dist = t1.distance_to(t2)

        assert np.isclose(pos_dist, 1.0)
        assert np.isclose(rot_dist, 0.0)


# =============================================================================
# Orientation Error Tests
# =============================================================================


class TestOrientationError:
    """Tests for the quaternion orientation error."""

    def test_identical_rotations(self):
        """No error between identical orientations."""
        R = Transform.from_position_rpy([0, 0, 0], [0.3, 0.2, 0.1]).rotation
        assert np.allclose(orientation_error(R, R), 0.0)

    def test_small_rotation_matches_axis_angle(self):
        """For small angles the error is the axis-angle vector."""
        R_target = axis_angle_to_rotation_matrix(np.array([0.0, 0.0, 1.0]), 0.01)

        error = orientation_error(R_target, np.eye(3))

        assert np.allclose(error, [0, 0, 0.01], atol=1e-6)

    def test_magnitude_is_twice_sine_half_angle(self):
        """Error norm is 2·sin(θ/2) along the rotation axis."""
        angle = np.deg2rad(170)
        R_target = axis_angle_to_rotation_matrix(np.array([1.0, 0.0, 0.0]), angle)

        error = orientation_error(R_target, np.eye(3))

        assert np.allclose(error, [2 * np.sin(angle / 2), 0, 0])

    def test_takes_short_way_round(self):
        """A 190° rotation is reported as -170°."""
        R_target = axis_angle_to_rotation_matrix(np.array([1.0, 0.0, 0.0]), np.deg2rad(190))

        error = orientation_error(R_target, np.eye(3))

        assert error[0] < 0
        assert np.isclose(np.linalg.norm(error), 2 * np.sin(np.deg2rad(85)))


# =============================================================================
# Twist Tests
# =============================================================================


class TestTwist:
    """Tests for Twist."""

    def test_vector_layout(self):
        """Linear part is stacked over angular part."""
        twist = Twist(linear=[1, 2, 3], angular=[4, 5, 6])
        assert np.allclose(twist.as_vector(), [1, 2, 3, 4, 5, 6])

    def test_from_vector(self):
        twist = Twist.from_vector(np.arange(6.0))
        assert np.allclose(twist.linear, [0, 1, 2])
        assert np.allclose(twist.angular, [3, 4, 5])

    def test_zero(self):
        assert np.allclose(Twist.zero().as_vector(), np.zeros(6))

    def test_wrong_size_rejected(self):
        with pytest.raises(ValueError):
            Twist(linear=[1, 2])


# =============================================================================
# Joint Description Tests
# =============================================================================


class TestJointLimits:
    """Tests for JointLimits."""

    def test_clamp(self, joint_limits):
        """Test position clamping."""
        assert joint_limits.clamp(0.0) == 0.0
        assert joint_limits.clamp(10.0) == np.pi
        assert joint_limits.clamp(-10.0) == -np.pi

    def test_is_within(self, joint_limits):
        """Test limit checking."""
        assert joint_limits.is_within(0.0)
        assert joint_limits.is_within(np.pi - 0.1)
        assert not joint_limits.is_within(np.pi + 0.1)
        assert not joint_limits.is_within(np.pi - 0.1, margin=0.2)

    def test_default_is_unbounded(self):
        limits = JointLimits()
        assert limits.is_within(1e6)

    def test_invalid_limits(self):
        """Test validation of invalid limits."""
        with pytest.raises(ValueError):
            JointLimits(lower=1.0, upper=-1.0)
        with pytest.raises(ValueError):
            JointLimits(effort=0.0)


class TestLinkInertia:
    """Tests for LinkInertia."""

    def test_from_principal(self):
        inertia = LinkInertia.from_principal(2.0, [0, 0, 0.1], 0.1, 0.2, 0.3)
        assert np.allclose(np.diag(inertia.inertia), [0.1, 0.2, 0.3])
        assert np.allclose(inertia.com, [0, 0, 0.1])

    def test_negative_mass_rejected(self):
        with pytest.raises(InvalidDescription):
            LinkInertia(mass=-1.0)

    def test_asymmetric_inertia_rejected(self):
        inertia = np.array([[1.0, 0.5, 0.0], [0.0, 1.0, 0.0], [0.0, 0.0, 1.0]])
        with pytest.raises(InvalidDescription):
            LinkInertia(mass=1.0, inertia=inertia)

    def test_indefinite_inertia_rejected(self):
        with pytest.raises(InvalidDescription):
            LinkInertia.from_principal(1.0, [0, 0, 0], 1.0, -1.0, 1.0)


class TestJoint:
    """Tests for Joint."""

    def test_axis_normalized(self):
        joint = Joint(name="j", axis=[0.0, 0.0, 2.0])
        assert np.allclose(joint.axis, [0, 0, 1])

    def test_zero_axis_rejected(self):
        with pytest.raises(InvalidDescription):
            Joint(name="j", axis=[0.0, 0.0, 0.0])

    def test_revolute_motion(self):
        joint = Joint(name="j", joint_type=JointType.REVOLUTE)
        T = joint.motion(np.pi / 2)
        assert np.allclose(T[:3, :3] @ [1, 0, 0], [0, 1, 0])
        assert np.allclose(T[:3, 3], 0.0)

    def test_prismatic_motion(self):
        joint = Joint(name="j", joint_type=JointType.PRISMATIC, axis=[1, 0, 0])
        T = joint.motion(0.25)
        assert np.allclose(T[:3, 3], [0.25, 0, 0])
        assert np.allclose(T[:3, :3], np.eye(3))

    def test_local_transform_applies_origin_first(self):
        joint = Joint(name="j", origin=Transform.from_position_rotation([1, 0, 0]))
        T = joint.local_transform(np.pi / 2)
        assert np.allclose(T[:3, 3], [1, 0, 0])
        assert np.allclose(T[:3, :3] @ [1, 0, 0], [0, 1, 0])


class TestKinematicChain:
    """Tests for KinematicChain."""

    def test_default_arm(self, default_chain):
        assert default_chain.n_joints == 7
        assert len(default_chain.joint_names) == 7
        assert default_chain.total_mass > 0
        assert all(lim.effort > 0 for lim in default_chain.joint_limits)

    def test_fixed_joints_not_counted(self):
        chain = KinematicChain(joints=(
            Joint(name="a"),
            Joint(name="mount", joint_type=JointType.FIXED),
            Joint(name="b"),
        ))
        assert chain.n_joints == 2
        assert chain.joint_names == ["a", "b"]

    def test_empty_chain_rejected(self):
        with pytest.raises(InvalidDescription):
            KinematicChain(joints=())

    def test_all_fixed_chain_rejected(self):
        with pytest.raises(InvalidDescription):
            KinematicChain(joints=(Joint(name="a", joint_type=JointType.FIXED),))

    def test_chain_is_immutable(self, default_chain):
        with pytest.raises(AttributeError):
            default_chain.name = "other"
