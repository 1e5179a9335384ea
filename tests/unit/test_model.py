"""
Unit Tests for the Kinematic Chain Model
========================================

Forward kinematics, Jacobians, inverse kinematics, the damped
pseudo-inverse and rigid-body dynamics, checked against closed-form
results for a planar arm and finite differences for the 7-DOF arm.

Author: Manipulator Control Project Team
License: MIT
"""

import numpy as np
import pytest

from manipulator_control.control.errors import (
    DimensionMismatch,
    InvalidDescription,
    ModelNotReady,
)
from manipulator_control.control.kinematics import (
    Joint,
    JointType,
    KinematicChain,
    LinkInertia,
    Transform,
    Twist,
    orientation_error,
)
from manipulator_control.control.model import KinematicChainModel

# Planar arm from conftest: link lengths and tip masses
G = 9.81
L1, L2 = 0.5, 0.4
M1, M2 = 2.0, 1.5
IK_WEIGHTS = np.array([1.0, 1.0, 1.0, 0.1, 0.1, 0.1])


def planar_gravity(q):
    """Closed-form gravity torques, gravity along -y."""
    c1, c12 = np.cos(q[0]), np.cos(q[0] + q[1])
    return G * np.array([
        (M1 + M2) * L1 * c1 + M2 * L2 * c12,
        M2 * L2 * c12,
    ])


def planar_mass_matrix(q):
    """Closed-form inertia matrix for tip point masses."""
    c2 = np.cos(q[1])
    m11 = M1 * L1**2 + M2 * (L1**2 + 2 * L1 * L2 * c2 + L2**2)
    m12 = M2 * (L1 * L2 * c2 + L2**2)
    m22 = M2 * L2**2
    return np.array([[m11, m12], [m12, m22]])


def planar_coriolis(q, q_dot):
    """Closed-form Coriolis/centrifugal torques."""
    h = M2 * L1 * L2 * np.sin(q[1])
    return np.array([
        -h * (2 * q_dot[0] * q_dot[1] + q_dot[1]**2),
        h * q_dot[0]**2,
    ])


# =============================================================================
# State Tests
# =============================================================================


class TestModelState:
    """Tests for state handling."""

    def test_not_ready_before_update(self, planar_model):
        assert not planar_model.is_ready
        with pytest.raises(ModelNotReady):
            planar_model.end_effector_pose()
        with pytest.raises(ModelNotReady):
            planar_model.jacobian()
        with pytest.raises(ModelNotReady):
            planar_model.mass_matrix()
        with pytest.raises(ModelNotReady):
            planar_model.gravity_term()

    def test_update(self, planar_model):
        planar_model.update([0.1, 0.2], [0.3, 0.4])

        assert planar_model.is_ready
        assert np.allclose(planar_model.state.q, [0.1, 0.2])
        assert np.allclose(planar_model.state.q_dot, [0.3, 0.4])

    def test_wrong_length_keeps_previous_state(self, planar_model):
        planar_model.update([0.1, 0.2], [0.0, 0.0])

        with pytest.raises(DimensionMismatch):
            planar_model.update([0.1, 0.2, 0.3], [0.0, 0.0])

        assert np.allclose(planar_model.state.q, [0.1, 0.2])

    def test_state_is_read_only(self, planar_model):
        q = np.array([0.1, 0.2])
        planar_model.update(q, np.zeros(2))

        q[0] = 5.0  # caller's array is copied
        assert np.isclose(planar_model.state.q[0], 0.1)
        with pytest.raises(ValueError):
            planar_model.state.q[0] = 1.0

    def test_attach_end_effector_once(self, planar_model):
        planar_model.attach_end_effector(Transform.identity())
        with pytest.raises(InvalidDescription):
            planar_model.attach_end_effector(Transform.identity())

    def test_invalid_parameters(self, planar_chain):
        with pytest.raises(ValueError):
            KinematicChainModel(planar_chain, ik_max_iterations=0)
        with pytest.raises(ValueError):
            KinematicChainModel(planar_chain, pinv_damping=0.0)


# =============================================================================
# Forward Kinematics Tests
# =============================================================================


class TestForwardKinematics:
    """Tests for end-effector pose."""

    @pytest.mark.parametrize("q, expected", [
        ([0.0, 0.0], [L1 + L2, 0.0, 0.0]),
        ([np.pi / 2, 0.0], [0.0, L1 + L2, 0.0]),
        ([0.0, np.pi / 2], [L1, L2, 0.0]),
    ])
    def test_planar_positions(self, planar_model, q, expected):
        planar_model.update(q, np.zeros(2))
        assert np.allclose(planar_model.end_effector_pose().position, expected)

    def test_planar_orientation(self, planar_model):
        planar_model.update([0.3, 0.4], np.zeros(2))
        rpy = planar_model.end_effector_pose().rpy
        assert np.allclose(rpy, [0.0, 0.0, 0.7])

    def test_end_effector_offset(self, planar_model):
        planar_model.attach_end_effector(Transform.from_position_rotation([0.1, 0.0, 0.0]))
        planar_model.update([0.0, 0.0], np.zeros(2))
        assert np.allclose(planar_model.end_effector_pose().position, [L1 + L2 + 0.1, 0, 0])

    def test_default_arm_upright(self, default_chain):
        """All-zero configuration points the iiwa straight up."""
        model = KinematicChainModel(default_chain)
        model.update(np.zeros(7), np.zeros(7))

        position = model.end_effector_pose().position

        assert np.allclose(position, [0.0, 0.0, 1.306], atol=1e-6)

    def test_fixed_joint_in_chain(self):
        chain = KinematicChain(joints=(
            Joint(name="shoulder"),
            Joint(
                name="mount",
                joint_type=JointType.FIXED,
                origin=Transform.from_position_rotation([0.5, 0.0, 0.0])
            ),
        ))
        model = KinematicChainModel(chain)
        model.update([np.pi / 2], [0.0])

        assert np.allclose(model.end_effector_pose().position, [0.0, 0.5, 0.0])


# =============================================================================
# Jacobian Tests
# =============================================================================


class TestJacobian:
    """Tests for the geometric Jacobian and its derivative."""

    def test_shape(self, arm_model):
        assert arm_model.jacobian().shape == (6, 7)

    def test_planar_closed_form(self, planar_model):
        q = np.array([0.3, 0.5])
        planar_model.update(q, np.zeros(2))

        J = planar_model.jacobian()

        s1, s12 = np.sin(q[0]), np.sin(q.sum())
        c1, c12 = np.cos(q[0]), np.cos(q.sum())
        assert np.allclose(J[0], [-L1 * s1 - L2 * s12, -L2 * s12])
        assert np.allclose(J[1], [L1 * c1 + L2 * c12, L2 * c12])
        assert np.allclose(J[2], 0.0)
        assert np.allclose(J[5], [1.0, 1.0])

    def test_matches_finite_differences(self, arm_model):
        """Linear and angular columns agree with finite differences of FK."""
        q = arm_model.state.q
        J = arm_model.jacobian()
        h = 1e-6

        for j in range(7):
            dq = np.zeros(7)
            dq[j] = h
            T_plus = arm_model.forward_kinematics(q + dq)
            T_minus = arm_model.forward_kinematics(q - dq)

            linear = (T_plus.position - T_minus.position) / (2 * h)
            angular = orientation_error(T_plus.rotation, T_minus.rotation) / (2 * h)

            assert np.allclose(J[:3, j], linear, atol=1e-6)
            assert np.allclose(J[3:, j], angular, atol=1e-6)

    def test_finite_at_singularity(self, planar_model):
        """Stretched-out arm still yields a finite Jacobian."""
        planar_model.update([0.0, 0.0], np.zeros(2))
        J = planar_model.jacobian()
        assert np.all(np.isfinite(J))
        assert np.linalg.matrix_rank(J[:2]) == 1

    def test_jacobian_dot_planar(self, planar_model):
        q = np.array([0.3, 0.5])
        q_dot = np.array([0.7, -0.4])
        planar_model.update(q, q_dot)

        J_dot = planar_model.jacobian_dot()

        c1, c12 = np.cos(q[0]), np.cos(q.sum())
        s1, s12 = np.sin(q[0]), np.sin(q.sum())
        w1, w12 = q_dot[0], q_dot.sum()
        assert np.allclose(J_dot[0], [-L1 * c1 * w1 - L2 * c12 * w12, -L2 * c12 * w12], atol=1e-7)
        assert np.allclose(J_dot[1], [-L1 * s1 * w1 - L2 * s12 * w12, -L2 * s12 * w12], atol=1e-7)

    def test_jacobian_dot_zero_at_rest(self, arm_model):
        assert np.allclose(arm_model.jacobian_dot(), 0.0)


# =============================================================================
# Pseudo-Inverse Tests
# =============================================================================


class TestDampedPseudoInverse:
    """Tests for the velocity mapping."""

    def test_round_trip_full_column_rank(self, planar3_chain):
        """J⁺·(J·q̇) recovers q̇ when J has full column rank."""
        model = KinematicChainModel(planar3_chain)
        model.update([0.3, 0.5, -0.4], np.zeros(3))
        J = model.jacobian()
        q_dot = np.array([0.2, -0.1, 0.3])

        recovered = model.desired_joint_velocity(J @ q_dot, J)

        assert np.allclose(recovered, q_dot, atol=1e-3)

    def test_accepts_twist(self, planar3_chain):
        model = KinematicChainModel(planar3_chain)
        model.update([0.3, 0.5, -0.4], np.zeros(3))
        J = model.jacobian()
        x_dot = J @ np.array([0.2, -0.1, 0.3])

        from_twist = model.desired_joint_velocity(Twist.from_vector(x_dot), J)
        from_vector = model.desired_joint_velocity(x_dot, J)

        assert np.allclose(from_twist, from_vector)

    def test_rank_deficient_is_finite(self, planar_model):
        J = np.zeros((6, 2))
        J_pinv = planar_model.damped_pseudo_inverse(J)
        assert np.all(np.isfinite(J_pinv))
        assert np.allclose(J_pinv, 0.0)

    def test_singular_velocity_bounded(self, planar_model):
        """Velocity along the singular direction stays bounded."""
        planar_model.update([0.0, 0.0], np.zeros(2))
        J = planar_model.jacobian()

        q_dot = planar_model.desired_joint_velocity(Twist(linear=[0.01, 0.0, 0.0]), J)

        assert np.all(np.isfinite(q_dot))
        assert np.linalg.norm(q_dot) < 1e3

    def test_dimension_checks(self, planar_model):
        with pytest.raises(DimensionMismatch):
            planar_model.damped_pseudo_inverse(np.zeros((5, 2)))
        with pytest.raises(DimensionMismatch):
            planar_model.damped_pseudo_inverse(np.zeros((6, 3)))
        with pytest.raises(DimensionMismatch):
            planar_model.desired_joint_velocity(np.zeros(5), np.zeros((6, 2)))


# =============================================================================
# Inverse Kinematics Tests
# =============================================================================


class TestInverseKinematics:
    """Tests for Levenberg-Marquardt inverse kinematics."""

    def test_planar_reachable(self, planar_model):
        q_true = np.array([0.4, 0.8])
        target = planar_model.forward_kinematics(q_true)

        solution = planar_model.solve_inverse_kinematics([0.2, 0.5], target)

        assert solution.converged
        assert solution.residual < planar_model.ik_tolerance
        reached = planar_model.forward_kinematics(solution.q)
        assert np.allclose(reached.position, target.position, atol=1e-5)

    def test_seed_at_solution(self, planar_model):
        q = np.array([0.4, 0.8])
        solution = planar_model.solve_inverse_kinematics(q, planar_model.forward_kinematics(q))

        assert solution.iterations == 0
        assert solution.converged
        assert np.allclose(solution.q, q)

    def test_unreachable_is_best_effort(self, planar_model):
        """Out-of-reach targets return the best iterate without raising."""
        target = Transform.from_position_rotation([2.0, 0.0, 0.0])
        seed = np.array([0.3, 0.3])
        initial_residual = np.linalg.norm(
            IK_WEIGHTS * planar_model.pose_error(target, planar_model.forward_kinematics(seed))
        )

        solution = planar_model.solve_inverse_kinematics(seed, target)

        assert not solution.converged
        assert solution.iterations <= planar_model.ik_max_iterations
        assert np.all(np.isfinite(solution.q))
        assert solution.residual <= initial_residual

    def test_unreachable_long_search_stays_finite(self, planar_chain):
        """Repeated rejected steps stop at the damping cap instead of overflowing."""
        model = KinematicChainModel(planar_chain, ik_max_iterations=400)
        target = Transform.from_position_rotation([2.0, 0.0, 0.0])

        with np.errstate(over="raise"):
            solution = model.solve_inverse_kinematics([0.3, 0.3], target)

        assert not solution.converged
        assert np.isfinite(solution.residual)
        assert np.all(np.isfinite(solution.q))
        assert solution.iterations <= 400
        # Stretched toward the target: x reaches the arm length
        reached = model.forward_kinematics(solution.q)
        assert np.isclose(reached.position[0], L1 + L2, atol=1e-2)

    def test_default_arm_nearby_target(self, arm_model):
        q_seed = arm_model.state.q
        q_true = q_seed + 0.1
        target = arm_model.forward_kinematics(q_true)

        q_d = arm_model.inverse_kinematics(q_seed, target)

        reached = arm_model.forward_kinematics(q_d)
        assert np.linalg.norm(reached.position - target.position) < 1e-3
        assert np.linalg.norm(orientation_error(target.rotation, reached.rotation)) < 1e-2

    def test_seed_length_checked(self, planar_model):
        with pytest.raises(DimensionMismatch):
            planar_model.inverse_kinematics(np.zeros(3), Transform.identity())


# =============================================================================
# Dynamics Tests
# =============================================================================


class TestDynamics:
    """Tests for rigid-body dynamics terms."""

    @pytest.mark.parametrize("q", [[0.0, 0.0], [0.3, -0.7], [np.pi / 2, 0.2]])
    def test_planar_gravity(self, planar_model, q):
        planar_model.update(q, np.zeros(2))
        assert np.allclose(planar_model.gravity_term(), planar_gravity(q))

    @pytest.mark.parametrize("q", [[0.0, 0.0], [0.3, -0.7], [1.0, 2.0]])
    def test_planar_mass_matrix(self, planar_model, q):
        planar_model.update(q, np.zeros(2))
        assert np.allclose(planar_model.mass_matrix(), planar_mass_matrix(q))

    def test_planar_coriolis(self, planar_model):
        q = np.array([0.3, 0.9])
        q_dot = np.array([0.8, -1.1])
        planar_model.update(q, q_dot)

        assert np.allclose(planar_model.coriolis_term(), planar_coriolis(q, q_dot))

    @pytest.mark.parametrize("config_seed", [None, 0, 1, 2, 3])
    def test_mass_matrix_symmetric_positive_definite(self, arm_model, default_chain, config_seed):
        """SPD at the initial configuration and at random ones within the limits."""
        if config_seed is not None:
            rng = np.random.default_rng(config_seed)
            lower = np.array([lim.lower for lim in default_chain.joint_limits])
            upper = np.array([lim.upper for lim in default_chain.joint_limits])
            arm_model.update(rng.uniform(lower, upper), np.zeros(7))

        M = arm_model.mass_matrix()

        assert np.allclose(M, M.T)
        assert np.all(np.linalg.eigvalsh(M) > 0)

    def test_mass_matrix_upright(self, default_chain):
        model = KinematicChainModel(default_chain)
        model.update(np.zeros(7), np.zeros(7))
        assert np.all(np.linalg.eigvalsh(model.mass_matrix()) > 0)

    def test_mass_matrix_matches_inverse_dynamics(self, arm_model, random_seed):
        """Column k of M is the torque for a unit q̈ₖ without velocity or gravity."""
        q = arm_model.state.q + np.random.uniform(-0.5, 0.5, 7)
        arm_model.update(q, np.zeros(7))
        M = arm_model.mass_matrix()

        for k in range(7):
            unit = np.zeros(7)
            unit[k] = 1.0
            column = arm_model.inverse_dynamics(q, np.zeros(7), unit, gravity=False)
            assert np.allclose(M[:, k], column, atol=1e-9)

    def test_bias_term_sums_coriolis_and_gravity(self, arm_model, random_seed):
        q = arm_model.state.q
        arm_model.update(q, np.random.uniform(-1, 1, 7))

        expected = arm_model.coriolis_term() + arm_model.gravity_term()

        assert np.allclose(arm_model.bias_term(), expected, atol=1e-9)

    def test_terms_follow_state_update(self, arm_model):
        """Cached terms are recomputed for a new state."""
        M_before = arm_model.mass_matrix()
        G_before = arm_model.gravity_term()
        J_before = arm_model.jacobian()

        arm_model.update(arm_model.state.q + 0.2, np.zeros(7))

        assert not np.allclose(arm_model.mass_matrix(), M_before)
        assert not np.allclose(arm_model.gravity_term(), G_before)
        assert not np.allclose(arm_model.jacobian(), J_before)

    def test_returned_terms_are_copies(self, arm_model):
        M = arm_model.mass_matrix()
        M[0, 0] = 1e9
        assert arm_model.mass_matrix()[0, 0] != 1e9

    def test_inverse_dynamics_decomposition(self, arm_model, random_seed):
        """τ(q, q̇, q̈) = M·q̈ + C + G."""
        q = arm_model.state.q
        q_dot = np.random.uniform(-1, 1, 7)
        q_ddot = np.random.uniform(-1, 1, 7)
        arm_model.update(q, q_dot)

        tau = arm_model.inverse_dynamics(q, q_dot, q_ddot)
        expected = (
            arm_model.mass_matrix() @ q_ddot
            + arm_model.coriolis_term()
            + arm_model.gravity_term()
        )

        assert np.allclose(tau, expected, atol=1e-9)

    def test_zero_gravity(self, default_chain):
        model = KinematicChainModel(default_chain, gravity=(0.0, 0.0, 0.0))
        model.update(np.full(7, 0.3), np.zeros(7))
        assert np.allclose(model.gravity_term(), 0.0)

    def test_coriolis_zero_at_rest(self, arm_model):
        assert np.allclose(arm_model.coriolis_term(), 0.0)

    def test_fixed_link_mass_counts(self):
        """A mass carried by a fixed joint loads the joint before it."""
        mass, length = 2.0, 0.5
        chain = KinematicChain(joints=(
            Joint(name="shoulder"),
            Joint(
                name="payload",
                joint_type=JointType.FIXED,
                origin=Transform.from_position_rotation([length, 0.0, 0.0]),
                inertia=LinkInertia(mass=mass)
            ),
        ))
        model = KinematicChainModel(chain, gravity=(0.0, -G, 0.0))
        model.update([0.0], [0.0])

        assert np.allclose(model.gravity_term(), [mass * G * length])

    def test_prismatic_gravity(self):
        """A vertical prismatic joint carries the full weight."""
        chain = KinematicChain(joints=(
            Joint(
                name="lift",
                joint_type=JointType.PRISMATIC,
                axis=[0.0, 0.0, 1.0],
                inertia=LinkInertia(mass=3.0)
            ),
        ))
        model = KinematicChainModel(chain)
        model.update([0.2], [0.0])

        assert np.allclose(model.gravity_term(), [3.0 * 9.81])
        assert np.allclose(model.mass_matrix(), [[3.0]])
