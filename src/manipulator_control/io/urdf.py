"""URDF loader producing a KinematicChain between two links.

Only the serial path from ``base_link`` to ``tip_link`` is extracted; other
branches of the tree are ignored. Joint origins, axes, limits and the
``<inertial>`` block of each child link are converted. Fixed joints on the
path stay in the chain as FIXED joints so their link masses still count in
the dynamics.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

import numpy as np
from lxml import etree

from ..control.errors import InvalidDescription
from ..control.kinematics import (
    Joint,
    JointLimits,
    JointType,
    KinematicChain,
    LinkInertia,
    Transform,
)

logger = logging.getLogger(__name__)

_JOINT_TYPES = {
    "revolute": JointType.REVOLUTE,
    "continuous": JointType.REVOLUTE,
    "prismatic": JointType.PRISMATIC,
    "fixed": JointType.FIXED,
}


def load_urdf(urdf_path: str, base_link: str, tip_link: str) -> KinematicChain:
    """Load a URDF file and extract the chain from base_link to tip_link.

    Args:
        urdf_path: Path to the URDF file to load.
        base_link: Name of the fixed base link.
        tip_link: Name of the last link of the chain.

    Returns:
        KinematicChain: The serial chain between the two links.

    Raises:
        InvalidDescription: If the file cannot be parsed or the links are
            not connected.
    """
    try:
        root = etree.parse(urdf_path).getroot()
    except (OSError, etree.XMLSyntaxError) as e:
        raise InvalidDescription(f"cannot parse URDF '{urdf_path}': {e}") from e

    return _chain_from_root(root, base_link, tip_link)


def chain_from_urdf_string(urdf: str, base_link: str, tip_link: str) -> KinematicChain:
    """Same as load_urdf, from an in-memory URDF document."""
    try:
        root = etree.fromstring(urdf.encode("utf-8"))
    except etree.XMLSyntaxError as e:
        raise InvalidDescription(f"cannot parse URDF: {e}") from e

    return _chain_from_root(root, base_link, tip_link)


def _chain_from_root(root, base_link: str, tip_link: str) -> KinematicChain:
    links = {link.get("name"): link for link in root.findall("link")}
    for name in (base_link, tip_link):
        if name not in links:
            raise InvalidDescription(f"link '{name}' not found in URDF")

    # Joint lookup by child link
    joint_by_child: Dict[str, etree._Element] = {}
    for joint in root.findall("joint"):
        child = joint.find("child")
        if child is not None:
            joint_by_child[child.get("link")] = joint

    # Walk from tip back to base
    path: List[etree._Element] = []
    visited = set()
    current = tip_link
    while current != base_link:
        joint = joint_by_child.get(current)
        if joint is None or current in visited:
            raise InvalidDescription(
                f"link '{tip_link}' is not a descendant of '{base_link}'"
            )
        visited.add(current)
        path.append(joint)
        parent = joint.find("parent")
        if parent is None or not parent.get("link"):
            raise InvalidDescription(f"joint '{joint.get('name')}' has no parent link")
        current = parent.get("link")
    path.reverse()

    if not path:
        raise InvalidDescription("base_link and tip_link must differ")

    joints = [
        _parse_joint(elem, links.get(elem.find("child").get("link")))
        for elem in path
    ]

    robot_name = root.get("name", "robot")
    logger.info(
        f"Loaded URDF '{robot_name}': {base_link} -> {tip_link}, {len(joints)} joints"
    )
    return KinematicChain(joints=tuple(joints), name=robot_name)


def _parse_vector(text: Optional[str], default: str = "0 0 0") -> np.ndarray:
    values = (text or default).split()
    if len(values) != 3:
        raise InvalidDescription(f"expected 3 values, got '{text}'")
    return np.array([float(v) for v in values])


def _attr_float(elem, key: str, default: str = "0") -> float:
    """Float attribute of an element, InvalidDescription if malformed."""
    text = elem.get(key, default)
    try:
        return float(text)
    except ValueError:
        raise InvalidDescription(
            f"<{elem.tag}> attribute '{key}' is not a number: '{text}'"
        ) from None


def _parse_origin(elem) -> Transform:
    if elem is None:
        return Transform.identity()
    xyz = _parse_vector(elem.get("xyz"))
    rpy = _parse_vector(elem.get("rpy"))
    return Transform.from_position_rpy(xyz, rpy)


def _parse_joint(elem, child_link) -> Joint:
    name = elem.get("name")
    type_name = elem.get("type")
    if type_name not in _JOINT_TYPES:
        raise InvalidDescription(f"joint '{name}' has unsupported type '{type_name}'")
    joint_type = _JOINT_TYPES[type_name]

    axis_elem = elem.find("axis")
    axis = _parse_vector(axis_elem.get("xyz") if axis_elem is not None else None, "0 0 1")

    limits = JointLimits()
    limit_elem = elem.find("limit")
    if limit_elem is not None and type_name in ("revolute", "prismatic"):
        try:
            limits = JointLimits(
                lower=float(limit_elem.get("lower", "-inf")),
                upper=float(limit_elem.get("upper", "inf")),
                velocity=float(limit_elem.get("velocity", "inf")) or np.inf,
                effort=float(limit_elem.get("effort", "inf")) or np.inf,
            )
        except ValueError as e:
            raise InvalidDescription(f"joint '{name}' has invalid limits: {e}") from e

    return Joint(
        name=name,
        joint_type=joint_type,
        origin=_parse_origin(elem.find("origin")),
        axis=axis,
        limits=limits,
        inertia=_parse_inertial(child_link),
    )


def _parse_inertial(link) -> LinkInertia:
    inertial = link.find("inertial") if link is not None else None
    if inertial is None:
        return LinkInertia()

    origin = _parse_origin(inertial.find("origin"))
    mass_elem = inertial.find("mass")
    mass = _attr_float(mass_elem, "value") if mass_elem is not None else 0.0

    inertia = np.zeros((3, 3))
    inertia_elem = inertial.find("inertia")
    if inertia_elem is not None:
        ixx, ixy, ixz, iyy, iyz, izz = (
            _attr_float(inertia_elem, key) for key in ("ixx", "ixy", "ixz", "iyy", "iyz", "izz")
        )
        inertia = np.array([
            [ixx, ixy, ixz],
            [ixy, iyy, iyz],
            [ixz, iyz, izz],
        ])

    # Inertia tensor is given in the inertial frame; rotate into the link frame
    R = origin.rotation
    return LinkInertia(mass=mass, com=origin.position, inertia=R @ inertia @ R.T)
