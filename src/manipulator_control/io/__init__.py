"""I/O utilities for loading robot descriptions.

This module parses URDF robot descriptions into KinematicChain objects.
"""

from .urdf import chain_from_urdf_string, load_urdf

__all__ = ["load_urdf", "chain_from_urdf_string"]
