"""Profile trees: per-machine, per-phase unit producers."""
from .base import Phase, ProfileNode, StructuredProfile, CompoundProfile, flatten
from .roles import ROLE_PROFILES, ProfileBuilder, build_profile, declared_profile

__all__ = [
    "Phase",
    "ProfileNode",
    "StructuredProfile",
    "CompoundProfile",
    "flatten",
    "ROLE_PROFILES",
    "ProfileBuilder",
    "build_profile",
    "declared_profile",
]
