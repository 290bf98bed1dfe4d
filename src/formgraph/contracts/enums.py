# src/formgraph/contracts/enums.py
"""Policies and kinds used across subsystem boundaries."""

from enum import StrEnum


class BranchValuePolicy(StrEnum):
    """What a remounted variant starts from.

    RESET: computed defaults (or values seeded in the same call).
    RESTORE: the last valid values the variant held before it was unmounted,
    re-validated against the current schemas; defaults where they no longer fit.
    """

    RESET = "reset"
    RESTORE = "restore"


class InactiveWritePolicy(StrEnum):
    """How writes to nodes that are not mounted after a call settles are handled."""

    DISCARD = "discard"
    REJECT = "reject"


class RemovalReason(StrEnum):
    """Why a key left the snapshot."""

    UNMOUNTED = "unmounted"
    HIDDEN = "hidden"
