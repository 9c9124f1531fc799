"""Profile nodes: per-machine producers of ordered unit lists.

A machine's configuration is a tree of ProfileNodes. Every node answers one
question, ``emit(phase)``: which units, in which order, does it contribute
to that phase. Emission order is execution order; nothing downstream
reorders it.
"""
from abc import ABC, abstractmethod
from enum import Enum
from typing import Iterable, Mapping, Optional, Sequence

from ..units.base import PROCEED, CompoundUnit, Unit, UnitLike, expand


class Phase(str, Enum):
    """Lifecycle phases, declared in flattening order."""
    INSTALL = "install"
    PERSISTENT_CONFIG = "persistent-config"
    LIVE_CONFIG = "live-config"
    PERSISTENT_FIREWALL = "persistent-firewall"
    LIVE_FIREWALL = "live-firewall"


class ProfileNode(ABC):
    """Anything that contributes units to a machine."""

    def __init__(self, label: str):
        self.label = label

    @abstractmethod
    def emit(self, phase: Phase) -> list[UnitLike]:
        """Ordered units this node contributes to ``phase``."""
        pass

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.label!r})"


class StructuredProfile(ProfileNode):
    """Plain concatenation: own units for a phase, then each child's."""

    def __init__(
        self,
        label: str,
        units: Optional[Mapping[Phase, Sequence[UnitLike]]] = None,
        children: Iterable[ProfileNode] = (),
    ):
        super().__init__(label)
        self._units: dict[Phase, list[UnitLike]] = {phase: [] for phase in Phase}
        for phase, phase_units in (units or {}).items():
            self._units[Phase(phase)].extend(phase_units)
        self.children: list[ProfileNode] = list(children)

    def add(self, phase: Phase, *units: UnitLike) -> "StructuredProfile":
        self._units[phase].extend(units)
        return self

    def add_child(self, node: ProfileNode) -> "StructuredProfile":
        self.children.append(node)
        return self

    def emit(self, phase: Phase) -> list[UnitLike]:
        emitted = list(self._units[phase])
        for child in self.children:
            emitted.extend(child.emit(phase))
        return emitted


class CompoundProfile(ProfileNode):
    """Brackets its children's units behind a single pass/fail signal.

    In its bracketing phase the node emits one CompoundUnit labelled with the
    node's label: an opening ``<label>_compound`` marker guarded by the
    node's precondition, every child unit, and a closing ``<label>``
    aggregator. Dependents name ``<label>`` as their precondition. An
    optional ``config`` payload runs when any child changed the host.

    In any other phase the children's units pass through unbracketed, since
    a label may only be defined once per script.
    """

    def __init__(
        self,
        label: str,
        precondition: str = PROCEED,
        children: Iterable[ProfileNode] = (),
        phase: Phase = Phase.PERSISTENT_CONFIG,
        fail_message: Optional[str] = None,
        config: str = "",
    ):
        super().__init__(label)
        self.precondition = precondition
        self.children: list[ProfileNode] = list(children)
        self.phase = phase
        self.fail_message = fail_message
        self.config = config

    def add_child(self, node: ProfileNode) -> "CompoundProfile":
        self.children.append(node)
        return self

    def emit(self, phase: Phase) -> list[UnitLike]:
        emitted: list[UnitLike] = []
        for child in self.children:
            emitted.extend(child.emit(phase))

        if phase != self.phase:
            return emitted

        return [CompoundUnit(
            self.label, self.precondition, emitted, self.fail_message, self.config,
        )]


def flatten(node: ProfileNode) -> list[Unit]:
    """Linear unit list for a machine: every phase in order, compounds expanded."""
    units: list[Unit] = []
    for phase in Phase:
        for item in node.emit(phase):
            units.extend(expand(item))
    return units
