"""Schema definitions for network plans and compiled scripts."""
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

from ..config.network import MachineConfig
from ..units.base import Unit


class Action(str, Enum):
    """What a compiled script does."""
    AUDIT = "audit"     # Check only
    CONFIG = "config"   # Apply
    DRYRUN = "dryrun"   # Apply script written locally, never transmitted

    @property
    def applies(self) -> bool:
        """Whether the script uses apply fragments."""
        return self in (Action.CONFIG, Action.DRYRUN)


# --- Plans ---

@dataclass
class MachinePlan:
    """A machine and its flattened unit list."""
    machine: MachineConfig
    units: list[Unit] = field(default_factory=list)

    @property
    def label(self) -> str:
        return self.machine.label


@dataclass
class NetworkPlan:
    """Result of one initialization run, owned by the caller.

    Machines are stored in global processing order.
    """
    network: str
    machines: dict[str, MachinePlan] = field(default_factory=dict)

    @property
    def order(self) -> list[str]:
        return list(self.machines)

    def get(self, label: str) -> Optional[MachinePlan]:
        return self.machines.get(label)


# --- Compilation ---

@dataclass
class CompiledScript:
    """One machine+action compilation result."""
    machine: str
    action: Action
    header: str
    sections: list[tuple[str, str]] = field(default_factory=list)
    footer: str = ""

    @property
    def labels(self) -> list[str]:
        """Unit labels in section order."""
        return [label for label, _ in self.sections]

    @property
    def text(self) -> str:
        parts = [self.header]
        parts.extend(body for _, body in self.sections)
        parts.append(self.footer)
        return "\n".join(parts)

    def __str__(self) -> str:
        return self.text


@dataclass
class DryRunResult:
    """A compiled apply script written locally instead of transmitted."""
    path: Path
    script: CompiledScript

    @property
    def machine(self) -> str:
        return self.script.machine

    @property
    def text(self) -> str:
        return self.script.text
