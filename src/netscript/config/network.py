"""Network description loaded from YAML.

A description lists every machine under the section for its role:

```yaml
network: lab
defaults:
  username: admin
  password_env: NETSCRIPT_PASSWORD

devices:
  printer: {}
services:
  web:
    host: 10.0.1.2
    packages: [nginx]
    services: [nginx]
    ports: [80, 443]
metals:
  hv1:
    host: 10.0.0.10
routers:
  r1:
    host: 10.0.0.1
```

The section a machine is declared in fixes its role; the role decides its
bucket in the global processing order.
"""
import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Union

import yaml

logger = logging.getLogger(__name__)


class MachineRole(str, Enum):
    """Machine roles, declared in global processing order."""
    DEVICE = "device"
    SERVICE = "service"
    METAL = "metal"
    ROUTER = "router"

    @property
    def section(self) -> str:
        """Name of the YAML section holding machines of this role."""
        return f"{self.value}s"


# Devices first, routers last: rules only ever flow downstream
ROLE_ORDER = (
    MachineRole.DEVICE,
    MachineRole.SERVICE,
    MachineRole.METAL,
    MachineRole.ROUTER,
)


@dataclass
class MachineConfig:
    """Connection settings and declared content for one machine."""
    label: str
    role: MachineRole
    host: Optional[str] = None
    port: int = 22
    username: str = "root"
    password_env: str = "NETSCRIPT_PASSWORD"
    timeout: int = 30
    retries: int = 3
    remote_shell: str = "/bin/bash -s"
    # Declared content, turned into units by the role profiles
    packages: list[str] = field(default_factory=list)
    directories: list[str] = field(default_factory=list)
    files: dict[str, str] = field(default_factory=dict)
    services: list[str] = field(default_factory=list)
    ports: list[int] = field(default_factory=list)
    units: list[dict] = field(default_factory=list)
    properties: dict[str, Any] = field(default_factory=dict)

    @property
    def is_remote(self) -> bool:
        """Whether this machine can be reached over SSH."""
        return bool(self.host)


_KNOWN_FIELDS = set(MachineConfig.__dataclass_fields__) - {"label", "role", "properties"}


class NetworkData:
    """Read-only snapshot of a network description."""

    def __init__(self, label: str, machines: list[MachineConfig]):
        self.label = label
        self._machines: dict[str, MachineConfig] = {}
        for machine in machines:
            if machine.label in self._machines:
                raise ValueError(f"Duplicate machine label: {machine.label}")
            self._machines[machine.label] = machine

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "NetworkData":
        """Build a snapshot from a parsed description."""
        data = data or {}
        defaults = data.get("defaults") or {}
        if not isinstance(defaults, dict):
            raise ValueError("'defaults' must be a mapping")

        machines = []
        for role in ROLE_ORDER:
            section = data.get(role.section) or {}
            if isinstance(section, list):
                # Bare list of labels: machines with defaults only
                section = {label: {} for label in section}
            if not isinstance(section, dict):
                raise ValueError(f"'{role.section}' must be a mapping of machine labels")

            for label, settings in section.items():
                machines.append(_build_machine(str(label), role, defaults, settings or {}))

        return cls(str(data.get("network", "network")), machines)

    @classmethod
    def from_file(cls, path: Optional[Union[str, Path]] = None) -> "NetworkData":
        """Load a description from a YAML file (searched for when not given)."""
        path = Path(path) if path else find_config()
        logger.info(f"Loading network description from {path}")
        with open(path) as f:
            return cls.from_dict(yaml.safe_load(f))

    def get_labels(self) -> list[str]:
        """All machine labels in declaration order."""
        return list(self._machines)

    def get_machine(self, label: str) -> MachineConfig:
        """Get a machine's settings."""
        if label not in self._machines:
            raise KeyError(f"Unknown machine: {label}")
        return self._machines[label]

    def has_machine(self, label: str) -> bool:
        return label in self._machines

    def get_machines_by_role(self, role: MachineRole) -> list[MachineConfig]:
        """Machines of one role, in declaration order."""
        return [m for m in self._machines.values() if m.role == role]

    def get_ordered_machines(self) -> list[MachineConfig]:
        """All machines in global processing order.

        Devices, then services, then metals, then routers; declaration order
        within each role.
        """
        ordered = []
        for role in ROLE_ORDER:
            ordered.extend(self.get_machines_by_role(role))
        return ordered


def _build_machine(label: str, role: MachineRole, defaults: dict, settings: dict) -> MachineConfig:
    if not isinstance(settings, dict):
        raise ValueError(f"Settings for machine '{label}' must be a mapping")

    merged = dict(defaults)
    merged.update(settings)

    known = {k: v for k, v in merged.items() if k in _KNOWN_FIELDS}
    properties = {k: v for k, v in merged.items() if k not in _KNOWN_FIELDS}

    files = known.get("files")
    if files is not None and not isinstance(files, dict):
        raise ValueError(f"'files' for machine '{label}' must map paths to contents")

    return MachineConfig(label=label, role=role, properties=properties, **known)


def find_config() -> Path:
    """Find the network description file."""
    env_path = os.environ.get("NETSCRIPT_NETWORK")
    search_paths = [Path(env_path)] if env_path else []
    search_paths += [
        Path.cwd() / "configs" / "network.yaml",
        Path.cwd() / "network.yaml",
        Path.home() / ".config" / "netscript" / "network.yaml",
        Path("/etc/netscript/network.yaml"),
    ]

    for path in search_paths:
        if path.exists():
            return path

    raise FileNotFoundError(
        "Could not find network.yaml. Create one in ./configs/network.yaml"
    )
