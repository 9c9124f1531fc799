"""Default profile trees for each machine role.

Every machine gets a structured profile built from what it declares in the
network description (packages, directories, files, services, raw units).
Roles then add their own pieces on top:

- devices: declared units only
- services: nothing extra
- metals: bridge tooling for the services they host
- routers: DHCP server, NAT and forwarding rules for upstream services

Builders run in global role order and see the plans of every machine built
before them, so a router can open the ports its services need.
"""
import logging
from typing import TYPE_CHECKING, AbstractSet, Callable, Mapping

from ..config.network import MachineConfig, MachineRole, NetworkData
from ..units.base import PROCEED, SimpleUnit, UnitLike, quote, to_label
from ..units.firewall import filter_forward, filter_input, filter_output, nat_postrouting
from ..units.fs import DirUnit, FileUnit
from ..units.pkg import InstalledUnit, RunningUnit
from .base import CompoundProfile, Phase, ProfileNode, StructuredProfile, flatten

if TYPE_CHECKING:
    from ..engine.schema import MachinePlan

logger = logging.getLogger(__name__)

ProfileBuilder = Callable[[MachineConfig, NetworkData, Mapping[str, "MachinePlan"]], ProfileNode]

# Label of the compound wrapping a machine's declared files
CONFIG_FILES = "config_files"


def parse_declared_unit(machine: str, entry: dict) -> tuple[Phase, UnitLike]:
    """Turn a raw ``units:`` entry from the description into a SimpleUnit."""
    if not isinstance(entry, dict) or "label" not in entry:
        raise ValueError(f"Unit declared on {machine} needs at least a label: {entry!r}")

    try:
        phase = Phase(entry.get("phase", Phase.PERSISTENT_CONFIG.value))
    except ValueError:
        raise ValueError(f"Invalid phase for unit {entry['label']} on {machine}: {entry.get('phase')}")

    unit = SimpleUnit(
        label=str(entry["label"]),
        precondition=entry.get("precondition", PROCEED),
        config=entry.get("config", ""),
        audit=entry.get("audit", ""),
        expected=str(entry.get("expected", "pass")),
        fail_message=entry.get("message"),
        pass_on_match=entry.get("pass_on_match", True),
    )
    return phase, unit


def declared_profile(
    machine: MachineConfig,
    reserved: AbstractSet[str] = frozenset(),
) -> StructuredProfile:
    """Profile for everything the machine itself declares.

    Packages, directories and services whose unit label is in ``reserved``
    are already provided by the role profile and are left out.
    """
    profile = StructuredProfile(machine.label)

    def provided(unit: UnitLike) -> bool:
        if unit.label in reserved:
            logger.debug(f"{machine.label}: {unit.label} already provided by its role")
            return True
        return False

    for package in machine.packages:
        unit = InstalledUnit(package, PROCEED, package)
        if not provided(unit):
            profile.add(Phase.INSTALL, unit)

    for directory in machine.directories:
        unit = DirUnit(directory, PROCEED, directory)
        if not provided(unit):
            profile.add(Phase.PERSISTENT_CONFIG, unit)

    if machine.files:
        files = StructuredProfile("files")
        for path, content in machine.files.items():
            files.add(Phase.PERSISTENT_CONFIG, FileUnit(path, PROCEED, path, str(content)))
        # Running services pick up rewritten files
        reload = "\n".join(
            f"\tsudo systemctl try-restart {quote(service)};" for service in machine.services
        )
        profile.add_child(CompoundProfile(CONFIG_FILES, PROCEED, [files], config=reload))

    services = StructuredProfile("services")
    for service in machine.services:
        if machine.files:
            precondition = CONFIG_FILES
        elif service in machine.packages:
            precondition = to_label(service) + "_installed"
        else:
            precondition = PROCEED
        unit = RunningUnit(service, precondition, service)
        if not provided(unit):
            services.add(Phase.LIVE_CONFIG, unit)
    profile.add_child(services)

    declared = StructuredProfile("declared")
    for entry in machine.units:
        phase, unit = parse_declared_unit(machine.label, entry)
        declared.add(phase, unit)
    profile.add_child(declared)

    return profile


def provided_labels(node: ProfileNode) -> set[str]:
    """Labels a role profile defines before the machine's own declarations."""
    return {unit.label for unit in flatten(node)}


def build_device(machine, network, upstream) -> ProfileNode:
    return declared_profile(machine)


def build_service(machine, network, upstream) -> ProfileNode:
    return declared_profile(machine)


def build_metal(machine, network, upstream) -> ProfileNode:
    profile = StructuredProfile(machine.label)
    profile.add(Phase.INSTALL, InstalledUnit("bridge_utils", PROCEED, "bridge-utils"))
    profile.add_child(declared_profile(machine, provided_labels(profile)))
    return profile


def dhcp_profile(machine: MachineConfig) -> StructuredProfile:
    """ISC DHCP server listening on the router's LAN interface."""
    lan = machine.properties.get("lan_iface", "lan0")
    dhcp = StructuredProfile("dhcp")

    dhcp.add(Phase.INSTALL, InstalledUnit("dhcp", PROCEED, "isc-dhcp-server"))
    dhcp.add(Phase.LIVE_CONFIG, RunningUnit("dhcp", "dhcp_installed", "isc-dhcp-server", "dhcpd"))
    dhcp.add(
        Phase.PERSISTENT_FIREWALL,
        filter_input("dhcp_ipt_in", "dhcp_installed", f"-i {lan} -p udp --dport 67 -j ACCEPT"),
        filter_output("dhcp_ipt_out", "dhcp_installed", f"-o {lan} -p udp --sport 67 -j ACCEPT"),
    )
    return dhcp


def build_router(machine, network, upstream) -> ProfileNode:
    profile = StructuredProfile(machine.label)

    profile.add(Phase.INSTALL, InstalledUnit("traceroute", PROCEED, "traceroute"))

    sysctl = FileUnit("sysctl_conf", PROCEED, "/etc/sysctl.conf")
    sysctl.append_line("net.ipv4.ip_forward=1")
    sysctl.append_line("net.ipv4.conf.all.arp_filter=1")
    sysctl.append_line("net.ipv4.conf.default.arp_filter=1")
    sysctl.append_line("net.ipv4.conf.all.rp_filter=1")
    sysctl.append_line("net.ipv4.conf.default.rp_filter=1")
    profile.add(Phase.PERSISTENT_CONFIG, sysctl)

    profile.add_child(dhcp_profile(machine))

    forwarding = StructuredProfile("forwarding")
    forwarding.add(Phase.PERSISTENT_FIREWALL, nat_postrouting("router_nat", PROCEED, "-j MASQUERADE"))
    for label, plan in upstream.items():
        fronted = plan.machine
        if fronted.role != MachineRole.SERVICE or not fronted.host:
            continue
        for port in fronted.ports:
            forwarding.add(
                Phase.PERSISTENT_FIREWALL,
                filter_forward(
                    f"{label}_fwd_{port}",
                    PROCEED,
                    f"-d {fronted.host} -p tcp --dport {port} -j ACCEPT",
                ),
            )
    profile.add_child(forwarding)

    profile.add_child(declared_profile(machine, provided_labels(profile)))
    return profile


# Role registry
ROLE_PROFILES: dict[MachineRole, ProfileBuilder] = {
    MachineRole.DEVICE: build_device,
    MachineRole.SERVICE: build_service,
    MachineRole.METAL: build_metal,
    MachineRole.ROUTER: build_router,
}


def build_profile(
    machine: MachineConfig,
    network: NetworkData,
    upstream: Mapping[str, "MachinePlan"],
) -> ProfileNode:
    """Factory building the default profile tree for a machine's role."""
    builder = ROLE_PROFILES.get(machine.role)
    if builder is None:
        raise ValueError(f"No profile for role: {machine.role}")
    logger.debug(f"Building {machine.role.value} profile for {machine.label}")
    return builder(machine, network, upstream)
