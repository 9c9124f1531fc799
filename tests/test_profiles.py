"""Tests for profile trees and the role profiles."""
import pytest

from netscript.config import MachineConfig, MachineRole, NetworkData
from netscript.engine.schema import MachinePlan
from netscript.profiles import (
    CompoundProfile,
    Phase,
    StructuredProfile,
    build_profile,
    declared_profile,
    flatten,
)
from netscript.profiles.roles import CONFIG_FILES, parse_declared_unit
from netscript.units import PROCEED, AggregateUnit, CompoundUnit, SimpleUnit


def simple(label, precondition=PROCEED):
    return SimpleUnit(label, precondition, config="true;", audit="echo pass")


def labels(units):
    return [u.label for u in units]


class TestStructuredProfile:
    """Tests for StructuredProfile emission."""

    def test_own_units_then_children(self):
        """Own units for a phase come before each child's."""
        child = StructuredProfile("child").add(Phase.INSTALL, simple("c1"))
        parent = StructuredProfile("parent", children=[child])
        parent.add(Phase.INSTALL, simple("p1"), simple("p2"))
        assert labels(parent.emit(Phase.INSTALL)) == ["p1", "p2", "c1"]

    def test_phase_filtering(self):
        """Only units of the requested phase are emitted."""
        profile = StructuredProfile("p")
        profile.add(Phase.INSTALL, simple("a"))
        profile.add(Phase.LIVE_FIREWALL, simple("b"))
        assert labels(profile.emit(Phase.INSTALL)) == ["a"]
        assert labels(profile.emit(Phase.LIVE_FIREWALL)) == ["b"]
        assert profile.emit(Phase.LIVE_CONFIG) == []

    def test_units_mapping(self):
        """Units can be given up front, keyed by phase or phase value."""
        profile = StructuredProfile("p", units={"install": [simple("a")]})
        assert labels(profile.emit(Phase.INSTALL)) == ["a"]


class TestCompoundProfile:
    """Tests for CompoundProfile bracketing."""

    def test_brackets_in_its_phase(self):
        """In its phase the children become one CompoundUnit."""
        files = StructuredProfile("files").add(Phase.PERSISTENT_CONFIG, simple("a"), simple("b"))
        compound = CompoundProfile("web", PROCEED, [files])

        emitted = compound.emit(Phase.PERSISTENT_CONFIG)
        assert len(emitted) == 1
        assert isinstance(emitted[0], CompoundUnit)
        assert emitted[0].label == "web"
        assert labels(emitted[0].children) == ["a", "b"]

    def test_passes_through_other_phases(self):
        """Outside its phase the children's units are not bracketed."""
        child = StructuredProfile("c").add(Phase.INSTALL, simple("pkg"))
        compound = CompoundProfile("web", PROCEED, [child])
        assert labels(compound.emit(Phase.INSTALL)) == ["pkg"]

    def test_custom_phase(self):
        """The bracketing phase is configurable."""
        child = StructuredProfile("c").add(Phase.LIVE_FIREWALL, simple("rule"))
        compound = CompoundProfile("fw", PROCEED, [child], phase=Phase.LIVE_FIREWALL)
        emitted = compound.emit(Phase.LIVE_FIREWALL)
        assert isinstance(emitted[0], CompoundUnit)

    def test_flatten_expands_compound(self):
        """Flattening yields marker, children and aggregator."""
        child = StructuredProfile("c").add(Phase.PERSISTENT_CONFIG, simple("a"), simple("b"))
        units = flatten(CompoundProfile("web", "net_up", [child]))
        assert labels(units) == ["web_compound", "a", "b", "web"]
        assert units[0].precondition == "net_up"
        assert isinstance(units[-1], AggregateUnit)

    def test_reload_payload(self):
        """The payload reaches the aggregator; children mark the compound changed."""
        child = StructuredProfile("c").add(Phase.PERSISTENT_CONFIG, simple("a"))
        units = flatten(CompoundProfile("web", PROCEED, [child], config="\tsystemctl reload nginx;"))
        assert units[-1].config == "\tsystemctl reload nginx;"
        assert units[1].watchers == ["web"]
        assert "web_unchanged=0;" in units[1].apply_fragment()


class TestFlatten:
    """Tests for flatten()."""

    def test_phase_order(self):
        """Phases flatten in lifecycle order regardless of insertion order."""
        profile = StructuredProfile("p")
        profile.add(Phase.LIVE_FIREWALL, simple("lf"))
        profile.add(Phase.LIVE_CONFIG, simple("lc"))
        profile.add(Phase.INSTALL, simple("i"))
        profile.add(Phase.PERSISTENT_FIREWALL, simple("pf"))
        profile.add(Phase.PERSISTENT_CONFIG, simple("pc"))
        assert labels(flatten(profile)) == ["i", "pc", "lc", "pf", "lf"]


class TestDeclaredProfile:
    """Tests for profiles built from declared content."""

    def test_packages_directories_files(self):
        """Declared content becomes units in phase order."""
        machine = MachineConfig(
            label="web",
            role=MachineRole.SERVICE,
            packages=["nginx"],
            directories=["/srv/www"],
            files={"/etc/nginx/conf.d/site.conf": "server {}"},
            services=["nginx"],
        )
        units = flatten(declared_profile(machine))
        assert labels(units) == [
            "nginx_installed",
            "_srv_www_created",
            "config_files_compound",
            "_etc_nginx_conf_d_site_conf",
            CONFIG_FILES,
            "nginx_running",
        ]
        # Services wait for their configuration files
        assert units[-1].precondition == CONFIG_FILES
        # and are restarted when those files change
        assert "sudo systemctl try-restart nginx;" in units[4].apply_fragment()

    def test_service_waits_for_package(self):
        """Without files, a service waits for its own package."""
        machine = MachineConfig(
            label="web", role=MachineRole.SERVICE, packages=["nginx"], services=["nginx"],
        )
        units = flatten(declared_profile(machine))
        assert units[-1].label == "nginx_running"
        assert units[-1].precondition == "nginx_installed"

    def test_unrelated_service_proceeds(self):
        """A service with no matching package is unguarded."""
        machine = MachineConfig(label="web", role=MachineRole.SERVICE, services=["cron"])
        units = flatten(declared_profile(machine))
        assert units[0].precondition == PROCEED

    def test_declared_units(self):
        """Raw units land in their phase."""
        machine = MachineConfig(
            label="d1",
            role=MachineRole.DEVICE,
            packages=["curl"],
            units=[
                {"label": "late", "audit": "echo pass", "phase": "live-firewall"},
                {"label": "early", "audit": "echo pass", "precondition": "curl_installed"},
            ],
        )
        units = flatten(declared_profile(machine))
        assert labels(units) == ["curl_installed", "early", "late"]
        assert units[1].precondition == "curl_installed"


class TestParseDeclaredUnit:
    """Tests for parsing raw unit declarations."""

    def test_full_declaration(self):
        """Every key maps onto the SimpleUnit."""
        phase, unit = parse_declared_unit("d1", {
            "label": "ntp_conf",
            "precondition": "ntp_installed",
            "config": "sudo cp /tmp/ntp.conf /etc/ntp.conf;",
            "audit": "md5sum /etc/ntp.conf | cut -d' ' -f1",
            "expected": "abc123",
            "message": "ntp.conf is stale",
            "phase": "live-config",
        })
        assert phase == Phase.LIVE_CONFIG
        assert unit.label == "ntp_conf"
        assert unit.precondition == "ntp_installed"
        assert unit.expected == "abc123"
        assert unit.fail_message == "ntp.conf is stale"

    def test_defaults(self):
        """Phase defaults to persistent-config, precondition to proceed."""
        phase, unit = parse_declared_unit("d1", {"label": "x"})
        assert phase == Phase.PERSISTENT_CONFIG
        assert unit.precondition == PROCEED

    def test_missing_label(self):
        """A declaration without a label is rejected."""
        with pytest.raises(ValueError, match="needs at least a label"):
            parse_declared_unit("d1", {"audit": "true"})

    def test_invalid_phase(self):
        """Unknown phases are rejected."""
        with pytest.raises(ValueError, match="Invalid phase"):
            parse_declared_unit("d1", {"label": "x", "phase": "sometime"})


class TestRoleProfiles:
    """Tests for the per-role default profiles."""

    @pytest.fixture
    def network(self):
        return NetworkData.from_dict({
            "network": "lab",
            "services": {
                "web": {"host": "10.0.1.2", "ports": [80, 443]},
                "db": {"ports": [5432]},
            },
            "metals": {"hv1": {"host": "10.0.0.10"}},
            "routers": {"r1": {"host": "10.0.0.1", "lan_iface": "eth1"}},
        })

    def upstream(self, network, *labels_):
        return {label: MachinePlan(network.get_machine(label)) for label in labels_}

    def test_metal_installs_bridge_utils(self, network):
        """Metals get bridge tooling first."""
        units = flatten(build_profile(network.get_machine("hv1"), network, {}))
        assert units[0].label == "bridge_utils_installed"

    def test_router_dhcp(self, network):
        """Router firewall rules for DHCP are guarded on dhcp_installed."""
        units = flatten(build_profile(network.get_machine("r1"), network, {}))
        by_label = {u.label: u for u in units}

        assert "dhcp_installed" in by_label
        assert by_label["dhcp_running"].precondition == "dhcp_installed"
        assert by_label["dhcp_ipt_in"].precondition == "dhcp_installed"
        assert by_label["dhcp_ipt_out"].precondition == "dhcp_installed"
        assert "-i eth1" in by_label["dhcp_ipt_in"].rule

        order = labels(units)
        assert order.index("dhcp_installed") < order.index("dhcp_ipt_in")

    def test_router_forwards_upstream_services(self, network):
        """Routers open forwarding for upstream services with a host."""
        upstream = self.upstream(network, "web", "db", "hv1")
        units = flatten(build_profile(network.get_machine("r1"), network, upstream))
        order = labels(units)

        assert "web_fwd_80" in order
        assert "web_fwd_443" in order
        # db has no host, hv1 is not a service
        assert not any(label.startswith("db_fwd") for label in order)
        assert not any(label.startswith("hv1_fwd") for label in order)

    def test_router_without_upstream(self, network):
        """Without upstream plans only NAT is set up."""
        units = flatten(build_profile(network.get_machine("r1"), network, {}))
        order = labels(units)
        assert "router_nat" in order
        assert not any("_fwd_" in label for label in order)

    def test_router_sysctl(self, network):
        """Routers enable IP forwarding persistently."""
        units = flatten(build_profile(network.get_machine("r1"), network, {}))
        sysctl = next(u for u in units if u.label == "sysctl_conf")
        assert "net.ipv4.ip_forward=1" in sysctl.content

    def test_role_profile_labels_unique(self, network):
        """Role profiles never define a label twice."""
        upstream = self.upstream(network, "web", "db", "hv1")
        for label in network.get_labels():
            order = labels(flatten(build_profile(network.get_machine(label), network, upstream)))
            assert len(order) == len(set(order)), label

    def test_declared_role_defaults_not_repeated(self):
        """Declaring what the role already provides does not repeat its units."""
        network = NetworkData.from_dict({
            "metals": {"hv1": {"packages": ["bridge-utils", "qemu-kvm"]}},
            "routers": {"r1": {
                "packages": ["traceroute", "isc-dhcp-server"],
                "services": ["dhcp"],
            }},
        })
        for label in network.get_labels():
            order = labels(flatten(build_profile(network.get_machine(label), network, {})))
            assert len(order) == len(set(order)), label

        metal = labels(flatten(build_profile(network.get_machine("hv1"), network, {})))
        assert metal.count("bridge_utils_installed") == 1
        assert "qemu_kvm_installed" in metal

        router = labels(flatten(build_profile(network.get_machine("r1"), network, {})))
        assert router.count("traceroute_installed") == 1
        assert router.count("dhcp_running") == 1
        assert "isc_dhcp_server_installed" in router
