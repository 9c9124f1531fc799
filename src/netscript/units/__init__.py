"""Unit model and the stock unit kinds."""
from .base import (
    PROCEED,
    Unit,
    SimpleUnit,
    MarkerUnit,
    AggregateUnit,
    CompoundUnit,
    UnitLike,
    expand,
    is_valid_label,
    to_label,
)
from .fs import DirUnit, FileUnit, FilePermsUnit
from .pkg import InstalledUnit, RunningUnit, EnabledServiceUnit
from .firewall import (
    FirewallRuleUnit,
    filter_input,
    filter_output,
    filter_forward,
    nat_postrouting,
)

__all__ = [
    "PROCEED",
    "Unit",
    "SimpleUnit",
    "MarkerUnit",
    "AggregateUnit",
    "CompoundUnit",
    "UnitLike",
    "expand",
    "is_valid_label",
    "to_label",
    "DirUnit",
    "FileUnit",
    "FilePermsUnit",
    "InstalledUnit",
    "RunningUnit",
    "EnabledServiceUnit",
    "FirewallRuleUnit",
    "filter_input",
    "filter_output",
    "filter_forward",
    "nat_postrouting",
]
