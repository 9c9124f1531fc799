"""iptables rule units."""
from typing import Optional

from .base import SimpleUnit, to_label


class FirewallRuleUnit(SimpleUnit):
    """Ensure an iptables rule is present in a chain.

    The rule text is passed to iptables verbatim, e.g.
    ``"-i lan0 -p udp --dport 67 -j ACCEPT"``.
    """

    def __init__(
        self,
        name: str,
        precondition: str,
        chain: str,
        rule: str,
        table: str = "filter",
        fail_message: Optional[str] = None,
    ):
        super().__init__(
            to_label(name),
            precondition,
            config=f"sudo iptables -t {table} -A {chain} {rule};",
            audit=f"sudo iptables -t {table} -C {chain} {rule} 2>/dev/null && echo pass;",
            expected="pass",
            fail_message=fail_message or f"Couldn't add '{rule}' to {table}/{chain}",
        )
        self.table = table
        self.chain = chain
        self.rule = rule


def filter_input(name: str, precondition: str, rule: str) -> FirewallRuleUnit:
    return FirewallRuleUnit(name, precondition, "INPUT", rule)


def filter_output(name: str, precondition: str, rule: str) -> FirewallRuleUnit:
    return FirewallRuleUnit(name, precondition, "OUTPUT", rule)


def filter_forward(name: str, precondition: str, rule: str) -> FirewallRuleUnit:
    return FirewallRuleUnit(name, precondition, "FORWARD", rule)


def nat_postrouting(name: str, precondition: str, rule: str) -> FirewallRuleUnit:
    return FirewallRuleUnit(name, precondition, "POSTROUTING", rule, table="nat")
