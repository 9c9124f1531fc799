"""Idempotent check/apply units and their compound aggregation.

Every unit owns one shell variable named after its label. After the unit's
section has run the variable holds ``1`` (the check passed) or ``0``. Later
units name that label as their precondition to depend on it.

A unit fragment never aborts the script: failures are counted in ``fail``,
appended to ``fail_string`` and reported, and execution moves on.
"""
import re
import shlex
from abc import ABC, abstractmethod
from typing import Iterable, Optional, Sequence, Union

# Precondition meaning "no dependency": the script header sets $proceed=1
PROCEED = "proceed"

LABEL_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def to_label(name: str) -> str:
    """Turn an arbitrary name into a usable shell variable name.

    Examples:
        "example.org" -> "example_org"
        "web-01"      -> "web_01"
        "1st"         -> "_1st"
    """
    label = re.sub(r"[^A-Za-z0-9_]", "_", name)
    if not label or label[0].isdigit():
        label = "_" + label
    return label


def is_valid_label(label: str) -> bool:
    return bool(LABEL_PATTERN.match(label))


def quote(text: str) -> str:
    """Quote text for literal use in the generated shell."""
    return shlex.quote(text)


def verdict(label: str, condition: str, message: str, quiet: bool = False) -> str:
    """Shell block recording a unit's pass/fail outcome.

    Sets the unit variable and updates the shared pass/fail counters.
    """
    lines = [
        f"if {condition}; then",
        f"\t{label}=1;",
        "\tpass=$((pass + 1));",
    ]
    if not quiet:
        lines.append(f"\techo {quote('pass: ' + label)};")
    lines += [
        "else",
        f"\t{label}=0;",
        "\tfail=$((fail + 1));",
        f'\tfail_string="$fail_string {label}";',
        f"\techo {quote(f'fail: {label}: {message}')};",
        "fi",
    ]
    return "\n".join(lines)


class Unit(ABC):
    """A single idempotent configuration step.

    Attributes:
        label: Shell variable holding the unit's success signal
        precondition: Label of an earlier unit, or PROCEED
        fail_message: Human explanation printed when the unit fails
        watchers: Compounds to mark as changed when the unit applies its config
    """

    def __init__(
        self,
        label: str,
        precondition: str = PROCEED,
        expected: str = "pass",
        fail_message: Optional[str] = None,
    ):
        self.label = label
        self.precondition = precondition or PROCEED
        self._expected = expected
        self.fail_message = fail_message or f"{label} failed"
        self.watchers: list[str] = []

    @property
    def expected(self) -> str:
        """Output of the audit command that means success."""
        return self._expected

    @abstractmethod
    def audit_fragment(self, quiet: bool = False) -> str:
        """Shell text checking the unit without changing anything."""
        pass

    @abstractmethod
    def apply_fragment(self) -> str:
        """Shell text bringing the host into the unit's state."""
        pass

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.label!r}, precondition={self.precondition!r})"


class SimpleUnit(Unit):
    """Check/apply pair driven by one audit command.

    The unit passes when the audit command's output equals ``expected``
    (or differs from it, with ``pass_on_match=False``). Applying runs the
    config command only when the audit does not already pass, then audits
    again to record the result.
    """

    def __init__(
        self,
        label: str,
        precondition: str,
        config: str,
        audit: str,
        expected: str = "pass",
        fail_message: Optional[str] = None,
        pass_on_match: bool = True,
    ):
        super().__init__(label, precondition, expected, fail_message)
        self._config = config
        self._audit = audit
        self.pass_on_match = pass_on_match

    @property
    def config_command(self) -> str:
        return self._config

    @property
    def audit_command(self) -> str:
        return self._audit

    def _test(self) -> str:
        op = "=" if self.pass_on_match else "!="
        return f'[ "${self.label}" {op} {quote(self.expected)} ]'

    def audit_fragment(self, quiet: bool = False) -> str:
        return "\n".join([
            f"{self.label}=$({self.audit_command});",
            verdict(self.label, self._test(), self.fail_message, quiet),
        ])

    def apply_fragment(self) -> str:
        return "\n".join([
            f"{self.label}=$({self.audit_command});",
            f"if ! {self._test()}; then",
            self.config_command,
            *(f"\t{watcher}_unchanged=0;" for watcher in self.watchers),
            f"\t{self.label}=$({self.audit_command});",
            "fi",
            verdict(self.label, self._test(), self.fail_message),
        ])


class MarkerUnit(Unit):
    """Opening marker of a compound: unconditionally raises its own signal.

    With ``tracks`` set it also resets ``<tracks>_unchanged`` for the
    compound's reload payload.
    """

    def __init__(self, label: str, precondition: str = PROCEED, tracks: Optional[str] = None):
        super().__init__(label, precondition, expected="1")
        self.tracks = tracks

    def _fragment(self) -> str:
        if self.tracks:
            return f"{self.tracks}_unchanged=1;\n{self.label}=1;"
        return f"{self.label}=1;"

    def audit_fragment(self, quiet: bool = False) -> str:
        return self._fragment()

    def apply_fragment(self) -> str:
        return self._fragment()


class AggregateUnit(Unit):
    """Closing unit of a compound: true iff every aggregated signal is true.

    Does not touch the pass/fail counters; the aggregated units already did.
    When applying, ``config`` runs first if any watched unit changed the host.
    """

    def __init__(
        self,
        label: str,
        precondition: str,
        signals: Sequence[str],
        fail_message: Optional[str] = None,
        config: str = "",
    ):
        super().__init__(label, precondition, expected="1", fail_message=fail_message)
        self.signals = list(signals)
        self.config = config

    def _fragment(self, quiet: bool) -> str:
        condition = " && ".join(f'[ "${s}" = "1" ]' for s in self.signals) or "true"
        lines = [f"if {condition}; then", f"\t{self.label}=1;"]
        if not quiet:
            lines.append(f"\techo {quote('pass: ' + self.label)};")
        lines += [
            "else",
            f"\t{self.label}=0;",
            f"\techo {quote(f'fail: {self.label}: {self.fail_message}')};",
            "fi",
        ]
        return "\n".join(lines)

    def audit_fragment(self, quiet: bool = False) -> str:
        return self._fragment(quiet)

    def apply_fragment(self) -> str:
        if not self.config:
            return self._fragment(False)
        return "\n".join([
            f'if [ "${self.label}_unchanged" = "0" ]; then',
            self.config,
            f"\t{self.label}_unchanged=1;",
            "fi",
            self._fragment(False),
        ])


class CompoundUnit:
    """Several units behind one pass/fail signal.

    Expands to an opening MarkerUnit (``<label>_compound``), the children in
    order, and a closing AggregateUnit (``<label>``) that is true iff the
    marker and every child signal are true. Children keep their own
    preconditions, so one failing child never stops its siblings.

    ``config`` is an optional reload payload, such as restarting a daemon
    whose files the children rewrite. The closing unit runs it in config
    runs when at least one child had to apply its own config.
    """

    def __init__(
        self,
        label: str,
        precondition: str = PROCEED,
        children: Iterable["UnitLike"] = (),
        fail_message: Optional[str] = None,
        config: str = "",
    ):
        self.label = label
        self.precondition = precondition or PROCEED
        self.children: list[UnitLike] = list(children)
        self.fail_message = fail_message or f"one or more steps of {label} failed"
        self.config = config

    @property
    def marker_label(self) -> str:
        return f"{self.label}_compound"

    @property
    def signals(self) -> list[str]:
        """Labels the closing aggregator checks."""
        return [self.marker_label] + [child.label for child in self.children]

    def add(self, *children: "UnitLike") -> "CompoundUnit":
        self.children.extend(children)
        return self

    def expand(self) -> list[Unit]:
        tracks = self.label if self.config else None
        units: list[Unit] = [MarkerUnit(self.marker_label, self.precondition, tracks)]
        for child in self.children:
            for unit in expand(child):
                if tracks and tracks not in unit.watchers:
                    unit.watchers.append(tracks)
                units.append(unit)
        units.append(AggregateUnit(
            self.label, self.precondition, self.signals, self.fail_message, self.config,
        ))
        return units

    def __repr__(self) -> str:
        return f"CompoundUnit({self.label!r}, children={len(self.children)})"


UnitLike = Union[Unit, CompoundUnit]


def expand(item: UnitLike) -> list[Unit]:
    """Expand a unit or compound into the linear units it compiles to."""
    if isinstance(item, CompoundUnit):
        return item.expand()
    return [item]
