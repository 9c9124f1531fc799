"""Script compiler: one linear shell script per machine and action.

The compiled script is a pure function of the unit list and the action.
Units are emitted strictly in the order given. A unit whose precondition is
not ``proceed`` is wrapped in a guard on the precondition's success
variable, which must have been set by an earlier section of the same
script.
"""
import logging
from typing import Sequence

from ..errors import CompileError
from ..units.base import PROCEED, Unit, is_valid_label, quote
from .schema import Action, CompiledScript

logger = logging.getLogger(__name__)


def section_marker(label: str) -> str:
    """Comment line opening a unit's section."""
    return f"#============ {label} ============="


def parse_action(machine: str, action) -> Action:
    try:
        return Action(action)
    except ValueError:
        valid = ", ".join(a.value for a in Action)
        raise CompileError(machine, f"Invalid action: {action}. Must be one of: {valid}")


class ScriptCompiler:
    """Linearize a machine's units into one audit or apply script."""

    def compile(
        self,
        machine: str,
        action,
        units: Sequence[Unit],
        quiet: bool = False,
    ) -> CompiledScript:
        """
        Compile units into a script.

        Args:
            machine: Machine label, named in the banners
            action: audit, config or dryrun
            units: Flattened units, in execution order
            quiet: Suppress per-unit pass lines in audit output

        Returns:
            CompiledScript

        Raises:
            CompileError: On invalid action, invalid or duplicate labels,
                or unresolved/forward-referenced preconditions
        """
        action = parse_action(machine, action)
        self.check_dependencies(machine, units)

        script = CompiledScript(
            machine=machine,
            action=action,
            header=self.header(machine, action),
            footer=self.footer(machine, action),
        )
        for unit in units:
            script.sections.append((unit.label, self.section(unit, action, quiet)))

        logger.debug(f"Compiled {action.value} for {machine}: {len(script.sections)} sections")
        return script

    def check_dependencies(self, machine: str, units: Sequence[Unit]) -> None:
        """Every precondition must name a label defined earlier in the script."""
        all_labels = {unit.label for unit in units}
        defined = {PROCEED}

        for unit in units:
            if not is_valid_label(unit.label) or unit.label == PROCEED:
                raise CompileError(machine, f"Invalid unit label: {unit.label!r}")
            if unit.label in defined:
                raise CompileError(machine, f"Duplicate unit label: {unit.label}")

            if unit.precondition not in defined:
                if unit.precondition in all_labels:
                    raise CompileError(
                        machine,
                        f"Unit {unit.label} depends on {unit.precondition}, "
                        f"which is only defined after it",
                    )
                raise CompileError(
                    machine,
                    f"Unit {unit.label} depends on unknown unit {unit.precondition}",
                )

            defined.add(unit.label)

    def section(self, unit: Unit, action: Action, quiet: bool = False) -> str:
        """One unit's delimited, guarded section."""
        if action.applies:
            fragment = unit.apply_fragment()
        else:
            fragment = unit.audit_fragment(quiet)
        fragment = fragment.strip("\n") or ":"

        lines = [section_marker(unit.label)]
        if unit.precondition == PROCEED:
            lines.append(fragment)
        else:
            skipped = f"skip: {unit.label}: precondition {unit.precondition} not met"
            lines += [
                f"{unit.label}=0;",
                f'if [ "${unit.precondition}" = "1" ]; then',
                fragment,
                "else",
                f"\techo {quote(skipped)};",
                "fi",
            ]
        return "\n".join(lines) + "\n"

    def header(self, machine: str, action: Action) -> str:
        return "\n".join([
            "#!/bin/bash",
            "",
            "hostname=$(hostname);",
            "proceed=1;",
            "",
            f'echo "Started {action.value} $hostname with config label: {machine}"',
            "pass=0; fail=0; fail_string=;",
            "",
        ])

    def footer(self, machine: str, action: Action) -> str:
        return "\n".join([
            'echo "pass=$pass fail=$fail failed:$fail_string"',
            "",
            f'echo "Finished {action.value} $hostname with config label: {machine}"',
            "",
        ])
