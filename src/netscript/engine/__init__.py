"""Compilation of unit lists into scripts, and orchestration of runs."""
from .schema import Action, MachinePlan, NetworkPlan, CompiledScript, DryRunResult
from .compiler import ScriptCompiler, section_marker
from .orchestrator import Orchestrator, DRYRUN_TIMESTAMP

__all__ = [
    "Action",
    "MachinePlan",
    "NetworkPlan",
    "CompiledScript",
    "DryRunResult",
    "ScriptCompiler",
    "section_marker",
    "Orchestrator",
    "DRYRUN_TIMESTAMP",
]
