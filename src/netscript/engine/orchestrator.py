"""Orchestrator - turns a network description into per-machine scripts.

Provides a single entry point for:
1. Building every machine's profile tree in global role order
2. Compiling a machine's units into an audit or apply script
3. Writing dry-run scripts locally
4. Running scripts remotely behind the credential gate
"""
import asyncio
import logging
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable, Optional, Union

from ..config.network import NetworkData
from ..errors import CompileError, NetscriptError
from ..profiles.base import flatten
from ..profiles.roles import ProfileBuilder, build_profile
from ..remote.credentials import CredentialResolver
from ..remote.executor import RemoteExecutor, SessionHandle, Sink
from ..remote.schema import ExecMode, SessionOutcome
from ..utils.logging_config import timed, timed_section_sync
from .compiler import ScriptCompiler, parse_action
from .schema import Action, CompiledScript, DryRunResult, MachinePlan, NetworkPlan

logger = logging.getLogger(__name__)

# Dry-run artifacts are named <machine>_<timestamp>.sh
DRYRUN_TIMESTAMP = "%Y%m%d-%H%M%S"

RunResult = Union[SessionOutcome, SessionHandle, DryRunResult]


class Orchestrator:
    """
    Compile and run scripts for the machines of one network.

    Usage:
        orchestrator = Orchestrator(NetworkData.from_file())
        plan = orchestrator.initialize()
        script = orchestrator.compile("r1", "audit", plan)
        outcome = await orchestrator.run("r1", "config", print)
    """

    def __init__(
        self,
        network: NetworkData,
        profile_builder: ProfileBuilder = build_profile,
        credentials: Optional[CredentialResolver] = None,
        executor: Optional[RemoteExecutor] = None,
        compiler: Optional[ScriptCompiler] = None,
        output_dir: Optional[Union[str, Path]] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """
        Initialize the Orchestrator.

        Args:
            network: Network description snapshot
            profile_builder: Builds a machine's profile tree from its settings
                and the plans of the machines processed before it
            credentials: Credential gate for remote runs
            executor: Remote executor for audit/config runs
            compiler: Script compiler
            output_dir: Directory for dry-run scripts (default: working dir)
            clock: Source of dry-run timestamps
        """
        self.network = network
        self.profile_builder = profile_builder
        self.credentials = credentials or CredentialResolver()
        self.executor = executor or RemoteExecutor()
        self.compiler = compiler or ScriptCompiler()
        self.output_dir = Path(output_dir) if output_dir else None
        self.clock = clock

    def initialize(self, network: Optional[NetworkData] = None) -> NetworkPlan:
        """
        Build and flatten every machine's profile, in global order.

        Devices come first, then services, metals and routers. Each builder
        sees the plans already built, so downstream machines can derive
        their units from upstream ones.

        Args:
            network: Snapshot to build from (default: the orchestrator's)

        Returns:
            A fresh NetworkPlan; nothing is kept between calls
        """
        network = network or self.network
        plan = NetworkPlan(network=network.label)

        with timed_section_sync("initialize", machines=len(network.get_labels())):
            for machine in network.get_ordered_machines():
                # Builders get a copy so they cannot alter upstream plans
                node = self.profile_builder(machine, network, dict(plan.machines))
                units = flatten(node)
                plan.machines[machine.label] = MachinePlan(machine=machine, units=units)
                logger.debug(
                    f"Planned {machine.role.value} {machine.label}: {len(units)} units"
                )

        logger.info(f"Initialized network {plan.network}: {len(plan.machines)} machines")
        return plan

    @timed("compile")
    def compile(
        self,
        machine: str,
        action,
        plan: Optional[NetworkPlan] = None,
        quiet: bool = False,
    ) -> CompiledScript:
        """
        Compile one machine's script.

        Args:
            machine: Machine label
            action: audit, config or dryrun
            plan: Plan from initialize() (built fresh when not given)
            quiet: Suppress per-unit pass lines in audit output

        Raises:
            CompileError: Unknown machine, invalid action, or invalid units
        """
        action = parse_action(machine, action)
        plan = plan or self.initialize()

        machine_plan = plan.get(machine)
        if machine_plan is None:
            raise CompileError(machine, f"Unknown machine: {machine}")

        return self.compiler.compile(machine, action, machine_plan.units, quiet=quiet)

    def compile_all(self, action, plan: Optional[NetworkPlan] = None) -> list[CompiledScript]:
        """Compile every machine's script, in global order."""
        plan = plan or self.initialize()
        return [self.compile(label, action, plan) for label in plan.order]

    def dryrun(self, machine: str, plan: Optional[NetworkPlan] = None) -> DryRunResult:
        """
        Write a machine's apply script locally instead of running it.

        Returns:
            DryRunResult with the path of the written
            ``<machine>_<timestamp>.sh`` and the compiled script

        Raises:
            CompileError: If the script cannot be compiled
            OSError: If the file cannot be written
        """
        script = self.compile(machine, Action.DRYRUN, plan)

        output_dir = self.output_dir or Path.cwd()
        output_dir.mkdir(parents=True, exist_ok=True)
        path = output_dir / f"{machine}_{self.clock().strftime(DRYRUN_TIMESTAMP)}.sh"
        path.write_text(script.text, encoding="utf-8")

        logger.info(f"Dry run for {machine} written to {path}")
        return DryRunResult(path=path, script=script)

    async def run(
        self,
        machine: str,
        action,
        sink: Sink,
        mode: ExecMode = ExecMode.BLOCKING,
        plan: Optional[NetworkPlan] = None,
        quiet: bool = False,
    ) -> RunResult:
        """
        Compile a machine's script and execute it.

        Dry runs are written locally and never contact the machine. Audit
        and config runs need a credential; without one the machine is not
        contacted at all.

        Args:
            machine: Machine label
            action: audit, config or dryrun
            sink: Receives the relayed remote output
            mode: BLOCKING waits for the outcome; NON_BLOCKING returns a handle
            plan: Plan from initialize() (built fresh when not given)
            quiet: Suppress per-unit pass lines in audit output

        Returns:
            DryRunResult (dryrun), SessionOutcome (blocking) or SessionHandle

        Raises:
            CompileError: If the script cannot be compiled
            CredentialError: If the machine has no credential
            TransportError: In blocking mode, if the session fails
        """
        action = parse_action(machine, action)
        plan = plan or self.initialize()

        if action is Action.DRYRUN:
            return self.dryrun(machine, plan)

        script = self.compile(machine, action, plan, quiet=quiet)
        config = plan.get(machine).machine
        credential = self.credentials.require(config)

        logger.info(f"Running {action.value} on {machine} ({ExecMode(mode).value})")
        return await self.executor.run(config, credential, script.text, sink, mode)

    async def run_all(
        self,
        action,
        sink_factory: Callable[[str], Sink],
        mode: ExecMode = ExecMode.NON_BLOCKING,
        machines: Optional[Iterable[str]] = None,
        quiet: bool = False,
    ) -> dict[str, Union[RunResult, NetscriptError]]:
        """
        Run an action on many machines, in global order.

        A failing machine never affects the others: compile, credential and
        transport errors are returned in place of that machine's result.
        In non-blocking mode every session is started before any is awaited.

        Args:
            action: audit, config or dryrun
            sink_factory: Returns the output sink for a machine label
            mode: BLOCKING runs one machine after another
            machines: Labels to run (default: every machine)

        Returns:
            Dict of machine label -> DryRunResult, SessionOutcome or error
        """
        mode = ExecMode(mode)
        plan = self.initialize()

        labels = plan.order
        if machines is not None:
            wanted = list(machines)
            unknown = [label for label in wanted if plan.get(label) is None]
            labels = [label for label in labels if label in wanted] + unknown

        results: dict[str, Union[RunResult, NetscriptError]] = {}
        handles: dict[str, SessionHandle] = {}

        for label in labels:
            try:
                result = await self.run(
                    label, action, sink_factory(label), mode, plan, quiet=quiet
                )
            except NetscriptError as e:
                logger.error(f"Run on {label} failed: {e.message}")
                results[label] = e
                continue

            if isinstance(result, SessionHandle):
                handles[label] = result
            else:
                results[label] = result

        if handles:
            outcomes = await asyncio.gather(
                *(handle.wait() for handle in handles.values()),
                return_exceptions=True,
            )
            for label, outcome in zip(handles, outcomes):
                if isinstance(outcome, BaseException) and not isinstance(outcome, NetscriptError):
                    raise outcome
                if isinstance(outcome, NetscriptError):
                    logger.error(f"Session on {label} failed: {outcome.message}")
                results[label] = outcome

        return {label: results[label] for label in labels}
