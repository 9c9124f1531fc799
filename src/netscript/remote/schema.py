"""Schema definitions for remote sessions."""
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class ExecMode(str, Enum):
    """How the caller waits for a remote session."""
    BLOCKING = "blocking"
    NON_BLOCKING = "non-blocking"


class SessionStatus(str, Enum):
    """Lifecycle of a remote session."""
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


# Footer line echoed by every compiled script
FOOTER_PATTERN = re.compile(r"pass=(\d+) fail=(\d+) failed:(.*)")


@dataclass
class SessionOutcome:
    """Terminal status of one remote session."""
    machine: str
    exit_code: int
    passed: Optional[int] = None
    failed: Optional[int] = None
    failed_units: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        """The script ran to completion on the remote side."""
        return self.exit_code == 0 and self.passed is not None

    @property
    def clean(self) -> bool:
        """Completed and every attempted unit passed."""
        return self.success and self.failed == 0

    @classmethod
    def from_output(cls, machine: str, exit_code: int, output: str) -> "SessionOutcome":
        """Build an outcome from the relayed output, reading the last footer line."""
        outcome = cls(machine=machine, exit_code=exit_code)
        matches = FOOTER_PATTERN.findall(output)
        if matches:
            passed, failed, failed_units = matches[-1]
            outcome.passed = int(passed)
            outcome.failed = int(failed)
            outcome.failed_units = failed_units.split()
        return outcome

    def to_dict(self) -> dict:
        return {
            "machine": self.machine,
            "exit_code": self.exit_code,
            "success": self.success,
            "passed": self.passed,
            "failed": self.failed,
            "failed_units": self.failed_units,
        }
