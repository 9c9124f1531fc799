"""Filesystem units: directories, file contents and permissions."""
from typing import Optional

from .base import SimpleUnit, quote, to_label


class DirUnit(SimpleUnit):
    """Recursively create a directory. Label gets ``_created`` appended."""

    def __init__(
        self,
        name: str,
        precondition: str,
        directory: str,
        fail_message: Optional[str] = None,
    ):
        super().__init__(
            to_label(name) + "_created",
            precondition,
            config=f"sudo mkdir -p {quote(directory)};",
            audit=f"sudo [ -d {quote(directory)} ] && echo pass;",
            expected="pass",
            fail_message=fail_message or f"Couldn't create {directory}. This is pretty serious!",
        )
        self.directory = directory


class FileUnit(SimpleUnit):
    """Ensure a file has exactly the given contents.

    Contents can be built up after construction with append_line(), the
    fragments are rendered from the current contents.
    """

    def __init__(
        self,
        name: str,
        precondition: str,
        path: str,
        content: str = "",
        fail_message: Optional[str] = None,
    ):
        super().__init__(
            to_label(name),
            precondition,
            config="",
            audit="",
            expected="",
            fail_message=fail_message or f"Couldn't write {path}",
        )
        self.path = path
        self._lines: list[str] = content.split("\n") if content else []

    def append_line(self, line: str) -> "FileUnit":
        self._lines.append(line)
        return self

    def append_blank(self) -> "FileUnit":
        return self.append_line("")

    @property
    def content(self) -> str:
        # Command substitution drops trailing newlines, compare without them
        return "\n".join(self._lines).rstrip("\n")

    @property
    def expected(self) -> str:
        return self.content

    @property
    def config_command(self) -> str:
        return f"printf '%s\\n' {quote(self.content)} | sudo tee {quote(self.path)} > /dev/null;"

    @property
    def audit_command(self) -> str:
        return f"sudo cat {quote(self.path)} 2>/dev/null;"


class FilePermsUnit(SimpleUnit):
    """Ensure a file's octal permissions. Label gets ``_perms`` appended."""

    def __init__(
        self,
        name: str,
        precondition: str,
        path: str,
        perms: str,
        fail_message: Optional[str] = None,
    ):
        super().__init__(
            to_label(name) + "_perms",
            precondition,
            config=f"sudo chmod {perms} {quote(path)};",
            audit=f"sudo stat -c %a {quote(path)} 2>/dev/null;",
            expected=perms,
            fail_message=fail_message or f"Couldn't change the permissions of {path} to {perms}",
        )
        self.path = path
        self.perms = perms
