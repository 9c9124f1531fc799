"""Package and service units for Debian-based hosts."""
from typing import Optional

from .base import SimpleUnit, quote, to_label


class InstalledUnit(SimpleUnit):
    """Ensure a package is installed. Label gets ``_installed`` appended."""

    def __init__(
        self,
        name: str,
        precondition: str,
        package: str,
        fail_message: Optional[str] = None,
    ):
        super().__init__(
            to_label(name) + "_installed",
            precondition,
            config=f"sudo DEBIAN_FRONTEND=noninteractive apt-get install --assume-yes {quote(package)};",
            audit=f"dpkg-query --status {quote(package)} 2>&1 | grep \"Status:\";",
            expected="Status: install ok installed",
            fail_message=fail_message or f"Couldn't install {package}",
        )
        self.package = package


class RunningUnit(SimpleUnit):
    """Ensure a service's process is running. Label gets ``_running`` appended."""

    def __init__(
        self,
        name: str,
        precondition: str,
        service: str,
        process: Optional[str] = None,
        fail_message: Optional[str] = None,
    ):
        process = process or service
        super().__init__(
            to_label(name) + "_running",
            precondition,
            config=f"sudo systemctl restart {quote(service)};",
            audit=f"pgrep -f {quote(process)} > /dev/null && echo pass;",
            expected="pass",
            fail_message=fail_message or f"{service} isn't running",
        )
        self.service = service
        self.process = process


class EnabledServiceUnit(SimpleUnit):
    """Ensure a systemd service starts on boot. Label gets ``_enabled`` appended."""

    def __init__(
        self,
        name: str,
        precondition: str,
        service: str,
        fail_message: Optional[str] = None,
    ):
        super().__init__(
            to_label(name) + "_enabled",
            precondition,
            config=f"sudo systemctl enable {quote(service)};",
            audit=f"sudo systemctl is-enabled {quote(service)} 2>/dev/null;",
            expected="enabled",
            fail_message=fail_message or f"Couldn't enable {service} at boot",
        )
        self.service = service
