"""Network description loading."""
from .network import MachineConfig, MachineRole, NetworkData, ROLE_ORDER, find_config

__all__ = ["MachineConfig", "MachineRole", "NetworkData", "ROLE_ORDER", "find_config"]
