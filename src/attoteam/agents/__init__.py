"""Agent CLI contracts and binary resolution."""

from attoteam.agents.contracts import AgentContract, get_contract, supported_agent_kinds
from attoteam.agents.resolver import AgentResolver, CliInfo, detect_all_clis, detect_cli

__all__ = [
    "AgentContract",
    "AgentResolver",
    "CliInfo",
    "detect_all_clis",
    "detect_cli",
    "get_contract",
    "supported_agent_kinds",
]
