"""Per-agent launch contracts for interactive CLI workers."""

from __future__ import annotations

import shlex
from dataclasses import dataclass, field

# Env vars that interfere with nested agent processes (e.g. a worker started
# from inside a Claude Code session refuses to launch when CLAUDECODE=1).
STRIP_ENV_VARS = frozenset({
    "CLAUDECODE", "CLAUDE_CODE_ENTRYPOINT", "CLAUDE_REPL",
    "CLAUDE_CODE_PACKAGE_DIR",
})


@dataclass(slots=True, frozen=True)
class AgentContract:
    kind: str
    binary: str
    autonomy_args: tuple[str, ...] = ()
    model_flag: str = "--model"
    prompt_flag: str | None = None  # None = initial prompt is positional
    exit_command: str = "/exit"
    extra_env: dict[str, str] = field(default_factory=dict)

    def build_argv(self, binary_path: str | None, *, model: str = "", prompt: str = "") -> list[str]:
        argv = [binary_path or self.binary, *self.autonomy_args]
        if model:
            argv.extend([self.model_flag, model])
        if prompt:
            if self.prompt_flag:
                argv.extend([self.prompt_flag, prompt])
            else:
                argv.append(prompt)
        return argv

    def build_shell_command(
        self,
        binary_path: str | None,
        *,
        cwd: str,
        env: dict[str, str],
        model: str = "",
        prompt: str = "",
    ) -> str:
        """Command line typed into a fresh pane to start this agent."""
        unset = " ".join(f"-u {name}" for name in sorted(STRIP_ENV_VARS))
        assignments = " ".join(f"{k}={shlex.quote(v)}" for k, v in sorted({**self.extra_env, **env}.items()))
        argv = " ".join(shlex.quote(a) for a in self.build_argv(binary_path, model=model, prompt=prompt))
        parts = [f"cd {shlex.quote(cwd)} && env", unset, assignments, argv]
        return " ".join(p for p in parts if p)


_CONTRACTS: dict[str, AgentContract] = {
    "claude": AgentContract(
        kind="claude",
        binary="claude",
        autonomy_args=("--dangerously-skip-permissions",),
    ),
    "codex": AgentContract(
        kind="codex",
        binary="codex",
        autonomy_args=("--dangerously-bypass-approvals-and-sandbox",),
        exit_command="/quit",
    ),
    "gemini": AgentContract(
        kind="gemini",
        binary="gemini",
        autonomy_args=("--yolo",),
        prompt_flag="--prompt-interactive",
        exit_command="/quit",
    ),
}


def supported_agent_kinds() -> list[str]:
    return sorted(_CONTRACTS)


def get_contract(agent_kind: str) -> AgentContract:
    contract = _CONTRACTS.get(agent_kind.lower())
    if contract is None:
        raise ValueError(f"Unsupported agent kind: {agent_kind!r}")
    return contract
