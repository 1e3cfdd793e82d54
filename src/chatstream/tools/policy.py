"""Tool risk classification.

Tools are matched against glob rules (first match wins). Command tools
such as ``bash`` are classified by the command they would run instead.
"""

from __future__ import annotations

import fnmatch
import hashlib
import json
import re
import shlex
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from chatstream.logging import get_logger
from chatstream.messages.model import RiskLevel

if TYPE_CHECKING:
    from chatstream.config.schema import ToolsConfig

log = get_logger("policy")

FORBIDDEN_COMMANDS = frozenset(
    {
        "sudo", "su", "shutdown", "reboot", "halt", "poweroff", "init",
        "systemctl", "service", "passwd", "useradd", "userdel", "mkfs",
        "fdisk", "mount", "umount", "chroot", "iptables", "firewall-cmd",
        "ufw", "crontab", "at", "eval", "exec",
    }
)

READ_ONLY_COMMANDS = frozenset(
    {
        "cat", "ls", "pwd", "echo", "grep", "rg", "find", "head", "tail", "wc",
        "which", "whoami", "date", "env", "printenv", "stat", "file", "tree",
        "du", "df", "ps", "uname", "sort", "uniq", "diff",
        "git status", "git log", "git diff", "git branch", "git show",
        "npm list", "npm ls", "pip list", "pip show", "python --version",
        "node --version",
    }
)

DANGEROUS_COMMANDS = frozenset(
    {
        "rm", "mv", "cp", "mkdir", "rmdir", "touch", "chmod", "chown", "kill",
        "killall", "ln", "tee", "dd", "curl", "wget", "ssh", "scp",
        "git add", "git commit", "git push", "git pull", "git checkout",
        "git reset", "git merge", "git rebase", "npm install", "npm uninstall",
        "pip install", "pip uninstall",
    }
)

# Patterns that make any command forbidden
FORBIDDEN_PATTERNS = tuple(
    re.compile(p)
    for p in (
        r"\brm\s+-[a-zA-Z]*r[a-zA-Z]*f?\s+(/|~)(\s|$)",
        r"\brm\s+-[a-zA-Z]*f[a-zA-Z]*r\s+(/|~)(\s|$)",
        r">\s*/dev/(?!null\b)",
        r"\|\s*(sh|bash|zsh)\b",
        r"`",
        r"\$\(",
        r"(;|&&|\|\|)\s*rm\b",
    )
)

_REDIRECT = re.compile(r"(^|[^0-9&])>>?(?!\s*/dev/null)")


def _base_command(command: str) -> str:
    """First word of a command, plus the subcommand for git/npm/pip."""
    try:
        words = shlex.split(command)
    except ValueError:
        words = command.split()
    if not words:
        return ""
    head = words[0].rsplit("/", 1)[-1]
    if head in ("git", "npm", "pip", "pip3") and len(words) > 1:
        return f"{'pip' if head == 'pip3' else head} {words[1]}"
    if head in ("python", "python3", "node") and len(words) > 1 and words[1] == "--version":
        return f"{'python' if head == 'python3' else head} --version"
    return head


def classify_command(command: str) -> RiskLevel:
    """Classify a shell command by its base command and shape."""
    stripped = command.strip()
    if not stripped:
        return RiskLevel.DANGEROUS

    for pattern in FORBIDDEN_PATTERNS:
        if pattern.search(stripped):
            return RiskLevel.FORBIDDEN

    base = _base_command(stripped)
    if base.split(" ", 1)[0] in FORBIDDEN_COMMANDS:
        return RiskLevel.FORBIDDEN

    if _REDIRECT.search(stripped):
        return RiskLevel.DANGEROUS

    if base in READ_ONLY_COMMANDS:
        return RiskLevel.READ_ONLY
    if base not in DANGEROUS_COMMANDS and base.split(" ", 1)[0] not in DANGEROUS_COMMANDS:
        log.debug("Unknown command %r, treating as dangerous", base)
    return RiskLevel.DANGEROUS


def argument_fingerprint(tool_name: str, args: dict[str, Any], *, command_tool: bool = False) -> str:
    """Stable key for a tool's arguments.

    Command tools fingerprint by base command so approving ``git status``
    covers every ``git status`` invocation. Other tools hash their
    canonical JSON arguments.
    """
    if command_tool:
        return _base_command(str(args.get("command", "")))
    canonical = json.dumps(args, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]


@dataclass
class RiskRule:
    pattern: str
    risk: RiskLevel


@dataclass
class ToolPolicy:
    """Decides the risk level of a tool invocation.

    Supports:
        - Glob-pattern rules on the tool name (first match wins)
        - Command classification for shell-style tools
        - A default risk for everything else
    """

    rules: list[RiskRule] = field(default_factory=list)
    command_tools: set[str] = field(default_factory=lambda: {"bash"})
    default_risk: RiskLevel = RiskLevel.DANGEROUS

    @classmethod
    def from_config(cls, config: ToolsConfig) -> ToolPolicy:
        return cls(
            rules=[RiskRule(r.pattern, RiskLevel(r.risk)) for r in config.rules],
            command_tools=set(config.command_tools),
            default_risk=RiskLevel(config.default_risk),
        )

    def is_command_tool(self, tool_name: str) -> bool:
        return tool_name in self.command_tools

    def classify(self, tool_name: str, args: dict[str, Any]) -> RiskLevel:
        for rule in self.rules:
            if fnmatch.fnmatch(tool_name, rule.pattern):
                return rule.risk

        if self.is_command_tool(tool_name):
            risk = classify_command(str(args.get("command", "")))
            log.debug("Command %r classified as %s", args.get("command"), risk.value)
            return risk

        return self.default_risk

    def fingerprint(self, tool_name: str, args: dict[str, Any]) -> str:
        return argument_fingerprint(tool_name, args, command_tool=self.is_command_tool(tool_name))

    def add_rule(self, pattern: str, risk: RiskLevel) -> None:
        """Add a rule; rules are evaluated in order."""
        self.rules.append(RiskRule(pattern, risk))
