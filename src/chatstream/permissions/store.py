"""Permission decisions and where they live.

Scopes:
    once       consumed by the first call it covers; expires with the session
    session    in memory until the session is cleared
    workspace  persisted per working directory under the data dir (YAML)
    always     process-wide, seeded from config
    reject     denies matching calls; session-scoped or seeded from config

A decision covers a tool when the tool name matches its pattern (exact or
glob such as ``git_*``) and, if the decision carries a fingerprint, the
call's argument fingerprint is equal.
"""

from __future__ import annotations

import fnmatch
import hashlib
import os
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml

from chatstream.logging import get_logger

if TYPE_CHECKING:
    from chatstream.config.schema import PermissionsConfig

log = get_logger("decisions")


class DecisionScope(Enum):
    ONCE = "once"
    SESSION = "session"
    WORKSPACE = "workspace"
    ALWAYS = "always"
    REJECT = "reject"


@dataclass(frozen=True, slots=True)
class PermissionDecision:
    """A standing answer for (tool name, optional fingerprint)."""

    tool_name: str
    scope: DecisionScope
    fingerprint: str | None = None
    created_at: float = field(default_factory=time.time, compare=False)

    @property
    def allows(self) -> bool:
        return self.scope is not DecisionScope.REJECT

    def covers(self, tool_name: str, fingerprint: str | None) -> bool:
        if self.tool_name != tool_name and not fnmatch.fnmatchcase(tool_name, self.tool_name):
            return False
        return self.fingerprint is None or self.fingerprint == fingerprint


def workspace_key(workspace: str) -> str:
    normalized = os.path.normpath(os.path.abspath(workspace)).lower()
    return hashlib.md5(normalized.encode("utf-8")).hexdigest()[:12]


class DecisionStore:
    """Holds permission decisions for every scope."""

    def __init__(
        self,
        data_dir: str | Path | None = None,
        *,
        always_allow: list[str] | None = None,
        always_reject: list[str] | None = None,
    ) -> None:
        self._data_dir = Path(data_dir) if data_dir is not None else None
        self._always: list[PermissionDecision] = [
            PermissionDecision(name, DecisionScope.ALWAYS) for name in always_allow or []
        ]
        self._global_rejects: list[PermissionDecision] = [
            PermissionDecision(name, DecisionScope.REJECT) for name in always_reject or []
        ]
        self._sessions: dict[str, list[PermissionDecision]] = {}
        self._workspaces: dict[str, list[PermissionDecision]] = {}

    @classmethod
    def from_config(cls, config: PermissionsConfig) -> DecisionStore:
        from chatstream.config.paths import get_data_dir

        return cls(
            get_data_dir(config.data_dir),
            always_allow=config.always_allow,
            always_reject=config.always_reject,
        )

    def lookup(
        self,
        session_id: str,
        workspace: str | None,
        tool_name: str,
        fingerprint: str | None,
    ) -> PermissionDecision | None:
        """Find the decision that applies to a call; rejects win.

        A matching ``once`` decision is consumed.
        """
        session = self._sessions.get(session_id, [])

        for decision in (*session, *self._global_rejects):
            if decision.scope is DecisionScope.REJECT and decision.covers(tool_name, fingerprint):
                return decision

        for decision in session:
            if decision.scope is DecisionScope.ONCE and decision.covers(tool_name, fingerprint):
                session.remove(decision)
                log.debug("Consumed once decision for %s in session %s", tool_name, session_id)
                return decision

        for decision in session:
            if decision.scope is DecisionScope.SESSION and decision.covers(tool_name, fingerprint):
                return decision

        if workspace:
            for decision in self._load_workspace(workspace):
                if decision.covers(tool_name, fingerprint):
                    return decision

        for decision in self._always:
            if decision.covers(tool_name, fingerprint):
                return decision

        return None

    def record(
        self,
        session_id: str,
        workspace: str | None,
        decision: PermissionDecision,
    ) -> PermissionDecision:
        """Store a decision at its scope.

        A workspace decision without a workspace falls back to the session.
        """
        if decision.scope is DecisionScope.ALWAYS:
            self._always.append(decision)
        elif decision.scope is DecisionScope.WORKSPACE:
            if not workspace:
                log.warning(
                    "Session %s has no working directory; keeping %s approval for the session",
                    session_id,
                    decision.tool_name,
                )
                decision = PermissionDecision(
                    decision.tool_name, DecisionScope.SESSION, decision.fingerprint
                )
                self._sessions.setdefault(session_id, []).append(decision)
            else:
                decisions = self._load_workspace(workspace)
                if decision not in decisions:
                    decisions.append(decision)
                    self._save_workspace(workspace, decisions)
        else:
            self._sessions.setdefault(session_id, []).append(decision)

        log.debug(
            "Recorded %s decision for %s (fingerprint=%s)",
            decision.scope.value,
            decision.tool_name,
            decision.fingerprint,
        )
        return decision

    def revoke(
        self,
        session_id: str,
        workspace: str | None,
        tool_name: str,
        fingerprint: str | None = None,
    ) -> int:
        """Remove every stored decision for the tool (and fingerprint, if given).

        Returns:
            Number of decisions removed.
        """

        def keep(d: PermissionDecision) -> bool:
            if d.tool_name != tool_name:
                return True
            return fingerprint is not None and d.fingerprint != fingerprint

        removed = 0
        session = self._sessions.get(session_id)
        if session is not None:
            kept = [d for d in session if keep(d)]
            removed += len(session) - len(kept)
            self._sessions[session_id] = kept

        kept_always = [d for d in self._always if keep(d)]
        removed += len(self._always) - len(kept_always)
        self._always = kept_always

        if workspace:
            decisions = self._load_workspace(workspace)
            kept = [d for d in decisions if keep(d)]
            if len(kept) != len(decisions):
                removed += len(decisions) - len(kept)
                self._workspaces[workspace_key(workspace)] = kept
                self._save_workspace(workspace, kept)

        return removed

    def session_decisions(self, session_id: str) -> list[PermissionDecision]:
        return list(self._sessions.get(session_id, []))

    def workspace_decisions(self, workspace: str) -> list[PermissionDecision]:
        return list(self._load_workspace(workspace))

    def clear_workspace(self, workspace: str) -> None:
        self._workspaces[workspace_key(workspace)] = []
        path = self._workspace_path(workspace)
        if path is not None and path.exists():
            path.unlink()

    def clear_session(self, session_id: str) -> None:
        """Drop session-scoped decisions; unused once decisions expire here."""
        decisions = self._sessions.pop(session_id, [])
        unused = [d for d in decisions if d.scope is DecisionScope.ONCE]
        if unused:
            log.debug(
                "Dropping %d unused once decision(s) for session %s", len(unused), session_id
            )

    def _workspace_path(self, workspace: str) -> Path | None:
        if self._data_dir is None:
            return None
        return self._data_dir / f"workspace-{workspace_key(workspace)}.yaml"

    def _load_workspace(self, workspace: str) -> list[PermissionDecision]:
        key = workspace_key(workspace)
        cached = self._workspaces.get(key)
        if cached is not None:
            return cached

        decisions: list[PermissionDecision] = []
        path = self._workspace_path(workspace)
        if path is not None and path.exists():
            try:
                with open(path, encoding="utf-8") as f:
                    data = yaml.safe_load(f) or {}
                for item in data.get("decisions", []):
                    if isinstance(item, dict) and item.get("tool"):
                        decisions.append(
                            PermissionDecision(
                                item["tool"],
                                DecisionScope.WORKSPACE,
                                item.get("fingerprint"),
                                item.get("createdAt", time.time()),
                            )
                        )
            except (yaml.YAMLError, OSError, AttributeError) as e:
                log.warning("Could not read workspace decisions %s: %s", path, e)

        self._workspaces[key] = decisions
        return decisions

    def _save_workspace(self, workspace: str, decisions: list[PermissionDecision]) -> None:
        path = self._workspace_path(workspace)
        if path is None:
            return
        path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = path.with_suffix(".yaml.tmp")

        data: dict[str, Any] = {
            "workspace": workspace,
            "decisions": [
                {
                    "tool": d.tool_name,
                    "fingerprint": d.fingerprint,
                    "createdAt": d.created_at,
                }
                for d in decisions
            ],
        }

        try:
            with open(temp_path, "w", encoding="utf-8") as f:
                yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
            if path.exists():
                path.unlink()
            temp_path.rename(path)
        except Exception as e:
            if temp_path.exists():
                temp_path.unlink()
            raise RuntimeError(f"Failed to save workspace decisions: {e}") from e
