from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Callable, Iterator

from teamflow.config import Settings
from teamflow.errors import TeamflowError
from teamflow.gateway.base import AgentGateway
from teamflow.roles import InMemoryRoleMetadataStore, RoleMetadataStore
from teamflow.runtime import Clock, delete_sessions
from teamflow.schema import ConvergenceState, Team, TeamState
from teamflow.utils.text import now_iso, uniq

from .bootstrap import cancel_bootstrap, confirm_bootstrap
from .convergence import ConvergenceEngine
from .discussion import run_discussion
from .execution import TaskExecutionLoop
from .governor import switch_phase
from .planning import run_planning_round
from .runtime import Listener, TeamRuntime

logger = logging.getLogger(__name__)


class TeamOrchestrator:
    """
    Drives one team through discussion -> planning -> (team-setup) -> convergence ->
    execution -> done. Every entry point is synchronous, runs one logical flow at a
    time and reports rejections as `WARNING:` system messages on the team stream.
    """

    def __init__(
        self,
        team: Team,
        *,
        gateway: AgentGateway,
        settings: Settings | None = None,
        store: RoleMetadataStore | None = None,
        clock: Clock | None = None,
        state: TeamState | None = None,
    ) -> None:
        self.rt = TeamRuntime(
            state or TeamState(team=team),
            gateway=gateway,
            settings=settings or Settings(),
            store=store or InMemoryRoleMetadataStore(),
            clock=clock,
        )
        self.rt.bind_members()
        self.convergence = ConvergenceEngine(self.rt)
        self.execution = TaskExecutionLoop(self.rt)
        self._busy = False

    @property
    def state(self) -> TeamState:
        return self.rt.state

    @property
    def phase(self) -> str:
        return self.rt.state.phase

    @contextmanager
    def _entry(self, name: str) -> Iterator[bool]:
        """Single-flight guard. Yields False when another call is still running."""
        with self.rt.lock:
            if self._busy:
                busy = True
            else:
                busy = False
                self._busy = True
        if busy:
            self.rt.warn(f"Team is busy; {name} rejected")
            yield False
            return
        try:
            yield True
        except TeamflowError as e:
            logger.exception("team=%s %s failed", self.rt.team_id, name)
            self.rt.warn(f"{name} failed: {e}")
        finally:
            with self.rt.lock:
                self._busy = False
            self.rt.notify()

    # -- conversation -------------------------------------------------------------------

    def submit_message(self, text: str) -> None:
        message = (text or "").strip()
        if not message:
            return
        with self._entry("submit_message") as ok:
            if not ok:
                return
            phase = self.rt.state.phase
            if phase == "team-setup":
                self.rt.warn("Agent creation is pending; confirm or cancel it first")
                return
            self.rt.say("user", message)
            if phase == "execution":
                self.execution.run(message)
            elif phase == "planning":
                run_planning_round(self.rt, message)
            elif phase == "convergence":
                self.convergence.handle_message(message)
            else:
                if phase == "done" and not switch_phase(self.rt, "discussion", note="new-request"):
                    return
                run_discussion(self.rt, message)

    # -- team-setup ---------------------------------------------------------------------

    def confirm_bootstrap(self) -> bool:
        with self._entry("confirm_bootstrap") as ok:
            return ok and confirm_bootstrap(self.rt)
        return False

    def cancel_bootstrap(self) -> bool:
        with self._entry("cancel_bootstrap") as ok:
            return ok and cancel_bootstrap(self.rt)
        return False

    # -- convergence --------------------------------------------------------------------

    def start_review(self, reason: str = "start") -> bool:
        with self._entry("start_review") as ok:
            return ok and self.convergence.run_review(reason)
        return False

    def apply_filled_decisions(self, values: dict[str, str]) -> bool:
        with self._entry("apply_filled_decisions") as ok:
            return ok and self.convergence.apply_filled_decisions(values)
        return False

    def apply_default_decisions(self) -> bool:
        with self._entry("apply_default_decisions") as ok:
            return ok and self.convergence.apply_default_decisions()
        return False

    # -- execution ----------------------------------------------------------------------

    def confirm_execution(self, *, run: bool = True) -> bool:
        with self._entry("confirm_execution") as ok:
            if not ok:
                return False
            if self.rt.state.phase != "convergence":
                self.rt.warn(f"Execution can only be confirmed from convergence (current phase: {self.rt.state.phase})")
                return False
            if not switch_phase(self.rt, "execution", note="execution-confirmed"):
                return False
            if run:
                self.execution.run()
            return True
        return False

    def run_execution(self, user_message: str = "") -> bool:
        with self._entry("run_execution") as ok:
            if not ok:
                return False
            if self.rt.state.phase != "execution":
                self.rt.warn(f"Tasks run only in execution (current phase: {self.rt.state.phase})")
                return False
            self.execution.run(user_message)
            return True
        return False

    def rollback_to_discussion(self) -> bool:
        with self._entry("rollback_to_discussion") as ok:
            if not ok:
                return False
            if self.rt.state.phase == "discussion":
                return True
            if not switch_phase(self.rt, "discussion", note="rollback"):
                return False
            with self.rt.lock:
                self.rt.state.pending_bootstrap = None
                self.rt.state.convergence = ConvergenceState(
                    resolved_decisions=dict(self.rt.state.convergence.resolved_decisions),
                    assumptions=list(self.rt.state.convergence.assumptions),
                )
            return True
        return False

    # -- membership ---------------------------------------------------------------------

    def add_member(self, agent_id: str) -> bool:
        agent_id = (agent_id or "").strip()
        with self._entry("add_member") as ok:
            if not ok:
                return False
            if not any(a.id == agent_id for a in self.rt.gateway.list_agents()):
                self.rt.warn(f"Unknown agent: {agent_id}")
                return False
            with self.rt.lock:
                team = self.rt.state.team
                if agent_id in team.member_ids:
                    return True
                self.rt.state.team = team.model_copy(
                    update={"member_ids": uniq([*team.member_ids, agent_id]), "updated_at": now_iso()}
                )
            self.rt.session_key(agent_id)
            self.rt.system(f"{agent_id} joined the team")
            return True
        return False

    def remove_member(self, agent_id: str) -> bool:
        """Drop a member together with its tasks and runtime record. The controller cannot be removed."""
        with self._entry("remove_member") as ok:
            if not ok:
                return False
            with self.rt.lock:
                team = self.rt.state.team
                if agent_id == team.controller_id:
                    self.rt.warn("The controller cannot be removed from its team")
                    return False
                if agent_id not in team.member_ids:
                    self.rt.warn(f"{agent_id} is not a member")
                    return False
                self.rt.state.team = team.model_copy(
                    update={"member_ids": [m for m in team.member_ids if m != agent_id], "updated_at": now_iso()}
                )
                self.rt.state.tasks = [t for t in self.rt.state.tasks if t.agent_id != agent_id]
                self.rt.state.member_runtime.pop(agent_id, None)
                session = self.rt.state.session_keys.pop(agent_id, None)
            if session:
                delete_sessions(self.rt.gateway, [session])
            self.rt.system(f"{agent_id} left the team")
            return True
        return False

    def leave_team(self) -> None:
        """Delete every team session at the runtime. Safe to call more than once."""
        with self.rt.lock:
            keys = list(self.rt.state.session_keys.values())
            self.rt.state.session_keys = {}
        delete_sessions(self.rt.gateway, keys)
        logger.info("team=%s left sessions=%d", self.rt.team_id, len(keys))

    # -- observation ----------------------------------------------------------------------

    def snapshot(self) -> TeamState:
        return self.rt.snapshot()

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        return self.rt.subscribe(listener)
