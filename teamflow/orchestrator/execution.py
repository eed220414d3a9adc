from __future__ import annotations

import logging
import time
from typing import Any

from teamflow.agents.prompts import report_retry, task_message
from teamflow.errors import TeamflowError
from teamflow.protocol import parse_report
from teamflow.schema import TeamReport, TeamTaskRuntime
from teamflow.schema.team import TaskStatus
from teamflow.utils.text import now_iso

from .context import fold_report
from .governor import switch_phase
from .runtime import TeamRuntime

logger = logging.getLogger(__name__)

RUNNABLE: frozenset[str] = frozenset({"pending", "blocked", "missing-report", "error"})

# partial has no terminal state of its own at the task level
REPORT_TO_TASK_STATUS: dict[str, TaskStatus] = {"done": "done", "partial": "blocked", "blocked": "blocked"}


class TaskExecutionLoop:
    """Dispatches every runnable task once per pass and records what came back."""

    def __init__(self, rt: TeamRuntime) -> None:
        self.rt = rt

    def run(self, user_message: str = "") -> int:
        """Run one pass. Returns the number of tasks dispatched."""
        rt = self.rt
        with rt.lock:
            runnable = [t.task_id for t in rt.state.tasks if t.status in RUNNABLE]
        if not runnable:
            rt.warn("No runnable task in this pass")
        for task_id in runnable:
            task = rt.state.task(task_id)
            if task is None:
                # removed with its member mid-pass
                continue
            self._run_task(task, user_message)

        with rt.lock:
            if rt.state.convergence.mode == "review_run":
                rt.state.convergence.mode = "chat"
            all_done = bool(rt.state.tasks) and all(t.status == "done" for t in rt.state.tasks)
        if all_done and rt.state.phase == "execution":
            switch_phase(rt, "done", note="all-tasks-done")
        return len(runnable)

    def _payload(self, task: TeamTaskRuntime, user_message: str) -> dict[str, Any]:
        return {
            "task_id": task.task_id,
            "agent_id": task.agent_id,
            "instruction": task.instruction,
            "acceptance": list(task.acceptance),
            "user_message": user_message,
        }

    def _run_task(self, task: TeamTaskRuntime, user_message: str) -> None:
        rt = self.rt
        with rt.lock:
            task.status = "running"
            task.attempts += 1
            task.started_at = now_iso()
            task.updated_at = task.started_at
            task.last_error = None
            attempt = task.attempts
        rt.set_member(task.agent_id, "running", current_task_id=task.task_id)
        rt.notify()
        logger.info("team=%s task=%s agent=%s attempt=%d dispatch", rt.team_id, task.task_id, task.agent_id, attempt)
        started = time.monotonic()

        try:
            message = task_message(rt.envelope(), self._payload(task, user_message))
            out = rt.run(task.agent_id, message, idempotency_key=f"{rt.team_id}:{task.task_id}:{attempt}", mode="slice")
            task.run_id = out.run_id
            rt.say("assistant", out.text or "(empty reply)", agent_id=task.agent_id)
            report = parse_report(out.text, task_id=task.task_id, agent_id=task.agent_id)
            if report is None:
                rt.warn(f"{task.task_id}: report from {task.agent_id} is invalid, asking once more")
                out = rt.run(
                    task.agent_id,
                    report_retry(task.task_id, task.agent_id),
                    idempotency_key=f"{rt.team_id}:{task.task_id}:retry:{attempt}",
                    mode="slice",
                )
                task.run_id = out.run_id
                rt.say("assistant", out.text or "(empty reply)", agent_id=task.agent_id)
                report = parse_report(out.text, task_id=task.task_id, agent_id=task.agent_id)
        except TeamflowError as e:
            self._finish(task, "error", error=str(e), started=started)
            rt.warn(f"{task.task_id} failed: {e}")
            return
        except Exception as e:
            # errors outside the gateway contract end this task only
            logger.exception("team=%s task=%s unexpected dispatch failure", rt.team_id, task.task_id)
            error = f"{type(e).__name__}: {e}"
            self._finish(task, "error", error=error, started=started)
            rt.warn(f"{task.task_id} failed: {error}")
            return

        if report is None:
            self._finish(task, "missing-report", error="REPORT missing after retry", started=started)
            rt.warn(f"{task.task_id}: no valid report from {task.agent_id}")
            return
        self._record(task, report, started=started)

    def _record(self, task: TeamTaskRuntime, report: TeamReport, *, started: float) -> None:
        rt = self.rt
        with rt.lock:
            rt.state.reports.append(report)
            task.report_id = report.report_id
            if report.status == "done":
                rt.state.context = fold_report(rt.state.context, report)
        self._finish(task, REPORT_TO_TASK_STATUS[report.status], started=started, report_id=report.report_id)

    def _finish(
        self,
        task: TeamTaskRuntime,
        status: TaskStatus,
        *,
        started: float,
        error: str | None = None,
        report_id: str | None = None,
    ) -> None:
        rt = self.rt
        with rt.lock:
            task.status = status
            task.finished_at = now_iso()
            task.updated_at = task.finished_at
            task.last_error = error
        rt.audit(task, error=error)
        rt.set_member(
            task.agent_id,
            status,
            current_task_id=None,
            last_task_id=task.task_id,
            last_run_id=task.run_id,
            last_report_id=report_id,
            last_duration_ms=int((time.monotonic() - started) * 1000),
            last_error=error,
        )
        rt.notify()
        logger.info("team=%s task=%s status=%s", rt.team_id, task.task_id, status)
