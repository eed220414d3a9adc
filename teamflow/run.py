from __future__ import annotations

import argparse
import logging
import sys

from rich.console import Console
from rich.logging import RichHandler

from teamflow.config import load_settings
from teamflow.gateway import MockGateway, build_gateway
from teamflow.orchestrator import TeamOrchestrator
from teamflow.roles import FileRoleMetadataStore, InMemoryRoleMetadataStore, RoleMetadataEntry, RoleMetadataStore
from teamflow.schema import Team, TeamState
from teamflow.utils.run_log import append_snapshot, init_run_log, make_run_id
from teamflow.utils.text import slugify

HELP = """\
/confirm   创建待建角色（team-setup）
/cancel    取消待建角色
/defaults  对待决事项全部采用默认值
/review    开始（或重新）会审
/execute   确认执行并运行任务
/run       再跑一轮可执行任务
/rollback  回到讨论阶段
/state     打印任务与议题
/quit      退出（删除团队会话）
其他输入   作为用户消息发给团队"""


def _mock_role_store() -> RoleMetadataStore:
    return InMemoryRoleMetadataStore(
        [
            RoleMetadataEntry(
                agent_id="builder",
                name="Builder",
                role="builder",
                summary="Implements features and fixes in the target codebase.",
                tags=["builder", "engineer"],
            ),
            RoleMetadataEntry(
                agent_id="reviewer",
                name="Reviewer",
                role="reviewer",
                summary="Reviews plans and changes for correctness and risk.",
                tags=["reviewer", "qa"],
            ),
        ]
    )


def _print_new(console: Console, state: TeamState, seen: int) -> int:
    for msg in state.messages[seen:]:
        if msg.role == "user":
            continue
        who = msg.agent_id or msg.role
        style = "red" if msg.content.startswith("WARNING:") else ("cyan" if msg.role == "assistant" else "dim")
        console.print(f"[bold]{who}[/bold] ", end="")
        console.print(msg.content, style=style, markup=False, highlight=False)
    return len(state.messages)


def _print_state(console: Console, state: TeamState) -> None:
    console.rule(f"phase={state.phase} convergence={state.convergence.mode}")
    for task in state.tasks:
        console.print(f"- {task.task_id} [{task.status}] {task.agent_id} attempts={task.attempts}")
    for issue in state.convergence.issues:
        console.print(f"* {issue.kind} [{issue.state}] {issue.content}")
    for decision in state.convergence.pending_decisions:
        console.print(f"? {decision.key}: {decision.question} (default: {decision.default_value})")


def main() -> int:
    # Best-effort fix for Windows terminals defaulting to GBK.
    try:
        sys.stdout.reconfigure(encoding="utf-8")
        sys.stderr.reconfigure(encoding="utf-8")
    except (AttributeError, OSError):
        pass

    parser = argparse.ArgumentParser(prog="teamflow")
    parser.add_argument("name", type=str, help="团队名称，例如：checkout-revamp")
    parser.add_argument(
        "--member",
        action="append",
        default=[],
        help="成员 agent id，可重复指定（mock 后端默认 builder、reviewer）",
    )
    parser.add_argument(
        "--no-log",
        action="store_true",
        help="不写运行日志（默认会写入 logs/run_*.jsonl）",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="输出调试日志")
    args = parser.parse_args()

    console = Console()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )
    settings = load_settings()
    gateway = build_gateway(settings)

    if isinstance(gateway, MockGateway):
        store: RoleMetadataStore = _mock_role_store()
        members = args.member or ["builder", "reviewer"]
        clock = gateway.clock
    else:
        store = FileRoleMetadataStore(settings.roles_path)
        members = args.member
        clock = None

    team = Team(id=slugify(args.name, fallback="team"), name=args.name, controller_id=settings.controller_id, member_ids=members)
    orch = TeamOrchestrator(team, gateway=gateway, settings=settings, store=store, clock=clock)

    if not args.no_log:
        settings.log_dir.mkdir(parents=True, exist_ok=True)
        log_paths = init_run_log(settings.log_dir, make_run_id())
        cursor = append_snapshot(log_paths, orch.snapshot(), extra={"event": "start"})

        def on_change(state: TeamState) -> None:
            nonlocal cursor
            cursor = append_snapshot(log_paths, state, cursor=cursor, extra={"event": "step"})

        orch.subscribe(on_change)
        console.print(f"[bold]run_log[/bold]: {log_paths.jsonl_path}")

    console.rule(f"teamflow: {team.name}")
    console.print(HELP, markup=False)
    seen = 0
    while True:
        try:
            line = console.input(f"[bold green]{orch.phase}>[/bold green] ").strip()
        except (EOFError, KeyboardInterrupt):
            line = "/quit"
        if not line:
            continue
        if line == "/quit":
            orch.leave_team()
            break
        if line == "/confirm":
            orch.confirm_bootstrap()
        elif line == "/cancel":
            orch.cancel_bootstrap()
        elif line == "/defaults":
            orch.apply_default_decisions()
        elif line == "/review":
            orch.start_review("rerun" if orch.state.convergence.last_reviews else "start")
        elif line == "/execute":
            orch.confirm_execution()
        elif line == "/run":
            orch.run_execution()
        elif line == "/rollback":
            orch.rollback_to_discussion()
        elif line == "/state":
            _print_state(console, orch.snapshot())
        elif line.startswith("/"):
            console.print(HELP, markup=False)
        else:
            orch.submit_message(line)
        seen = _print_new(console, orch.snapshot(), seen)

    final = orch.snapshot()
    _print_state(console, final)
    if final.flow_events:
        console.print("[bold]flow[/bold]")
        for e in final.flow_events[-12:]:
            console.print(f"- {e.phase} {e.type} :: {e.note or ''}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
