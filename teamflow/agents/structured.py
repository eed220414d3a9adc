from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Generic, TypeVar

from teamflow.errors import ProtocolError
from teamflow.orchestrator.runtime import TeamRuntime
from teamflow.orchestrator.tool_policy import forbidden_tools
from teamflow.runtime.invoke import WaitMode
from teamflow.schema.team import FlowActor

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Structured(Generic[T]):
    value: T
    text: str
    attempts: int


def request_structured(
    rt: TeamRuntime,
    *,
    agent_id: str,
    actor: FlowActor,
    label: str,
    purpose: str,
    prompt: str,
    retry_prompt: str,
    parse: Callable[[str], T | None],
    max_attempts: int,
    validate: Callable[[T], str | None] | None = None,
    mode: WaitMode = "idle",
) -> Structured[T]:
    """
    Ask `agent_id` for one structured message, with a bounded corrective retry.

    Each attempt is a fresh run with its own idempotency key. A reply is rejected when
    the agent used a tool forbidden in the current phase, when nothing parses, or when
    `validate` reports an error; the next attempt then sends `retry_prompt`.
    Raises ProtocolError after `max_attempts` rejected replies. Gateway errors propagate.
    """
    seq = rt.next_dispatch()
    message = prompt
    last_error = "unparsable output"
    for attempt in range(1, max_attempts + 1):
        out = rt.run(agent_id, message, idempotency_key=rt.idempotency_key(agent_id, purpose, seq, attempt), mode=mode)
        message = retry_prompt

        blocked = forbidden_tools(rt.state.phase, out.tool_names)
        if blocked:
            last_error = f"forbidden tools in {rt.state.phase}: {', '.join(blocked)}"
            rt.warn(f"{agent_id} used tools not allowed in {rt.state.phase}: {', '.join(blocked)}")
            rt.flow("tool-policy-blocked", actor, agent_id=agent_id, note=", ".join(blocked))
            continue

        value = parse(out.text)
        error = validate(value) if value is not None and validate is not None else None
        if value is not None and error is None:
            return Structured(value=value, text=out.text, attempts=attempt)
        last_error = error or "unparsable output"
        logger.info("%s invalid agent=%s attempt=%d/%d error=%s", label, agent_id, attempt, max_attempts, last_error)
        if attempt < max_attempts:
            rt.warn(f"{label} from {agent_id} is invalid ({attempt}/{max_attempts}), asking again")
    raise ProtocolError(f"{label} from {agent_id} still invalid after {max_attempts} attempts: {last_error}")
