from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv


@dataclass(frozen=True)
class Settings:
    gateway_backend: str = "mock"
    gateway_url: str = "http://127.0.0.1:18789"
    gateway_token: str | None = None

    controller_id: str = "team-controller"
    default_model: str | None = None

    # Waiter (milliseconds)
    wait_slice_ms: int = 30_000
    wait_max_ms: int = 900_000
    idle_timeout_ms: int = 180_000
    rpc_buffer_ms: int = 5_000

    # Loop bounds
    discussion_max_rounds: int = 5
    convergence_max_rounds: int = 3
    decision_max_attempts: int = 3
    review_max_attempts: int = 2
    digest_max_attempts: int = 2
    blueprint_max_attempts: int = 2

    auto_create_agents: bool = False
    roles_path: Path = Path("ROLES_METADATA.md")
    log_dir: Path = Path("logs")


def load_settings() -> Settings:
    # Allow users to keep secrets in a local `.env` (not committed).
    load_dotenv(override=False)

    def getenv(key: str, default: str | None = None) -> str | None:
        v = os.getenv(key)
        if v is None or v == "":
            return default
        return v

    def getint(key: str, default: int) -> int:
        return int(getenv(key, str(default)) or default)

    gateway_backend = (getenv("TEAMFLOW_GATEWAY_BACKEND", "mock") or "mock").strip().lower()
    gateway_url = getenv("TEAMFLOW_GATEWAY_URL", "http://127.0.0.1:18789") or ""
    gateway_token = getenv("TEAMFLOW_GATEWAY_TOKEN", None)

    controller_id = getenv("TEAMFLOW_CONTROLLER_ID", "team-controller") or "team-controller"
    default_model = getenv("TEAMFLOW_DEFAULT_MODEL", None)

    discussion_max_rounds = min(20, max(1, getint("TEAMFLOW_DISCUSSION_MAX_ROUNDS", 5)))
    auto_create = (getenv("TEAMFLOW_AUTO_CREATE_AGENTS", "false") or "false").strip().lower()

    return Settings(
        gateway_backend=gateway_backend,
        gateway_url=gateway_url,
        gateway_token=gateway_token,
        controller_id=controller_id,
        default_model=default_model,
        wait_slice_ms=getint("TEAMFLOW_WAIT_SLICE_MS", 30_000),
        wait_max_ms=getint("TEAMFLOW_WAIT_MAX_MS", 900_000),
        idle_timeout_ms=getint("TEAMFLOW_IDLE_TIMEOUT_MS", 180_000),
        rpc_buffer_ms=getint("TEAMFLOW_RPC_BUFFER_MS", 5_000),
        discussion_max_rounds=discussion_max_rounds,
        convergence_max_rounds=getint("TEAMFLOW_CONVERGENCE_MAX_ROUNDS", 3),
        decision_max_attempts=getint("TEAMFLOW_DECISION_MAX_ATTEMPTS", 3),
        review_max_attempts=getint("TEAMFLOW_REVIEW_MAX_ATTEMPTS", 2),
        digest_max_attempts=getint("TEAMFLOW_DIGEST_MAX_ATTEMPTS", 2),
        blueprint_max_attempts=getint("TEAMFLOW_BLUEPRINT_MAX_ATTEMPTS", 2),
        auto_create_agents=auto_create in ("1", "true", "yes", "on"),
        roles_path=Path(getenv("TEAMFLOW_ROLES_PATH", "ROLES_METADATA.md") or "ROLES_METADATA.md").resolve(),
        log_dir=Path(getenv("TEAMFLOW_LOG_DIR", "logs") or "logs").resolve(),
    )
