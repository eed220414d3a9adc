from __future__ import annotations

from teamflow.config import load_settings

ENV_KEYS = (
    "TEAMFLOW_GATEWAY_BACKEND",
    "TEAMFLOW_CONTROLLER_ID",
    "TEAMFLOW_DISCUSSION_MAX_ROUNDS",
    "TEAMFLOW_AUTO_CREATE_AGENTS",
    "TEAMFLOW_WAIT_SLICE_MS",
)


def _clear(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


def test_defaults(monkeypatch, tmp_path):
    _clear(monkeypatch, tmp_path)
    s = load_settings()
    assert s.gateway_backend == "mock"
    assert s.controller_id == "team-controller"
    assert s.discussion_max_rounds == 5
    assert s.convergence_max_rounds == 3
    assert s.auto_create_agents is False


def test_env_overrides(monkeypatch, tmp_path):
    _clear(monkeypatch, tmp_path)
    monkeypatch.setenv("TEAMFLOW_GATEWAY_BACKEND", " HTTP ")
    monkeypatch.setenv("TEAMFLOW_CONTROLLER_ID", "lead")
    monkeypatch.setenv("TEAMFLOW_AUTO_CREATE_AGENTS", "yes")
    monkeypatch.setenv("TEAMFLOW_WAIT_SLICE_MS", "5000")
    s = load_settings()
    assert s.gateway_backend == "http"
    assert s.controller_id == "lead"
    assert s.auto_create_agents is True
    assert s.wait_slice_ms == 5000


def test_discussion_rounds_are_clamped(monkeypatch, tmp_path):
    _clear(monkeypatch, tmp_path)
    monkeypatch.setenv("TEAMFLOW_DISCUSSION_MAX_ROUNDS", "99")
    assert load_settings().discussion_max_rounds == 20
    monkeypatch.setenv("TEAMFLOW_DISCUSSION_MAX_ROUNDS", "0")
    assert load_settings().discussion_max_rounds == 1

