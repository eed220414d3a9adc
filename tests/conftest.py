"""Shared fixtures: an in-process gateway on a manual clock and a ready-to-use team."""

from __future__ import annotations

import pytest

from teamflow.config import Settings
from teamflow.gateway import MockGateway
from teamflow.gateway.base import AgentSummary
from teamflow.orchestrator import TeamOrchestrator
from teamflow.roles import InMemoryRoleMetadataStore, RoleMetadataEntry
from teamflow.runtime import ManualClock
from teamflow.schema import Team

CONTROLLER = "team-controller"


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def gateway(clock: ManualClock) -> MockGateway:
    return MockGateway(
        agents=[
            AgentSummary(id=CONTROLLER, name="Controller"),
            AgentSummary(id="builder", name="Builder"),
            AgentSummary(id="reviewer", name="Reviewer"),
        ],
        clock=clock,
    )


@pytest.fixture
def settings() -> Settings:
    return Settings(controller_id=CONTROLLER)


@pytest.fixture
def store() -> InMemoryRoleMetadataStore:
    return InMemoryRoleMetadataStore(
        [
            RoleMetadataEntry(
                agent_id="builder", name="Builder", role="builder", summary="Writes the code.", tags=["builder", "engineer"]
            ),
            RoleMetadataEntry(
                agent_id="reviewer", name="Reviewer", role="reviewer", summary="Checks the work.", tags=["reviewer", "qa"]
            ),
        ]
    )


@pytest.fixture
def team() -> Team:
    return Team(id="t1", name="Team One", controller_id=CONTROLLER, member_ids=["builder", "reviewer"])


@pytest.fixture
def orch(team, gateway, settings, store, clock) -> TeamOrchestrator:
    return TeamOrchestrator(team, gateway=gateway, settings=settings, store=store, clock=clock)


def warnings(state) -> list[str]:
    return [m.content for m in state.messages if m.role == "system" and m.content.startswith("WARNING: ")]


@pytest.fixture
def warnings_of():
    return warnings
