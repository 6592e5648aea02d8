import asyncio
import uuid
from collections import Counter

import pytest

from leadrouter.core.exceptions import NoEligibleAgent
from leadrouter.models.rotation import RotationEntry
from leadrouter.repositories.rotation_repo import RotationRepository
from leadrouter.schemas.lead import LeadCandidate, SourceKind
from leadrouter.schemas.rotation import RotationEntryUpdate
from leadrouter.services.pipeline_service import PipelineOrchestrator
from leadrouter.services.rotation_service import RotationEngine, pick_next


async def _claim(session_factory):
    async with session_factory() as session, session.begin():
        return await RotationEngine(session).claim_next()


def test_pick_next_wraps_and_skips_missing_cursor_agent():
    a, b, c = sorted((uuid.uuid4() for _ in range(3)), key=str)
    entries = [RotationEntry(agent_id=a), RotationEntry(agent_id=c)]

    assert pick_next(entries, None).agent_id == a
    assert pick_next(entries, (0, str(a))).agent_id == c
    # b is no longer in the rotation; its successor still gets the turn
    assert pick_next(entries, (0, str(b))).agent_id == c
    assert pick_next(entries, (0, str(c))).agent_id == a


async def test_claims_follow_turn_order(session_factory, add_agents):
    agents = await add_agents(3)

    picked = [await _claim(session_factory) for _ in range(6)]

    assert picked == agents + agents


async def test_equal_priority_fairness(session_factory, add_agents):
    agents = await add_agents(4)

    counts = Counter([await _claim(session_factory) for _ in range(30)])

    assert set(counts) == set(agents)
    assert all(30 // 4 <= count <= -(-30 // 4) for count in counts.values())


async def test_lower_priority_takes_earlier_turn(session_factory, add_agents):
    late = await add_agents(1, priority=5)
    early = await add_agents(1, priority=1)

    picked = [await _claim(session_factory) for _ in range(4)]

    assert picked == early + late + early + late


async def test_deactivated_agent_gets_no_further_leads(session_factory, add_agents):
    agents = await add_agents(3)
    first = [await _claim(session_factory) for _ in range(2)]
    assert first == agents[:2]

    async with session_factory() as session, session.begin():
        await RotationEngine(session).update_entry(agents[2], RotationEntryUpdate(is_active=False))

    picked = [await _claim(session_factory) for _ in range(6)]

    assert agents[2] not in picked
    assert picked == [agents[0], agents[1]] * 3


async def test_no_active_agents(session_factory):
    with pytest.raises(NoEligibleAgent):
        await _claim(session_factory)


async def test_stale_cursor_version_is_a_conflict(session_factory, add_agents):
    agents = await add_agents(2)

    async with session_factory() as session, session.begin():
        repo = RotationRepository(session)
        cursor = await repo.get_cursor()
        stale_version = cursor.version
        assert await repo.advance_cursor(stale_version, agents[0], 0) is True
        assert await repo.advance_cursor(stale_version, agents[1], 0) is False

    async with session_factory() as session:
        cursor = await RotationRepository(session).get_cursor(for_update=False)
    assert cursor.last_agent_id == agents[0]
    assert cursor.version == stale_version + 1


async def test_concurrent_ingestions_go_to_different_agents(session_factory, add_agents):
    agents = await add_agents(2)
    pipeline = PipelineOrchestrator(session_factory)
    candidates = [
        LeadCandidate(source_kind=SourceKind.API, emails=[f"lead{i}@x.com"], idempotency_key=f"api:{i}")
        for i in range(2)
    ]

    outcomes = await asyncio.gather(*(pipeline.ingest(candidate) for candidate in candidates))

    assert {outcome.status for outcome in outcomes} == {"created"}
    assert {outcome.assigned_to for outcome in outcomes} == set(agents)


async def test_peek_does_not_advance(session_factory, add_agents):
    agents = await add_agents(2)

    async with session_factory() as session:
        assert await RotationEngine(session).peek_next() == agents[0]
    assert await _claim(session_factory) == agents[0]
