import uuid

import pytest

from leadrouter.core.exceptions import NotFoundError
from leadrouter.models.lead_source import LeadSource
from leadrouter.schemas.lead_source import LeadSourceCreate, PixelKeyCreate
from leadrouter.services.lead_source_service import LeadSourceService, score_source


def _source(**fields):
    return LeadSource(name=fields.pop("name", "Zillow"), **fields)


def test_exact_address_scores_highest():
    source = _source(email_patterns=["leads@zillow.com"])

    match = score_source(source, "Zillow Leads <leads@zillow.com>", "", "")

    assert match.matched
    assert match.confidence == 1.0


def test_scores_add_up_and_cap():
    source = _source(email_patterns=["*@zillow.com"], domain_patterns=["zillow"], keywords=["premier agent"])

    match = score_source(source, "alerts@zillow.com", "Premier Agent lead", "")

    assert match.confidence == 1.0
    assert len(match.reasons) == 3


def test_keyword_only_match():
    source = _source(keywords=["new lead"])

    assert score_source(source, "x@other.com", "You have a NEW LEAD", "").confidence == pytest.approx(0.4)
    assert not score_source(source, "x@other.com", "Newsletter", "").matched


async def test_match_picks_best_source(session_factory):
    async with session_factory() as session, session.begin():
        service = LeadSourceService(session)
        await service.create_source(LeadSourceCreate(name="Realtor", keywords=["listing"]))
        await service.create_source(LeadSourceCreate(name="Zillow", email_patterns=["*@zillow.com"]))
        await service.create_source(LeadSourceCreate(name="Paused", email_patterns=["*@zillow.com"], is_active=False))

    async with session_factory() as session:
        service = LeadSourceService(session)
        best = await service.match("alerts@zillow.com", "New listing inquiry", "")
        none = await service.match("friend@example.com", "Lunch?", "")
        names = [source.name for source in await service.list_sources()]

    assert best.source_name == "Zillow"
    assert not none.matched
    assert none.source_name is None
    assert names == ["Paused", "Realtor", "Zillow"]


async def test_pixel_keys(session_factory):
    async with session_factory() as session, session.begin():
        key = await LeadSourceService(session).create_pixel_key(PixelKeyCreate(name="acme", website="https://acme.test"))

    assert len(key.key) > 20
    async with session_factory() as session, session.begin():
        await LeadSourceService(session).deactivate_pixel_key(key.id)
    async with session_factory() as session:
        keys = await LeadSourceService(session).list_pixel_keys()
    assert [(k.name, k.is_active) for k in keys] == [("acme", False)]


async def test_deleting_unknown_source(session_factory):
    async with session_factory() as session, session.begin():
        with pytest.raises(NotFoundError):
            await LeadSourceService(session).delete_source(uuid.uuid4())
