"""Unit tests for regulatory source discovery."""

from unittest.mock import AsyncMock

import pytest

from sentinel.interfaces import PortalCard
from sentinel.models import RegulatoryCandidate
from sentinel.regulatory.constants import REGULATOR_CONFIGS
from sentinel.regulatory.scan import scan_regulatory_sources

MAS_CONFIG = REGULATOR_CONFIGS[0]
NOTICE_URL = "https://www.mas.gov.sg/regulation/notices/notice-626"


class TestSearchDiscovery:
    """Test search-provider based discovery."""

    @pytest.mark.asyncio
    async def test_candidates_from_search(self, stage_context, search, buffer):
        """Test search results become candidates scoped to the regulator."""
        outcome = await scan_regulatory_sources(stage_context, [], "2024-04-01")

        assert [c.url for c in outcome.new_candidates] == [
            "https://reg.example.org/circulars/aml-2024-01",
            "https://reg.example.org/notices/cdd-update",
        ]
        first = outcome.candidates[0]
        assert first.source == "tavily"
        assert first.regulator == "TEST"
        assert first.domain == "reg.example.org"
        assert first.summary == "Circular summary"
        assert first.metadata == {"query": "test aml circular"}
        assert outcome.candidates[1].summary == "Notice summary"

        assert search.search_calls[0]["start_date"] == "2024-04-01"
        assert search.search_calls[0]["include_domains"] == ["reg.example.org"]
        tool_calls = [e for e in buffer.events if e.type == "on_tool_call"]
        assert tool_calls[0].data["tool"] == "tavily.search"
        assert tool_calls[0].data["count"] == 2

    @pytest.mark.asyncio
    async def test_known_urls_are_not_new(self, stage_context):
        """Test candidates already in state are merged but not reported as new."""
        existing = [
            RegulatoryCandidate(
                url="https://reg.example.org/circulars/aml-2024-01", regulator="TEST", source="tavily"
            )
        ]

        outcome = await scan_regulatory_sources(stage_context, existing, None)

        assert [c.url for c in outcome.new_candidates] == ["https://reg.example.org/notices/cdd-update"]
        assert len(outcome.candidates) == 2

    @pytest.mark.asyncio
    async def test_cursor_is_refreshed(self, stage_context):
        """Test the returned cursor is a fresh timestamp."""
        outcome = await scan_regulatory_sources(stage_context, [], "2020-01-01")
        assert outcome.cursor > "2020-01-01"

    @pytest.mark.asyncio
    async def test_no_configs(self, stage_context, buffer):
        """Test an empty regulator list yields a warning and no events."""
        stage_context.configs = []

        outcome = await scan_regulatory_sources(stage_context, [], None, configs=[])

        assert outcome.new_candidates == []
        assert outcome.snippets[0].level == "warning"
        assert buffer.events == []


class TestPortalDiscovery:
    """Test portal listing enumeration."""

    @pytest.mark.asyncio
    async def test_portal_cards_become_candidates(self, stage_context, regulatory_services, portal, search):
        """Test portal cards within the window become mas_portal candidates."""
        search.results = []
        portal.cards[("anti-money-laundering", "Notices", 1)] = [
            PortalCard(url=NOTICE_URL, title="Notice 626", published_at="2024-05-02", source_hash="abc"),
            PortalCard(url="https://www.mas.gov.sg/old", title="Old", published_at="2023-01-01"),
        ]
        regulatory_services.portal = portal

        outcome = await scan_regulatory_sources(stage_context, [], "2024-04-01", configs=[MAS_CONFIG])

        assert [c.url for c in outcome.new_candidates] == [NOTICE_URL]
        candidate = outcome.new_candidates[0]
        assert candidate.source == "mas_portal"
        assert candidate.domain == "mas.gov.sg"
        assert candidate.listing_topic == "anti-money-laundering"
        assert candidate.listing_content_type == "Notices"
        assert candidate.source_hash == "abc"
        assert any(s.level == "success" and "MAS portal enumeration discovered 1" in s.text for s in outcome.snippets)
        # short page stops pagination
        assert ("anti-money-laundering", "Notices", 2) not in portal.list_calls

    @pytest.mark.asyncio
    async def test_portal_failures_become_warnings(self, stage_context, regulatory_services, portal, search):
        """Test listing failures are reported per combination and the scan continues."""
        search.results = []
        portal.list_cards = AsyncMock(side_effect=RuntimeError("listing down"))
        regulatory_services.portal = portal

        outcome = await scan_regulatory_sources(stage_context, [], "2024-04-01", configs=[MAS_CONFIG])

        warnings = [s for s in outcome.snippets if s.level == "warning"]
        assert len(warnings) == 10
        assert any(s.text == "MAS portal enumeration returned no new sources." for s in outcome.snippets)
        assert outcome.new_candidates == []

    @pytest.mark.asyncio
    async def test_portal_skipped_for_other_regulators(self, stage_context, regulatory_services, portal):
        """Test regulators without a portal integration never hit the portal."""
        regulatory_services.portal = portal

        await scan_regulatory_sources(stage_context, [], None)

        assert portal.list_calls == []
