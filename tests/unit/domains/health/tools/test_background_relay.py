"""Tests for the background update relay used by the MCP tools."""

from __future__ import annotations

import asyncio

from healthsync.domains.health.tools.sync_tools import BackgroundUpdateRelay, _kind_label


def _run(coro):
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


class TestRelay:
    def test_counts_updates(self):
        relay = BackgroundUpdateRelay()
        _run(relay.on_background_update())
        _run(relay.on_background_update())
        assert relay.update_count == 2
        assert relay.last_update_at is not None

    def test_audits_each_update(self, audit_logger):
        relay = BackgroundUpdateRelay(audit_logger)
        _run(relay.on_background_update())
        assert len(audit_logger.get_events(action="background_update")) == 1


class TestKindLabel:
    def test_wire_name(self):
        assert _kind_label("INSULIN_DELIVERY") == "insulin"

    def test_unknown_kind(self):
        assert _kind_label("HEART_RATE") is None
