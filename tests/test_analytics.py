"""Tests for the stats aggregation.

Covers:
- Timeline lengths (7 days, 24 hours) regardless of data
- 24 h counters, login/logout counts, active users (stable ties)
- Breakdowns: top-N limits, "system" label, sums never exceed totals
- Agent distribution percentages over the top five
- Request-anchored hour buckets, local-date day buckets
- collect_admin_stats wiring and failure propagation
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, patch
from zoneinfo import ZoneInfo

import pytest

from adminconsole.admin.analytics import (
    SYSTEM_RESOURCE,
    AuditRow,
    build_admin_stats,
    collect_admin_stats,
    seven_day_start,
)
from adminconsole.errors import UpstreamError

NOW = datetime(2026, 3, 10, 12, 30, tzinfo=UTC)


def _make_row(
    action: str = "session.created",
    *,
    ago: timedelta = timedelta(minutes=5),
    resource_type: str | None = "session",
    email: str | None = "a@b.com",
) -> AuditRow:
    return AuditRow(action=action, resource_type=resource_type, user_email=email, created_at=NOW - ago)


def _build(rows=(), sessions=(), agents=(), now=NOW, tz=UTC, total_users=0, total_sessions=0):
    return build_admin_stats(
        audit_rows=list(rows),
        session_times=list(sessions),
        agent_type_counts=list(agents),
        total_users=total_users,
        total_sessions=total_sessions,
        now=now,
        tz=tz,
    )


class TestTimelineShape:
    def test_lengths_without_events(self):
        stats = _build()
        assert len(stats.activity_timeline_7d) == 7
        assert len(stats.activity_timeline_24h) == 24
        assert all(b.actions == 0 for b in stats.activity_timeline_7d)
        assert all(b.actions == 0 for b in stats.activity_timeline_24h)

    def test_day_labels_oldest_first(self):
        days = [b.date for b in _build().activity_timeline_7d]
        assert days[0] == "2026-03-04"
        assert days[-1] == "2026-03-10"

    def test_hour_labels_anchored_at_request(self):
        hours = _build().activity_timeline_24h
        assert hours[0].hour == "13:00"
        assert hours[0].hour_start == datetime(2026, 3, 9, 13, 0, tzinfo=UTC)
        assert hours[-1].hour == "12:00"

    def test_seven_day_start(self):
        assert seven_day_start(NOW, UTC) == datetime(2026, 3, 4, tzinfo=UTC)


class TestCounters:
    def test_24h_counts(self):
        rows = [
            _make_row("user.login", ago=timedelta(hours=1)),
            _make_row("user.logout", ago=timedelta(hours=2)),
            _make_row("user.login", ago=timedelta(days=3)),
            _make_row("role.updated", ago=timedelta(minutes=30), resource_type=None),
        ]
        stats = _build(rows, total_users=4, total_sessions=9)

        assert stats.total_users == 4
        assert stats.total_sessions == 9
        assert stats.recent_activity_24h == 3
        assert stats.total_logins_24h == 1
        assert stats.total_logouts_24h == 1

    def test_day_buckets(self):
        rows = [
            _make_row("user.login", ago=timedelta(hours=1)),
            _make_row("user.login", ago=timedelta(days=3)),
            _make_row("user.logout", ago=timedelta(days=3)),
        ]
        days = {b.date: b for b in _build(rows).activity_timeline_7d}
        assert days["2026-03-10"].user_logins == 1
        assert days["2026-03-07"].actions == 2
        assert days["2026-03-07"].user_logouts == 1

    def test_sessions_bucketed(self):
        stats = _build(sessions=[NOW - timedelta(minutes=10), NOW - timedelta(days=2)])
        assert stats.activity_timeline_24h[-1].sessions_created == 1
        days = {b.date: b for b in stats.activity_timeline_7d}
        assert days["2026-03-10"].sessions_created == 1
        assert days["2026-03-08"].sessions_created == 1

    def test_hour_bucket_before_first_anchor_is_not_placed(self):
        # 23h50m ago is inside the 24 h window but before the first bucket start
        rows = [_make_row(ago=timedelta(hours=23, minutes=50)), _make_row(ago=timedelta(minutes=20))]
        stats = _build(rows)
        assert stats.recent_activity_24h == 2
        assert sum(b.actions for b in stats.activity_timeline_24h) == 1
        assert stats.activity_timeline_24h[-1].actions == 1

    def test_active_users_top_five_stable(self):
        rows = [_make_row(email=f"u{i}@x.com") for i in range(7)]
        rows.append(_make_row(email="u6@x.com"))
        rows.append(_make_row(email=None))
        stats = _build(rows)
        emails = [u.user_email for u in stats.most_active_users]
        assert emails == ["u6@x.com", "u0@x.com", "u1@x.com", "u2@x.com", "u3@x.com"]
        assert stats.most_active_users[0].action_count == 2

    def test_active_users_exclude_older_events(self):
        stats = _build([_make_row(email="old@x.com", ago=timedelta(days=2))])
        assert stats.most_active_users == []


class TestBreakdowns:
    def test_top_eight_actions(self):
        rows = [_make_row(f"action.{i}") for i in range(10)]
        rows += [_make_row("action.9"), _make_row("action.9")]
        stats = _build(rows)
        assert len(stats.action_breakdown_7d) == 8
        assert stats.action_breakdown_7d[0].action == "action.9"
        assert stats.action_breakdown_7d[0].count == 3
        assert sum(a.count for a in stats.action_breakdown_7d) < len(rows)

    def test_sum_equals_total_with_few_actions(self):
        rows = [_make_row("user.login"), _make_row("user.logout"), _make_row("user.login")]
        stats = _build(rows)
        assert sum(a.count for a in stats.action_breakdown_7d) == len(rows)

    def test_system_label_and_top_six(self):
        rows = [_make_row(resource_type=f"r{i}") for i in range(7)]
        rows += [_make_row(resource_type=None), _make_row(resource_type=None)]
        stats = _build(rows)
        assert len(stats.resource_breakdown_7d) == 6
        assert stats.resource_breakdown_7d[0].resource_type == SYSTEM_RESOURCE
        assert stats.resource_breakdown_7d[0].count == 2


class TestAgentDistribution:
    def test_top_five_and_denominator(self):
        agents = [("seo", 10), ("ad_copy", 5), ("graphics", 3), ("pricing", 1), ("growth", 1), ("landing_page", 1)]
        stats = _build(agents=agents)

        names = [a.agent_type for a in stats.most_used_agents]
        assert names == ["seo", "ad_copy", "graphics", "pricing", "growth"]
        shares = {a.agent_type: a.percentage for a in stats.agent_usage_distribution}
        # denominator is 20 (top five only), not 21
        assert shares == {"seo": 50, "ad_copy": 25, "graphics": 15, "pricing": 5, "growth": 5}

    def test_independent_rounding(self):
        stats = _build(agents=[("a", 1), ("b", 1), ("c", 1)])
        assert [a.percentage for a in stats.agent_usage_distribution] == [33, 33, 33]

    def test_halves_round_up(self):
        stats = _build(agents=[("a", 1), ("b", 7)])
        shares = {a.agent_type: a.percentage for a in stats.agent_usage_distribution}
        assert shares == {"b": 88, "a": 13}

    def test_no_agents(self):
        stats = _build()
        assert stats.most_used_agents == []
        assert stats.agent_usage_distribution == []


class TestTimezone:
    def test_local_dates(self):
        rome = ZoneInfo("Europe/Rome")
        now = datetime(2026, 3, 10, 23, 30, tzinfo=UTC)  # 00:30 on the 11th in Rome
        row = AuditRow("user.login", "user", "a@b.com", datetime(2026, 3, 10, 23, 10, tzinfo=UTC))
        stats = _build([row], now=now, tz=rome)

        assert stats.activity_timeline_7d[-1].date == "2026-03-11"
        assert stats.activity_timeline_7d[-1].user_logins == 1
        assert stats.activity_timeline_24h[-1].hour == "00:00"
        assert stats.activity_timeline_24h[-1].user_logins == 1


class TestCollect:
    @pytest.mark.asyncio()
    async def test_reads_and_aggregates(self):
        identity = AsyncMock()
        identity.list_users.return_value = [object(), object(), object()]
        rows = [("user.login", "user", "a@b.com", NOW - timedelta(hours=1))]

        with (
            patch("adminconsole.admin.analytics.count_agent_sessions", new_callable=AsyncMock) as sessions,
            patch("adminconsole.admin.analytics.get_agent_type_counts", new_callable=AsyncMock) as agents,
            patch("adminconsole.admin.analytics.get_audit_rows_since", new_callable=AsyncMock) as audit,
            patch("adminconsole.admin.analytics.get_session_timestamps_since", new_callable=AsyncMock) as times,
        ):
            sessions.return_value = 12
            agents.return_value = [("seo", 2)]
            audit.return_value = rows
            times.return_value = []

            stats = await collect_admin_stats(AsyncMock(), identity, now=NOW)

        assert stats.total_users == 3
        assert stats.total_sessions == 12
        assert stats.total_logins_24h == 1
        assert audit.await_args.args[1] == datetime(2026, 3, 4, tzinfo=ZoneInfo("UTC"))

    @pytest.mark.asyncio()
    async def test_failed_read_aborts(self):
        identity = AsyncMock()
        identity.list_users.return_value = []
        with (
            patch("adminconsole.admin.analytics.count_agent_sessions", new_callable=AsyncMock) as sessions,
            patch("adminconsole.admin.analytics.get_agent_type_counts", new_callable=AsyncMock),
            patch("adminconsole.admin.analytics.get_audit_rows_since", new_callable=AsyncMock),
            patch("adminconsole.admin.analytics.get_session_timestamps_since", new_callable=AsyncMock),
        ):
            sessions.side_effect = UpstreamError("sessions.count")
            with pytest.raises(UpstreamError):
                await collect_admin_stats(AsyncMock(), identity, now=NOW)
