"""Analytics aggregation for GET /admin/stats.

`build_admin_stats` is a pure function over already-fetched rows and a fixed
request time, so every figure is reproducible in tests. `collect_admin_stats`
performs the reads and hands the rows over; any failed read aborts the whole
aggregation (no partial statistics).

Time windows:
- 24 h: events with created_at >= now - 24h.
- 7 d: from local midnight six days ago through now, bucketed by the
  event's local calendar date (stats timezone).

The 24 h timeline buckets are anchored at request time: bucket k starts at
the hour truncation of (now - k hours), k = 23..0, and an event lands in the
first bucket with start <= created_at < start + 1h. Bucket boundaries are
not derived from the event's own timestamp.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta, tzinfo
from zoneinfo import ZoneInfo

from sqlalchemy.ext.asyncio import AsyncSession

from adminconsole.admin.queries import (
    count_agent_sessions,
    get_agent_type_counts,
    get_audit_rows_since,
    get_session_timestamps_since,
)
from adminconsole.config import settings
from adminconsole.integrations.identity import IdentityClient
from adminconsole.models.enums import AuditAction
from adminconsole.schemas.stats import (
    ActionCount,
    ActiveUser,
    AdminStats,
    AgentShare,
    AgentUsage,
    DayBucket,
    HourBucket,
    ResourceCount,
)

logger = logging.getLogger(__name__)

TOP_USERS = 5
TOP_AGENTS = 5
TOP_ACTIONS = 8
TOP_RESOURCES = 6
TIMELINE_DAYS = 7
TIMELINE_HOURS = 24
SYSTEM_RESOURCE = "system"

_LOGIN = AuditAction.USER_LOGIN.value
_LOGOUT = AuditAction.USER_LOGOUT.value


@dataclass(frozen=True)
class AuditRow:
    action: str
    resource_type: str | None
    user_email: str | None
    created_at: datetime


def stats_zone() -> tzinfo:
    return ZoneInfo(settings.stats_timezone)


def seven_day_start(now: datetime, tz: tzinfo) -> datetime:
    """Local midnight six days before `now`, as an aware datetime."""
    today = now.astimezone(tz).date()
    first_day = today - timedelta(days=TIMELINE_DAYS - 1)
    return datetime(first_day.year, first_day.month, first_day.day, tzinfo=tz)


def _top(counter: Counter[str], n: int) -> list[tuple[str, int]]:
    # most_common keeps first-encountered order among equal counts
    return counter.most_common(n)


def _percentage(count: int, total: int) -> int:
    """round(100 * count / total), halves rounded up, in integer arithmetic."""
    if total <= 0:
        return 0
    return (200 * count + total) // (2 * total)


def _hour_buckets(now: datetime, tz: tzinfo) -> list[HourBucket]:
    buckets = []
    for k in range(TIMELINE_HOURS - 1, -1, -1):
        local = (now - timedelta(hours=k)).astimezone(tz)
        start = local.replace(minute=0, second=0, microsecond=0)
        buckets.append(HourBucket(hour=start.strftime("%H:%M"), hour_start=start.astimezone(UTC)))
    return buckets


def _find_hour(buckets: Sequence[HourBucket], ts: datetime) -> HourBucket | None:
    for bucket in buckets:
        if bucket.hour_start <= ts < bucket.hour_start + timedelta(hours=1):
            return bucket
    return None


def build_admin_stats(
    *,
    audit_rows: Iterable[AuditRow],
    session_times: Iterable[datetime],
    agent_type_counts: Sequence[tuple[str, int]],
    total_users: int,
    total_sessions: int,
    now: datetime,
    tz: tzinfo = UTC,
) -> AdminStats:
    """Aggregate raw rows into the stats payload.

    Args:
        audit_rows: audit events since `seven_day_start(now, tz)`, oldest first.
        session_times: agent-session creation times over the same window.
        agent_type_counts: (agent_type, sessions) for every agent type, all time,
            in first-encountered order.
        total_users / total_sessions: unwindowed totals.
        now: request time (aware). Computed once by the caller.
    """
    since_24h = now - timedelta(hours=24)
    today = now.astimezone(tz).date()
    days: dict[date, DayBucket] = {}
    for offset in range(TIMELINE_DAYS - 1, -1, -1):
        day = today - timedelta(days=offset)
        days[day] = DayBucket(date=day.isoformat())
    hours = _hour_buckets(now, tz)

    actions: Counter[str] = Counter()
    resources: Counter[str] = Counter()
    active_users: Counter[str] = Counter()
    recent = logins_24h = logouts_24h = 0

    for row in audit_rows:
        actions[row.action] += 1
        resources[row.resource_type or SYSTEM_RESOURCE] += 1

        day_bucket = days.get(row.created_at.astimezone(tz).date())
        if day_bucket is not None:
            day_bucket.actions += 1
            if row.action == _LOGIN:
                day_bucket.user_logins += 1
            elif row.action == _LOGOUT:
                day_bucket.user_logouts += 1

        if row.created_at < since_24h:
            continue

        recent += 1
        if row.user_email:
            active_users[row.user_email] += 1
        if row.action == _LOGIN:
            logins_24h += 1
        elif row.action == _LOGOUT:
            logouts_24h += 1

        hour_bucket = _find_hour(hours, row.created_at)
        if hour_bucket is not None:
            hour_bucket.actions += 1
            if row.action == _LOGIN:
                hour_bucket.user_logins += 1
            elif row.action == _LOGOUT:
                hour_bucket.user_logouts += 1

    for created_at in session_times:
        day_bucket = days.get(created_at.astimezone(tz).date())
        if day_bucket is not None:
            day_bucket.sessions_created += 1
        if created_at >= since_24h:
            hour_bucket = _find_hour(hours, created_at)
            if hour_bucket is not None:
                hour_bucket.sessions_created += 1

    agents_counter: Counter[str] = Counter()
    for agent_type, count in agent_type_counts:
        agents_counter[agent_type] += count
    top_agents = _top(agents_counter, TOP_AGENTS)
    top_total = sum(count for _, count in top_agents)

    return AdminStats(
        total_users=total_users,
        total_sessions=total_sessions,
        recent_activity_24h=recent,
        total_logins_24h=logins_24h,
        total_logouts_24h=logouts_24h,
        most_active_users=[
            ActiveUser(user_email=email, action_count=count)
            for email, count in _top(active_users, TOP_USERS)
        ],
        most_used_agents=[
            AgentUsage(agent_type=agent, usage_count=count) for agent, count in top_agents
        ],
        agent_usage_distribution=[
            AgentShare(agent_type=agent, usage_count=count, percentage=_percentage(count, top_total))
            for agent, count in top_agents
        ],
        action_breakdown_7d=[
            ActionCount(action=action, count=count) for action, count in _top(actions, TOP_ACTIONS)
        ],
        resource_breakdown_7d=[
            ResourceCount(resource_type=resource, count=count)
            for resource, count in _top(resources, TOP_RESOURCES)
        ],
        activity_timeline_7d=list(days.values()),
        activity_timeline_24h=hours,
    )


async def collect_admin_stats(
    db: AsyncSession,
    identity: IdentityClient,
    now: datetime | None = None,
) -> AdminStats:
    """Read every input, then aggregate. Raises UpstreamError if any read fails."""
    now = now or datetime.now(UTC)
    tz = stats_zone()
    window_start = seven_day_start(now, tz)

    users = await identity.list_users()
    total_sessions = await count_agent_sessions(db)
    agent_type_counts = await get_agent_type_counts(db)
    audit_rows = await get_audit_rows_since(db, window_start)
    session_times = await get_session_timestamps_since(db, window_start)

    logger.debug(
        "Aggregating stats: %d audit rows, %d sessions since %s",
        len(audit_rows),
        len(session_times),
        window_start.isoformat(),
    )
    return build_admin_stats(
        audit_rows=[AuditRow(*row) for row in audit_rows],
        session_times=session_times,
        agent_type_counts=agent_type_counts,
        total_users=len(users),
        total_sessions=total_sessions,
        now=now,
        tz=tz,
    )
