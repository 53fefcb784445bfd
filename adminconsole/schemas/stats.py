"""Response schemas for the admin API (stats, users, credit usage)."""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel

from adminconsole.models.enums import PlanTier, Role


class ActiveUser(BaseModel):
    user_email: str
    action_count: int


class AgentUsage(BaseModel):
    agent_type: str
    usage_count: int


class AgentShare(AgentUsage):
    # round(100 * count / sum over the top five); shares may not add up to 100
    percentage: int


class ActionCount(BaseModel):
    action: str
    count: int


class ResourceCount(BaseModel):
    resource_type: str
    count: int


class TimelineCounters(BaseModel):
    actions: int = 0
    sessions_created: int = 0
    user_logins: int = 0
    user_logouts: int = 0


class DayBucket(TimelineCounters):
    date: str  # YYYY-MM-DD in the stats timezone


class HourBucket(TimelineCounters):
    hour: str  # HH:MM label in the stats timezone
    hour_start: datetime


class AdminStats(BaseModel):
    total_users: int
    total_sessions: int
    recent_activity_24h: int
    total_logins_24h: int
    total_logouts_24h: int
    most_active_users: list[ActiveUser]
    most_used_agents: list[AgentUsage]
    agent_usage_distribution: list[AgentShare]
    action_breakdown_7d: list[ActionCount]
    resource_breakdown_7d: list[ResourceCount]
    activity_timeline_7d: list[DayBucket]
    activity_timeline_24h: list[HourBucket]


class AdminUser(BaseModel):
    id: uuid.UUID
    email: str
    created_at: datetime | None
    last_sign_in_at: datetime | None
    role: Role
    session_count: int
    subscription_type: PlanTier


class UsageCounters(BaseModel):
    total_credits_used: int
    canvas_creations_used: int
    last_activity: datetime | None


class PlanLimits(BaseModel):
    outputs: int
    canvas: int


class CreditUsageEntry(BaseModel):
    id: uuid.UUID
    email: str
    plan: PlanTier
    usage: UsageCounters
    limits: PlanLimits
    agent_exhausted: bool
    canvas_exhausted: bool
