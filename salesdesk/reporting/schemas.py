from __future__ import annotations

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel


class StateCounts(BaseModel):
    total: int
    by_state: dict[str, int]


class RecentActivityItem(BaseModel):
    entity_type: Literal["opportunity", "quote"]
    id: UUID
    label: str
    state: str
    created_at: datetime


class DashboardMetricsRead(BaseModel):
    opportunities: StateCounts
    quotes: StateCounts
    handovers: StateCounts
    recent_activity: list[RecentActivityItem]
