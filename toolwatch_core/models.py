"""Pydantic models for ToolWatch Core"""

import datetime as dt
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from .config import settings
from .health import DailyHealthRecord, HostHistory


class DailyRecordModel(BaseModel):
    """One day of tool reporting for a host"""
    date: dt.date = Field(..., description="Snapshot date")
    discovery_lag_days: Optional[int] = Field(
        None, description="Days since the discovery tool last saw the host; null if never"
    )
    tool_found: Dict[str, bool] = Field(
        default_factory=dict, description="Whether each security tool reported the host today"
    )
    tool_lag_days: Dict[str, Optional[int]] = Field(
        default_factory=dict, description="Days since each tool last reported the host"
    )

    def to_record(self) -> DailyHealthRecord:
        return DailyHealthRecord(
            date=self.date,
            discovery_lag_days=self.discovery_lag_days,
            tool_found=dict(self.tool_found),
            tool_lag_days=dict(self.tool_lag_days),
        )


class HostModel(BaseModel):
    """A host and its daily records"""
    shortname: str = Field(..., description="Host identifier", min_length=1, max_length=255)
    fullname: Optional[str] = Field(None, description="Fully qualified host name")
    environment: Optional[str] = Field(None, description="Environment the host belongs to")
    records: List[DailyRecordModel] = Field(default_factory=list, description="Daily records")

    def to_history(self) -> HostHistory:
        return HostHistory(
            host_id=self.shortname,
            records=tuple(r.to_record() for r in self.records),
            fullname=self.fullname,
            environment=self.environment,
        )


class AnalyticsRequest(BaseModel):
    """Request body shared by every analytics endpoint"""
    window_days: int = Field(
        default_factory=lambda: settings.DEFAULT_WINDOW_DAYS, gt=0, description="Number of days to analyse"
    )
    environment: Optional[str] = Field(None, description="Only analyse hosts in this environment")
    as_of: Optional[date] = Field(None, description="Last day of the window; defaults to the latest record")
    hosts: List[HostModel] = Field(default_factory=list, description="Host histories")

    @field_validator("window_days", mode="before")
    @classmethod
    def reject_bool_window(cls, v: Any) -> Any:
        """Booleans are ints to Python but never a window length"""
        if isinstance(v, bool):
            raise ValueError("window_days must be a number of days")
        return v

    @field_validator("hosts")
    @classmethod
    def unique_shortnames(cls, v: List[HostModel]) -> List[HostModel]:
        seen = set()
        for host in v:
            if host.shortname in seen:
                raise ValueError(f"Duplicate host shortname: {host.shortname}")
            seen.add(host.shortname)
        return v

    def to_histories(self) -> List[HostHistory]:
        return [host.to_history() for host in self.hosts]


class HealthResponse(BaseModel):
    """Health check response"""
    status: str = Field("healthy", description="Service status")
    version: str = Field(..., description="API version")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    services: Dict[str, Any] = Field(default_factory=dict, description="Service statuses")
    config: Dict[str, Any] = Field(default_factory=dict, description="Configuration report")
