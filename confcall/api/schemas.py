"""
Pydantic response models for the status API.
"""

from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class HealthModel(BaseModel):
    status: str = "ok"
    me: str
    announcerRunning: bool = False
    mediaStarted: bool = False


class RosterEntryModel(BaseModel):
    name: Optional[str] = None
    address: str
    media_port: Optional[int] = Field(default=None, alias="mediaPort")
    surface: Optional[str] = None
    local: bool = False
    model_config = ConfigDict(populate_by_name=True)


class RosterModel(BaseModel):
    me: str
    participants: List[RosterEntryModel] = Field(default_factory=list)


class ParameterRecordModel(BaseModel):
    sourceAddress: str
    pictureParameters: str
    videoSsrc: int
    audioSsrc: int


class ParticipantsModel(BaseModel):
    records: List[ParameterRecordModel] = Field(default_factory=list)


class SsrcStatusModel(BaseModel):
    active: Dict[str, str] = Field(default_factory=dict)
    orphans: Dict[str, List[int]] = Field(default_factory=dict)
    deactivated: Dict[str, Optional[str]] = Field(default_factory=dict)


class LatencyStatsModel(BaseModel):
    count: int = 0
    meanMs: float = 0.0
    maxMs: float = 0.0
    lastMs: float = 0.0


class LatencyModel(BaseModel):
    enabled: bool = False
    pairs: Dict[str, LatencyStatsModel] = Field(default_factory=dict)
