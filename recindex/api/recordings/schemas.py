"""Response schemas for the recordings query endpoints."""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class RecordingResponse(BaseModel):
    """Recording metadata plus pre-built playback URL segments."""

    id: UUID
    agent_id: str
    service_group: Optional[str] = None
    other_party: Optional[str] = None
    description: Optional[str] = None
    call_id: str
    recorded_at: datetime
    duration_seconds: Optional[float] = None
    path: str = Field(description="Path relative to the agent directory")
    playback_segments: List[str] = Field(default_factory=list)
    playback_url: str

    model_config = {
        "from_attributes": True,
        "json_schema_extra": {"example": {
            "id": "1b4e28ba-2fa1-11d2-883f-0016d3cca427",
            "agent_id": "alice",
            "service_group": "svcA",
            "other_party": "carol",
            "description": None,
            "call_id": "call124",
            "recorded_at": "2024-01-01T13:05:00Z",
            "duration_seconds": None,
            "path": "svcA_20240101_130500_carol_call124.wav",
            "playback_segments": ["alice", "svcA_20240101_130500_carol_call124.wav"],
            "playback_url": "/media/recordings/alice/svcA_20240101_130500_carol_call124.wav",
        }},
    }
