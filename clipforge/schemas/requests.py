"""
Request schemas for the videos API.
"""

from typing import Optional

from pydantic import BaseModel, Field, model_validator

from clipforge.config import get_settings


class VideoInfoRequest(BaseModel):
    """Request body for metadata lookup."""

    url: Optional[str] = Field(None, description="YouTube or Twitch video URL")


class ProcessVideoRequest(BaseModel):
    """Request body for starting ingestion of a video."""

    url: Optional[str] = Field(None, description="YouTube or Twitch video URL")
    user_id: Optional[str] = Field(None, description="Owner tag for listing projects")
    title: Optional[str] = Field(None, max_length=200, description="Project title (defaults to the video title)")

    class Config:
        json_schema_extra = {
            "example": {
                "url": "https://www.youtube.com/watch?v=dQw4w9WgXcQ",
                "user_id": "user123",
            }
        }


class CutClipRequest(BaseModel):
    """Request body for creating a manual clip."""

    start: float = Field(..., ge=0, allow_inf_nan=False, description="Start time in seconds")
    end: float = Field(..., allow_inf_nan=False, description="End time in seconds")
    title: Optional[str] = Field(None, max_length=200)
    caption_style: Optional[str] = Field(None, description="Caption style ID (see /caption-styles)")

    @model_validator(mode="after")
    def validate_range(self) -> "CutClipRequest":
        """Ensure the clip range is non-empty and within the manual clip limit."""
        if self.end <= self.start:
            raise ValueError("end must be greater than start")
        max_seconds = get_settings().max_manual_clip_seconds
        if self.end - self.start > max_seconds:
            raise ValueError(f"Clip cannot be longer than {max_seconds:g} seconds")
        return self


class UpdateClipRequest(BaseModel):
    """Partial update of a clip. Range checks run against the merged clip."""

    title: Optional[str] = Field(None, max_length=200)
    start: Optional[float] = Field(None, ge=0, allow_inf_nan=False)
    end: Optional[float] = Field(None, allow_inf_nan=False)
    reframe: Optional[bool] = None
    caption_style: Optional[str] = None
