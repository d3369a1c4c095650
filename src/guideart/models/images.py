"""
Image artwork models.

Pydantic models for the Schedules Direct artwork descriptors, the persisted
program -> image index entries and the persisted upstream token.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from guideart.utils.image_urls import image_id_from_uri


class ImageCandidate(BaseModel):
    """
    One artwork descriptor returned by the metadata endpoint.

    Width and height of 0 mean "unknown". Upstream sends additional keys
    (``size``, ``primary``, ...) which are ignored.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    uri: str = Field(default="", description="Absolute URL or bare image id")
    category: str = Field(default="", description="e.g. 'Poster Art', 'Banner-L1'")
    aspect: str = Field(default="", description="Aspect label such as '2x3'")
    width: int = Field(default=0, ge=0)
    height: int = Field(default=0, ge=0)
    tier: str = Field(default="", description="Series, Season, Episode, ...")

    @field_validator("width", "height", mode="before")
    @classmethod
    def coerce_dimension(cls, v: object) -> int:
        """Upstream sends dimensions as strings; blanks and junk become 0."""
        if v is None or v == "":
            return 0
        try:
            return max(int(v), 0)  # type: ignore[call-overload]
        except (TypeError, ValueError):
            return 0

    @field_validator("uri", "category", "aspect", "tier", mode="before")
    @classmethod
    def coerce_text(cls, v: object) -> str:
        """Treat missing text fields as empty strings."""
        if v is None:
            return ""
        return str(v).strip()

    @property
    def image_id(self) -> str:
        """Stable image id derived from the uri."""
        return image_id_from_uri(self.uri)


class ProgramMetadata(BaseModel):
    """Artwork metadata for a single program."""

    model_config = ConfigDict(populate_by_name=True)

    program_id: str = Field(..., alias="programID")
    title: Optional[str] = None
    candidates: list[ImageCandidate] = Field(default_factory=list, alias="data")


class IndexEntry(BaseModel):
    """Persisted program -> image mapping."""

    model_config = ConfigDict(populate_by_name=True)

    image_id: str = Field(..., alias="imageID")
    last_request_unix: int = Field(default=0, alias="lastRequestUnix")

    @property
    def last_request(self) -> Optional[datetime]:
        """Last serve time as an aware UTC datetime, or None if unknown."""
        if self.last_request_unix <= 0:
            return None
        return datetime.fromtimestamp(self.last_request_unix, tz=timezone.utc)


class Token(BaseModel):
    """Upstream session token with its absolute expiry."""

    model_config = ConfigDict(populate_by_name=True)

    value: str = Field(..., alias="token")
    expiry: datetime = Field(..., alias="token_expiry_utc")

    @field_validator("expiry")
    @classmethod
    def ensure_utc(cls, v: datetime) -> datetime:
        """Naive timestamps are interpreted as UTC."""
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)

    def is_usable(self, now: datetime, margin: timedelta) -> bool:
        """
        Check whether the token can still be sent upstream.

        Parameters
        ----------
        now : datetime
            Current aware UTC time.
        margin : timedelta
            Safety margin before the hard expiry.

        Returns
        -------
        bool
            True when ``now < expiry - margin`` and the value is not blank.
        """
        return bool(self.value) and now < self.expiry - margin

    def is_expired(self, now: datetime) -> bool:
        """True once the hard expiry has passed."""
        return now >= self.expiry
