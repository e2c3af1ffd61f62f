"""Pydantic models for remote decision endpoint payloads."""
from typing import Optional

from pydantic import BaseModel, Field, StrictBool, StrictStr


class DecisionResponse(BaseModel):
    """Decision endpoint success body."""

    ok: StrictBool = Field(..., description="Explicit success flag; must be true")
    url: StrictStr = Field(..., description="Decided content resource")


class DeviceMetadata(BaseModel):
    """Device/platform fields merged into every decision request."""

    os: str = Field("iOS", description="Platform name reported to the endpoint")
    af_id: str = Field(..., description="Attribution provider device identifier")
    bundle_id: str = Field("", description="Application bundle identifier")
    firebase_project_id: Optional[str] = Field(
        None, description="Messaging sender / project id"
    )
    store_id: str = Field(..., description="Store id, e.g. id6758890855")
    push_token: Optional[str] = Field(None, description="Push registration token")
    locale: str = Field("EN", description="Two-letter upper-case language code")

    def to_request_fields(self) -> dict:
        """Fields as they appear in the decision request body."""
        return self.model_dump()
