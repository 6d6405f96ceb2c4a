"""Pydantic models used by the Webflow proxy."""
from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict

HeaderList = list[tuple[str, str]]


class RedirectMode(str, Enum):
    """Which public hostname form is canonical."""
    WWW = "www"
    ROOT = "root"
    NONE = "none"


class OutboundRequest(BaseModel):
    """Request as it will be sent to the upstream origin."""
    model_config = ConfigDict(frozen=True)

    method: str
    url: str
    headers: HeaderList
    content: Optional[bytes] = None  # None when the inbound body was empty


class RelayedResponse(BaseModel):
    """Response ready to be written back to the client."""
    model_config = ConfigDict(frozen=True)

    status_code: int
    headers: HeaderList
    body: bytes
    rewritten: bool = False
