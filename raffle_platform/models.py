"""Pydantic request models for the REST API."""

from typing import Optional
from pydantic import BaseModel


class EnterRequest(BaseModel):
    wallet: str
    ticket_count: int = 1
    timeout_sec: Optional[float] = None


class ClaimRequest(BaseModel):
    wallet: str
