"""Pydantic schemas used by the HTTP routes."""

from __future__ import annotations

from pydantic import BaseModel, Field


class SessionToken(BaseModel):
    token: str = Field(..., description="Signed session token; offer it as subprotocol access_token.<token>.")


class HealthOut(BaseModel):
    ok: bool
    active_connections: int
    draining: bool


class ErrorOut(BaseModel):
    error: str = "INTERNAL_SERVER_ERROR"
    message: str
