"""Pydantic request models for daemon endpoints."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class ConnectRequest(BaseModel):
    serial: str | None = None


class ShellRequest(BaseModel):
    command: str


class AppInstallRequest(BaseModel):
    path: str


class MirrorStartRequest(BaseModel):
    stay_awake: bool = True
    power_off_on_close: bool = False
    agent_file: str | None = None


class TouchRequest(BaseModel):
    action: Literal["down", "move", "up"]
    x: float
    y: float
    width: float
    height: float


class KeyRequest(BaseModel):
    action: Literal["down", "up"]
    key_code: int = Field(ge=0)
