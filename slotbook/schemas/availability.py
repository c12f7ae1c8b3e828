# slotbook/schemas/availability.py
from __future__ import annotations

import datetime as dt
from typing import List

from pydantic import Field

from slotbook.schemas.booking import CamelModel


class SlotView(CamelModel):
    """Public slot; which members are free is not exposed"""
    start: dt.datetime = Field(..., description="Slot start (UTC)")
    end: dt.datetime = Field(..., description="Slot end (UTC)")


class AvailabilityResponse(CamelModel):
    date: dt.date
    timezone: str
    slots: List[SlotView] = Field(default_factory=list)
