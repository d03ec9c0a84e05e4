from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel


class Role(str, Enum):
    DISPATCHER = "dispatcher"
    CUSTOMER = "customer"
    CARRIER = "carrier"
    DRIVER = "driver"


class HealthResponse(BaseModel):
    status: str = "ok"
    version: Optional[str] = None
