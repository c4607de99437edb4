"""Response envelope shared by every endpoint."""
from __future__ import annotations

import datetime as dt
from typing import Generic, Literal, TypeVar

from pydantic import BaseModel, Field

from certportal.core import clock

DataT = TypeVar("DataT")


class ApiResponse(BaseModel, Generic[DataT]):
    status: Literal["success"] = "success"
    message: str = "OK"
    timestamp: dt.datetime = Field(default_factory=clock.utcnow)
    data: DataT | None = None


def success(data: DataT | None = None, message: str = "OK") -> ApiResponse[DataT]:
    return ApiResponse(message=message, data=data)
