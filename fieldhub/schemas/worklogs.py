from decimal import Decimal
from typing import List, Optional, Union

from pydantic import BaseModel, Field


Number = Union[Decimal, str, None]


class WorkLogSubmitRequest(BaseModel):
    work_type: Optional[str] = None  # required, checked by the service so the message is consistent
    block: Optional[str] = None
    floor: Optional[str] = None
    apartment: Optional[str] = None
    zone: Optional[str] = None
    quantity: Number = None
    unit_price: Number = None
    total: Number = None
    description: Optional[str] = None
    photo_urls: List[str] = Field(default_factory=list)
    invoice_file_path: Optional[str] = None


class WorkLogCreateRequest(WorkLogSubmitRequest):
    """Manager-side creation on behalf of an operative."""
    user_id: int


class WorkLogUpdateRequest(BaseModel):
    quantity: Number = None
    unit_price: Number = None
    total: Number = None


class JobIdsRequest(BaseModel):
    job_ids: List[Union[int, str]] = Field(default_factory=list)
