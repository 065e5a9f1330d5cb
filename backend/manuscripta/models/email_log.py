from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class EmailStatus(str, Enum):
    SENT = "sent"
    FAILED = "failed"
    SKIPPED = "skipped"


class EmailLog(BaseModel):
    """
    Model for public.email_logs
    """
    id: Optional[UUID] = None  # DB generated
    recipient: str
    subject: str
    template_name: str
    status: EmailStatus
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)
