"""Customer contact model.

Only used to resolve where settlement notifications go. A user without a
phone number has no contact address; transitions still commit for them.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class User(BaseModel):
    """WhatsApp customer.

    Attributes:
        user_id: Identifier used by transactions and hash records
        phone_number: WhatsApp address in international format, digits only
        display_name: Profile name reported by WhatsApp
        created_at: First time the user was seen
    """

    user_id: str = Field(..., min_length=1)
    phone_number: Optional[str] = Field(None, description="WhatsApp address (digits only)")
    display_name: Optional[str] = Field(None, max_length=100)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("phone_number")
    @classmethod
    def _normalize_phone(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        digits = "".join(ch for ch in value if ch.isdigit())
        return digits or None

    @property
    def contact_address(self) -> Optional[str]:
        return self.phone_number
