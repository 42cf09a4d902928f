"""
Access Models
Session access context and validation result
"""

from typing import Optional

from pydantic import BaseModel, Field


class AccessContext(BaseModel):
    """Per-request facts supplied by the caller"""

    ip_address: Optional[str] = Field(None, description="Client IP address; omitted skips the IP gate")
    has_2fa: bool = Field(False, description="Whether the session completed a second factor")


class AccessValidation(BaseModel):
    """Outcome of a data room session check"""

    allowed: bool
    reason: Optional[str] = None
    requires_activation: bool = False
    requires_2fa: bool = False

    @classmethod
    def deny(cls, reason: str, **flags: bool) -> "AccessValidation":
        return cls(allowed=False, reason=reason, **flags)

    @classmethod
    def allow(cls) -> "AccessValidation":
        return cls(allowed=True)
