"""
Completion event: the message passed from the voice provider webhook to the
redial scheduler.
"""

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from redialer.telephony.outcomes import OutcomeClass, OutcomeCode


class CompletionEvent(BaseModel):
    """Normalized report that a dispatched attempt finished.

    Carries only what correlation needs: the attempt id, the number it was
    for, the normalized outcome and the settle time. Delivery may be
    duplicated or delayed; consumers must be idempotent.
    """

    model_config = ConfigDict(frozen=True)

    attempt_id: str = Field(..., min_length=1, description="Attempt id echoed back by the provider")
    phone_number: str = Field(..., description="Number the attempt was dialed to")
    outcome: OutcomeCode = Field(default=OutcomeCode.UNKNOWN)
    outcome_class: OutcomeClass = Field(default=OutcomeClass.RETRIABLE)
    settled_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    transferred: bool = Field(
        default=False,
        description="Prospect was handed to a live operator; the line stays busy after settle",
    )
    callback_at: datetime | None = Field(
        default=None,
        description="Prospect asked to be called back at this time",
    )
    provider_call_id: str | None = None
    raw_outcome: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
