"""
Outcome code to CRM status mapping.

The CRM accepts a bounded set of status abbreviations. Every internal outcome
maps onto exactly one of them; anything unmapped falls back to ``N`` instead
of failing the update.
"""

from redialer.shared.logging import get_logger
from redialer.telephony.outcomes import OutcomeCode

logger = get_logger(__name__)

DEFAULT_CRM_STATUS = "N"

CRM_STATUS_BY_OUTCOME: dict[OutcomeCode, str] = {
    OutcomeCode.SALE: "SALE",
    OutcomeCode.TRANSFERRED: "ACA",
    OutcomeCode.CALLBACK: "CB",
    OutcomeCode.VOICEMAIL: "A",
    OutcomeCode.NO_ANSWER: "NA",
    OutcomeCode.BUSY: "B",
    OutcomeCode.NOT_INTERESTED: "NI",
    OutcomeCode.DO_NOT_CALL: "DNCA",
    OutcomeCode.WRONG_NUMBER: "WRONG",
    OutcomeCode.BAD_NUMBER: "BPN",
    OutcomeCode.DISCONNECTED: "DC",
    OutcomeCode.HANGUP: "CALLHU",
    OutcomeCode.CONFUSED: "CD",
    OutcomeCode.FAILED: DEFAULT_CRM_STATUS,
    OutcomeCode.UNKNOWN: DEFAULT_CRM_STATUS,
}

CRM_STATUSES = frozenset(CRM_STATUS_BY_OUTCOME.values())


def crm_status_for(code: OutcomeCode | str | None) -> str:
    """CRM abbreviation for ``code``; ``N`` when nothing matches."""
    if code is None:
        return DEFAULT_CRM_STATUS
    try:
        outcome = OutcomeCode(code)
    except ValueError:
        logger.warning("Unknown outcome, defaulting CRM status", extra={"outcome": str(code)})
        return DEFAULT_CRM_STATUS
    status = CRM_STATUS_BY_OUTCOME.get(outcome)
    if status is None:
        logger.warning("Unmapped outcome, defaulting CRM status", extra={"outcome": outcome.value})
        return DEFAULT_CRM_STATUS
    return status
