"""
Outcome normalization and classification.

Voice providers report free-form dispositions ("voicemail", "answering
machine", "Transferred to agent", ...). They are folded into a closed set of
outcome codes, and each code into one of the classes the scheduler acts on.
"""

from collections.abc import Iterable
from enum import Enum


class OutcomeCode(str, Enum):
    """Normalized attempt outcome."""

    TRANSFERRED = "TRANSFERRED"
    SALE = "SALE"
    CALLBACK = "CALLBACK"
    VOICEMAIL = "VOICEMAIL"
    NO_ANSWER = "NO_ANSWER"
    BUSY = "BUSY"
    NOT_INTERESTED = "NOT_INTERESTED"
    DO_NOT_CALL = "DO_NOT_CALL"
    WRONG_NUMBER = "WRONG_NUMBER"
    BAD_NUMBER = "BAD_NUMBER"
    DISCONNECTED = "DISCONNECTED"
    HANGUP = "HANGUP"
    CONFUSED = "CONFUSED"
    FAILED = "FAILED"
    UNKNOWN = "UNKNOWN"


class OutcomeClass(str, Enum):
    """What the scheduler does with an outcome."""

    QUALIFYING_TERMINAL = "qualifying_terminal"
    RETRIABLE = "retriable"
    HARD_FAILURE = "hard_failure"
    DEAD_NUMBER = "dead_number"


DEFAULT_QUALIFYING = frozenset(
    {
        OutcomeCode.TRANSFERRED,
        OutcomeCode.SALE,
        OutcomeCode.NOT_INTERESTED,
        OutcomeCode.DO_NOT_CALL,
        OutcomeCode.WRONG_NUMBER,
    }
)

# The number itself is out of service; it is never dialed again.
DEAD_NUMBERS = frozenset(
    {
        OutcomeCode.BAD_NUMBER,
        OutcomeCode.DISCONNECTED,
    }
)

HARD_FAILURES = frozenset({OutcomeCode.FAILED})

_EXACT: dict[str, OutcomeCode] = {
    "transferred": OutcomeCode.TRANSFERRED,
    "transfer": OutcomeCode.TRANSFERRED,
    "aca": OutcomeCode.TRANSFERRED,
    "sale": OutcomeCode.SALE,
    "sold": OutcomeCode.SALE,
    "callback": OutcomeCode.CALLBACK,
    "call_back": OutcomeCode.CALLBACK,
    "requested_callback": OutcomeCode.CALLBACK,
    "voicemail": OutcomeCode.VOICEMAIL,
    "answering_machine": OutcomeCode.VOICEMAIL,
    "machine": OutcomeCode.VOICEMAIL,
    "no_answer": OutcomeCode.NO_ANSWER,
    "noanswer": OutcomeCode.NO_ANSWER,
    "busy": OutcomeCode.BUSY,
    "not_interested": OutcomeCode.NOT_INTERESTED,
    "ni": OutcomeCode.NOT_INTERESTED,
    "dnc": OutcomeCode.DO_NOT_CALL,
    "do_not_call": OutcomeCode.DO_NOT_CALL,
    "wrong_number": OutcomeCode.WRONG_NUMBER,
    "bad_phone": OutcomeCode.BAD_NUMBER,
    "bad_phone_number": OutcomeCode.BAD_NUMBER,
    "bad_number": OutcomeCode.BAD_NUMBER,
    "disconnected": OutcomeCode.DISCONNECTED,
    "disconnected_number": OutcomeCode.DISCONNECTED,
    "hangup": OutcomeCode.HANGUP,
    "hang_up": OutcomeCode.HANGUP,
    "caller_hung_up": OutcomeCode.HANGUP,
    "confused": OutcomeCode.CONFUSED,
    "failed": OutcomeCode.FAILED,
    "error": OutcomeCode.FAILED,
}

# Order matters: "do not call" and "not interested" must win over "call" and "ni".
_CONTAINS: list[tuple[tuple[str, ...], OutcomeCode]] = [
    (("do_not_call", "never_call", "remove_from_list", "stop_calling"), OutcomeCode.DO_NOT_CALL),
    (("transfer",), OutcomeCode.TRANSFERRED),
    (("voicemail", "machine"), OutcomeCode.VOICEMAIL),
    (("callback", "call_back"), OutcomeCode.CALLBACK),
    (("sale",), OutcomeCode.SALE),
    (("not_interest",), OutcomeCode.NOT_INTERESTED),
    (("confus",), OutcomeCode.CONFUSED),
    (("no_answer", "noanswer"), OutcomeCode.NO_ANSWER),
    (("busy",), OutcomeCode.BUSY),
    (("hang",), OutcomeCode.HANGUP),
    (("disconnect", "not_in_service"), OutcomeCode.DISCONNECTED),
    (("wrong",), OutcomeCode.WRONG_NUMBER),
    (("bad_phone", "invalid_number"), OutcomeCode.BAD_NUMBER),
    (("fail", "error"), OutcomeCode.FAILED),
]


def _slug(raw: str) -> str:
    out = []
    for ch in raw.strip().lower():
        out.append(ch if ch.isalnum() else "_")
    return "_".join(part for part in "".join(out).split("_") if part)


def normalize_outcome(raw: str | None) -> OutcomeCode:
    """Map a provider disposition string to an ``OutcomeCode``."""
    if not raw:
        return OutcomeCode.UNKNOWN
    slug = _slug(raw)
    try:
        return OutcomeCode(slug.upper())
    except ValueError:
        pass
    if slug in _EXACT:
        return _EXACT[slug]
    for needles, code in _CONTAINS:
        if any(n in slug for n in needles):
            return code
    return OutcomeCode.UNKNOWN


def qualifying_set(names: Iterable[str] | None) -> frozenset[OutcomeCode]:
    """Build the qualifying-terminal set from operator-provided names."""
    if names is None:
        return DEFAULT_QUALIFYING
    codes = set()
    for name in names:
        codes.add(OutcomeCode(str(name).strip().upper()))
    return frozenset(codes)


def classify(
    code: OutcomeCode,
    qualifying: frozenset[OutcomeCode] = DEFAULT_QUALIFYING,
) -> OutcomeClass:
    if code in qualifying:
        return OutcomeClass.QUALIFYING_TERMINAL
    if code in DEAD_NUMBERS:
        return OutcomeClass.DEAD_NUMBER
    if code in HARD_FAILURES:
        return OutcomeClass.HARD_FAILURE
    return OutcomeClass.RETRIABLE
