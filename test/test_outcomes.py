"""
Tests for outcome normalization, classification and the CRM status map.
"""

import pytest

from redialer.crm.status import CRM_STATUSES, DEFAULT_CRM_STATUS, crm_status_for
from redialer.telephony.outcomes import (
    DEFAULT_QUALIFYING,
    OutcomeClass,
    OutcomeCode,
    classify,
    normalize_outcome,
    qualifying_set,
)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("VOICEMAIL", OutcomeCode.VOICEMAIL),
        ("answering machine", OutcomeCode.VOICEMAIL),
        ("Transferred to agent", OutcomeCode.TRANSFERRED),
        ("no-answer", OutcomeCode.NO_ANSWER),
        ("Do Not Call", OutcomeCode.DO_NOT_CALL),
        ("customer not interested", OutcomeCode.NOT_INTERESTED),
        ("bad phone", OutcomeCode.BAD_NUMBER),
        ("caller hung up", OutcomeCode.HANGUP),
        ("please call back tomorrow", OutcomeCode.CALLBACK),
        ("", OutcomeCode.UNKNOWN),
        (None, OutcomeCode.UNKNOWN),
        ("something else", OutcomeCode.UNKNOWN),
    ],
)
def test_normalize_outcome(raw: str | None, expected: OutcomeCode) -> None:
    assert normalize_outcome(raw) == expected


class TestClassify:
    def test_default_qualifying_terminal(self) -> None:
        for code in DEFAULT_QUALIFYING:
            assert classify(code) == OutcomeClass.QUALIFYING_TERMINAL

    def test_dead_numbers(self) -> None:
        assert classify(OutcomeCode.DISCONNECTED) == OutcomeClass.DEAD_NUMBER
        assert classify(OutcomeCode.BAD_NUMBER) == OutcomeClass.DEAD_NUMBER
        assert normalize_outcome("Number not in service") == OutcomeCode.DISCONNECTED

    def test_hard_failures(self) -> None:
        assert classify(OutcomeCode.FAILED) == OutcomeClass.HARD_FAILURE

    def test_retriable(self) -> None:
        assert classify(OutcomeCode.VOICEMAIL) == OutcomeClass.RETRIABLE
        assert classify(OutcomeCode.UNKNOWN) == OutcomeClass.RETRIABLE

    def test_configured_qualifying_set(self) -> None:
        qualifying = qualifying_set(["sale"])

        assert classify(OutcomeCode.SALE, qualifying) == OutcomeClass.QUALIFYING_TERMINAL
        assert classify(OutcomeCode.NOT_INTERESTED, qualifying) == OutcomeClass.RETRIABLE

    def test_unknown_qualifying_name_rejected(self) -> None:
        with pytest.raises(ValueError):
            qualifying_set(["NOT_A_CODE"])


class TestCrmStatus:
    @pytest.mark.parametrize(
        ("code", "status"),
        [
            (OutcomeCode.SALE, "SALE"),
            (OutcomeCode.TRANSFERRED, "ACA"),
            (OutcomeCode.VOICEMAIL, "A"),
            (OutcomeCode.DO_NOT_CALL, "DNCA"),
            (OutcomeCode.HANGUP, "CALLHU"),
            (OutcomeCode.UNKNOWN, "N"),
        ],
    )
    def test_mapping(self, code: OutcomeCode, status: str) -> None:
        assert crm_status_for(code) == status

    def test_every_code_maps_into_known_set(self) -> None:
        for code in OutcomeCode:
            assert crm_status_for(code) in CRM_STATUSES

    def test_unknown_value_defaults(self) -> None:
        assert crm_status_for("MYSTERY") == DEFAULT_CRM_STATUS
        assert crm_status_for(None) == DEFAULT_CRM_STATUS
