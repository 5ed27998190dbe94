from datetime import date


from chiro_core.dedup.scoring import (
    MAX_SCORE,
    REASON_DOB,
    REASON_FIRST_EXACT,
    REASON_LAST_EXACT,
    REASON_LAST_PHONETIC,
    REASON_PHONE,
    PatientSnapshot,
    is_reportable,
    normalize_phone,
    score_pair,
)

DOB = date(1980, 5, 2)


def snap(first="", last="", dob=None, phone=""):
    return PatientSnapshot.build(patient_id=None, first_name=first, last_name=last, date_of_birth=dob, phone=phone)


def test_same_name_and_dob_with_different_phones():
    result = score_pair(
        snap("Maria", "Garcia", DOB, "555-0100"),
        snap("maria", "GARCIA", DOB, "555-0199"),
    )
    assert result.score == 95
    assert result.reasons == [REASON_DOB, REASON_FIRST_EXACT, REASON_LAST_EXACT]


def test_phonetic_last_name_counts_less_than_exact():
    exact = score_pair(snap("Kathryn", "Smith", DOB), snap("Catherine", "Smith", DOB))
    phonetic = score_pair(snap("Kathryn", "Smyth", DOB), snap("Catherine", "Smith", DOB))

    assert REASON_LAST_PHONETIC in phonetic.reasons
    assert phonetic.score == 55
    assert exact.score > phonetic.score


def test_score_is_clamped():
    result = score_pair(
        snap("Maria", "Garcia", DOB, "(555) 010-0000"),
        snap("Maria", "Garcia", DOB, "555.010.0000"),
    )
    assert REASON_PHONE in result.reasons
    assert result.score == MAX_SCORE


def test_empty_names_never_match():
    result = score_pair(snap("", ""), snap("", ""))
    assert result.score == 0
    assert result.reasons == []


def test_each_agreeing_signal_raises_the_score():
    names_only = score_pair(snap("Ann", "Lee"), snap("Ann", "Lee"))
    with_dob = score_pair(snap("Ann", "Lee", DOB), snap("Ann", "Lee", DOB))
    with_phone = score_pair(snap("Ann", "Lee", None, "555-0100"), snap("Ann", "Lee", None, "5550100"))

    assert names_only.score == 55
    assert with_dob.score == 95
    assert with_phone.score == 90


def test_normalize_phone_keeps_digits_only():
    assert normalize_phone("+1 (555) 010-0100") == "15550100100"
    assert normalize_phone(None) == ""


def test_threshold_from_settings(settings):
    assert is_reportable(25) is True
    assert is_reportable(24) is False

    settings.DEDUP_MATCH_THRESHOLD = 60
    assert is_reportable(55) is False
