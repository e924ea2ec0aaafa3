from __future__ import annotations

from modqueue_api.domain.evidence import (
    EvidenceError,
    eligible_fields,
    filter_eligible_evidence,
    has_eligible_evidence,
    is_valid_timestamp,
    is_valid_timestamp_list,
    sanitize_text,
    validate_evidence,
)


def test_sanitize_text_strips_markup_and_nul_bytes() -> None:
    assert sanitize_text("  <b>loud</b> noise\x00 ") == "loud noise"
    assert sanitize_text(None) == ""


def test_timestamp_formats() -> None:
    assert is_valid_timestamp("1:23")
    assert is_valid_timestamp("59:59")
    assert is_valid_timestamp("01:02:03")
    assert not is_valid_timestamp("60:00")
    assert not is_valid_timestamp("24:00:00")
    assert not is_valid_timestamp("1:2")
    assert not is_valid_timestamp("abc")


def test_timestamp_list_ignores_blank_entries() -> None:
    assert is_valid_timestamp_list("1:23, 2:45,")
    assert not is_valid_timestamp_list("1:23, nope")


def test_validate_evidence_cleans_fields() -> None:
    cleaned = validate_evidence(
        {
            "original_work_link": " https://example.com/song ",
            "proof_of_ownership": "<i>I own the master</i>",
            "audio_timestamp": "1:23 ,2:45,",
        }
    )
    assert cleaned == {
        "original_work_link": "https://example.com/song",
        "proof_of_ownership": "I own the master",
        "audio_timestamp": "1:23, 2:45",
    }


def test_validate_evidence_rejects_bad_link() -> None:
    try:
        validate_evidence({"original_work_link": "ftp://example.com/song"})
    except EvidenceError as exc:
        assert exc.field == "original_work_link"
        return
    raise AssertionError("Expected EvidenceError")


def test_validate_evidence_rejects_long_proof() -> None:
    try:
        validate_evidence({"proof_of_ownership": "x" * 501})
    except EvidenceError as exc:
        assert exc.field == "proof_of_ownership"
        return
    raise AssertionError("Expected EvidenceError")


def test_eligibility_depends_on_type_and_reason() -> None:
    assert eligible_fields("post", "copyright_violation") == (
        "original_work_link",
        "proof_of_ownership",
    )
    assert eligible_fields("track", "harassment") == ("audio_timestamp",)
    assert eligible_fields("post", "harassment") == ()
    assert eligible_fields("track", "spam") == ()


def test_ineligible_evidence_is_dropped() -> None:
    evidence = {"audio_timestamp": "1:23", "original_work_link": "https://example.com"}
    assert filter_eligible_evidence(evidence, "track", "hate_speech") == {
        "audio_timestamp": "1:23"
    }
    assert filter_eligible_evidence(evidence, "post", "spam") is None
    assert not has_eligible_evidence(evidence, "comment", "harassment")
    assert has_eligible_evidence(evidence, "album", "copyright_violation")
