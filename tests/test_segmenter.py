"""Tests for document segmentation."""

import logging

import pytest

from conftest import SCENARIO_TEXT
from kb_ingest.boundaries import is_heading
from kb_ingest.segmenter import (
    SegmentationStrategy,
    extract_toc_headings,
    log_segment_summary,
    parse_toc,
    segment_document,
    select_strategy,
)
from kb_ingest.utils import derive_segment_id, normalize_text

LOREM = ("lorem ipsum dolor sit amet " * 8).strip()

TOC_TEXT = (
    "Helpdesk Guide\n"
    "Contents\n"
    "Account Access ........ 2\n"
    "    Reset Password ..... 2\n"
    "    Unlock Account ..... 2\n"
    "Billing ........ 2\n"
    "    Refund Policy ..... 2\n"
    "\f"
    "Account Access\n"
    "Reset Password\n"
    "Go to the login page and choose forgot password.\n"
    "Unlock Account\n"
    "Contact support to unlock the account.\n"
    "Billing\n"
    "Refund Policy\n"
    "Refunds take five business days.\n"
)


def _long_document():
    sections = []
    for i, name in enumerate(["ALPHA", "BETA", "GAMMA"]):
        paras = [f"Paragraph {i}-{j} {LOREM}." for j in range(12)]
        sections.append(name + "\n\n" + "\n\n".join(paras))
    return "\n\n".join(sections)


def _body_words(text):
    lines = [line for line in text.split("\n") if line.strip() and not is_heading(line)]
    return normalize_text(" ".join(lines))


def test_heading_walk_scenario():
    """Test the two-section document split on ALL CAPS headings across a form feed."""
    segments = segment_document(SCENARIO_TEXT, min_chars=5, strategy=SegmentationStrategy.HEADING_WALK)

    assert len(segments) == 2
    assert segments[0].heading_path == ["ACCESS"]
    assert segments[1].heading_path == ["SECURITY"]
    assert segments[0].content == "ACCESS\nHow do I reset?\nClick reset."
    assert segments[1].content.startswith("SECURITY\n")
    assert segments[0].page_range.start == 1 and segments[0].page_range.end == 1
    assert segments[1].page_range.start == 2 and segments[1].page_range.end == 2
    assert [seg.index for seg in segments] == [0, 1]


def test_scenario_selects_heading_walk():
    """Test that a document without a table of contents is walked by headings."""
    assert select_strategy(SCENARIO_TEXT) == SegmentationStrategy.HEADING_WALK
    assert len(segment_document(SCENARIO_TEXT, min_chars=5)) == 2


def test_segment_ids_are_deterministic():
    """Test that the same text always yields the same segment ids."""
    first = segment_document(SCENARIO_TEXT, min_chars=5)
    second = segment_document(SCENARIO_TEXT, min_chars=5)
    assert [seg.stable_id for seg in first] == [seg.stable_id for seg in second]
    assert first[0].stable_id == derive_segment_id(["ACCESS"], first[0].content)


def test_changed_content_changes_segment_id():
    """Test content addressing of segment ids."""
    original = segment_document(SCENARIO_TEXT, min_chars=5)
    edited = segment_document(SCENARIO_TEXT.replace("Click reset.", "Press reset."), min_chars=5)
    assert original[0].stable_id != edited[0].stable_id
    assert original[1].stable_id == edited[1].stable_id


def test_sub_headings_nest_under_top_level():
    """Test heading depth: top-level resets the path, sub-level replaces the child."""
    text = (
        "ACCOUNT\nIntro line for account.\n"
        "Password Reset Steps\nOpen settings to reset.\n"
        "Username Change Rules\nUsernames change once.\n"
        "BILLING\nBilling body text."
    )
    segments = segment_document(text, min_chars=5, strategy=SegmentationStrategy.HEADING_WALK)
    assert [seg.heading_path for seg in segments] == [
        ["ACCOUNT"],
        ["ACCOUNT", "Password Reset Steps"],
        ["ACCOUNT", "Username Change Rules"],
        ["BILLING"],
    ]


def test_text_before_first_heading_uses_document_title():
    """Test the root heading path for leading text."""
    text = "Some introduction text here.\nACCESS\nBody of access."
    segments = segment_document(text, doc_title="Helpdesk Guide", min_chars=5)
    assert segments[0].heading_path == ["helpdesk-guide"]
    assert segments[1].heading_path == ["ACCESS"]


def test_short_segments_merge_into_previous():
    """Test that a too-short segment is merged, not dropped."""
    text = "ACCESS\n" + LOREM + "\nTIPS\nShort."
    segments = segment_document(text, min_chars=50)
    assert len(segments) == 1
    assert segments[0].heading_path == ["ACCESS"]
    assert "Short." in segments[0].content


def test_short_first_segment_merges_forward():
    """Test that a too-short first segment is carried into the next one."""
    text = "INTRO\nHi.\nSETUP\n" + LOREM
    segments = segment_document(text, min_chars=50)
    assert len(segments) == 1
    assert segments[0].heading_path == ["SETUP"]
    assert segments[0].content.startswith("INTRO\nHi.")


def test_document_shorter_than_minimum_keeps_one_segment():
    """Test that a tiny document still yields its only segment."""
    segments = segment_document("ACCESS\nTiny.", min_chars=300)
    assert len(segments) == 1
    assert len(segments[0].content) < 300


def test_length_bounds():
    """Test that every segment lies within [min, max] after merging and splitting."""
    segments = segment_document(_long_document(), min_chars=300, max_chars=1000)
    assert len(segments) >= 6
    for seg in segments:
        assert 300 <= len(seg.content) <= 1000


def test_long_segments_get_part_suffixes():
    """Test Part N suffixes on split segments."""
    segments = segment_document(_long_document(), min_chars=300, max_chars=1000)
    alpha = [seg for seg in segments if seg.heading_path[0] == "ALPHA"]
    assert [seg.heading_path for seg in alpha] == [
        ["ALPHA", "Part 1"],
        ["ALPHA", "Part 2"],
        ["ALPHA", "Part 3"],
    ]
    assert len({seg.stable_id for seg in segments}) == len(segments)


def test_split_never_breaks_paragraphs():
    """Test that splitting happens at paragraph boundaries."""
    segments = segment_document(_long_document(), min_chars=300, max_chars=1000)
    for seg in segments:
        for para in seg.content.split("\n\n"):
            assert para == para.strip()
            assert para.endswith(".") or is_heading(para)


def test_oversized_paragraph_is_hard_split():
    """Test the last-resort split of a paragraph longer than the maximum."""
    text = "ACCESS\n\n" + ("word " * 400).strip()
    segments = segment_document(text, min_chars=100, max_chars=500)
    assert len(segments) > 1
    for seg in segments:
        assert len(seg.content) <= 500


def test_indented_paragraphs_respect_length_bounds():
    """Test that paragraph indentation is not counted toward segment length."""
    paras = [f"   step {j:02d} " + ("abcd " * 10).strip() + "." for j in range(7)]
    text = "ALPHA\n\n" + "\n\n".join(paras)
    segments = segment_document(text, min_chars=60, max_chars=240)
    assert len(segments) == 3
    for seg in segments:
        assert 60 <= len(seg.content) <= 240
        assert seg.content == seg.content.strip()


@pytest.mark.parametrize("max_chars", [1000, 8000])
def test_segment_coverage(max_chars):
    """Test that concatenated segments reconstruct the body text."""
    text = _long_document()
    segments = segment_document(text, min_chars=300, max_chars=max_chars)
    rebuilt = "\n".join(seg.content for seg in segments)
    assert _body_words(rebuilt) == _body_words(text)


def test_coverage_with_merges():
    """Test coverage when short sections are merged."""
    text = SCENARIO_TEXT + "\nTIPS\nOk."
    segments = segment_document(text, min_chars=40)
    rebuilt = "\n".join(seg.content for seg in segments)
    assert _body_words(rebuilt) == _body_words(text.replace("\f", "\n"))


def test_parse_toc_measures_indentation():
    """Test ToC entry parsing."""
    entries = parse_toc(TOC_TEXT)
    assert [(entry.indent, entry.text) for entry in entries] == [
        (0, "Account Access"),
        (4, "Reset Password"),
        (4, "Unlock Account"),
        (0, "Billing"),
        (4, "Refund Policy"),
    ]
    assert entries[0].page == 2


def test_toc_top_level_headings():
    """Test that only minimum-indentation entries are top-level."""
    assert extract_toc_headings(TOC_TEXT) == ["Account Access", "Billing"]


def test_toc_skips_fixed_entries():
    """Test that link and FAQ index entries are ignored."""
    text = "Contents\nImportant Links ..... 1\nAccount Access ..... 2\nBilling ..... 3\n"
    assert extract_toc_headings(text) == ["Account Access", "Billing"]


def test_toc_ends_after_misses():
    """Test that the ToC block ends after more than three non-entry lines."""
    text = "Contents\nAccount Access ..... 2\nx\ny\nz\nw\nBilling ..... 3\n"
    assert extract_toc_headings(text) == ["Account Access"]


def test_select_strategy_uses_toc():
    """Test that a document with a matching table of contents uses the ToC strategy."""
    assert select_strategy(TOC_TEXT) == SegmentationStrategy.TABLE_OF_CONTENTS


def test_select_strategy_needs_body_match():
    """Test that a ToC whose headings never appear in the body is ignored."""
    text = "Contents\nAccount Access ..... 2\nBilling ..... 3\n\fACCESS\nBody."
    assert select_strategy(text) == SegmentationStrategy.HEADING_WALK


def test_toc_strategy_keeps_sub_entries_inside_topic():
    """Test that indented ToC entries do not split segments and preamble is dropped."""
    segments = segment_document(TOC_TEXT, min_chars=5)
    assert [seg.heading_path for seg in segments] == [["Account Access"], ["Billing"]]
    assert "Reset Password" in segments[0].content
    assert "Unlock Account" in segments[0].content
    assert "Refund Policy" in segments[1].content
    assert all("Helpdesk Guide" not in seg.content for seg in segments)
    assert segments[0].page_range.start == 2


def test_heading_walk_splits_more_than_toc():
    """Test that forcing the heading walk on the same text splits on sub-headings."""
    walked = segment_document(TOC_TEXT, min_chars=5, strategy=SegmentationStrategy.HEADING_WALK)
    assert len(walked) > 2


def test_empty_text_yields_no_segments():
    """Test the no-text-layer signal."""
    assert segment_document("") == []
    assert segment_document("   \n\f  ") == []


def test_segment_summary_logs_preview(caplog):
    """Test the per-segment debug line with a whitespace-normalized, shortened preview."""
    segments = segment_document(SCENARIO_TEXT, min_chars=5) + segment_document(_long_document(), max_chars=1000)
    with caplog.at_level(logging.DEBUG, logger="kb_ingest.segmenter"):
        log_segment_summary(segments)
    assert "ACCESS How do I reset? Click reset." in caplog.text
    previews = [record.getMessage().split(": ", 1)[1] for record in caplog.records]
    assert all(len(preview) <= 83 for preview in previews)
    assert any(preview.endswith("...") for preview in previews)
