"""
Report post-processing helpers.

Reports are plain dicts shaped like:
    {"findings": [{"id", "section", "certainty", "explanation": {"title", "text"}, ...}],
     "sections": [{"id", "title", "content": [{"type": "text"|"finding", ...}]}],
     "meta": {...}}
"""

from typing import Any, Dict, List, Set

TITLE_SECTION_ID = "title_slide"


def has_explanation(finding: Dict[str, Any]) -> bool:
    """True if the finding carries an explanation with a title and text"""
    explanation = finding.get("explanation")
    if not isinstance(explanation, dict):
        return False
    return bool(isinstance(explanation.get("title"), str) and explanation.get("title")) and \
        bool(isinstance(explanation.get("text"), str) and explanation.get("text"))


def _clean_sections(report: Dict[str, Any], valid_ids: Set[str]) -> None:
    for section in report.get("sections") or []:
        cleaned: List[Dict[str, Any]] = []
        for item in section.get("content") or []:
            if item.get("type") == "finding" and item.get("id") not in valid_ids:
                continue
            # Collapse text nodes left adjacent by a removed finding
            if item.get("type") == "text" and cleaned and cleaned[-1].get("type") == "text":
                cleaned[-1] = {**cleaned[-1], "value": cleaned[-1].get("value", "") + item.get("value", "")}
            else:
                cleaned.append(item)
        section["content"] = cleaned

    report["sections"] = [
        section for section in report.get("sections") or []
        if section.get("id") == TITLE_SECTION_ID
        or any(item.get("type") == "finding" for item in section.get("content") or [])
    ]


def strip_findings_without_explanations(report: Dict[str, Any]) -> List[str]:
    """
    Remove findings lacking an explanation, and every reference to them.

    Sections left with no findings are dropped (the title section is kept).
    Mutates report in place.

    Returns:
        IDs of the removed findings
    """
    findings = report.get("findings") or []
    valid_ids = {f.get("id") for f in findings if has_explanation(f)}
    removed = [f.get("id") for f in findings if f.get("id") not in valid_ids]

    if not removed:
        return []

    report["findings"] = [f for f in findings if f.get("id") in valid_ids]
    _clean_sections(report, valid_ids)
    return removed


def clean_orphaned_refs(report: Dict[str, Any]) -> int:
    """
    Drop section content that points at findings no longer in the report.

    Returns:
        Number of references removed
    """
    valid_ids = {f.get("id") for f in report.get("findings") or []}
    before = sum(
        1 for section in report.get("sections") or []
        for item in section.get("content") or []
        if item.get("type") == "finding"
    )
    _clean_sections(report, valid_ids)
    after = sum(
        1 for section in report.get("sections") or []
        for item in section.get("content") or []
        if item.get("type") == "finding"
    )
    return before - after
