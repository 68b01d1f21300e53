"""
Content Detection Module - Find text and patterns to redact

Matching runs over the page's runs concatenated with a single space between
them, so a term or pattern can straddle a run boundary. Every match is
mapped back to one rectangle that unions all contributing runs.
"""

import logging
import re
from collections import Counter
from dataclasses import dataclass, replace
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import fitz  # PyMuPDF

from .layout import TextRun, extract_runs
from .regions import LITERAL_SEARCH, PATTERN_MATCH, RedactionRegion

logger = logging.getLogger(__name__)

RUN_SEPARATOR = " "


@dataclass(frozen=True)
class PatternRule:
    """A named, independently toggleable pattern category"""
    name: str
    pattern: str
    label: str = ""
    enabled: bool = True
    flags: int = 0

    def compile(self) -> re.Pattern:
        try:
            return re.compile(self.pattern, self.flags)
        except re.error as e:
            raise ValueError(f"Invalid pattern for rule '{self.name}': {e}") from e


DEFAULT_RULES: Tuple[PatternRule, ...] = (
    PatternRule(
        name="ssn",
        label="Social Security number",
        pattern=r"(?<![\w-])\d{3}[-\s]?\d{2}[-\s]?\d{4}(?![\w-])",
    ),
    PatternRule(
        name="email",
        label="Email address",
        pattern=r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b",
        flags=re.IGNORECASE,
    ),
    PatternRule(
        name="phone",
        label="Phone number",
        pattern=r"(?<![\w+])(?:\+?\d{1,3}[\s.-]?)?(?:\(\d{3}\)|\d{3})[\s.-]?\d{3}[\s.-]?\d{4}(?!\w)",
    ),
    PatternRule(
        name="credit_card",
        label="Payment card number",
        pattern=r"\b\d{4}[\s-]?\d{4}[\s-]?\d{4}[\s-]?\d{4}\b",
    ),
)


def select_rules(enabled: Iterable[str],
                 rules: Sequence[PatternRule] = DEFAULT_RULES) -> List[PatternRule]:
    """
    Return copies of ``rules`` with only the named categories enabled
    """
    enabled = set(enabled)
    unknown = enabled - {rule.name for rule in rules}
    if unknown:
        raise ValueError(f"Unknown pattern rules: {', '.join(sorted(unknown))}")
    return [replace(rule, enabled=rule.name in enabled) for rule in rules]


def custom_rules(regex_patterns: Iterable[str]) -> List[PatternRule]:
    """
    Wrap user supplied regular expressions as enabled pattern rules
    """
    rules = []
    for i, pattern in enumerate(regex_patterns, start=1):
        rule = PatternRule(name=f"custom-{i}", label=pattern, pattern=pattern,
                           flags=re.IGNORECASE | re.MULTILINE)
        rule.compile()  # Fail early on invalid expressions
        rules.append(rule)
    return rules


@dataclass(frozen=True)
class TextMatch:
    """Represents a text match with its location"""
    page_index: int
    text: str
    rect: fitz.Rect
    source: str  # LITERAL_SEARCH or PATTERN_MATCH
    rule: str  # Rule name, or the literal term

    def to_region(self, label: Optional[str] = None) -> RedactionRegion:
        return RedactionRegion(
            page_index=self.page_index,
            x=self.rect.x0,
            y=self.rect.y0,
            width=self.rect.width,
            height=self.rect.height,
            source=self.source,
            label=label if label is not None else self.rule,
        )


class _PageBuffer:
    """Concatenated page text with per-run offsets"""

    def __init__(self, runs: Sequence[TextRun]):
        self.runs = list(runs)
        self.offsets: List[Tuple[int, int]] = []
        self.separators = set()

        parts = []
        position = 0
        for i, run in enumerate(self.runs):
            if i:
                parts.append(RUN_SEPARATOR)
                self.separators.add(position)
                position += len(RUN_SEPARATOR)
            parts.append(run.text)
            self.offsets.append((position, position + len(run.text)))
            position += len(run.text)

        self.text = "".join(parts)

    def span_rect(self, start: int, end: int) -> Optional[fitz.Rect]:
        """
        Union of the geometry of every run overlapping [start, end)
        """
        rect = None
        for run, (run_start, run_end) in zip(self.runs, self.offsets):
            if start < run_end and end > run_start:
                part = run.sub_rect(max(start, run_start) - run_start,
                                    min(end, run_end) - run_start)
                rect = part if rect is None else rect | part
        return rect

    def clean_text(self, start: int, end: int) -> str:
        """Matched text with run separators removed"""
        return "".join(ch for i, ch in enumerate(self.text[start:end], start)
                       if i not in self.separators)


def _literal_regex(term: str, case_sensitive: bool) -> re.Pattern:
    # Allow a run separator between any two characters of the term
    joiner = f"(?:{re.escape(RUN_SEPARATOR)})?"
    pattern = joiner.join(re.escape(ch) for ch in term)
    return re.compile(pattern, 0 if case_sensitive else re.IGNORECASE)


def _strip_separators(buffer: _PageBuffer, match: re.Match, term: str,
                      case_sensitive: bool) -> Optional[str]:
    """
    Return the matched text without the run separators it picked up, or
    None if the match added characters that are not separators
    """
    fold = (lambda s: s) if case_sensitive else str.casefold
    kept = []
    ti = 0
    for offset, ch in enumerate(match.group(), match.start()):
        if ti < len(term) and fold(ch) == fold(term[ti]):
            kept.append(ch)
            ti += 1
        elif offset not in buffer.separators:
            return None
    return "".join(kept) if ti == len(term) else None


def find_text(runs: Sequence[TextRun], term: str,
              case_sensitive: bool = False) -> List[TextMatch]:
    """
    Find a literal term in a page's runs

    Args:
        runs: Text runs of one page, in stream order
        term: Literal text to find
        case_sensitive: Match case exactly

    Returns:
        One TextMatch per occurrence, in reading order
    """
    if not term or not runs:
        return []

    buffer = _PageBuffer(runs)
    regex = _literal_regex(term, case_sensitive)
    page_index = runs[0].page_index

    matches = []
    pos = 0
    while True:
        match = regex.search(buffer.text, pos)
        if match is None:
            break
        text = _strip_separators(buffer, match, term, case_sensitive)
        if text is None:
            # Retry one character on; a valid match may overlap this one
            pos = match.start() + 1
            continue
        pos = match.end()
        rect = buffer.span_rect(match.start(), match.end())
        if rect is None:
            continue
        matches.append(TextMatch(
            page_index=page_index,
            text=text,
            rect=rect,
            source=LITERAL_SEARCH,
            rule=term,
        ))
    return matches


def find_patterns(runs: Sequence[TextRun],
                  rules: Sequence[PatternRule] = DEFAULT_RULES) -> List[TextMatch]:
    """
    Match every enabled pattern rule against a page's runs

    Disabled rules contribute no matches.
    """
    if not runs:
        return []

    buffer = _PageBuffer(runs)
    page_index = runs[0].page_index

    matches = []
    for rule in rules:
        if not rule.enabled:
            continue
        for match in rule.compile().finditer(buffer.text):
            if match.start() == match.end():
                continue
            rect = buffer.span_rect(match.start(), match.end())
            if rect is None:
                continue
            matches.append(TextMatch(
                page_index=page_index,
                text=buffer.clean_text(match.start(), match.end()),
                rect=rect,
                source=PATTERN_MATCH,
                rule=rule.name,
            ))
    return matches


def find_matches(doc: fitz.Document,
                 terms: Optional[Iterable[str]] = None,
                 rules: Optional[Sequence[PatternRule]] = None,
                 case_sensitive: bool = False,
                 runs_by_page: Optional[Dict[int, List[TextRun]]] = None) -> List[TextMatch]:
    """
    Find all literal terms and enabled pattern matches in a document

    Args:
        doc: Open document
        terms: Literal terms to search for
        rules: Pattern rules (disabled rules are skipped)
        case_sensitive: Case sensitivity for literal terms
        runs_by_page: Previously extracted runs, to avoid decoding twice

    Returns:
        Matches ordered by page
    """
    terms = [t for t in (terms or []) if t]
    rules = list(rules or [])
    all_matches = []

    if not terms and not any(rule.enabled for rule in rules):
        return all_matches

    for page_index in range(len(doc)):
        if runs_by_page is not None and page_index in runs_by_page:
            runs = runs_by_page[page_index]
        else:
            runs = extract_runs(doc[page_index], page_index)

        if not runs:
            logger.debug("Page %d has no extractable text, skipping search", page_index + 1)
            continue

        page_matches = []
        for term in terms:
            page_matches.extend(find_text(runs, term, case_sensitive))
        page_matches.extend(find_patterns(runs, rules))

        if page_matches:
            logger.info("Page %d: found %d matches", page_index + 1, len(page_matches))
        all_matches.extend(page_matches)

    return all_matches


def count_by_rule(matches: Iterable[TextMatch]) -> Dict[str, int]:
    """
    Count matches per rule name or literal term
    """
    return dict(Counter(match.rule for match in matches))
