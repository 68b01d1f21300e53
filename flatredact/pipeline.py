"""
Redaction pipeline - extract, locate, render, sanitize, verify

Each call owns all of its state; nothing is shared between documents.

Note: any region on a page flattens that whole page. Every piece of text on
it stops being extractable, not only the marked spans.
"""

import logging
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from .config import RedactionConfig
from .detect import DEFAULT_RULES, PatternRule, TextMatch, count_by_rule, find_matches, select_rules
from .layout import extract_document_runs
from .redact import ProgressCallback, apply_raster_redaction
from .regions import RedactionRegion, RegionSet
from .sanitize import read_metadata, sanitize_metadata
from .utils import open_document
from .verify import VerificationReport, verify_redaction

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SanitizedDocument:
    """The pipeline's output document"""
    data: bytes
    page_count: int
    flattened_pages: Tuple[int, ...]
    metadata: Dict[str, str] = field(default_factory=dict)

    def is_flattened(self, page_index: int) -> bool:
        return page_index in self.flattened_pages


@dataclass(frozen=True)
class PipelineResult:
    document: SanitizedDocument
    regions: RegionSet
    matches: Tuple[TextMatch, ...]
    counts: Dict[str, int]
    report: VerificationReport

    @property
    def success(self) -> bool:
        return self.report.success


def _rules_for(config: RedactionConfig, rules: Optional[Sequence[PatternRule]]) -> List[PatternRule]:
    if rules is not None:
        return list(rules)
    return select_rules(config.enabled_rules, DEFAULT_RULES)


def _render_and_sanitize(pdf_bytes: bytes,
                         regions: RegionSet,
                         config: RedactionConfig,
                         now: Optional[datetime],
                         cancel_event,
                         progress_callback: Optional[ProgressCallback]) -> Tuple[bytes, Tuple[int, ...]]:
    redacted, flattened = apply_raster_redaction(
        pdf_bytes,
        regions,
        scale=config.scale,
        fill=config.fill,
        max_workers=config.max_workers,
        cancel_event=cancel_event,
        progress_callback=progress_callback,
    )
    sanitized = sanitize_metadata(
        redacted,
        producer=config.producer,
        now=now,
        strip_active=config.strip_active_content,
    )
    return sanitized, flattened


def redact_document(pdf_bytes: bytes,
                    regions: Iterable[RedactionRegion] = (),
                    terms: Iterable[str] = (),
                    rules: Optional[Sequence[PatternRule]] = None,
                    config: Optional[RedactionConfig] = None,
                    cancel_event=None,
                    progress_callback: Optional[ProgressCallback] = None,
                    now: Optional[datetime] = None) -> PipelineResult:
    """
    Run the full redaction pipeline on one document

    Args:
        pdf_bytes: Input document
        regions: Manually supplied regions, top-left page points
        terms: Literal terms to find and redact
        rules: Pattern rules; defaults to the built-in rules enabled in
            ``config.enabled_rules``
        config: Pipeline configuration
        cancel_event: Object with ``is_set()``, checked between pages
        progress_callback: Called with ``(pages_done, pages_total)`` while rendering
        now: Timestamp written into the sanitized metadata

    Returns:
        PipelineResult; a failed verification is reported, not raised

    Raises:
        DocumentDecodeError: if the input cannot be opened
        PageRenderError: if a page cannot be rasterized
        RedactionCancelled: if cancelled while rendering
    """
    config = config or RedactionConfig()
    terms = [t for t in terms if t]
    rules = _rules_for(config, rules)

    with open_document(pdf_bytes) as doc:
        page_count = len(doc)
        matches: List[TextMatch] = []
        if terms or any(rule.enabled for rule in rules):
            runs_by_page = extract_document_runs(doc)
            matches = find_matches(doc, terms, rules, config.case_sensitive,
                                   runs_by_page=runs_by_page)

    region_set = RegionSet(regions, min_size=config.min_region_size).union(
        match.to_region() for match in matches)
    logger.info("Redacting %d regions across %d pages", len(region_set), len(region_set.pages()))

    data, flattened = _render_and_sanitize(pdf_bytes, region_set, config, now,
                                           cancel_event, progress_callback)
    report = verify_redaction(data, region_set, strict_pages=flattened)

    if not report.success and config.safety_margin > 0 and region_set:
        logger.warning("%s; re-rendering with a %.1f pt safety margin",
                       report.summary(), config.safety_margin)
        data, flattened = _render_and_sanitize(pdf_bytes, region_set.expanded(config.safety_margin),
                                               config, now, cancel_event, progress_callback)
        report = verify_redaction(data, region_set, strict_pages=flattened,
                                  margin_applied=config.safety_margin)

    if report.success:
        logger.info(report.summary())
    else:
        logger.warning(report.summary())

    document = SanitizedDocument(
        data=data,
        page_count=page_count,
        flattened_pages=flattened,
        metadata=read_metadata(data),
    )
    return PipelineResult(
        document=document,
        regions=region_set,
        matches=tuple(matches),
        counts=count_by_rule(matches),
        report=report,
    )


def sanitize_only(pdf_bytes: bytes,
                  config: Optional[RedactionConfig] = None,
                  now: Optional[datetime] = None) -> PipelineResult:
    """
    Metadata-only pass: no regions, no pattern search
    """
    return redact_document(pdf_bytes, rules=[], config=config, now=now)


def _redact_one(args) -> PipelineResult:
    pdf_bytes, regions, terms, rules, config = args
    return redact_document(pdf_bytes, regions=regions, terms=terms, rules=rules, config=config)


def redact_many(documents: Mapping[str, bytes],
                terms: Iterable[str] = (),
                rules: Optional[Sequence[PatternRule]] = None,
                config: Optional[RedactionConfig] = None,
                regions: Optional[Mapping[str, Sequence[RedactionRegion]]] = None,
                max_workers: Optional[int] = None) -> Dict[str, Union[PipelineResult, Exception]]:
    """
    Redact several independent documents, one pipeline per worker process

    A document that fails yields its exception in place of a result; the
    others are unaffected.
    """
    config = config or RedactionConfig()
    # Pages are rendered serially inside each document worker
    doc_config = replace(config, max_workers=1)
    terms = list(terms)
    regions = regions or {}

    jobs = {name: (data, list(regions.get(name, ())), terms, rules, doc_config)
            for name, data in documents.items()}
    results: Dict[str, Union[PipelineResult, Exception]] = {}

    if not jobs:
        return results

    if max_workers == 1 or len(jobs) == 1:
        for name, job in jobs.items():
            try:
                results[name] = _redact_one(job)
            except Exception as e:
                logger.error("Redaction of %s failed: %s", name, e)
                results[name] = e
        return results

    with ProcessPoolExecutor(max_workers=max_workers) as executor:
        futures = {name: executor.submit(_redact_one, job) for name, job in jobs.items()}
        for name, future in futures.items():
            try:
                results[name] = future.result()
            except Exception as e:
                logger.error("Redaction of %s failed: %s", name, e)
                results[name] = e

    return results
