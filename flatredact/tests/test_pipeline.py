"""
End-to-end tests for the redaction pipeline
"""

import threading
import unittest
from datetime import datetime, timezone
from unittest import mock

import fitz

from flatredact import pipeline
from flatredact.config import RedactionConfig
from flatredact.exceptions import DocumentDecodeError, RedactionCancelled
from flatredact.layout import extract_runs
from flatredact.pipeline import redact_document, redact_many, sanitize_only
from flatredact.regions import RedactionRegion
from flatredact.sanitize import pdf_date
from flatredact.tests import SSN_LINE, make_pdf, page_text, pixel_at
from flatredact.verify import VerificationReport

NOW = datetime(2024, 6, 1, 9, 0, 0, tzinfo=timezone.utc)
SSN_ONLY = RedactionConfig(enabled_rules=("ssn",), max_workers=1)


def runs_of(pdf_bytes, page_index):
    with fitz.open(stream=pdf_bytes, filetype="pdf") as doc:
        return extract_runs(doc[page_index], page_index)


class TestRedactDocument(unittest.TestCase):

    def setUp(self):
        self.pdf = make_pdf(
            [
                [SSN_LINE, ((72, 140), "Prepared by John Smith")],
                [((72, 100), "No personal data on this page.")],
            ],
            metadata={"title": "Personnel File", "author": "HR Department"},
        )

    def test_ssn_end_to_end(self):
        result = redact_document(self.pdf, config=SSN_ONLY, now=NOW)

        self.assertTrue(result.success)
        self.assertEqual(result.counts, {"ssn": 1})
        self.assertEqual(result.document.page_count, 2)
        self.assertEqual(result.document.flattened_pages, (0,))
        self.assertTrue(result.document.is_flattened(0))
        self.assertFalse(result.document.is_flattened(1))

        # Page 1 is an image with the SSN masked; page 2 keeps its text
        self.assertNotIn("123-45-6789", page_text(result.document.data, 0))
        match = result.matches[0]
        center = (match.rect.x0 + match.rect.x1) / 2, (match.rect.y0 + match.rect.y1) / 2
        self.assertEqual(pixel_at(result.document.data, 0, *center), (0, 0, 0))
        self.assertEqual(runs_of(result.document.data, 1), runs_of(self.pdf, 1))

    def test_metadata_sanitized(self):
        result = redact_document(self.pdf, config=SSN_ONLY, now=NOW)

        metadata = result.document.metadata
        self.assertNotIn("Title", metadata)
        self.assertNotIn("Author", metadata)
        self.assertEqual(metadata["Producer"], SSN_ONLY.producer)
        self.assertEqual(metadata["ModDate"], pdf_date(NOW))

    def test_literal_term(self):
        result = redact_document(self.pdf, terms=["john smith"], rules=[],
                                 config=RedactionConfig(max_workers=1), now=NOW)

        self.assertEqual(result.counts, {"john smith": 1})
        self.assertEqual(result.matches[0].text, "John Smith")
        self.assertNotIn("John", page_text(result.document.data, 0))

    def test_manual_region(self):
        region = RedactionRegion(1, 60, 85, 100, 20)
        result = redact_document(self.pdf, regions=[region], rules=[],
                                 config=RedactionConfig(max_workers=1), now=NOW)

        self.assertEqual(result.document.flattened_pages, (1,))
        self.assertEqual(len(result.regions), 1)
        self.assertIn("123-45-6789", page_text(result.document.data, 0))

    def test_disabled_rule_finds_nothing(self):
        config = RedactionConfig(enabled_rules=("email",), max_workers=1)
        result = redact_document(self.pdf, config=config, now=NOW)

        self.assertEqual(result.counts, {})
        self.assertEqual(result.document.flattened_pages, ())
        self.assertTrue(result.success)

    def test_degenerate_region_rejected(self):
        sliver = RedactionRegion(0, 72, 90, 0.5, 30)
        result = redact_document(self.pdf, regions=[sliver], rules=[],
                                 config=RedactionConfig(max_workers=1), now=NOW)

        self.assertEqual(len(result.regions), 0)
        self.assertEqual(result.regions.rejected, [sliver])
        self.assertEqual(result.document.flattened_pages, ())

    def test_sanitize_only(self):
        result = sanitize_only(self.pdf, now=NOW)

        self.assertEqual(result.document.flattened_pages, ())
        self.assertEqual(result.matches, ())
        self.assertIn("123-45-6789", page_text(result.document.data, 0))
        self.assertNotIn("Title", result.document.metadata)

    def test_decode_failure(self):
        with self.assertRaises(DocumentDecodeError):
            redact_document(b"%PDF-1.4 truncated", config=SSN_ONLY)

    def test_cancellation(self):
        cancel = threading.Event()
        cancel.set()
        with self.assertRaises(RedactionCancelled):
            redact_document(self.pdf, config=SSN_ONLY, cancel_event=cancel)

    def test_safety_margin_retry(self):
        real_verify = pipeline.verify_redaction
        calls = []

        def first_pass_fails(*args, **kwargs):
            calls.append(kwargs.get("margin_applied", 0.0))
            if len(calls) == 1:
                return VerificationReport(False, ("123-45-6789",), regions_checked=1)
            return real_verify(*args, **kwargs)

        with mock.patch.object(pipeline, "verify_redaction", side_effect=first_pass_fails):
            result = redact_document(self.pdf, config=SSN_ONLY, now=NOW)

        self.assertEqual(calls, [0.0, SSN_ONLY.safety_margin])
        self.assertTrue(result.success)
        self.assertEqual(result.report.margin_applied, SSN_ONLY.safety_margin)

    def test_no_retry_without_margin(self):
        failed = VerificationReport(False, ("x",), regions_checked=1)
        config = RedactionConfig(enabled_rules=("ssn",), max_workers=1, safety_margin=0)

        with mock.patch.object(pipeline, "verify_redaction", return_value=failed) as verify:
            result = redact_document(self.pdf, config=config, now=NOW)

        self.assertEqual(verify.call_count, 1)
        self.assertFalse(result.success)
        self.assertEqual(result.report.residual_fragments, ("x",))


class TestRedactMany(unittest.TestCase):

    def setUp(self):
        self.documents = {
            "a.pdf": make_pdf([[SSN_LINE]]),
            "b.pdf": make_pdf([[((72, 100), "Call 555-123-4567")], [SSN_LINE]]),
        }

    def test_inline(self):
        results = redact_many(self.documents, config=SSN_ONLY, max_workers=1)

        self.assertEqual(list(results), ["a.pdf", "b.pdf"])
        self.assertEqual(results["a.pdf"].document.flattened_pages, (0,))
        self.assertEqual(results["b.pdf"].document.flattened_pages, (1,))
        self.assertTrue(all(result.success for result in results.values()))

    def test_failure_is_isolated(self):
        documents = dict(self.documents, **{"broken.pdf": b"junk"})
        results = redact_many(documents, config=SSN_ONLY, max_workers=1)

        self.assertIsInstance(results["broken.pdf"], DocumentDecodeError)
        self.assertTrue(results["a.pdf"].success)
        self.assertTrue(results["b.pdf"].success)

    def test_unexpected_error_is_isolated(self):
        damaged = self.documents["b.pdf"]
        real_redact = pipeline.redact_document

        def fail_on_damaged(pdf_bytes, **kwargs):
            if pdf_bytes == damaged:
                raise RuntimeError("code=2: damaged content stream")
            return real_redact(pdf_bytes, **kwargs)

        with mock.patch.object(pipeline, "redact_document", side_effect=fail_on_damaged):
            results = redact_many(self.documents, config=SSN_ONLY, max_workers=1)

        self.assertIsInstance(results["b.pdf"], RuntimeError)
        self.assertTrue(results["a.pdf"].success)

    def test_per_document_regions(self):
        regions = {"a.pdf": [RedactionRegion(0, 300, 300, 50, 50)]}
        results = redact_many(self.documents, rules=[], regions=regions, max_workers=1)

        self.assertEqual(results["a.pdf"].document.flattened_pages, (0,))
        self.assertEqual(results["b.pdf"].document.flattened_pages, ())

    def test_process_pool(self):
        results = redact_many(self.documents, config=SSN_ONLY, max_workers=2)

        self.assertEqual(results["a.pdf"].counts, {"ssn": 1})
        self.assertEqual(results["b.pdf"].counts, {"ssn": 1})
        self.assertNotIn("123-45-6789", page_text(results["b.pdf"].document.data, 1))

    def test_empty(self):
        self.assertEqual(redact_many({}), {})


if __name__ == "__main__":
    unittest.main()
