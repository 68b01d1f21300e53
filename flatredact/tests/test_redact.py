"""
Tests for the destructive renderer
"""

import pickle
import random
import threading
import unittest

import fitz

from flatredact.exceptions import (ConfigurationError, DocumentDecodeError,
                                   PageRenderError, RedactionCancelled)
from flatredact.layout import extract_runs
from flatredact.redact import apply_raster_redaction, render_page_image
from flatredact.regions import RedactionRegion
from flatredact.tests import SSN_LINE, make_pdf, page_text, pixel_at
from flatredact.verify import verify_redaction

BLACK = (0, 0, 0)
WHITE = (255, 255, 255)


def runs_of(pdf_bytes, page_index):
    with fitz.open(stream=pdf_bytes, filetype="pdf") as doc:
        return extract_runs(doc[page_index], page_index)


def dark_pixels(pdf_bytes, page_index, region):
    with fitz.open(stream=pdf_bytes, filetype="pdf") as doc:
        pix = doc[page_index].get_pixmap(alpha=False)
    x0, y0 = int(region.x) + 1, int(region.y) + 1
    x1, y1 = int(region.x + region.width) - 1, int(region.y + region.height) - 1
    return [(x, y) for x in range(x0, x1) for y in range(y0, y1)
            if max(pix.pixel(x, y)) < 128]


class TestApplyRasterRedaction(unittest.TestCase):

    def setUp(self):
        self.pdf = make_pdf([
            [SSN_LINE, ((72, 130), "Email: john.public@company.com")],
            [((72, 100), "Quarterly figures are attached.")],
        ])
        self.region = RedactionRegion(0, 100, 85, 150, 20)

    def test_flattened_page_has_no_text(self):
        output, flattened = apply_raster_redaction(self.pdf, [self.region], scale=1.5, max_workers=1)

        self.assertEqual(flattened, (0,))
        self.assertEqual(runs_of(output, 0), [])
        self.assertEqual(page_text(output, 0).strip(), "")

        with fitz.open(stream=output, filetype="pdf") as doc:
            self.assertEqual(len(doc), 2)
            self.assertEqual(doc[0].rect, fitz.Rect(0, 0, 595, 842))
            self.assertEqual(len(doc[0].get_images()), 1)

    def test_whole_page_loses_text_not_only_region(self):
        output, _ = apply_raster_redaction(self.pdf, [self.region], max_workers=1)
        self.assertNotIn("john.public", page_text(output, 0))

    def test_untouched_page_is_unchanged(self):
        before = runs_of(self.pdf, 1)
        output, _ = apply_raster_redaction(self.pdf, [self.region], max_workers=1)
        self.assertEqual(runs_of(output, 1), before)

    def test_mask_is_opaque(self):
        output, _ = apply_raster_redaction(self.pdf, [self.region], scale=2.0, max_workers=1)
        self.assertEqual(pixel_at(output, 0, 175, 95), BLACK)
        # Blank paper well away from any text stays white
        self.assertEqual(pixel_at(output, 0, 400, 700), WHITE)

    def test_white_fill(self):
        # The SSN line has dark glyph pixels before redaction and none after
        self.assertTrue(dark_pixels(self.pdf, 0, self.region))
        output, _ = apply_raster_redaction(self.pdf, [self.region], fill="white", max_workers=1)
        self.assertFalse(dark_pixels(output, 0, self.region))

    def test_empty_region_set_is_noop(self):
        output, flattened = apply_raster_redaction(self.pdf, [])
        self.assertEqual(output, self.pdf)
        self.assertEqual(flattened, ())

    def test_region_outside_document_is_ignored(self):
        output, flattened = apply_raster_redaction(self.pdf, [RedactionRegion(7, 0, 0, 50, 50)])
        self.assertEqual(flattened, ())
        self.assertIn("SSN", page_text(output, 0))

    def test_scale_below_one(self):
        with self.assertRaises(ConfigurationError):
            apply_raster_redaction(self.pdf, [self.region], scale=0.5)

    def test_decode_failure(self):
        with self.assertRaises(DocumentDecodeError):
            apply_raster_redaction(b"garbage", [self.region])

    def test_cancellation(self):
        cancel = threading.Event()
        cancel.set()
        with self.assertRaises(RedactionCancelled):
            apply_raster_redaction(self.pdf, [self.region], cancel_event=cancel, max_workers=1)

    def test_cancel_between_pages(self):
        pdf = make_pdf([[SSN_LINE]] * 3)
        regions = [RedactionRegion(i, 100, 85, 150, 20) for i in range(3)]
        cancel = threading.Event()
        seen = []

        def progress(done, total):
            seen.append(done)
            cancel.set()

        with self.assertRaises(RedactionCancelled):
            apply_raster_redaction(pdf, regions, max_workers=1, cancel_event=cancel,
                                   progress_callback=progress)
        self.assertEqual(seen, [1])

    def test_progress_callback(self):
        calls = []
        regions = [self.region, RedactionRegion(1, 50, 50, 100, 100)]
        apply_raster_redaction(self.pdf, regions, max_workers=1,
                               progress_callback=lambda done, total: calls.append((done, total)))
        self.assertEqual(calls, [(1, 2), (2, 2)])

    def test_rotated_page_keeps_rotation_and_size(self):
        pdf = make_pdf([[SSN_LINE]], rotations=[90])
        output, _ = apply_raster_redaction(pdf, [self.region], max_workers=1)

        with fitz.open(stream=pdf, filetype="pdf") as original, \
                fitz.open(stream=output, filetype="pdf") as doc:
            self.assertEqual(doc[0].rotation, 90)
            self.assertEqual(doc[0].rect, original[0].rect)
        self.assertEqual(runs_of(output, 0), [])

    def test_parallel_rendering_keeps_page_order(self):
        sizes = [(300, 400), (400, 500), (500, 600)]
        pdf = make_pdf([[SSN_LINE]] * 3, page_sizes=sizes)
        regions = [RedactionRegion(i, 100, 85, 150, 20) for i in range(3)]

        output, flattened = apply_raster_redaction(pdf, regions, max_workers=2)

        self.assertEqual(flattened, (0, 1, 2))
        with fitz.open(stream=output, filetype="pdf") as doc:
            self.assertEqual([(p.rect.width, p.rect.height) for p in doc], sizes)
        for i in range(3):
            self.assertEqual(runs_of(output, i), [])


class TestRenderPage(unittest.TestCase):

    def test_render_failure_is_typed(self):
        pdf = make_pdf([[SSN_LINE]])
        with self.assertRaises(PageRenderError) as ctx:
            render_page_image(pdf, 5, [(0, 0, 10, 10)])
        self.assertEqual(ctx.exception.page_index, 5)

    def test_render_error_survives_pickling(self):
        error = pickle.loads(pickle.dumps(PageRenderError(3, "broken stream")))
        self.assertEqual(error.page_index, 3)
        self.assertIn("page 4", str(error))

    def test_rendered_page_is_unscaled_size(self):
        pdf = make_pdf([[SSN_LINE]])
        page = render_page_image(pdf, 0, [(100, 85, 250, 105)], scale=3.0)
        self.assertEqual((page.width, page.height), (595, 842))
        self.assertTrue(page.image.startswith(b"\x89PNG"))


class TestDestructionInvariant(unittest.TestCase):
    """Random rectangles over multi-run pages never leave text under a region"""

    def test_random_regions(self):
        lines = [((72, 80 + 24 * i), f"Line {i}: account 4532 1234 5678 90{i:02d}")
                 for i in range(20)]
        pdf = make_pdf([lines, lines])
        rng = random.Random(20240601)

        for _ in range(8):
            regions = []
            for _ in range(rng.randint(1, 4)):
                page_index = rng.randint(0, 1)
                x, y = rng.uniform(0, 500), rng.uniform(0, 780)
                regions.append(RedactionRegion(page_index, x, y,
                                               rng.uniform(2, 95), rng.uniform(2, 60)))

            output, flattened = apply_raster_redaction(pdf, regions, scale=1.0, max_workers=1)
            report = verify_redaction(output, regions, strict_pages=flattened)
            self.assertTrue(report.success, report.residual_fragments)

    def test_untouched_pages_survive_random_regions(self):
        pdf = make_pdf([[SSN_LINE], [((72, 100), "keep me")], [SSN_LINE]])
        before = runs_of(pdf, 1)
        regions = [RedactionRegion(0, 10, 10, 100, 100), RedactionRegion(2, 50, 50, 40, 40)]

        output, flattened = apply_raster_redaction(pdf, regions, max_workers=1)
        self.assertEqual(flattened, (0, 2))
        self.assertEqual(runs_of(output, 1), before)


if __name__ == "__main__":
    unittest.main()
