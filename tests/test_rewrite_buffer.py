import os
import sys
import unittest

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

from arraydim.rewrite_buffer import RewriteBuffer, OverlappingEditError


class TestRewriteBuffer(unittest.TestCase):

    def setUp(self):
        self.buf = RewriteBuffer(b"x = a[1][2];")

    def test_no_edits_renders_source(self):
        self.assertEqual(self.buf.render(), "x = a[1][2];")

    def test_edits_apply_bottom_up(self):
        self.buf.remove(8, 11)          # "[2]"
        self.buf.replace(6, 7, "5")     # "1"
        self.assertEqual(self.buf.render(), "x = a[5];")
        self.assertEqual(len(self.buf), 2)

    def test_insert(self):
        self.buf.insert(0, "int ")
        self.assertEqual(self.buf.render(), "int x = a[1][2];")

    def test_rewritten_text_includes_nested_edits(self):
        self.buf.remove(8, 11)
        self.assertEqual(self.buf.get_rewritten_text(4, 11), "a[1]")
        self.assertEqual(self.buf.get_rewritten_text(0, 4), "x = ")

    def test_enclosing_edit_subsumes_nested_edits(self):
        self.buf.replace(6, 7, "9")
        self.buf.replace(4, 11, "b")
        self.assertEqual(self.buf.render(), "x = b;")
        self.assertEqual(len(self.buf), 1)

    def test_partial_overlap_is_rejected(self):
        self.buf.replace(4, 7, "q")
        with self.assertRaises(OverlappingEditError):
            self.buf.replace(6, 9, "r")

    def test_edit_inside_rewritten_range_is_rejected(self):
        self.buf.replace(4, 11, "b")
        with self.assertRaises(OverlappingEditError):
            self.buf.replace(6, 7, "9")

    def test_invalid_range(self):
        with self.assertRaises(ValueError):
            self.buf.replace(5, 100, "")

    def test_multibyte_source(self):
        buf = RewriteBuffer("/* é */ a[1][2];".encode("utf-8"))
        start = buf.source.index(b"[2]")
        buf.remove(start, start + 3)
        self.assertEqual(buf.render(), "/* é */ a[1];")


if __name__ == "__main__":
    unittest.main()
