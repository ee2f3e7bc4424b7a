from __future__ import annotations

import os
import tempfile
import unittest
from pathlib import Path
from typing import Dict

from lookatni.constants import SKIP_BINARY, SKIP_SIZE_LIMIT
from lookatni.dialect import custom_dialect
from lookatni.errors import DialectError, SourceNotFound
from lookatni.generator import (
    GenerationOptions,
    generate,
    generate_from_directory,
    generate_to_file,
)
from lookatni.hashutil import content_checksum
from lookatni.scanner import FileScanner, ScanFile, matches_pattern
from lookatni.tokenizer import tokenize


def _build_tree(root: Path) -> Dict[str, bytes]:
    files = {
        "a.txt": b"hello\n",
        "dir/b.txt": b"line one\n\nline three\n",
        "dir/deeper/c.py": b"def f():\n    return 1\n\n\n",
        "empty.txt": b"",
        "notes.md": "# Café\n".encode("utf-8"),
    }
    for rel, data in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
    return files


class GeneratorTests(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.root = Path(self.tmp.name) / "src"
        self.root.mkdir()
        self.files = _build_tree(self.root)

    def _assert_roundtrip(self, options: GenerationOptions, dialect=None):
        result = generate_from_directory(str(self.root), options)
        parsed = tokenize(result.content, dialect)
        self.assertEqual(parsed.errors, [])
        self.assertEqual(parsed.total_files, len(self.files))
        got = {rec.filename: rec.content for rec in parsed.markers}
        self.assertEqual(got, self.files)
        return result, parsed

    def test_roundtrip_every_builtin_dialect(self):
        for preset in ("default", "fs", "gs", "rs", "us", "html", "markdown", "code"):
            with self.subTest(preset=preset):
                result, parsed = self._assert_roundtrip(GenerationOptions(marker_preset=preset))
                self.assertEqual(parsed.dialect, result.dialect)

    def test_roundtrip_custom_with_frontmatter(self):
        opts = GenerationOptions(marker_start="<<", marker_end=">>", include_frontmatter=True)
        result, parsed = self._assert_roundtrip(opts)
        self.assertTrue(result.content.startswith("---\nlookatni:\n"))
        self.assertTrue(parsed.dialect.frontmatter_declared)
        self.assertEqual(parsed.frontmatter["generator"], "lookatni")

    def test_roundtrip_custom_without_frontmatter_needs_dialect(self):
        opts = GenerationOptions(marker_start="@@@", marker_end="@@@")
        self._assert_roundtrip(opts, custom_dialect("@@@", "@@@"))
        result = generate_from_directory(str(self.root), opts)
        self.assertEqual(tokenize(result.content).total_files, 0)

    def test_leading_metadata_lookalike_lines_roundtrip(self):
        extra = {
            "todo.txt": b"#@lookatni todo: fix\nbody\n",
            "escaped.txt": b"#@lookatni! already escaped\n",
            "plain.txt": b"#@lookatni nocolon\n",
        }
        for rel, data in extra.items():
            (self.root / rel).write_bytes(data)
        self.files.update(extra)
        for include_metadata in (False, True):
            with self.subTest(include_metadata=include_metadata):
                _, parsed = self._assert_roundtrip(GenerationOptions(include_metadata=include_metadata))
                rec = next(r for r in parsed.markers if r.filename == "todo.txt")
                self.assertNotIn("todo", rec.metadata)
                if include_metadata:
                    self.assertEqual(rec.metadata["size"], len(extra["todo.txt"]))

    def test_detection_is_stable_on_generated_streams(self):
        result = generate_from_directory(str(self.root), GenerationOptions(marker_preset="markdown"))
        auto = tokenize(result.content)
        explicit = tokenize(result.content, auto.dialect)
        self.assertEqual(auto, explicit)

    def test_builtin_dialect_never_gets_frontmatter(self):
        result = generate_from_directory(str(self.root), GenerationOptions(include_frontmatter=True))
        self.assertFalse(result.content.startswith("---"))

    def test_missing_trailing_newline_is_added(self):
        (self.root / "a.txt").write_bytes(b"no newline")
        result = generate_from_directory(str(self.root), GenerationOptions())
        rec = [r for r in tokenize(result.content).markers if r.filename == "a.txt"][0]
        self.assertEqual(rec.content, b"no newline\n")

    def test_stream_layout(self):
        target = Path(self.tmp.name) / "one"
        target.mkdir()
        (target / "a.txt").write_bytes(b"hello\n")
        result = generate_from_directory(str(target), GenerationOptions())
        self.assertEqual(result.content, "//\x1c/ a.txt /\x1c//\nhello\n\n")

    def test_metadata_lines(self):
        opts = GenerationOptions(include_metadata=True, custom_metadata={"author": "me"})
        result, parsed = self._assert_roundtrip(opts)
        meta = {rec.filename: rec.metadata for rec in parsed.markers}
        self.assertEqual(meta["a.txt"]["size"], 6)
        self.assertEqual(meta["a.txt"]["checksum"], content_checksum(b"hello\n"))
        self.assertTrue(meta["a.txt"]["modified"].endswith("Z"))
        self.assertEqual(meta["a.txt"]["author"], "me")
        self.assertIn("#@lookatni size: 6\n", result.content)

    def test_progress_snapshots(self):
        seen = []
        generate_from_directory(str(self.root), GenerationOptions(), progress=seen.append)
        self.assertEqual(len(seen), len(self.files))
        self.assertEqual([p.files_processed for p in seen], list(range(1, len(self.files) + 1)))
        self.assertEqual(seen[-1].percentage, 100)
        self.assertEqual(seen[-1].bytes_processed, sum(len(v) for v in self.files.values()))
        self.assertEqual(seen[0].current_file, "a.txt")

    def test_result_statistics(self):
        result = generate_from_directory(str(self.root), GenerationOptions())
        self.assertEqual(result.total_files, 5)
        self.assertEqual(result.total_bytes, sum(len(v) for v in self.files.values()))
        self.assertEqual(result.file_types[".txt"], 3)
        self.assertEqual(result.skipped_files, [])

    def test_scanner_filters(self):
        (self.root / "node_modules").mkdir()
        (self.root / "node_modules" / "dep.js").write_text("x")
        (self.root / "blob.bin").write_bytes(b"\x00\x01\x02")
        (self.root / "big.txt").write_bytes(b"x" * 100)
        opts = GenerationOptions(max_file_size=50)
        result = generate_from_directory(str(self.root), opts)
        reasons = {s.relpath: s.reason for s in result.skipped_files}
        self.assertEqual(reasons, {"big.txt": SKIP_SIZE_LIMIT, "blob.bin": SKIP_BINARY})
        names = tokenize(result.content).filenames()
        self.assertNotIn("node_modules/dep.js", names)

        opts = GenerationOptions(max_file_size=-1, include_binary_files=True, exclude_patterns=[])
        names = tokenize(generate_from_directory(str(self.root), opts).content).filenames()
        self.assertIn("node_modules/dep.js", names)
        self.assertIn("blob.bin", names)
        self.assertIn("big.txt", names)

    def test_generate_from_file_list(self):
        scanner = FileScanner()
        files, _skipped = scanner.scan(str(self.root))
        text = generate(files[:1])
        self.assertEqual(tokenize(text).filenames(), ["a.txt"])

        gone = ScanFile(path=str(self.root / "missing.txt"), relpath="missing.txt", size_bytes=0, mtime=0.0)
        with self.assertRaises(SourceNotFound):
            generate([gone])

    def test_generate_to_file(self):
        out = Path(self.tmp.name) / "stream.txt"
        result = generate_to_file(str(self.root), str(out), GenerationOptions())
        self.assertEqual(out.read_bytes().decode("utf-8"), result.content)

    def test_missing_source(self):
        with self.assertRaises(SourceNotFound):
            generate_from_directory(os.path.join(self.tmp.name, "nope"))

    def test_bad_dialect_options(self):
        with self.assertRaises(DialectError):
            generate_from_directory(str(self.root), GenerationOptions(marker_preset="bogus"))
        with self.assertRaises(DialectError):
            generate_from_directory(str(self.root), GenerationOptions(marker_start="<<"))


class ScannerTests(unittest.TestCase):
    def test_matches_pattern(self):
        self.assertTrue(matches_pattern("node_modules", "node_modules/*"))
        self.assertTrue(matches_pattern("node_modules/a/b.js", "node_modules/*"))
        self.assertTrue(matches_pattern("src/App.LOG", "*.log"))
        self.assertFalse(matches_pattern("src/app.py", "*.log"))

    def test_list_files_sorted_and_pruned(self):
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            (root / "b").mkdir()
            (root / "b" / "z.txt").write_text("z")
            (root / "a.txt").write_text("a")
            (root / ".git").mkdir()
            (root / ".git" / "HEAD").write_text("ref")
            scanner = FileScanner()
            self.assertEqual(scanner.list_files(tmp, [".git/*"]), ["a.txt", "b/z.txt"])
            self.assertEqual(scanner.file_info(str(root / "a.txt")).size, 1)
            self.assertFalse(scanner.is_binary(str(root / "a.txt")))
            with self.assertRaises(SourceNotFound):
                scanner.list_files(str(root / "missing"))


if __name__ == "__main__":
    unittest.main()
