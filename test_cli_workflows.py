from __future__ import annotations

import json
import os
import subprocess
import sys
import tempfile
import unittest
from pathlib import Path
from typing import Dict


def _build_fixture_tree(root: Path) -> Dict[str, bytes]:
    files: Dict[str, bytes] = {}
    (root / "docs" / "notes").mkdir(parents=True)
    content = b"hello world\n" * 20
    (root / "docs" / "readme.txt").write_bytes(content)
    files["docs/readme.txt"] = content

    (root / "docs" / "notes" / "empty.txt").write_text("")
    files["docs/notes/empty.txt"] = b""

    script = b"#!/bin/sh\necho hi\n"
    (root / "run.sh").write_bytes(script)
    files["run.sh"] = script

    # Excluded by default
    (root / "node_modules").mkdir()
    (root / "node_modules" / "dep.js").write_text("module.exports = 1;\n")
    return files


def _snapshot(root: Path) -> Dict[str, bytes]:
    out: Dict[str, bytes] = {}
    for dirpath, _dirs, files in os.walk(root):
        for fn in files:
            full = Path(dirpath) / fn
            out[full.relative_to(root).as_posix()] = full.read_bytes()
    return out


class CLIIntegrationTests(unittest.TestCase):
    def run_cli(self, args, *, expect: int | None = 0, cwd: Path | None = None, stdin: str | None = None):
        cmd = [sys.executable, "-m", "lookatni.cli"] + list(args)
        env = os.environ.copy()
        repo_root = Path(__file__).resolve().parent
        existing = env.get("PYTHONPATH", "")
        env["PYTHONPATH"] = str(repo_root) if not existing else f"{repo_root}{os.pathsep}{existing}"
        for key in list(env):
            if key.startswith("LOOKATNI_"):
                del env[key]
        proc = subprocess.run(
            cmd,
            cwd=cwd,
            input=stdin,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            env=env,
        )
        if expect is not None and proc.returncode != expect:
            raise AssertionError(
                f"CLI exited {proc.returncode}, expected {expect}\nCommand: {' '.join(cmd)}\nSTDOUT:\n{proc.stdout}\nSTDERR:\n{proc.stderr}"
            )
        return proc

    def setUp(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.workspace = Path(tmp.name)
        self.src = self.workspace / "src"
        self.src.mkdir()
        self.files = _build_fixture_tree(self.src)
        self.stream = self.workspace / "project.txt"

    def test_generate_extract_roundtrip(self):
        gen = self.run_cli(["generate", str(self.src), str(self.stream)])
        self.assertIn("Done: 3 files", gen.stdout)

        out = self.workspace / "out"
        self.run_cli(["extract", str(self.stream), "--outdir", str(out)])
        self.assertEqual(_snapshot(out), self.files)

    def test_presets_roundtrip(self):
        for preset in ("html", "markdown", "code", "gs"):
            with self.subTest(preset=preset):
                stream = self.workspace / f"{preset}.txt"
                self.run_cli(["generate", str(self.src), str(stream), "--preset", preset, "--quiet"])
                out = self.workspace / f"out-{preset}"
                self.run_cli(["extract", str(stream), "--outdir", str(out), "--quiet"])
                self.assertEqual(_snapshot(out), self.files)

    def test_custom_markers_with_frontmatter(self):
        self.run_cli(["generate", str(self.src), str(self.stream), "--start", "<<", "--end", ">>", "--frontmatter"])
        info = self.run_cli(["info", str(self.stream)])
        self.assertIn("custom", info.stdout)
        self.assertIn("Files: 3", info.stdout)
        out = self.workspace / "out"
        self.run_cli(["extract", str(self.stream), "--outdir", str(out)])
        self.assertEqual(_snapshot(out), self.files)

    def test_list_and_info(self):
        self.run_cli(["generate", str(self.src), str(self.stream)])
        listing = self.run_cli(["list", str(self.stream)])
        lines = listing.stdout.strip().splitlines()
        self.assertEqual(lines, ["0\tdocs/notes/empty.txt", "240\tdocs/readme.txt", "18\trun.sh"])
        info = self.run_cli(["info", str(self.stream)])
        self.assertIn("Markers: separator (fs)", info.stdout)

    def test_validate_outputs(self):
        self.run_cli(["generate", str(self.src), str(self.stream)])
        ok = self.run_cli(["validate", str(self.stream)])
        self.assertIn("VALID", ok.stdout)
        self.assertIn("EMPTY_CONTENT", ok.stdout)

        bad = self.workspace / "bad.txt"
        bad.write_text("//\x1c/ CON.txt /\x1c//\nx\n//\x1c/ a.txt /\x1c//\none\n//\x1c/ a.txt /\x1c//\ntwo\n")
        proc = self.run_cli(["validate", str(bad), "--json"], expect=1)
        report = json.loads(proc.stdout)
        self.assertFalse(report["valid"])
        self.assertEqual(report["statistics"]["invalid_filenames"], ["CON.txt"])
        self.assertEqual(report["statistics"]["duplicate_filenames"], ["a.txt"])

    def test_conflict_policies(self):
        self.run_cli(["generate", str(self.src), str(self.stream)])
        target = "run.sh"

        out_skip = self.workspace / "ex_skip"
        out_skip.mkdir()
        (out_skip / target).write_text("beta")
        skip_proc = self.run_cli(["extract", str(self.stream), "--outdir", str(out_skip), "--exists", "skip"])
        self.assertIn("skipping: run.sh", skip_proc.stdout)
        self.assertEqual((out_skip / target).read_text(), "beta")

        out_rename = self.workspace / "ex_rename"
        out_rename.mkdir()
        (out_rename / target).write_text("beta")
        rename_proc = self.run_cli(["extract", str(self.stream), "--outdir", str(out_rename), "--exists", "rename"])
        self.assertIn("renamed to", rename_proc.stdout)
        self.assertEqual((out_rename / "run (1).sh").read_bytes(), self.files["run.sh"])

        out_overwrite = self.workspace / "ex_overwrite"
        out_overwrite.mkdir()
        (out_overwrite / target).write_text("beta")
        self.run_cli(["extract", str(self.stream), "--outdir", str(out_overwrite), "--exists", "overwrite"])
        self.assertEqual((out_overwrite / target).read_bytes(), self.files["run.sh"])

    def test_ask_prompts_per_conflict(self):
        self.run_cli(["generate", str(self.src), str(self.stream)])
        out = self.workspace / "ex_ask"
        (out / "docs").mkdir(parents=True)
        (out / "run.sh").write_text("beta")
        (out / "docs" / "readme.txt").write_text("beta")
        proc = self.run_cli(
            ["extract", str(self.stream), "--outdir", str(out), "--exists", "ask"],
            stdin="o\ns\n",
        )
        self.assertIn("exists", proc.stdout)
        self.assertEqual((out / "docs" / "readme.txt").read_bytes(), self.files["docs/readme.txt"])
        self.assertEqual((out / "run.sh").read_text(), "beta")
        self.assertTrue((out / "docs" / "notes" / "empty.txt").exists())

    def test_dry_run(self):
        self.run_cli(["generate", str(self.src), str(self.stream)])
        out = self.workspace / "dry"
        proc = self.run_cli(["extract", str(self.stream), "--outdir", str(out), "--dry-run"])
        self.assertIn("would extract: run.sh", proc.stdout)
        self.assertFalse(out.exists())

    def test_traversal_reported_as_failure(self):
        evil = self.workspace / "evil.txt"
        evil.write_text("//\x1c/ ../escape.txt /\x1c//\npwned\n")
        out = self.workspace / "out"
        proc = self.run_cli(["extract", str(evil), "--outdir", str(out)], expect=1)
        self.assertIn("Refusing path", proc.stderr)
        self.assertFalse((self.workspace / "escape.txt").exists())

    def test_missing_inputs_exit_2(self):
        proc = self.run_cli(["list", str(self.workspace / "missing.txt")], expect=2)
        self.assertIn("Error:", proc.stderr)
        self.run_cli(["generate", str(self.workspace / "nope"), str(self.stream)], expect=2)
        self.run_cli(["generate", str(self.src), str(self.stream), "--start", "<<"], expect=2)

    def test_environment_defaults(self):
        env_dir = self.workspace / "envcwd"
        env_dir.mkdir()
        (env_dir / ".env").write_text("LOOKATNI_MARKER_PRESET=markdown\n")
        self.run_cli(["generate", str(self.src), str(self.stream)], cwd=env_dir)
        info = self.run_cli(["info", str(self.stream)])
        self.assertIn("preset (markdown)", info.stdout)


if __name__ == "__main__":
    unittest.main()
