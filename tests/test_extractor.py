import json
import tempfile
import unittest
from pathlib import Path

from subagent_delegate.agent.extractor import (
    CodeArtifactExtractor,
    find_code_blocks,
    infer_file_name,
)

FIB = (
    "def fib(n):\n"
    "    a, b = 0, 1\n"
    "    for _ in range(n):\n"
    "        a, b = b, a + b\n"
    "    return a\n"
)
APP_JS = (
    "// src/app.js\n"
    "export function greet(name) {\n"
    "  return `Hello, ${name}! Welcome back to the app.`;\n"
    "}\n"
)
SHELL = "pip install requests\npython -m venv .venv && source .venv/bin/activate\n"


class TestCodeArtifactExtractor(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.root = Path(self.tmp.name)
        self.extractor = CodeArtifactExtractor()

    def tearDown(self):
        self.tmp.cleanup()

    def test_heading_annotation_writes_exact_body(self):
        text = f"Here you go.\n\n### fib.py\n```python\n{FIB}```\nTASK_COMPLETED"
        result = self.extractor.extract(text, self.root)
        self.assertEqual(result.files_modified, ["fib.py"])
        self.assertEqual((self.root / "fib.py").read_text(encoding="utf-8"), FIB)
        self.assertNotIn("```", result.updated_text)
        self.assertIn("[System: File 'fib.py' created successfully.]", result.updated_text)
        self.assertIn("TASK_COMPLETED", result.updated_text)

    def test_bold_and_backtick_annotations(self):
        text = f"**utils/fib.py**\n```python\n{FIB}```\n\nAnd `other.py`:\n```python\n{FIB}```"
        result = self.extractor.extract(text, self.root)
        self.assertEqual(result.files_modified, ["utils/fib.py", "other.py"])
        self.assertTrue((self.root / "utils" / "fib.py").is_file())
        self.assertTrue((self.root / "other.py").is_file())

    def test_first_line_comment_annotation(self):
        text = f"Some code:\n```javascript\n{APP_JS}```"
        result = self.extractor.extract(text, self.root)
        self.assertEqual(result.files_modified, ["src/app.js"])
        self.assertEqual((self.root / "src" / "app.js").read_text(encoding="utf-8"), APP_JS)

    def test_shell_block_without_name_is_never_saved(self):
        text = f"Run this:\n```bash\n{SHELL}```\nThen you are set."
        result = self.extractor.extract(text, self.root)
        self.assertEqual(result.files_modified, [])
        self.assertEqual(result.updated_text, text)
        self.assertEqual(list(self.root.iterdir()), [])

    def test_unnamed_block_is_skipped(self):
        text = f"Try this:\n```python\n{FIB}```"
        result = self.extractor.extract(text, self.root)
        self.assertEqual(result.files_modified, [])
        self.assertEqual(result.updated_text, text)

    def test_short_block_is_skipped(self):
        text = "### tiny.py\n```python\nx = 1\n```"
        result = self.extractor.extract(text, self.root)
        self.assertEqual(result.files_modified, [])
        self.assertFalse((self.root / "tiny.py").exists())

    def test_last_occurrence_wins_and_second_pass_is_noop(self):
        first = FIB.replace("return a", "return b  # first draft")
        text = f"### fib.py\n```python\n{first}```\n\nFixed version:\n### fib.py\n```python\n{FIB}```"
        result = self.extractor.extract(text, self.root)
        self.assertEqual(result.files_modified, ["fib.py"])
        self.assertEqual((self.root / "fib.py").read_text(encoding="utf-8"), FIB)
        self.assertNotIn("```", result.updated_text)

        again = self.extractor.extract(result.updated_text, self.root)
        self.assertEqual(again.files_modified, [])
        self.assertEqual(again.updated_text, result.updated_text)
        self.assertEqual((self.root / "fib.py").read_text(encoding="utf-8"), FIB)

    def test_unlabeled_blocks_after_saved_file_stay_unsaved_on_second_pass(self):
        usage = "from fib import fib\n\nfor n in range(10):\n    print(n, fib(n))\n"
        text = (
            f"### fib.py\n```python\n{FIB}```\n\nRun it:\n```bash\n{SHELL}```\n"
            f"Example:\n```python\n{usage}```\nTASK_COMPLETED"
        )
        first = self.extractor.extract(text, self.root)
        self.assertEqual(first.files_modified, ["fib.py"])

        second = self.extractor.extract(first.updated_text, self.root)
        self.assertEqual(second.files_modified, [])
        self.assertEqual(second.updated_text, first.updated_text)
        self.assertEqual((self.root / "fib.py").read_text(encoding="utf-8"), FIB)
        self.assertEqual([p.name for p in self.root.iterdir()], ["fib.py"])

    def test_json_batch_writes_all_entries_with_one_marker(self):
        batch = [
            {"path": "a.py", "content": "A = 1\n"},
            {"file_name": "pkg/b.py", "data": "B = 2\n"},
            {"name": "c.txt", "code": "see"},
            {"path": "no_content.py"},
        ]
        text = f"Files:\n```json\n{json.dumps(batch, indent=2)}\n```\nTASK_COMPLETED"
        result = self.extractor.extract(text, self.root)
        self.assertEqual(result.files_modified, ["a.py", "pkg/b.py", "c.txt"])
        self.assertEqual((self.root / "pkg" / "b.py").read_text(encoding="utf-8"), "B = 2\n")
        self.assertEqual(result.updated_text.count("[System:"), 1)
        self.assertIn("saved 3 files from JSON block", result.updated_text)

    def test_plain_json_object_block_is_not_a_batch(self):
        body = json.dumps({"name": "demo", "version": "1.0.0", "description": "a package manifest"}, indent=2)
        text = f"### package.json\n```json\n{body}\n```"
        result = self.extractor.extract(text, self.root)
        self.assertEqual(result.files_modified, ["package.json"])

    def test_escaping_path_is_skipped(self):
        text = f"### ../evil.py\n```python\n{FIB}```"
        result = self.extractor.extract(text, self.root)
        self.assertEqual(result.files_modified, [])
        self.assertFalse((self.root.parent / "evil.py").exists())
        self.assertIn("```", result.updated_text)

    def test_mixed_blocks_keep_offsets_valid(self):
        text = (
            f"intro\n### one.py\n```python\n{FIB}```\n"
            f"middle\n```bash\n{SHELL}```\n"
            f"### two.py\n```python\n{FIB}```\noutro"
        )
        result = self.extractor.extract(text, self.root)
        self.assertEqual(result.files_modified, ["one.py", "two.py"])
        self.assertTrue(result.updated_text.startswith("intro\n### one.py\n"))
        self.assertTrue(result.updated_text.endswith("outro"))
        self.assertIn(SHELL, result.updated_text)
        self.assertIn("middle", result.updated_text)


class TestHelpers(unittest.TestCase):
    def test_find_code_blocks_spans(self):
        text = "a\n```py\nx\n```\nb\n```\ny\n```"
        blocks = find_code_blocks(text)
        self.assertEqual([b.language for b in blocks], ["py", "txt"])
        for block in blocks:
            start, end = block.span
            self.assertTrue(text[start:end].startswith("```"))
            self.assertTrue(text[start:end].endswith("```"))

    def test_nearest_label_wins(self):
        text = f"### old.py\nsome words\n### new.py\n```python\n{FIB}```"
        block = find_code_blocks(text)[0]
        self.assertEqual(infer_file_name(text, block), "new.py")


if __name__ == "__main__":
    unittest.main()
