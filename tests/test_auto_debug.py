import tempfile
import unittest
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

from subagent_delegate.agent.auto_debug import (
    REPORT_HEADING,
    AutoDebugOrchestrator,
    ReviewResult,
    build_review_context,
    format_report,
)
from subagent_delegate.agent.session import AgentSession
from subagent_delegate.config import DelegationConfig
from subagent_delegate.domain.transcript import SessionResult


class TestAutoDebugOrchestrator(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.root = Path(self.tmp.name)

    def tearDown(self):
        self.tmp.cleanup()

    async def test_runs_reviewer_with_forced_tools_and_smaller_budget(self):
        (self.root / "fib.py").write_text("def fib(n): return n\n", encoding="utf-8")
        session = MagicMock()
        session.run = AsyncMock(return_value=SessionResult(response="Looks good.", files_modified=[]))
        orchestrator = AutoDebugOrchestrator(session, turn_limit=5)

        review = await orchestrator.review(["fib.py"], self.root)

        kwargs = session.run.await_args.kwargs
        self.assertEqual(kwargs["persona"], "reviewer")
        self.assertTrue(kwargs["force_tools_enabled"])
        self.assertEqual(kwargs["turn_limit"], 5)
        self.assertIn("fib.py", kwargs["task"])
        self.assertIn("--- fib.py ---\ndef fib(n): return n\n", kwargs["context"])
        self.assertEqual(review.response, "Looks good.")
        self.assertEqual(review.files_modified, ["fib.py"])

    async def test_reviewer_fix_goes_through_tools_and_is_unioned(self):
        (self.root / "fib.py").write_text("def fib(n): return n\n", encoding="utf-8")
        fixed = "def fib(n):\\n    return n if n < 2 else fib(n - 1) + fib(n - 2)\\n"
        client = MagicMock()
        client.complete = AsyncMock(
            side_effect=[
                '{"tool": "save_file", "args": {"file_name": "fib.py", "content": "' + fixed + '"}}',
                '{"tool": "save_file", "args": {"file_name": "test_fib.py", "content": "assert True\\n"}}',
                "Fixed the recursion.\n```python\nprint('this block is not extracted by the reviewer pass')\n```\nTASK_COMPLETED",
            ]
        )
        session = AgentSession(client, DelegationConfig())
        review = await AutoDebugOrchestrator(session, turn_limit=5).review(["fib.py"], self.root)

        self.assertEqual(review.reviewer_files, ["fib.py", "test_fib.py"])
        self.assertEqual(review.files_modified, ["fib.py", "test_fib.py"])
        self.assertIn("fib(n - 1)", (self.root / "fib.py").read_text(encoding="utf-8"))
        self.assertEqual(sorted(p.name for p in self.root.iterdir()), ["fib.py", "test_fib.py"])
        report = format_report(review)
        self.assertTrue(report.startswith(REPORT_HEADING))
        self.assertIn("(The reviewer fixed these files: fib.py, test_fib.py)", report)

    async def test_no_files_skips_review(self):
        session = MagicMock()
        session.run = AsyncMock()
        review = await AutoDebugOrchestrator(session).review([], self.root)
        session.run.assert_not_called()
        self.assertEqual(review.response, "")

    async def test_review_failure_is_reported_not_raised(self):
        session = MagicMock()
        session.run = AsyncMock(return_value=SessionResult(error="API Error: 503"))
        review = await AutoDebugOrchestrator(session).review(["a.py"], self.root)
        self.assertEqual(review.error, "API Error: 503")
        self.assertIn("Review failed", format_report(review))


class TestReviewHelpers(unittest.TestCase):
    def test_unreadable_files_are_skipped(self):
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            (root / "ok.py").write_text("x = 1\n", encoding="utf-8")
            context = build_review_context(["missing.py", "ok.py", "../escape.py"], root)
            self.assertIn("--- ok.py ---", context)
            self.assertNotIn("missing.py", context)
            self.assertNotIn("escape.py", context)

    def test_empty_report_gets_default_text(self):
        self.assertIn("Debug pass completed.", format_report(ReviewResult()))


if __name__ == "__main__":
    unittest.main()
