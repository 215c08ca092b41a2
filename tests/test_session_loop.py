import tempfile
import unittest
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

from subagent_delegate.agent.refusal import REFUSAL_CORRECTION
from subagent_delegate.agent.session import NO_CALL_NUDGE, AgentSession
from subagent_delegate.config import DelegationConfig
from subagent_delegate.providers.chat_completions import ChatTransportError

SAVE_CALL = '{"tool": "save_file", "args": {"file_name": "a.py", "content": "print(1)\\n"}}'


def _client(*replies):
    client = MagicMock()
    client.complete = AsyncMock(side_effect=list(replies))
    return client


class TestAgentSession(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.root = Path(self.tmp.name)

    def tearDown(self):
        self.tmp.cleanup()

    async def _run(self, client, config=None, **kwargs):
        session = AgentSession(client, config or DelegationConfig())
        kwargs.setdefault("working_directory", self.root)
        kwargs.setdefault("allow_tools", True)
        return await session.run(persona="coder", task="do it", **kwargs)

    async def test_terminates_within_turn_limit_without_marker(self):
        client = _client("thinking...", "still thinking", "here is my answer")
        result = await self._run(client, turn_limit=3)
        self.assertTrue(result.ok)
        self.assertEqual(client.complete.await_count, 3)
        self.assertEqual(result.turns_used, 3)
        self.assertEqual(result.response, "here is my answer")

    async def test_no_call_gets_nudge(self):
        client = _client("hmm", "ok TASK_COMPLETED")
        await self._run(client)
        second_payload = client.complete.await_args_list[1].args[0]
        self.assertEqual(second_payload[-2], {"role": "assistant", "content": "hmm"})
        self.assertEqual(second_payload[-1], {"role": "system", "content": NO_CALL_NUDGE})

    async def test_tool_call_then_completion(self):
        client = _client(SAVE_CALL, "Saved it. TASK_COMPLETED")
        result = await self._run(client)
        self.assertTrue(result.ok)
        self.assertEqual(result.turns_used, 2)
        self.assertEqual(result.files_modified, ["a.py"])
        self.assertEqual(result.response, "Saved it. TASK_COMPLETED")
        self.assertEqual((self.root / "a.py").read_text(encoding="utf-8"), "print(1)\n")
        second_payload = client.complete.await_args_list[1].args[0]
        self.assertEqual(second_payload[-2]["role"], "assistant")
        self.assertEqual(second_payload[-1]["role"], "user")
        self.assertTrue(second_payload[-1]["content"].startswith("Tool Output: Success"))

    async def test_failed_tool_is_fed_back_and_loop_continues(self):
        client = _client('{"tool": "read_file", "args": {"file_name": "missing.txt"}}', "TASK_COMPLETED")
        result = await self._run(client)
        self.assertTrue(result.ok)
        second_payload = client.complete.await_args_list[1].args[0]
        self.assertIn("Error: file not found", second_payload[-1]["content"])

    async def test_refusal_takes_priority_over_tool_call(self):
        client = _client("As an AI I cannot browse. " + SAVE_CALL, "TASK_COMPLETED")
        result = await self._run(client)
        self.assertTrue(result.ok)
        self.assertFalse((self.root / "a.py").exists())
        self.assertEqual(result.files_modified, [])
        second_payload = client.complete.await_args_list[1].args[0]
        self.assertEqual(second_payload[-1], {"role": "system", "content": REFUSAL_CORRECTION})

    async def test_transport_error_keeps_files_modified(self):
        client = _client(SAVE_CALL, ChatTransportError("API Error: 500 boom", status_code=500))
        result = await self._run(client)
        self.assertFalse(result.ok)
        self.assertIn("500", result.error)
        self.assertEqual(result.files_modified, ["a.py"])
        self.assertEqual(result.response, "")

    async def test_tools_disabled_returns_first_reply(self):
        client = _client(SAVE_CALL, "never reached")
        result = await self._run(client, allow_tools=False)
        self.assertEqual(client.complete.await_count, 1)
        self.assertEqual(result.response, SAVE_CALL)
        self.assertFalse((self.root / "a.py").exists())

    async def test_force_tools_enabled_overrides_allow_tools(self):
        client = _client(SAVE_CALL, "TASK_COMPLETED")
        result = await self._run(client, allow_tools=False, force_tools_enabled=True)
        self.assertEqual(result.files_modified, ["a.py"])

    async def test_budget_spent_on_tool_calls_returns_last_reply(self):
        client = _client(SAVE_CALL, SAVE_CALL)
        result = await self._run(client, turn_limit=2)
        self.assertTrue(result.ok)
        self.assertEqual(result.turns_used, 2)
        self.assertEqual(result.response, SAVE_CALL)

    async def test_turn_markers_are_stripped(self):
        client = _client("<|start|>final answer TASK_COMPLETED<|end|>")
        result = await self._run(client)
        self.assertEqual(result.response, "final answer TASK_COMPLETED")

    async def test_system_prompt_has_project_info_persona_and_tools(self):
        (self.root / "PROJECT_INFO.md").write_text("# Project History\n- earlier work", encoding="utf-8")
        client = _client("TASK_COMPLETED")
        config = DelegationConfig(profiles={"coder": "You write tidy Python."})
        await self._run(client, config=config)
        system = client.complete.await_args_list[0].args[0][0]
        self.assertEqual(system["role"], "system")
        self.assertIn("earlier work", system["content"])
        self.assertIn("You write tidy Python.", system["content"])
        self.assertIn("save_file", system["content"])
        self.assertIn(str(self.root.resolve()), system["content"])

    async def test_instructions_file_replaces_base_prompt(self):
        (self.root / "SUB_AGENT_INSTRUCTIONS.md").write_text("Custom base prompt.", encoding="utf-8")
        client = _client("done")
        await self._run(client, allow_tools=False)
        system = client.complete.await_args_list[0].args[0][0]["content"]
        self.assertTrue(system.startswith("Custom base prompt."))
        self.assertNotIn("Allowed Tools", system)


if __name__ == "__main__":
    unittest.main()
