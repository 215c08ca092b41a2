import json
import tempfile
import unittest
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

from subagent_delegate.agent.delegation import DelegationResult, Delegator
from subagent_delegate.config import DelegationConfig
from subagent_delegate.tools import (
    ConsultSecondaryAgentTool,
    ToolContext,
    ToolRegistry,
    ToolRequest,
    register_delegation_tool,
)


class TestConsultSecondaryAgentTool(unittest.IsolatedAsyncioTestCase):
    async def test_passes_args_and_workspace(self):
        delegator = MagicMock()
        delegator.delegate = AsyncMock(
            return_value=DelegationResult(response="done", generated_files=["fib.py"])
        )
        tool = ConsultSecondaryAgentTool(delegator)
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            res = await tool.run(
                ToolRequest(
                    name=tool.name,
                    args={"task": "write fib", "agent_role": "coder", "context": "py3", "allow_tools": "true"},
                ),
                ToolContext(workspace_root=root),
            )
        kwargs = delegator.delegate.await_args.kwargs
        self.assertEqual(kwargs["task"], "write fib")
        self.assertEqual(kwargs["agent_role"], "coder")
        self.assertEqual(kwargs["context"], "py3")
        self.assertTrue(kwargs["allow_tools"])
        self.assertEqual(kwargs["working_directory"], root)
        self.assertTrue(res.ok)
        self.assertEqual(json.loads(res.output), {"response": "done", "generated_files": ["fib.py"]})
        self.assertEqual(res.modified, ("fib.py",))

    async def test_defaults_role_to_general(self):
        delegator = MagicMock()
        delegator.delegate = AsyncMock(return_value=DelegationResult(error="Secondary agent is disabled."))
        tool = ConsultSecondaryAgentTool(delegator)
        res = await tool.run(ToolRequest(name=tool.name, args={"task": "t"}), ToolContext(workspace_root=Path(".")))
        self.assertEqual(delegator.delegate.await_args.kwargs["agent_role"], "general")
        self.assertFalse(delegator.delegate.await_args.kwargs["allow_tools"])
        self.assertFalse(res.ok)
        self.assertEqual(json.loads(res.output), {"error": "Secondary agent is disabled."})

    async def test_registers_in_primary_registry_end_to_end(self):
        client = MagicMock()
        client.complete = AsyncMock(return_value="Plain answer.")
        registry = register_delegation_tool(ToolRegistry(), Delegator(DelegationConfig(), client))
        descriptor = registry.get("consult_secondary_agent")
        with tempfile.TemporaryDirectory() as tmp:
            res = await descriptor.tool.run(
                ToolRequest(name="consult_secondary_agent", args={"task": "explain"}),
                ToolContext(workspace_root=Path(tmp)),
            )
        self.assertEqual(json.loads(res.output), {"response": "Plain answer.", "generated_files": []})


if __name__ == "__main__":
    unittest.main()
