"""Tests for the sequential thinking tool."""

import json

import pytest

from claude_code_mcp.thinking_sse import create_thinking_server
from claude_code_mcp.tools.sequential_thinking import (
    TOOL,
    ThinkingSession,
    ThoughtData,
    format_thought,
)


def _thought(number=1, total=3, **extra):
    return {
        "thought": f"thought {number}",
        "thought_number": number,
        "total_thoughts": total,
        "next_thought_needed": True,
        **extra,
    }


STEP = {
    "step_description": "Find the config loader",
    "recommended_tools": [
        {
            "tool_name": "ContextEngine",
            "confidence": 0.9,
            "rationale": "Searches the codebase",
            "priority": 1,
            "alternatives": ["Grep"],
        }
    ],
    "expected_outcome": "Location of the loader",
}


class TestProcessThought:
    """Tests for ThinkingSession.process_thought."""

    def test_basic_thought(self):
        """Test the response for a single thought."""
        session = ThinkingSession()
        result = session.process_thought(_thought())

        body = json.loads(result.text)
        assert result.is_error is False
        assert body["thought_number"] == 1
        assert body["total_thoughts"] == 3
        assert body["next_thought_needed"] is True
        assert body["thought_history_length"] == 1
        assert body["branches"] == []

    def test_total_raised_to_thought_number(self):
        """Test that total_thoughts grows to the thought number."""
        session = ThinkingSession()
        body = json.loads(session.process_thought(_thought(number=5, total=3)).text)
        assert body["total_thoughts"] == 5

    def test_history_accumulates(self):
        """Test that thoughts accumulate in the history."""
        session = ThinkingSession()
        session.process_thought(_thought(1))
        body = json.loads(session.process_thought(_thought(2)).text)
        assert body["thought_history_length"] == 2

    def test_current_step_appended_to_previous_steps(self):
        """Test that the current step joins the previous steps."""
        session = ThinkingSession()
        body = json.loads(session.process_thought(_thought(current_step=STEP, remaining_steps=["verify"])).text)

        assert body["current_step"]["step_description"] == "Find the config loader"
        assert len(body["previous_steps"]) == 1
        assert body["previous_steps"][0]["recommended_tools"][0]["tool_name"] == "ContextEngine"
        assert body["remaining_steps"] == ["verify"]

    def test_branches_recorded(self):
        """Test that branch thoughts are recorded under their id."""
        session = ThinkingSession()
        session.process_thought(_thought(1))
        body = json.loads(
            session.process_thought(_thought(2, branch_from_thought=1, branch_id="alt")).text
        )

        assert body["branches"] == ["alt"]
        assert len(session.branches["alt"]) == 1

    def test_branch_without_id_not_recorded(self):
        """Test that a branch without an id is not recorded."""
        session = ThinkingSession()
        session.process_thought(_thought(2, branch_from_thought=1))
        assert session.branches == {}

    def test_sessions_are_independent(self):
        """Test that sessions keep separate histories."""
        first = ThinkingSession()
        second = ThinkingSession()
        first.process_thought(_thought(1))
        first.process_thought(_thought(2))

        body = json.loads(second.process_thought(_thought(1)).text)
        assert body["thought_history_length"] == 1

    def test_empty_thought_accepted(self):
        """Test that an empty thought string is a valid thought."""
        session = ThinkingSession()
        result = session.process_thought(_thought(thought=""))

        assert result.is_error is False
        assert session.thought_history[0].thought == ""

    @pytest.mark.parametrize(
        "arguments",
        [
            {"thought_number": 1, "total_thoughts": 1, "next_thought_needed": False},
            _thought(number=0),
            _thought(next_thought_needed="maybe"),
            _thought(current_step={**STEP, "recommended_tools": [{**STEP["recommended_tools"][0], "confidence": 1.5}]}),
        ],
    )
    def test_invalid_input(self, arguments):
        """Test that invalid input fails without touching history."""
        session = ThinkingSession()
        result = session.process_thought(arguments)

        body = json.loads(result.text)
        assert result.is_error is True
        assert body["status"] == "failed"
        assert body["error"].startswith("Invalid ")
        assert session.thought_history == []


class TestFormatThought:
    """Tests for the boxed log rendering."""

    def test_plain_thought(self):
        """Test the header of a plain thought."""
        rendered = format_thought(ThoughtData.model_validate(_thought(1, 2)))
        assert "Thought 1/2" in rendered
        assert rendered.splitlines()[0].startswith("┌")

    def test_revision(self):
        """Test the header of a revision."""
        rendered = format_thought(ThoughtData.model_validate(_thought(3, 3, is_revision=True, revises_thought=1)))
        assert "Revision 3/3 (revising thought 1)" in rendered

    def test_branch_with_recommendation(self):
        """Test the branch header and recommendation lines."""
        data = ThoughtData.model_validate(_thought(2, 3, branch_from_thought=1, branch_id="b", current_step=STEP))
        rendered = format_thought(data)
        assert "Branch 2/3 (from thought 1, ID: b)" in rendered
        assert "ContextEngine (priority: 1) (alternatives: Grep)" in rendered

    def test_box_lines_are_aligned(self):
        """Test that every line of the box has the same width."""
        data = ThoughtData.model_validate(_thought(1, 1, current_step=STEP))
        widths = {len(line) for line in format_thought(data).splitlines()}
        assert len(widths) == 1


class TestThinkingServer:
    """Tests for the per-connection MCP server."""

    @staticmethod
    async def _call(server, arguments):
        from mcp.types import CallToolRequest, CallToolRequestParams

        handler = server.request_handlers[CallToolRequest]
        request = CallToolRequest(
            method="tools/call",
            params=CallToolRequestParams(name="sequentialthinking_tools", arguments=arguments),
        )
        return (await handler(request)).root

    def test_tool_schema(self):
        """Test the tool name and required fields."""
        assert TOOL.name == "sequentialthinking_tools"
        assert set(TOOL.inputSchema["required"]) == {
            "thought",
            "thought_number",
            "total_thoughts",
            "next_thought_needed",
        }

    @pytest.mark.asyncio
    async def test_each_server_has_own_session(self):
        """Test that two servers never share thought history."""
        first = create_thinking_server()
        second = create_thinking_server()

        await self._call(first, _thought(1))
        first_body = json.loads((await self._call(first, _thought(2))).content[0].text)
        second_body = json.loads((await self._call(second, _thought(1))).content[0].text)

        assert first_body["thought_history_length"] == 2
        assert second_body["thought_history_length"] == 1

    @pytest.mark.asyncio
    async def test_invalid_thought_is_error(self):
        """Test that an invalid thought comes back flagged as an error."""
        session = ThinkingSession()
        result = await self._call(create_thinking_server(session), {"thought": "x"})

        assert result.isError is True
        assert session.thought_history == []
