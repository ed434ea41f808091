"""
Tests for the branch_thinking payload schemas.
"""

import pytest
from pydantic import ValidationError

from branchcore.core.exceptions import ValidationError as BranchCoreValidationError
from branchcore.core.models import BranchCrossRefType, ThoughtLinkType
from branchcore.mcp.schemas import (
    COMMAND_TYPES,
    BranchThinkingInput,
    CommandSchema,
    ThoughtInputSchema,
    ToolResult,
)


class TestThoughtInputSchema:
    def test_camel_case_wire_names(self):
        inp = ThoughtInputSchema.model_validate({
            "content": "Compare caching strategies",
            "branchId": "cache",
            "keyPoints": ["lru", "ttl"],
            "crossRefs": [{"toBranch": "perf", "type": "builds_upon", "reason": "latency", "strength": 0.8}],
            "thoughtCrossRefs": [{"toThoughtId": "thought-1", "type": "refines"}],
            "skipExtractTasks": True,
        })
        converted = inp.to_input()

        assert converted.branch_id == "cache"
        assert converted.key_points == ["lru", "ttl"]
        assert converted.cross_refs[0].type == BranchCrossRefType.BUILDS_UPON
        assert converted.cross_refs[0].strength == 0.8
        assert converted.thought_cross_refs[0].type == ThoughtLinkType.REFINES
        assert converted.skip_extract_tasks is True

    def test_snake_case_also_accepted(self):
        inp = ThoughtInputSchema(content="x", branch_id="b")
        assert inp.branch_id == "b"

    def test_empty_content_rejected(self):
        with pytest.raises(ValidationError):
            ThoughtInputSchema(content="")

    @pytest.mark.parametrize("confidence", [-0.1, 1.5])
    def test_confidence_bounds(self, confidence):
        with pytest.raises(ValidationError):
            ThoughtInputSchema(content="x", confidence=confidence)

    def test_cross_ref_strength_bounds(self):
        with pytest.raises(ValidationError):
            ThoughtInputSchema.model_validate({"content": "x", "crossRefs": [{"toBranch": "b", "strength": 2}]})

    def test_unknown_link_type_rejected(self):
        with pytest.raises(ValidationError):
            ThoughtInputSchema.model_validate({"content": "x", "thoughtCrossRefs": [{"toThoughtId": "t", "type": "loves"}]})


class TestCommandSchema:
    @pytest.mark.parametrize("command_type", COMMAND_TYPES)
    def test_every_command_type_accepted(self, command_type):
        assert CommandSchema(type=command_type).type == command_type

    def test_unknown_command_rejected(self):
        with pytest.raises(ValidationError):
            CommandSchema(type="drop-tables")

    def test_defaults(self):
        cmd = CommandSchema.model_validate({"type": "visualize", "branchId": "b"})
        assert cmd.top_n == 5
        assert cmd.show_clusters is True
        assert cmd.edge_bundling is False
        assert cmd.level_of_detail == "auto"

    def test_top_n_bounds(self):
        with pytest.raises(ValidationError):
            CommandSchema(type="semantic-search", query="q", top_n=0)
        with pytest.raises(ValidationError):
            CommandSchema(type="semantic-search", query="q", top_n=101)

    def test_level_of_detail_pattern(self):
        with pytest.raises(ValidationError):
            CommandSchema.model_validate({"type": "visualize", "levelOfDetail": "extreme"})


class TestBranchThinkingInput:
    def test_single_thought(self):
        request = BranchThinkingInput.model_validate({"content": "hello", "branchId": "b", "type": "question"})
        [item] = request.thought_inputs()
        assert item.content == "hello"
        assert item.branch_id == "b"
        assert item.type == "question"

    def test_batch(self):
        request = BranchThinkingInput.model_validate({"thoughts": [{"content": "a"}, {"content": "b"}]})
        assert [t.content for t in request.thought_inputs()] == ["a", "b"]

    def test_command(self):
        request = BranchThinkingInput.model_validate({"command": {"type": "focus", "branchId": "b"}})
        assert request.command.branch_id == "b"

    def test_empty_payload_rejected(self):
        with pytest.raises(ValidationError):
            BranchThinkingInput.model_validate({})


class TestToolResult:
    def test_success(self):
        result = ToolResult(ok=True, data={"thought_id": "t"})
        assert result.error is None

    def test_error_with_ok_rejected(self):
        with pytest.raises(BranchCoreValidationError):
            ToolResult(ok=True, error="should not be here")

    def test_failure(self):
        result = ToolResult.model_validate({"ok": False, "error": "boom", "code": "INTERNAL_ERROR"})
        assert result.code == "INTERNAL_ERROR"
