"""
Command Dispatcher
==================
Maps ``branch_thinking`` tool payloads onto a ThoughtSession.

A payload is either a thought (single, or a batch under ``thoughts``) or a
``command`` object naming one of COMMAND_TYPES. Every call returns a tagged
result dict, never raises.
"""

import re
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from branchcore.core.exceptions import BranchCoreError, ValidationError
from branchcore.core.models import ThoughtInput
from branchcore.core.session import ThoughtSession, result_error, result_ok
from branchcore.core.visualization import VisualizationOptions
from branchcore.mcp.schemas import BranchThinkingInput, CommandSchema
from branchcore.mcp.workflow import (
    DEFAULT_RULES,
    AutoExecutionPolicy,
    CommandSafetyValidator,
    WorkflowPlanner,
    WorkflowStep,
)

_MERMAID_ID_RE = re.compile(r"[^a-zA-Z0-9_]")

Handler = Callable[[CommandSchema], Awaitable[Dict[str, Any]]]


def render_mermaid(data: Mapping[str, Any]) -> str:
    """Render a visualization payload (nodes/edges) as a top-down Mermaid graph."""
    lines = ["graph TD"]
    for node in data.get("nodes", []):
        label = str(node.get("label", node["id"])).replace('"', "#quot;")
        lines.append(f'  {_MERMAID_ID_RE.sub("_", node["id"])}["{label}"]')
    for edge in data.get("edges", []):
        src = _MERMAID_ID_RE.sub("_", edge["from"])
        dst = _MERMAID_ID_RE.sub("_", edge["to"])
        label = str(edge.get("label") or edge.get("type", "")).replace("|", "/")
        lines.append(f"  {src} -->|{label}| {dst}")
    return "\n".join(lines) + "\n"


def _require(value: Any, field: str, command_type: str) -> Any:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(field, f"required for '{command_type}'")
    return value


def _pydantic_error(exc: PydanticValidationError) -> ValidationError:
    first = exc.errors()[0]
    field = ".".join(str(part) for part in first.get("loc", ())) or "payload"
    return ValidationError(field, first.get("msg", "invalid value"), context={"errors": exc.error_count()})


class CommandDispatcher:
    def __init__(
        self,
        session: ThoughtSession,
        policy: Optional[AutoExecutionPolicy] = None,
        planner: Optional[WorkflowPlanner] = None,
    ):
        self.session = session
        self.policy = policy or AutoExecutionPolicy(DEFAULT_RULES)
        self.validator = CommandSafetyValidator(self.policy)
        self.planner = planner or WorkflowPlanner()
        self._handlers: Dict[str, Handler] = {
            "list": self._list,
            "focus": self._focus,
            "history": self._history,
            "insights": self._insights,
            "crossrefs": self._crossrefs,
            "hub-thoughts": self._hub_thoughts,
            "semantic-search": self._semantic_search,
            "link-thoughts": self._link_thoughts,
            "add-snippet": self._add_snippet,
            "snippet-search": self._snippet_search,
            "summarize-branch": self._summarize_branch,
            "doc-thought": self._doc_thought,
            "extract-tasks": self._extract_tasks,
            "list-tasks": self._list_tasks,
            "update-task-status": self._update_task_status,
            "assign-task": self._assign_task,
            "summarize-tasks": self._summarize_tasks,
            "review-branch": self._review_branch,
            "visualize": self._visualize,
            "cache-stats": self._cache_stats,
            "clear-cache": self._clear_cache,
            "complex-task": self._complex_task,
        }

    # ==================================================================
    # Entry points
    # ==================================================================

    async def process(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        try:
            request = BranchThinkingInput.model_validate(payload)
        except PydanticValidationError as exc:
            return result_error(_pydantic_error(exc))
        except BranchCoreError as exc:
            return result_error(exc)

        if request.command is not None:
            return await self.handle_command(request.command)
        return await self.add_thoughts(request.thought_inputs())

    async def handle_command(self, command: CommandSchema) -> Dict[str, Any]:
        handler = self._handlers.get(command.type)
        if handler is None:
            return result_error(ValidationError("command.type", f"unknown command type: {command.type}"))
        try:
            return await handler(command)
        except BranchCoreError as exc:
            logger.info(f"Command '{command.type}' rejected: {exc}")
            return result_error(exc)
        except Exception as exc:
            logger.exception(f"Command '{command.type}' raised unexpectedly")
            return result_error(exc)

    async def add_thoughts(self, items: List[ThoughtInput]) -> Dict[str, Any]:
        result = await self.session.add_thought(items[0] if len(items) == 1 else items)
        if not result["ok"]:
            return result
        thought = result["data"]
        graph = self.session.graph
        branch = graph.require_branch(graph.branch_of(thought["id"]) or thought["branch_id"])
        status = await self.session.format_branch_status(branch.id)
        return result_ok({
            "thought_id": thought["id"],
            "branch_id": branch.id,
            "branch_state": branch.state.value,
            "branch_priority": branch.priority,
            "num_insights": len(branch.insights),
            "num_cross_refs": len(branch.cross_refs),
            "active_branch": graph.active_branch_id,
            "status": status.get("data"),
        })

    def _branch_id(self, command: CommandSchema) -> Optional[str]:
        return command.branch_id or self.session.graph.active_branch_id

    # ==================================================================
    # Branch commands
    # ==================================================================

    async def _list(self, command: CommandSchema) -> Dict[str, Any]:
        return await self.session.get_all_branches()

    async def _focus(self, command: CommandSchema) -> Dict[str, Any]:
        branch_id = _require(command.branch_id, "branchId", command.type)
        result = await self.session.set_active_branch(branch_id)
        if not result["ok"]:
            return result
        status = await self.session.format_branch_status(branch_id)
        return result_ok({
            "message": f"Now focused on branch: {branch_id}",
            "active_branch": branch_id,
            "status": status.get("data"),
        })

    async def _history(self, command: CommandSchema) -> Dict[str, Any]:
        return await self.session.get_branch_history(self._branch_id(command))

    async def _insights(self, command: CommandSchema) -> Dict[str, Any]:
        return await self.session.get_cached_insights(self._branch_id(command))

    async def _crossrefs(self, command: CommandSchema) -> Dict[str, Any]:
        return await self.session.get_cross_references(self._branch_id(command))

    async def _hub_thoughts(self, command: CommandSchema) -> Dict[str, Any]:
        return await self.session.hub_thoughts(self._branch_id(command), top_n=command.top_n)

    async def _summarize_branch(self, command: CommandSchema) -> Dict[str, Any]:
        return await self.session.summarize_branch(self._branch_id(command))

    async def _review_branch(self, command: CommandSchema) -> Dict[str, Any]:
        return await self.session.review_branch(self._branch_id(command))

    async def _visualize(self, command: CommandSchema) -> Dict[str, Any]:
        branch_id = None if command.branches else self._branch_id(command)
        options = VisualizationOptions(
            branch_id=branch_id,
            branches=command.branches,
            show_clusters=command.show_clusters,
            edge_bundling=command.edge_bundling,
            focus_node=command.focus_node,
            level_of_detail=command.level_of_detail,
        )
        result = await self.session.visualize(options)
        if not result["ok"]:
            return result
        return result_ok({
            "branch_id": branch_id,
            "visualization": result["data"],
            "mermaid": render_mermaid(result["data"]),
        })

    # ==================================================================
    # Thought commands
    # ==================================================================

    async def _semantic_search(self, command: CommandSchema) -> Dict[str, Any]:
        query = _require(command.query, "query", command.type)
        return await self.session.semantic_search(query, top_n=command.top_n)

    async def _link_thoughts(self, command: CommandSchema) -> Dict[str, Any]:
        from_id = _require(command.from_thought_id, "fromThoughtId", command.type)
        to_id = _require(command.to_thought_id, "toThoughtId", command.type)
        return await self.session.link_thoughts(from_id, to_id, command.link_type or "related", command.reason)

    async def _doc_thought(self, command: CommandSchema) -> Dict[str, Any]:
        thought_id = _require(command.thought_id, "thoughtId", command.type)
        return await self.session.summarize_thought(thought_id)

    async def _add_snippet(self, command: CommandSchema) -> Dict[str, Any]:
        content = _require(command.content, "content", command.type)
        return await self.session.add_snippet(content, command.tags or [], command.author)

    async def _snippet_search(self, command: CommandSchema) -> Dict[str, Any]:
        query = _require(command.query, "query", command.type)
        return await self.session.search_snippets(query, top_n=command.top_n)

    # ==================================================================
    # Task commands
    # ==================================================================

    async def _extract_tasks(self, command: CommandSchema) -> Dict[str, Any]:
        return await self.session.extract_tasks(self._branch_id(command))

    async def _list_tasks(self, command: CommandSchema) -> Dict[str, Any]:
        return await self.session.query_tasks(
            branch_id=self._branch_id(command),
            status=command.status,
            assignee=command.assignee,
            due=command.due,
        )

    async def _update_task_status(self, command: CommandSchema) -> Dict[str, Any]:
        task_id = _require(command.task_id, "taskId", command.type)
        status = _require(command.status, "status", command.type)
        return await self.session.update_task_status(task_id, status, user=command.user)

    async def _assign_task(self, command: CommandSchema) -> Dict[str, Any]:
        task_id = _require(command.task_id, "taskId", command.type)
        assignee = _require(command.assignee, "assignee", command.type)
        return await self.session.assign_task(task_id, assignee)

    async def _summarize_tasks(self, command: CommandSchema) -> Dict[str, Any]:
        return await self.session.summarize_tasks(self._branch_id(command))

    # ==================================================================
    # Cache administration
    # ==================================================================

    async def _cache_stats(self, command: CommandSchema) -> Dict[str, Any]:
        return await self.session.cache_stats()

    async def _clear_cache(self, command: CommandSchema) -> Dict[str, Any]:
        return await self.session.clear_cache()

    # ==================================================================
    # Workflows
    # ==================================================================

    async def _complex_task(self, command: CommandSchema) -> Dict[str, Any]:
        """
        Plan the command into atomic steps and run them in order.

        Execution stops at the first step the policy does not allow or the
        first failing step; the remaining steps are reported as pending.
        """
        _require(command.branch_id, "branchId", command.type)
        _require(command.content, "content", command.type)
        steps = self.planner.plan(command.model_dump(exclude_none=True))

        executed: List[Dict[str, Any]] = []
        for index, step in enumerate(steps):
            if not self.validator.is_safe(step.as_command()):
                logger.info(f"Workflow paused before unsafe step '{step.type}'")
                return result_ok({
                    "completed": False,
                    "executed": executed,
                    "pending": [s.to_dict() for s in steps[index:]],
                })
            outcome = await self._run_step(step)
            executed.append({**step.to_dict(), "result": outcome})
            if not outcome["ok"]:
                return result_ok({
                    "completed": False,
                    "executed": executed,
                    "pending": [s.to_dict() for s in steps[index + 1:]],
                })
        return result_ok({"completed": True, "executed": executed, "pending": []})

    async def _run_step(self, step: WorkflowStep) -> Dict[str, Any]:
        params = step.params
        if step.type == "create-branch":
            return await self.session.create_branch(params["branch_id"])
        if step.type == "add-thought":
            return await self.add_thoughts([ThoughtInput(content=params["content"], branch_id=params.get("branch_id"))])
        try:
            command = CommandSchema(type=step.type, **params)
        except PydanticValidationError as exc:
            return result_error(_pydantic_error(exc))
        return await self.handle_command(command)


__all__ = ["CommandDispatcher", "render_mermaid"]
