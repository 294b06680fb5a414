from __future__ import annotations

import logging
import time
from typing import Any, Dict, TypedDict

from django.db import DatabaseError
from langgraph.graph import END, START, StateGraph

from apps.books.models import ChatThread
from apps.books.services.pipeline import ConversationWorkflowService

from ..models import AgentRun, RunMode

logger = logging.getLogger(__name__)


class RunState(TypedDict, total=False):
    run: AgentRun
    thread: ChatThread
    mode: str
    inputs: Dict[str, Any]
    output: Dict[str, Any]
    node: str
    node_ms: Dict[str, int]


class AgentOrchestrator:
    """
    Routes an AgentRun through a LangGraph graph with one node per run mode.

    The result is the conversation payload of the node that handled the run,
    tagged with the node name, whether the planner fell back to its fixed
    question, and wall-clock timings.
    """

    def __init__(self, workflow: ConversationWorkflowService | None = None) -> None:
        self.workflow = workflow or ConversationWorkflowService()
        self.graph = self._build_graph()

    def execute(self, run: AgentRun) -> Dict[str, Any]:
        started = time.perf_counter()
        final = self.graph.invoke(
            {
                "run": run,
                "thread": run.thread,
                "mode": str(run.mode),
                "inputs": run.input_payload or {},
                "node_ms": {},
            }
        )
        output = final.get("output") if isinstance(final, dict) else None
        if not isinstance(output, dict) or not output:
            raise ValueError("run graph produced no output")

        result = dict(output)
        result["node"] = final.get("node", "")
        result["used_fallback"] = bool(output.get("used_fallback"))
        result["timings_ms"] = {
            "total_ms": _elapsed_ms(started),
            "nodes": dict(final.get("node_ms") or {}),
        }
        return result

    def _build_graph(self):
        graph = StateGraph(RunState)
        graph.add_node("run_turn", self._run_turn)
        graph.add_node("run_reset", self._run_reset)
        graph.add_conditional_edges(
            START,
            self._route,
            {RunMode.TURN.value: "run_turn", RunMode.RESET.value: "run_reset"},
        )
        graph.add_edge("run_turn", END)
        graph.add_edge("run_reset", END)
        return graph.compile()

    def _route(self, state: RunState) -> str:
        mode = str(state.get("mode", "")).strip().lower()
        if mode not in RunMode.values:
            raise ValueError("mode must be one of: turn | reset")
        return mode

    def _run_turn(self, state: RunState) -> RunState:
        return self._run_node(state, RunMode.TURN.value)

    def _run_reset(self, state: RunState) -> RunState:
        return self._run_node(state, RunMode.RESET.value)

    def _run_node(self, state: RunState, mode: str) -> RunState:
        node = f"run_{mode}"
        thread = state.get("thread")
        if not isinstance(thread, ChatThread):
            raise ValueError("thread is required in run state")

        started = time.perf_counter()
        try:
            output = self.workflow.execute_mode(thread=thread, mode=mode, inputs=state.get("inputs") or {})
        except Exception:
            self._record_failure(state.get("run"), node, _elapsed_ms(started))
            raise

        node_ms = dict(state.get("node_ms") or {})
        node_ms[f"{node}_ms"] = _elapsed_ms(started)
        return {"output": output, "node": node, "node_ms": node_ms}

    def _record_failure(self, run: AgentRun | None, node: str, elapsed_ms: int) -> None:
        # The task marks the run failed; this keeps which node failed and how long it ran.
        if run is None:
            return
        try:
            AgentRun.objects.filter(id=run.id).update(
                output_payload={"failed_node": node},
                timings_json={"nodes": {f"{node}_ms": elapsed_ms}},
            )
        except DatabaseError:
            logger.warning("Failed to record failure telemetry for run %s", run.id, exc_info=True)


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)
