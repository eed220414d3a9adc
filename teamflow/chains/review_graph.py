from __future__ import annotations

from langgraph.graph import END, StateGraph

from teamflow.agents.nodes import digest_node, merge_node, review_node
from teamflow.orchestrator.runtime import TeamRuntime
from teamflow.schema import ReviewRunState


def build_review_graph(rt: TeamRuntime):
    """collect_reviews -> merge_round -> controller_digest, looping while issues stay open and rounds remain."""
    graph = StateGraph(ReviewRunState)

    # Wrap nodes to inject deps
    graph.add_node("collect_reviews", lambda s: review_node(s, rt))
    graph.add_node("merge_round", merge_node)
    graph.add_node("controller_digest", lambda s: digest_node(s, rt))

    graph.set_entry_point("collect_reviews")
    graph.add_edge("collect_reviews", "merge_round")
    graph.add_edge("merge_round", "controller_digest")

    def route_after_digest(state: ReviewRunState) -> str:
        if state.digest_failed:
            return END
        if (state.blockers or state.required_decisions) and state.round < state.max_rounds:
            return "collect_reviews"
        return END

    graph.add_conditional_edges("controller_digest", route_after_digest, {"collect_reviews": "collect_reviews", END: END})

    compiled = graph.compile()
    return compiled
