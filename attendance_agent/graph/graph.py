# graph/graph.py
from langgraph.graph import StateGraph, END
from attendance_agent.graph.state import AttemptState


def route_after_marker_check(state: AttemptState) -> str:
    if state["outcome"] is not None:
        return "end"
    return "acquire_lock"


def route_after_lock(state: AttemptState) -> str:
    if not state["lock_held"]:
        return "end"
    return "load_token"


def route_or_release(next_node: str):
    """ロック保持中のノード用ルーター。結果が確定していれば解放ノードへ"""

    def route(state: AttemptState) -> str:
        if state["outcome"] is not None:
            return "release_lock"
        return next_node

    route.__name__ = f"route_to_{next_node}"
    return route


def build_graph(lock=None, kv=None, gateway=None, locator=None):
    """打刻試行の状態遷移グラフを構築して返す

    CheckAlreadyMarked → AcquireLock → LoadToken → CheckWorkStatus →
    AcquireLocation → CheckEligibility → Submit → MarkCompleted → Release

    各ノード関数はサービス依存を持つため、functools.partialでラップして
    LangGraphが期待する (state) -> dict シグネチャに合わせる。
    ロック取得後の途中終了はすべてrelease_lockを経由してENDに至る。
    バックエンド呼び出しと測位の直前にはロックを延長し、TTLより長い試行でも排他を保つ。
    """
    from functools import partial
    from attendance_agent.graph.nodes.marker_check_node import marker_check_node
    from attendance_agent.graph.nodes.lock_node import acquire_lock_node, release_lock_node
    from attendance_agent.graph.nodes.token_node import token_node
    from attendance_agent.graph.nodes.work_status_node import work_status_node
    from attendance_agent.graph.nodes.location_node import location_node
    from attendance_agent.graph.nodes.eligibility_node import eligibility_node
    from attendance_agent.graph.nodes.submit_node import submit_node
    from attendance_agent.graph.nodes.mark_completed_node import mark_completed_node

    workflow = StateGraph(AttemptState)

    workflow.add_node("check_marked", partial(marker_check_node, lock=lock))
    workflow.add_node("acquire_lock", partial(acquire_lock_node, lock=lock))
    workflow.add_node("load_token", partial(token_node, kv=kv))
    workflow.add_node("check_work_status", partial(work_status_node, gateway=gateway, lock=lock))
    workflow.add_node("acquire_location", partial(location_node, locator=locator, lock=lock))
    workflow.add_node("check_eligibility", eligibility_node)
    workflow.add_node("submit", partial(submit_node, gateway=gateway, lock=lock))
    workflow.add_node("mark_completed", partial(mark_completed_node, lock=lock))
    workflow.add_node("release_lock", partial(release_lock_node, lock=lock))

    workflow.set_entry_point("check_marked")

    workflow.add_conditional_edges(
        "check_marked",
        route_after_marker_check,
        {"acquire_lock": "acquire_lock", "end": END},
    )
    workflow.add_conditional_edges(
        "acquire_lock",
        route_after_lock,
        {"load_token": "load_token", "end": END},
    )

    chain = [
        ("load_token", "check_work_status"),
        ("check_work_status", "acquire_location"),
        ("acquire_location", "check_eligibility"),
        ("check_eligibility", "submit"),
        ("submit", "mark_completed"),
    ]
    for node, next_node in chain:
        workflow.add_conditional_edges(
            node,
            route_or_release(next_node),
            {next_node: next_node, "release_lock": "release_lock"},
        )

    workflow.add_edge("mark_completed", "release_lock")
    workflow.add_edge("release_lock", END)

    return workflow.compile()
