from attendance_agent.graph.state import AttemptState, initial_state
from attendance_agent.services.models import Outcome, TriggerSource


def test_initial_state():
    """初期状態が正しいキーで生成できること"""
    state = initial_state("attempt-1", TriggerSource.POLLING)
    assert state["attempt_id"] == "attempt-1"
    assert state["source"] == TriggerSource.POLLING
    assert state["lock_held"] is False
    assert state["outcome"] is None
    assert set(state) == set(AttemptState.__annotations__)


def test_attempt_state_with_data():
    """測位結果付きのStateが正しく動作すること"""
    state: AttemptState = initial_state("attempt-2", TriggerSource.MANUAL)
    state.update({
        "lock_held": True,
        "token": "abc",
        "latitude": 28.6139,
        "longitude": 77.2090,
        "outcome": Outcome.SUCCESS,
    })
    assert state["token"] == "abc"
    assert state["outcome"] == Outcome.SUCCESS
