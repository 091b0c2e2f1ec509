import threading

from teamlens.utils.conversation import (
    ConversationState,
    ConversationStore,
    DeveloperAnalysis,
    extract_focus_entities,
)


def test_history_evicts_oldest_first():
    state = ConversationState(history_limit=3)
    for i in range(4):
        state.add_exchange(f"q{i}", f"a{i}")
    assert len(state.history) == 3
    assert [e.user_query for e in state.history] == ["q1", "q2", "q3"]


def test_conversational_exchanges_count_towards_history():
    state = ConversationState(history_limit=3)
    state.add_exchange("q0", "a0")
    for i in range(1, 4):
        state.add_conversational_exchange(f"q{i}", f"a{i}")
    assert [e.type for e in state.history] == ["conversational"] * 3


def test_focus_entities_extracted_by_key_name():
    rows = [
        {"name": "Alice", "repository_name": "web", "key": "PIO-1", "number": 12},
        {"name": "Ben", "repository_name": "web", "key": "PIO-2", "number": 13},
    ]
    found = extract_focus_entities(rows)
    assert found == {
        "developers": ["Alice", "Ben"],
        "repositories": ["web"],
        "tickets": ["PIO-1", "PIO-2"],
        "pull_requests": ["PR #12", "PR #13"],
    }


def test_focus_is_capped_and_most_recent_first():
    state = ConversationState()
    state.update_focus([{"name": n} for n in ("A", "B", "C", "D")])
    state.update_focus([{"name": n} for n in ("E", "F", "B")])
    assert state.focus_entities["developers"] == ["E", "F", "B", "A", "C"]


def test_personal_pronoun_resolves_to_first_developer():
    state = ConversationState()
    state.update_focus([{"name": "Alice", "repository_name": "web"}])
    assert state.resolve_pronoun("what should they improve on") == "Alice"
    assert state.resolve_pronoun("how is his velocity") == "Alice"
    assert state.resolve_pronoun("show everything") is None


def test_impersonal_pronoun_prefers_latest_non_developer_category():
    state = ConversationState()
    state.update_focus([{"repository_name": "web"}])
    state.update_focus([{"key": "PIO-9"}])
    assert state.resolve_pronoun("when was it opened") == "PIO-9"


def test_relative_clause_is_not_a_reference():
    state = ConversationState()
    state.update_focus([{"number": 7}])
    assert state.resolve_pronoun("show commits that were merged") is None
    assert "Resolved reference" not in state.build_context("pioneer", "show commits that were merged")
    assert state.resolve_pronoun("who reviewed it") == "PR #7"


def test_context_block_lists_recent_exchanges_and_resolution():
    state = ConversationState()
    assert state.build_context("pioneer") == ""
    state.add_exchange("top developer by tickets", "x" * 400, [{"name": "Alice", "tickets": 6}])
    context = state.build_context("pioneer", "what should they improve on")
    assert "=== CONVERSATION CONTEXT ===" in context
    assert "User: top developer by tickets" in context
    assert "Assistant: " + "x" * 150 + "..." in context
    assert "x" * 151 not in context
    assert "Developers in focus: Alice" in context
    assert "refers to Alice" in context


def test_snapshot_is_size_bounded():
    state = ConversationState(history_limit=5)
    state.add_exchange("q", "y" * 900, [{"name": n} for n in ("A", "B", "C", "D", "E")])
    for name in ("A", "B", "C", "D"):
        state.store_developer_analysis(DeveloperAnalysis(name, "s", "st", "im", generated_at=f"2025-01-0{ord(name) - 64}"))

    snapshot = state.to_snapshot()
    assert snapshot["focus_entities"]["developers"] == ["A", "B", "C"]
    assert len(snapshot["history"][0]["ai_response"]) == 500
    assert sorted(snapshot["developer_analyses"]) == ["b", "c", "d"]

    restored = ConversationState.from_snapshot(snapshot)
    assert restored.focus_entities["developers"] == ["A", "B", "C"]
    assert restored.has_analysis_for("D")
    assert not restored.has_analysis_for("A")
    assert restored.history[0].user_query == "q"


def test_unreadable_snapshot_starts_fresh():
    state = ConversationState.from_snapshot({"history": [{"bogus": 1}]})
    assert not state.has_context
    assert not ConversationState.from_snapshot("garbage").has_context


def test_clear_forgets_everything():
    state = ConversationState()
    state.add_exchange("q", "a", [{"name": "Alice"}])
    state.store_developer_analysis(DeveloperAnalysis("Alice", "s", "st", "im"))
    state.clear()
    assert not state.has_context
    assert not state.has_analysis_for("Alice")


def test_store_round_trips_and_resets_sessions():
    store = ConversationStore(history_limit=3)
    state = store.get("s1")
    state.add_exchange("q", "a", [{"name": "Alice"}])
    store.put("s1", state)

    assert store.has_context("s1")
    assert not store.has_context("s2")
    assert store.get("s1").focus_entities == {"developers": ["Alice"]}

    store.reset("s1")
    assert not store.has_context("s1")


def test_store_evicts_least_recently_used_session():
    store = ConversationStore(max_sessions=2)
    for sid in ("a", "b", "c"):
        state = store.get(sid)
        state.add_exchange("q", sid)
        store.put(sid, state)
    assert not store.has_context("a")
    assert store.has_context("c")


def test_store_lock_is_per_session():
    store = ConversationStore()
    assert store.lock("a") is store.lock("a")
    assert store.lock("a") is not store.lock("b")
    assert isinstance(store.lock("a"), type(threading.Lock()))
