"""Tests for the ball store, id resolution and dependency checks."""

import pytest

from juggler.exceptions import AmbiguousError, CycleError, NotFoundError
from juggler.models import Ball, BallState, ModelSize, Priority
from juggler.store.dependencies import detect_circular_dependencies
from juggler.store.ids import compute_minimal_unique_ids, match_prefix, minimal_unique_prefixes, resolve_by_prefix


def _finish(ball_store, ball_id, note=""):
    ball_store.update_ball(ball_id, lambda b: b.start())
    return ball_store.complete_ball(ball_id, note)


def test_create_ball_persists_pending_ball(ball_store, project_dir):
    ball = ball_store.create_ball("Add login", Priority.HIGH, tags=["auth"])

    assert ball.id.startswith("myproj-")
    assert ball.state == BallState.PENDING
    assert ball.working_dir == str(project_dir.resolve())

    loaded = ball_store.get_ball(ball.id)
    assert loaded.title == "Add login"
    assert loaded.priority == Priority.HIGH
    assert loaded.tags == ["auth"]
    assert (project_dir / ".juggle" / "balls.jsonl").exists()


def test_save_counts_mutations(ball_store):
    ball = ball_store.create_ball("t")
    assert ball.update_count == 0

    ball_store.update_ball(ball.id, lambda b: b.start())
    ball_store.update_ball(ball.id, lambda b: b.add_tag("x"))

    loaded = ball_store.get_ball(ball.id)
    assert loaded.update_count == 2
    assert loaded.state == BallState.IN_PROGRESS


def test_create_ball_inherits_session_defaults(ball_store, session_store):
    session = session_store.create_session(
        "s1",
        acceptance_criteria=["tests pass"],
        default_model=ModelSize.LARGE,
    )
    ball = ball_store.create_ball("t", session=session)
    assert ball.tags == ["s1"]
    assert ball.acceptance_criteria == ["tests pass"]
    assert ball.model_size == ModelSize.LARGE

    explicit = ball_store.create_ball("u", session=session, acceptance_criteria=["lint clean"], model_size=ModelSize.SMALL)
    assert explicit.acceptance_criteria == ["lint clean"]
    assert explicit.model_size == ModelSize.SMALL


def test_complete_archives_and_unarchive_restores_pending(ball_store):
    ball = ball_store.create_ball("t", tags=["s1"])
    done = _finish(ball_store, ball.id, "shipped")

    assert done.state == BallState.COMPLETE
    assert ball_store.load_balls() == []
    archived = ball_store.load_archive()
    assert [b.id for b in archived] == [ball.id]
    assert archived[0].completion_note == "shipped"

    # Archived balls still belong to their session
    assert [b.id for b in ball_store.session_balls("s1")] == [ball.id]
    assert ball_store.session_balls("s1", include_archived=False) == []

    restored = ball_store.unarchive_ball(ball.short_id)
    assert restored.state == BallState.PENDING
    assert restored.completed_at is None
    assert [b.id for b in ball_store.load_balls()] == [ball.id]
    assert ball_store.load_archive() == []


def test_unarchive_unknown_ball(ball_store):
    with pytest.raises(NotFoundError) as exc_info:
        ball_store.unarchive_ball("deadbeef")
    assert "not found" in str(exc_info.value)


def test_delete_ball(ball_store):
    ball = ball_store.create_ball("t")
    ball_store.delete_ball(ball.id)
    assert ball_store.load_balls() == []
    with pytest.raises(NotFoundError):
        ball_store.delete_ball(ball.id)


def test_malformed_lines_are_skipped(ball_store):
    ball = ball_store.create_ball("t")
    with open(ball_store.balls_path, 'a', encoding='utf-8') as f:
        f.write("{not json\n")
        f.write('{"title": "no id"}\n')

    balls = ball_store.load_balls()
    assert [b.id for b in balls] == [ball.id]


def test_resolve_ambiguous_prefix_lists_candidates():
    balls = [Ball(id="task-abc1", title="a"), Ball(id="task-abc2", title="b")]
    with pytest.raises(AmbiguousError) as exc_info:
        resolve_by_prefix(balls, "task-a")
    assert exc_info.value.candidates == ["task-abc1", "task-abc2"]


def test_resolve_prefers_exact_match():
    balls = [Ball(id="p-abc", title="a"), Ball(id="p-abcd", title="b")]
    assert resolve_by_prefix(balls, "abc").id == "p-abc"
    assert resolve_by_prefix(balls, "ABCD").id == "p-abcd"
    assert resolve_by_prefix(balls, "p-abc").id == "p-abc"


def test_match_prefix_edge_cases():
    balls = [Ball(id="p-abc1", title="a"), Ball(id="p-xyz2", title="b")]
    assert match_prefix(balls, "") == []
    assert [b.id for b in match_prefix(balls, "x")] == ["p-xyz2"]
    with pytest.raises(NotFoundError):
        resolve_by_prefix(balls, "q")


def test_minimal_unique_prefixes():
    ids = ["p-abc123", "p-abd456", "p-xyz789"]
    assert minimal_unique_prefixes(ids) == {
        "p-abc123": "abc",
        "p-abd456": "abd",
        "p-xyz789": "x",
    }


def test_minimal_unique_prefix_is_case_insensitive_and_capped():
    result = minimal_unique_prefixes(["p-ABC", "p-abcd"])
    # "ABC" is a full prefix of "abcd" so it cannot be shortened
    assert result["p-ABC"] == "ABC"
    assert result["p-abcd"] == "abcd"


def test_minimal_ids_depend_on_grouping():
    a = Ball(id="p-abc123", title="a")
    b = Ball(id="p-abd456", title="b")
    assert compute_minimal_unique_ids([a])[a.id] == "a"
    assert compute_minimal_unique_ids([a, b])[a.id] == "abc"


def test_detect_cycle_reports_path():
    balls = [
        Ball(id="p-a", title="a", depends_on=["p-b"]),
        Ball(id="p-b", title="b", depends_on=["c"]),  # short id reference
        Ball(id="p-c", title="c", depends_on=["p-a"]),
    ]
    with pytest.raises(CycleError) as exc_info:
        detect_circular_dependencies(balls)
    cycle = exc_info.value.cycle
    assert cycle[0] == cycle[-1]
    assert set(cycle) == {"p-a", "p-b", "p-c"}
    assert "circular dependency detected" in str(exc_info.value)


def test_detect_cycle_ignores_unknown_ids():
    detect_circular_dependencies([Ball(id="p-a", title="a", depends_on=["p-gone"])])


def test_dependency_cycle_is_not_persisted(ball_store):
    a = ball_store.create_ball("a")
    b = ball_store.create_ball("b", depends_on=[a.id])
    c = ball_store.create_ball("c", depends_on=[b.short_id])
    assert ball_store.get_ball(c.id).depends_on == [b.id]

    with pytest.raises(CycleError):
        ball_store.add_dependency(a.id, c.id)

    assert ball_store.get_ball(a.id).depends_on == []


def test_self_dependency_is_a_cycle(ball_store):
    a = ball_store.create_ball("a")
    with pytest.raises(CycleError) as exc_info:
        ball_store.add_dependency(a.id, a.id)
    assert exc_info.value.cycle == [a.id, a.id]


def test_add_remove_set_dependencies(ball_store):
    a = ball_store.create_ball("a")
    b = ball_store.create_ball("b")
    c = ball_store.create_ball("c")

    ball_store.add_dependency(c.id, a.id)
    ball_store.add_dependency(c.id, a.id)
    assert ball_store.get_ball(c.id).depends_on == [a.id]

    ball_store.set_dependencies(c.id, [a.id, b.short_id])
    assert ball_store.get_ball(c.id).depends_on == [a.id, b.id]

    ball_store.remove_dependency(c.id, a.short_id)
    assert ball_store.get_ball(c.id).depends_on == [b.id]

    with pytest.raises(NotFoundError):
        ball_store.remove_dependency(c.id, a.id)


def test_resolve_ball_includes_archive_on_request(ball_store):
    ball = ball_store.create_ball("t")
    _finish(ball_store, ball.id)

    with pytest.raises(NotFoundError):
        ball_store.resolve_ball(ball.short_id)
    assert ball_store.resolve_ball(ball.short_id, include_archived=True).id == ball.id


def test_minimal_unique_prefixes_bare_ids():
    assert minimal_unique_prefixes(["abc123", "abc456", "xyz789"]) == {
        "abc123": "abc1",
        "abc456": "abc4",
        "xyz789": "x",
    }
    assert minimal_unique_prefixes(["abc123", "xyz789"]) == {"abc123": "a", "xyz789": "x"}


def test_cycle_through_archived_ball_is_rejected(ball_store):
    a = ball_store.create_ball("a")
    b = ball_store.create_ball("b")
    ball_store.add_dependency(b.id, a.id)
    _finish(ball_store, b.id)

    with pytest.raises(CycleError) as exc_info:
        ball_store.add_dependency(a.id, b.short_id)
    assert set(exc_info.value.cycle) == {a.id, b.id}
    assert ball_store.get_ball(a.id).depends_on == []

    with pytest.raises(CycleError):
        ball_store.set_dependencies(a.id, [b.id])
    assert ball_store.get_ball(a.id).depends_on == []


def test_unarchive_refuses_to_close_a_cycle(ball_store):
    a = ball_store.create_ball("a")
    b = ball_store.create_ball("b")
    ball_store.add_dependency(b.id, a.id)
    _finish(ball_store, b.id)

    # Edge written behind the store's back, e.g. by hand-editing balls.jsonl
    edited = ball_store.get_ball(a.id)
    edited.depends_on = [b.id]
    ball_store.save_ball(edited)

    with pytest.raises(CycleError):
        ball_store.unarchive_ball(b.short_id)

    assert [x.id for x in ball_store.load_archive()] == [b.id]
    assert [x.id for x in ball_store.load_balls()] == [a.id]


def test_unarchive_with_acyclic_dependencies(ball_store):
    a = ball_store.create_ball("a")
    b = ball_store.create_ball("b", depends_on=[a.id])
    _finish(ball_store, b.id)

    restored = ball_store.unarchive_ball(b.short_id)
    assert restored.depends_on == [a.id]
    assert sorted(x.id for x in ball_store.load_balls()) == sorted([a.id, b.id])
