from dataclasses import replace

import pytest

from certpath.errors import ConfigurationError, InvalidTransition
from certpath.models import ACTIVE, COMPLETED, LOCKED, Module
from certpath.pathway import ModuleGraph


def _defs(count: int = 3) -> tuple[Module, ...]:
    return tuple(
        Module(id=f"m{i}", title=f"Module {i}", description="", icon_type="quiz", status=LOCKED, xp_reward=100)
        for i in range(1, count + 1)
    )


def test_initial_graph_has_first_module_active() -> None:
    graph = ModuleGraph.initial(_defs())
    assert graph.statuses() == [ACTIVE, LOCKED, LOCKED]
    assert graph.active_module() is not None
    assert graph.active_module().id == "m1"
    assert graph.is_sequential() is True


def test_initial_graph_requires_modules() -> None:
    with pytest.raises(ConfigurationError):
        ModuleGraph.initial(())


def test_complete_unlocks_successor_without_mutating_receiver() -> None:
    graph = ModuleGraph.initial(_defs())
    completion = graph.complete("m1")

    assert completion.changed is True
    assert completion.unlocked is not None
    assert completion.unlocked.id == "m2"
    assert completion.graph.statuses() == [COMPLETED, ACTIVE, LOCKED]
    assert graph.statuses() == [ACTIVE, LOCKED, LOCKED]


def test_complete_last_module_unlocks_nothing() -> None:
    graph = ModuleGraph.initial(_defs(1))
    completion = graph.complete("m1")
    assert completion.unlocked is None
    assert completion.graph.is_finished() is True


def test_complete_locked_module_is_rejected() -> None:
    graph = ModuleGraph.initial(_defs())
    with pytest.raises(InvalidTransition):
        graph.complete("m3")


def test_complete_is_idempotent() -> None:
    graph = ModuleGraph.initial(_defs()).complete("m1").graph
    again = graph.complete("m1")
    assert again.changed is False
    assert again.graph is graph
    assert graph.statuses() == [COMPLETED, ACTIVE, LOCKED]


def test_override_completion_keeps_other_modules() -> None:
    graph = ModuleGraph.initial(_defs(4))
    completion = graph.complete("m3", allow_locked=True)
    assert completion.graph.statuses() == [ACTIVE, LOCKED, COMPLETED, ACTIVE]
    assert completion.graph.is_sequential() is False


def test_unknown_module_raises_key_error() -> None:
    graph = ModuleGraph.initial(_defs())
    with pytest.raises(KeyError):
        graph.complete("nope")


def test_full_walk_completes_every_module_in_order() -> None:
    graph = ModuleGraph.initial(_defs(5))
    for index in range(1, 6):
        graph = graph.complete(f"m{index}").graph
        assert graph.is_sequential() is True
    assert graph.completed_ids() == ["m1", "m2", "m3", "m4", "m5"]
    assert graph.active_module() is None


def test_validate_rejects_duplicate_ids() -> None:
    duplicate = _defs(2) + (_defs(1)[0],)
    with pytest.raises(ConfigurationError):
        ModuleGraph.initial(duplicate)


def test_merged_with_keeps_stored_statuses_and_activates_appended_module() -> None:
    stored = ModuleGraph.initial(_defs(2)).complete("m1").graph.complete("m2").graph
    merged = stored.merged_with(_defs(3))
    assert merged.statuses() == [COMPLETED, COMPLETED, ACTIVE]


def test_merged_with_new_module_after_open_one_is_locked() -> None:
    stored = ModuleGraph.initial(_defs(2))
    merged = stored.merged_with(_defs(3))
    assert merged.statuses() == [ACTIVE, LOCKED, LOCKED]


def test_merged_with_reactivates_after_removed_module() -> None:
    stored = ModuleGraph.initial(_defs(3)).complete("m1").graph
    content = (_defs(3)[0], _defs(3)[2])
    merged = stored.merged_with(content)
    assert merged.statuses() == [COMPLETED, ACTIVE]
    assert merged.active_module() is not None
    assert merged.active_module().id == "m3"


def test_merged_with_relocks_active_module_stranded_by_insertion() -> None:
    stored = ModuleGraph.initial(_defs(2))
    extra = Module(id="m0", title="Intro", description="", icon_type="quiz", status=LOCKED, xp_reward=10)
    merged = stored.merged_with((extra,) + _defs(2))
    assert merged.statuses() == [ACTIVE, LOCKED, LOCKED]
    merged.validate()


def test_validate_rejects_active_module_after_open_one() -> None:
    defs = _defs(3)
    graph = ModuleGraph(modules=tuple(replace(module, status=ACTIVE) for module in defs))
    with pytest.raises(ConfigurationError):
        graph.validate()


def test_override_completion_graph_still_validates() -> None:
    graph = ModuleGraph.initial(_defs(4)).complete("m3", allow_locked=True).graph
    graph.validate()
