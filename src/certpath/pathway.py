"""Ordered module graph with copy-on-write progression transitions."""

from __future__ import annotations

from dataclasses import dataclass, replace

from .errors import ConfigurationError, InvalidTransition
from .models import ACTIVE, COMPLETED, LOCKED, MODULE_STATUSES, Module


@dataclass(frozen=True)
class Completion:
    """Result of completing one module."""

    graph: ModuleGraph
    completed: Module | None
    unlocked: Module | None

    @property
    def changed(self) -> bool:
        return self.completed is not None


@dataclass(frozen=True)
class ModuleGraph:
    """Immutable ordered sequence of modules.

    Every transition returns a new graph; the receiver is never mutated.
    """

    modules: tuple[Module, ...]

    @classmethod
    def initial(cls, definitions: tuple[Module, ...] | list[Module]) -> ModuleGraph:
        """Build a fresh graph: first module active, the rest locked."""
        if not definitions:
            raise ConfigurationError("Module graph needs at least one module.")
        modules = tuple(
            replace(module, status=ACTIVE if index == 0 else LOCKED) for index, module in enumerate(definitions)
        )
        graph = cls(modules=modules)
        graph.validate()
        return graph

    def validate(self) -> None:
        """Reject duplicate ids, unknown statuses, and unreachable active modules.

        An active module must be first or follow a completed one; no sequence
        of completions, with or without the override, produces anything else.
        """
        seen: set[str] = set()
        previous: Module | None = None
        for module in self.modules:
            if module.id in seen:
                raise ConfigurationError(f"Duplicate module id: {module.id}")
            if module.status not in MODULE_STATUSES:
                raise ConfigurationError(f"Module '{module.id}' has unknown status '{module.status}'.")
            if module.status == ACTIVE and previous is not None and previous.status != COMPLETED:
                raise ConfigurationError(f"Module '{module.id}' is active but '{previous.id}' is not completed.")
            seen.add(module.id)
            previous = module

    def index_of(self, module_id: str) -> int:
        for index, module in enumerate(self.modules):
            if module.id == module_id:
                return index
        raise KeyError(module_id)

    def get(self, module_id: str) -> Module:
        return self.modules[self.index_of(module_id)]

    def status_of(self, module_id: str) -> str:
        return self.get(module_id).status

    def active_module(self) -> Module | None:
        """Return the first active module in sequence order."""
        for module in self.modules:
            if module.status == ACTIVE:
                return module
        return None

    def completed_ids(self) -> list[str]:
        return [module.id for module in self.modules if module.status == COMPLETED]

    def is_finished(self) -> bool:
        return all(module.status == COMPLETED for module in self.modules)

    def is_sequential(self) -> bool:
        """Return whether statuses read completed..., active, locked... in order."""
        statuses = self.statuses()
        first_open = next((i for i, status in enumerate(statuses) if status != COMPLETED), len(statuses))
        if first_open == len(statuses):
            return True
        return statuses[first_open] == ACTIVE and all(status == LOCKED for status in statuses[first_open + 1 :])

    def statuses(self) -> list[str]:
        return [module.status for module in self.modules]

    def complete(self, module_id: str, *, allow_locked: bool = False) -> Completion:
        """Mark a module completed and unlock its successor.

        Completing an already-completed module is a no-op so duplicate
        completion signals are harmless. Completing a locked module requires
        `allow_locked` (administrative override).
        """
        index = self.index_of(module_id)
        current = self.modules[index]
        if current.status == COMPLETED:
            return Completion(graph=self, completed=None, unlocked=None)
        if current.status == LOCKED and not allow_locked:
            raise InvalidTransition(f"Module '{module_id}' is locked.")

        modules = list(self.modules)
        modules[index] = replace(current, status=COMPLETED)
        unlocked: Module | None = None
        if index + 1 < len(modules) and modules[index + 1].status == LOCKED:
            unlocked = replace(modules[index + 1], status=ACTIVE)
            modules[index + 1] = unlocked
        return Completion(graph=ModuleGraph(modules=tuple(modules)), completed=modules[index], unlocked=unlocked)

    def merged_with(self, definitions: tuple[Module, ...]) -> ModuleGraph:
        """Re-apply stored statuses onto current content definitions.

        Completed modules stay completed. Every other module is re-derived:
        active when it is first or follows a completed module, else locked,
        so removing or inserting content never strands the pathway.
        """
        completed = {module.id for module in self.modules if module.status == COMPLETED}
        modules: list[Module] = []
        for index, definition in enumerate(definitions):
            if definition.id in completed:
                status = COMPLETED
            elif index == 0 or modules[index - 1].status == COMPLETED:
                status = ACTIVE
            else:
                status = LOCKED
            modules.append(replace(definition, status=status))
        return ModuleGraph(modules=tuple(modules))
