"""Load declarative pathway and quiz content from bundled JSON resources."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from importlib import resources
from pathlib import Path
from typing import Any

from .errors import ConfigurationError
from .models import ICON_GENERIC, ICON_TYPES, LOCKED, Module, Quiz, QuizQuestion

logger = logging.getLogger(__name__)

CONTENT_PACKAGE = "certpath.content"
QUIZ_PACKAGE = "certpath.content.quizzes"
PATHWAY_FILE = "pathway.json"

# Older content used "book" for plain reading modules.
_ICON_ALIASES = {"book": ICON_GENERIC}


@dataclass(frozen=True)
class Catalog:
    """Loaded pathway content.

    `blocked` maps module ids to the reason their quiz could not be loaded;
    such modules are never offered for interaction.
    """

    modules: tuple[Module, ...]
    quizzes: dict[str, Quiz]
    blocked: dict[str, str] = field(default_factory=dict)

    def module(self, module_id: str) -> Module:
        """Return one module definition or raise KeyError."""
        for module in self.modules:
            if module.id == module_id:
                return module
        raise KeyError(module_id)

    def quiz_for(self, module_id: str) -> Quiz | None:
        """Return the quiz bound to a module, if any."""
        return self.quizzes.get(module_id)

    def quiz_by_title(self, title: str) -> Quiz | None:
        """Return the quiz with an exact title match."""
        for quiz in self.quizzes.values():
            if quiz.title == title:
                return quiz
        return None


def _module_from_dict(raw: dict[str, Any]) -> Module:
    """Build a module definition from raw JSON content."""
    try:
        module_id = str(raw["id"]).strip()
        title = str(raw["title"])
    except KeyError as exc:
        raise ConfigurationError(f"Module entry is missing field {exc.args[0]!r}.") from exc
    if not module_id:
        raise ConfigurationError("Module id must not be empty.")

    icon_type = str(raw.get("icon_type", ICON_GENERIC)).strip().lower()
    icon_type = _ICON_ALIASES.get(icon_type, icon_type)
    if icon_type not in ICON_TYPES:
        raise ConfigurationError(f"Module '{module_id}' has unknown icon type '{icon_type}'.")

    xp_reward = raw.get("xp_reward", 0)
    if isinstance(xp_reward, bool) or not isinstance(xp_reward, int) or xp_reward < 0:
        raise ConfigurationError(f"Module '{module_id}' has invalid xp_reward {xp_reward!r}.")

    return Module(
        id=module_id,
        title=title,
        description=str(raw.get("description", "")),
        icon_type=icon_type,
        status=LOCKED,
        xp_reward=xp_reward,
    )


def _question_from_dict(quiz_title: str, raw: dict[str, Any]) -> QuizQuestion:
    """Build and validate one question."""
    question_id = str(raw.get("id", "<unknown>"))
    options = tuple(str(option) for option in raw.get("options", []))
    if len(options) < 2:
        raise ConfigurationError(f"Question '{question_id}' in '{quiz_title}' needs at least two options.")
    correct = raw.get("correct_answer")
    if isinstance(correct, bool) or not isinstance(correct, int) or not 0 <= correct < len(options):
        raise ConfigurationError(
            f"Question '{question_id}' in '{quiz_title}' has out-of-range correct_answer {correct!r}."
        )
    return QuizQuestion(id=question_id, question=str(raw.get("question", "")), options=options, correct_answer=correct)


def _quiz_from_dict(raw: dict[str, Any]) -> Quiz:
    """Build a quiz from raw JSON content."""
    module_id = str(raw.get("module_id", "")).strip()
    title = str(raw.get("title", "")).strip()
    if not module_id:
        raise ConfigurationError(f"Quiz '{title or '<untitled>'}' is not bound to a module.")
    questions = tuple(_question_from_dict(title, item) for item in raw.get("questions", []))
    if not questions:
        raise ConfigurationError(f"Quiz '{title}' has no questions.")
    return Quiz(module_id=module_id, title=title, questions=questions)


def parse_modules(raw: object) -> tuple[Module, ...]:
    """Parse and validate the ordered pathway."""
    if isinstance(raw, dict):
        raw = raw.get("modules", [])
    if not isinstance(raw, list) or not raw:
        raise ConfigurationError("Pathway must contain at least one module.")
    modules = tuple(_module_from_dict(item) for item in raw)
    seen: set[str] = set()
    for module in modules:
        if module.id in seen:
            raise ConfigurationError(f"Duplicate module id: {module.id}")
        seen.add(module.id)
    return modules


def build_catalog(modules: tuple[Module, ...], raw_quizzes: Iterable[tuple[str, object]]) -> Catalog:
    """Bind quizzes to modules; malformed quizzes block their module instead of failing the load."""
    module_ids = {module.id for module in modules}
    quizzes: dict[str, Quiz] = {}
    blocked: dict[str, str] = {}
    for source, raw in raw_quizzes:
        if not isinstance(raw, dict):
            raise ConfigurationError(f"Quiz file {source} root must be a JSON object.")
        module_id = str(raw.get("module_id", "")).strip()
        try:
            quiz = _quiz_from_dict(raw)
        except ConfigurationError as exc:
            if module_id not in module_ids:
                raise
            logger.warning("Blocking module %s: %s", module_id, exc)
            blocked[module_id] = str(exc)
            continue
        if quiz.module_id not in module_ids:
            raise ConfigurationError(f"Quiz '{quiz.title}' is bound to unknown module '{quiz.module_id}'.")
        if quiz.module_id in quizzes or quiz.module_id in blocked:
            raise ConfigurationError(f"Duplicate quiz for module: {quiz.module_id}")
        quizzes[quiz.module_id] = quiz
    return Catalog(modules=modules, quizzes=quizzes, blocked=blocked)


def load_catalog() -> Catalog:
    """Load bundled pathway and quiz bank."""
    pathway_raw = json.loads(
        resources.files(CONTENT_PACKAGE).joinpath(PATHWAY_FILE).read_text(encoding="utf-8-sig")
    )
    modules = parse_modules(pathway_raw)
    raw_quizzes: list[tuple[str, object]] = []
    for entry in sorted(resources.files(QUIZ_PACKAGE).iterdir(), key=lambda item: item.name):
        if entry.name.endswith(".json"):
            raw_quizzes.append((entry.name, json.loads(entry.read_text(encoding="utf-8-sig"))))
    return build_catalog(modules, raw_quizzes)


def load_catalog_from_dir(path: Path) -> Catalog:
    """Load a pathway.json plus quizzes/*.json from a directory for tests/tools."""
    pathway_raw = json.loads((path / PATHWAY_FILE).read_text(encoding="utf-8-sig"))
    modules = parse_modules(pathway_raw)
    raw_quizzes = [
        (file_path.name, json.loads(file_path.read_text(encoding="utf-8-sig")))
        for file_path in sorted((path / "quizzes").glob("*.json"))
    ]
    return build_catalog(modules, raw_quizzes)
