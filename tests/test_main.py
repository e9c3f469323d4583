from pathlib import Path
from typing import Any

import certpath.main as main
from certpath.service import ProgressionService


class DummyProfile:
    def __init__(self, profile_id: int, name: str) -> None:
        self.id = profile_id
        self.name = name


class DummySession:
    def __init__(self, profile_id: int) -> None:
        self.profile_id = profile_id
        self.override_enabled = False


class DummyService:
    def __init__(self) -> None:
        self.profile_id = 1
        self.closed = False
        self._profiles: list[DummyProfile] = []

    def close(self) -> None:
        self.closed = True

    def list_profiles(self) -> list[DummyProfile]:
        return sorted(self._profiles, key=lambda profile: profile.name)

    def create_profile(self, name: str) -> DummyProfile:
        profile = DummyProfile(self.profile_id, name)
        self.profile_id += 1
        self._profiles.append(profile)
        return profile

    def delete_profile(self, profile_id: int) -> bool:
        before = len(self._profiles)
        self._profiles = [profile for profile in self._profiles if profile.id != profile_id]
        return len(self._profiles) < before

    def session(self, profile_id: int) -> DummySession:
        return DummySession(profile_id)

    def import_profile(self, import_path: str, profile_name: str | None) -> object:
        name = profile_name if profile_name is not None else "imported-alice"
        return type("TransferSummary", (), {"profile_id": 2, "profile_name": name, "module_rows": 1, "transaction_rows": 3})()


def _real_session(name: str = "alice") -> tuple[ProgressionService, Any]:
    service = ProgressionService(":memory:")
    profile = service.create_profile(name)
    return service, service.session(profile.id)


def test_run_enters_play_shell(monkeypatch: Any) -> None:
    monkeypatch.setattr(main, "play_shell", lambda: 0)
    assert main.run([]) == 0


def test_run_reports_configuration_errors(monkeypatch: Any) -> None:
    monkeypatch.setenv("CERTPATH_PASS_RATIO", "2")
    assert main.run(["play"]) == 2


def test_play_shell_basic_flow(monkeypatch: Any) -> None:
    service = DummyService()
    monkeypatch.setattr(main, "_service", lambda: service)
    inputs = iter(["n", "alice", "q"])
    outputs: list[str] = []
    code = main.play_shell(input_fn=lambda _: next(inputs), print_fn=outputs.append)
    assert code == 0
    assert service.closed is True
    assert any("Profile: alice" in line for line in outputs)


def test_play_shell_invalid_choice_then_quit(monkeypatch: Any) -> None:
    service = DummyService()
    monkeypatch.setattr(main, "_service", lambda: service)
    inputs = iter(["n", "alice", "9", "q"])
    outputs: list[str] = []
    assert main.play_shell(input_fn=lambda _: next(inputs), print_fn=outputs.append) == 0
    assert any("Invalid choice." in line for line in outputs)


def test_play_shell_switch_profile(monkeypatch: Any) -> None:
    service = DummyService()
    monkeypatch.setattr(main, "_service", lambda: service)
    inputs = iter(["n", "alice", "b", "n", "bob", "q"])
    outputs: list[str] = []
    assert main.play_shell(input_fn=lambda _: next(inputs), print_fn=outputs.append) == 0
    assert any("Profile: bob" in line for line in outputs)


def test_play_shell_calls_menu_handlers(monkeypatch: Any) -> None:
    service = DummyService()
    monkeypatch.setattr(main, "_service", lambda: service)
    called = {"pathway": 0, "bank": 0, "admin": 0}
    monkeypatch.setattr(main, "_pathway_flow", lambda *args, **kwargs: called.__setitem__("pathway", 1))
    monkeypatch.setattr(main, "_bank_flow", lambda *args, **kwargs: called.__setitem__("bank", 1))
    monkeypatch.setattr(main, "_admin_flow", lambda *args, **kwargs: called.__setitem__("admin", 1))

    inputs = iter(["n", "alice", "1", "2", "3", "q"])
    assert main.play_shell(input_fn=lambda _: next(inputs), print_fn=lambda _: None) == 0
    assert called == {"pathway": 1, "bank": 1, "admin": 1}


def test_play_shell_quit_from_nested_menu(monkeypatch: Any) -> None:
    service = DummyService()
    monkeypatch.setattr(main, "_service", lambda: service)

    def _quit(*args: Any, **kwargs: Any) -> None:
        raise main.QuitApp()

    monkeypatch.setattr(main, "_bank_flow", _quit)
    inputs = iter(["n", "alice", "2"])
    assert main.play_shell(input_fn=lambda _: next(inputs), print_fn=lambda _: None) == 0
    assert service.closed is True


def test_play_shell_quit_at_profile_selection(monkeypatch: Any) -> None:
    service = DummyService()
    monkeypatch.setattr(main, "_service", lambda: service)
    assert main.play_shell(input_fn=lambda _: "q", print_fn=lambda _: None) == 0
    assert service.closed is True


def test_delete_profile_requires_confirmation() -> None:
    service = DummyService()
    service.create_profile("alice")
    outputs: list[str] = []
    inputs = iter(["1", "no"])
    main._delete_profile_flow(service, lambda _: next(inputs), outputs.append)
    assert any("Deletion cancelled." in line for line in outputs)

    inputs = iter(["1", "YES"])
    main._delete_profile_flow(service, lambda _: next(inputs), outputs.append)
    assert service.list_profiles() == []


def test_import_profile_flow() -> None:
    outputs: list[str] = []
    inputs = iter(["backup.json", ""])
    main._import_profile_flow(DummyService(), lambda _: next(inputs), outputs.append)
    assert any("Imported profile 'imported-alice'" in line for line in outputs)


def test_pathway_flow_refuses_locked_module() -> None:
    service, session = _real_session()
    outputs: list[str] = []
    main._pathway_flow(session, lambda _: "2", outputs.append)
    assert any("This module is locked" in line for line in outputs)
    service.close()


def test_pathway_flow_quit() -> None:
    service, session = _real_session()
    try:
        main._pathway_flow(session, lambda _: "q", lambda _: None)
        raise AssertionError("Expected QuitApp.")
    except main.QuitApp:
        pass
    service.close()


def test_pathway_flow_runs_quiz_to_completion() -> None:
    service, session = _real_session()
    outputs: list[str] = []
    inputs = iter(["1", "2", "3", "1", "2", "2"])
    main._pathway_flow(session, lambda _: next(inputs), outputs.append)
    assert any("Passed! +500 XP" in line for line in outputs)
    assert any("Unlocked: m2" in line for line in outputs)
    assert session.ledger().balance == 500
    service.close()


def test_quiz_flow_failed_attempt_without_retry() -> None:
    service, session = _real_session()
    outputs: list[str] = []
    inputs = iter(["1", "1", "1", "1", "1", "n"])
    main._quiz_flow(session, "m1", lambda _: next(inputs), outputs.append)
    assert any("Incorrect." in line for line in outputs)
    assert any("Score: 1/5 (need 4)" in line for line in outputs)
    assert session.quiz_attempt is None
    assert session.ledger().balance == 0
    service.close()


def test_quiz_flow_requires_a_selection_and_can_be_left() -> None:
    service, session = _real_session()
    outputs: list[str] = []
    inputs = iter(["", ":q"])
    main._quiz_flow(session, "m1", lambda _: next(inputs), outputs.append)
    assert any("Pick one of the listed options." in line for line in outputs)
    assert any("Quiz closed." in line for line in outputs)
    service.close()


def test_video_flow_with_override() -> None:
    service, session = _real_session()
    session.set_override(True)
    outputs: list[str] = []
    main._video_flow(session, "energy-systems", lambda _: "", outputs.append)
    assert any("Module complete! +250 XP" in line for line in outputs)
    assert session.video_gate is None
    service.close()


def test_claim_flow() -> None:
    service, session = _real_session()
    session.set_override(True)
    outputs: list[str] = []
    main._claim_flow(session, "cert-completion", lambda _: "y", outputs.append)
    assert any("Claimed! +10000 XP" in line for line in outputs)
    service.close()


def test_bank_flow_earn_history_and_rejected_spend() -> None:
    service, session = _real_session()
    outputs: list[str] = []
    inputs = iter(["2", "1", "3", "1", "1", "b"])
    main._bank_flow(session, lambda _: next(inputs), outputs.append)
    assert any("Earned 15 for Daily Drill." in line for line in outputs)
    assert any("Rejected: Cannot spend 500; balance is 15." in line for line in outputs)
    assert any("Daily Drill" in line and "+15" in line for line in outputs)
    assert session.ledger().balance == 15
    service.close()


def test_bank_flow_shows_pending_and_tier() -> None:
    service, session = _real_session()
    session.earn(25, "Drill", "Video Reps", pending=True)
    outputs: list[str] = []
    main._bank_flow(session, lambda _: "b", outputs.append)
    assert any("Pending verification: 25" in line for line in outputs)
    assert any("Tier: Rookie" in line for line in outputs)
    service.close()


def test_admin_flow_toggles_override_and_verifies_pending() -> None:
    service, session = _real_session()
    session.earn(25, "Drill", "Video Reps", pending=True)
    outputs: list[str] = []
    inputs = iter(["1", "2", "1", "a", "b"])
    main._admin_flow(service, session, lambda _: next(inputs), outputs.append)
    assert any("Override enabled." in line for line in outputs)
    assert any("Approved." in line for line in outputs)
    assert session.override_enabled is True
    assert session.ledger().balance == 25
    service.close()


def test_feedback_flow_stars_record() -> None:
    service, _ = _real_session()
    record = service.add_feedback("s1", "How do I teach bunting?", "Square early.", "positive")
    outputs: list[str] = []
    inputs = iter(["s", str(record.id), "v", "starred", "b"])
    main._feedback_flow(service, lambda _: next(inputs), outputs.append)
    assert service.progress.get_feedback(record.id).status == "starred"
    assert any("Total 1" in line for line in outputs)
    service.close()


def test_export_profile_flow(tmp_path: Path) -> None:
    service, session = _real_session()
    outputs: list[str] = []
    target = tmp_path / "alice.json"
    main._export_profile_flow(service, session.profile_id, lambda _: str(target), outputs.append)
    assert target.exists()
    assert any("Exported profile 'alice'" in line for line in outputs)
    service.close()
