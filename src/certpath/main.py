"""CLI entrypoint for the certification pathway and bank."""

from __future__ import annotations

import argparse
import logging
from collections.abc import Callable
from datetime import datetime

from .config import EngineConfig
from .errors import ConfigurationError, EngineError
from .models import APPROVE, ICON_VIDEO, REJECT
from .service import ProgressionService, ProgressionSession

InputFn = Callable[[str], str]
PrintFn = Callable[[str], None]
BACK_COMMANDS = {":back", ":b", "back"}
MENU_QUIT_COMMANDS = {"q"}
FLOW_EXIT_COMMANDS = {":quit", ":exit", ":q"}
MENU_BACK_COMMANDS = {"b"}
VIDEO_STEP_PERCENT = 25.0

SHOP_ITEMS: tuple[tuple[str, int], ...] = (
    ("Pro Drill Library", 500),
    ("Profile Badge", 250),
    ("Coach Breakdown", 1000),
    ("Store Discount", 2000),
)

# (label, amount, category, held for verification)
EARN_ACTIONS: tuple[tuple[str, int, str, bool], ...] = (
    ("Daily Drill", 15, "Drill", False),
    ("7-Day Streak", 50, "Streak", False),
    ("Video Reps", 25, "Drill", True),
    ("Invite Teammate", 100, "Social", False),
)

STATUS_MARKERS = {"completed": "[x]", "active": "[>]", "locked": "[ ]"}


class QuitApp(Exception):
    """Signal immediate app exit from nested menu flows."""


def _service() -> ProgressionService:
    """Create app service; CERTPATH_* environment variables override defaults."""
    return ProgressionService(config=EngineConfig.from_env())


def run(argv: list[str] | None = None) -> int:
    """Run the CLI application."""
    parser = argparse.ArgumentParser(prog="certpath", description="Coach certification pathway and bank")
    parser.add_argument("command", nargs="?", default="play", choices=["play"])
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity (default: WARNING)",
    )
    args = parser.parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    try:
        return play_shell()
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}")
        return 2


def play_shell(input_fn: InputFn = input, print_fn: PrintFn = print) -> int:
    """Run persistent menu-driven shell."""
    service = _service()
    try:
        selected = _select_profile(service, input_fn, print_fn, allow_cancel=False)
        if selected is None:
            return 0
        profile_id, profile_name = selected
        try:
            while True:
                session = service.session(profile_id)
                print_fn("\n=== Certification ===")
                print_fn(f"Profile: {profile_name}")
                print_fn("1) Pathway")
                print_fn("2) Bank")
                print_fn("3) Admin")
                print_fn("b) Back")
                print_fn("q) Quit")
                choice = input_fn("Choose: ").strip().lower()

                if choice == "1":
                    _pathway_flow(session, input_fn, print_fn)
                elif choice == "2":
                    _bank_flow(session, input_fn, print_fn)
                elif choice == "3":
                    _admin_flow(service, session, input_fn, print_fn)
                elif choice in MENU_BACK_COMMANDS:
                    switched = _select_profile(service, input_fn, print_fn, allow_cancel=True)
                    if switched is None:
                        return 0
                    profile_id, profile_name = switched
                elif choice in MENU_QUIT_COMMANDS:
                    return 0
                else:
                    print_fn("Invalid choice.")
        except QuitApp:
            return 0
    finally:
        service.close()


def _select_profile(
    service: ProgressionService, input_fn: InputFn, print_fn: PrintFn, *, allow_cancel: bool
) -> tuple[int, str] | None:
    """Select existing profile or create new one."""
    while True:
        profiles = service.list_profiles()
        print_fn("\n=== Profiles ===")
        if profiles:
            for idx, profile in enumerate(profiles, start=1):
                print_fn(f"{idx}) {profile.name}")
        else:
            print_fn("No profiles yet.")
        print_fn("n) New profile")
        print_fn("i) Import profile from file")
        print_fn("d) Delete profile")
        print_fn("q) Quit")

        choice = input_fn("Select profile: ").strip().lower()
        if choice in MENU_QUIT_COMMANDS:
            return None
        if choice == "n":
            name = input_fn("New profile name: ").strip()
            if not name:
                print_fn("Profile name is required.")
                continue
            try:
                created = service.create_profile(name)
            except Exception:
                print_fn("Could not create profile (name may already exist).")
                continue
            return (created.id, created.name)
        if choice == "d":
            _delete_profile_flow(service, input_fn, print_fn)
            continue
        if choice == "i":
            _import_profile_flow(service, input_fn, print_fn)
            continue

        if choice.isdigit():
            index = int(choice) - 1
            if 0 <= index < len(profiles):
                selected = profiles[index]
                return (selected.id, selected.name)

        print_fn("Invalid profile selection.")


def _delete_profile_flow(service: ProgressionService, input_fn: InputFn, print_fn: PrintFn) -> None:
    """Delete a profile with explicit confirmation safeguard."""
    profiles = service.list_profiles()
    if not profiles:
        print_fn("No profiles available to delete.")
        return

    print_fn("\nDelete profile")
    for idx, profile in enumerate(profiles, start=1):
        print_fn(f"{idx}) {profile.name}")
    print_fn("b) Back")
    choice = input_fn("Choose profile to delete: ").strip().lower()
    if choice in MENU_BACK_COMMANDS:
        return
    if not choice.isdigit() or not (0 <= int(choice) - 1 < len(profiles)):
        print_fn("Invalid choice.")
        return

    target = profiles[int(choice) - 1]
    print_fn(f"WARNING: This permanently deletes profile '{target.name}', its pathway, and its bank history.")
    confirm = input_fn("Type YES to confirm deletion: ").strip()
    if confirm != "YES":
        print_fn("Deletion cancelled.")
        return
    if service.delete_profile(target.id):
        print_fn(f"Deleted profile '{target.name}'.")
    else:
        print_fn("Profile was not found.")


def _pathway_flow(session: ProgressionSession, input_fn: InputFn, print_fn: PrintFn) -> None:
    """Show the pathway and open one module."""
    modules = session.modules()
    print_fn("\n=== Pathway ===")
    if session.override_enabled:
        print_fn("(admin override on: locked modules can be opened)")
    id_width = max(len("Module"), max(len(module.id) for module in modules))
    for idx, module in enumerate(modules, start=1):
        marker = STATUS_MARKERS.get(module.status, "[?]")
        print_fn(f"{idx:>2} {marker} {module.id:<{id_width}} {module.title} (+{module.xp_reward} XP, {module.icon_type})")
    print_fn("b) Back")
    print_fn("q) Quit")
    choice = input_fn("Open module: ").strip().lower()
    if choice in MENU_BACK_COMMANDS:
        return
    if choice in MENU_QUIT_COMMANDS:
        raise QuitApp()
    if not choice.isdigit() or not (0 <= int(choice) - 1 < len(modules)):
        print_fn("Invalid choice.")
        return

    module = modules[int(choice) - 1]
    interaction = session.attempt_interact(module.id)
    if not interaction.allowed:
        if interaction.reason == "blocked":
            print_fn("This module is unavailable right now.")
        else:
            print_fn("This module is locked. Complete the previous module first.")
        return

    try:
        if session.catalog.quiz_for(module.id) is not None:
            _quiz_flow(session, module.id, input_fn, print_fn)
        elif module.icon_type == ICON_VIDEO:
            _video_flow(session, module.id, input_fn, print_fn)
        else:
            _claim_flow(session, module.id, input_fn, print_fn)
    except EngineError as exc:
        print_fn(f"Rejected: {exc}")


def _quiz_flow(session: ProgressionSession, module_id: str, input_fn: InputFn, print_fn: PrintFn) -> None:
    """Run one quiz attempt with optional retries."""
    attempt = session.start_quiz(module_id)
    print_fn(f"\n=== {attempt.quiz.title} ===")
    print_fn("Type :q to leave the quiz. Progress is not kept.")
    while True:
        question = attempt.current_question
        print_fn(f"\nQuestion {attempt.current_index + 1}/{attempt.question_count}: {question.question}")
        for idx, option in enumerate(question.options, start=1):
            print_fn(f"  {idx}) {option}")
        raw = input_fn("Answer: ").strip().lower()
        if raw in FLOW_EXIT_COMMANDS or raw in BACK_COMMANDS:
            session.close_quiz()
            print_fn("Quiz closed.")
            return
        if raw.isdigit():
            try:
                session.submit_quiz_answer(attempt.current_index, int(raw) - 1)
            except EngineError as exc:
                print_fn(f"Rejected: {exc}")
                continue
        try:
            correct = session.confirm_quiz_answer()
        except EngineError:
            print_fn("Pick one of the listed options.")
            continue
        if correct:
            print_fn("Correct.")
        else:
            print_fn(f"Incorrect. Answer: {question.options[question.correct_answer]}")

        outcome = session.advance_quiz()
        if outcome is None:
            continue
        result = outcome.result
        print_fn(f"\nScore: {result.score}/{result.total} (need {result.threshold})")
        if result.passed:
            completion = outcome.completion
            if completion is not None and completion.completed:
                print_fn(f"Passed! +{completion.granted} XP")
                if completion.unlocked_id:
                    print_fn(f"Unlocked: {completion.unlocked_id}")
            else:
                print_fn("Passed! Module was already completed.")
            return
        again = input_fn("Not passed. Retry? (y/n): ").strip().lower()
        if again != "y":
            session.close_quiz()
            return
        session.retry_quiz()


def _video_flow(session: ProgressionSession, module_id: str, input_fn: InputFn, print_fn: PrintFn) -> None:
    """Step through a video module."""
    gate = session.start_video(module_id)
    print_fn("\n=== Video ===")
    print_fn("Press Enter to keep watching, :q to close.")
    while True:
        raw = input_fn(f"[{gate.progress:5.1f}%] ").strip().lower()
        if raw in FLOW_EXIT_COMMANDS or raw in BACK_COMMANDS:
            session.close_video()
            print_fn("Video closed.")
            return
        completion = session.tick_video_progress(VIDEO_STEP_PERCENT)
        if completion is not None:
            session.close_video()
            if completion.completed:
                print_fn(f"Module complete! +{completion.granted} XP")
            else:
                print_fn("Video finished. Module was already completed.")
            return


def _claim_flow(session: ProgressionSession, module_id: str, input_fn: InputFn, print_fn: PrintFn) -> None:
    """Claim a trophy module directly."""
    confirm = input_fn("Claim this module? (y/n): ").strip().lower()
    if confirm != "y":
        return
    completion = session.claim_module(module_id)
    if completion.completed:
        print_fn(f"Claimed! +{completion.granted} XP")
    else:
        print_fn("Already claimed.")


def _bank_flow(session: ProgressionSession, input_fn: InputFn, print_fn: PrintFn) -> None:
    """Show balance, tier, and history; earn or spend."""
    while True:
        state = session.ledger()
        tier = session.tier()
        print_fn("\n=== Bank ===")
        print_fn(f"Balance: {state.balance}")
        if state.pending > 0:
            print_fn(f"Pending verification: {state.pending}")
        print_fn(f"Lifetime earned: {state.lifetime_earned}")
        if tier.next is not None:
            print_fn(f"Tier: {tier.current.name} ({tier.progress_percent:.0f}%, {tier.to_next} to {tier.next.name})")
        else:
            print_fn(f"Tier: {tier.current.name} (max)")
        print_fn("1) History")
        print_fn("2) Earn")
        print_fn("3) Shop")
        print_fn("b) Back")
        print_fn("q) Quit")
        choice = input_fn("Choose: ").strip().lower()
        if choice in MENU_BACK_COMMANDS:
            return
        if choice in MENU_QUIT_COMMANDS:
            raise QuitApp()
        if choice == "1":
            _history_flow(session, print_fn)
        elif choice == "2":
            _earn_flow(session, input_fn, print_fn)
        elif choice == "3":
            _shop_flow(session, input_fn, print_fn)
        else:
            print_fn("Invalid choice.")


def _history_flow(session: ProgressionSession, print_fn: PrintFn) -> None:
    transactions = session.ledger().transactions_newest_first()
    if not transactions:
        print_fn("No transactions yet.")
        return
    for item in transactions:
        sign = "-" if item.type == "SPEND" else "+"
        status = " (voided)" if item.is_void else (" (pending)" if item.is_open_pending else "")
        print_fn(f"{_format_local(item.timestamp)} {sign}{item.amount:<6} {item.category:<10} {item.description}{status}")


def _earn_flow(session: ProgressionSession, input_fn: InputFn, print_fn: PrintFn) -> None:
    for idx, (label, amount, _, pending) in enumerate(EARN_ACTIONS, start=1):
        note = " (needs coach verification)" if pending else ""
        print_fn(f"{idx}) {label}: +{amount}{note}")
    choice = input_fn("Earn: ").strip()
    if not choice.isdigit() or not (0 <= int(choice) - 1 < len(EARN_ACTIONS)):
        print_fn("Invalid choice.")
        return
    label, amount, category, pending = EARN_ACTIONS[int(choice) - 1]
    try:
        session.earn(amount, category, label, pending=pending)
    except EngineError as exc:
        print_fn(f"Rejected: {exc}")
        return
    print_fn(f"{'Submitted' if pending else 'Earned'} {amount} for {label}.")


def _shop_flow(session: ProgressionSession, input_fn: InputFn, print_fn: PrintFn) -> None:
    balance = session.ledger().balance
    for idx, (title, cost) in enumerate(SHOP_ITEMS, start=1):
        note = "" if cost <= balance else " (need more)"
        print_fn(f"{idx}) {title}: {cost}{note}")
    choice = input_fn("Buy: ").strip()
    if not choice.isdigit() or not (0 <= int(choice) - 1 < len(SHOP_ITEMS)):
        print_fn("Invalid choice.")
        return
    title, cost = SHOP_ITEMS[int(choice) - 1]
    try:
        session.spend(cost, "Shop", f'Unlocked "{title}"')
    except EngineError as exc:
        print_fn(f"Rejected: {exc}")
        return
    print_fn(f"Bought {title}.")


def _admin_flow(
    service: ProgressionService, session: ProgressionSession, input_fn: InputFn, print_fn: PrintFn
) -> None:
    """Admin menu for override, verification, feedback, and export."""
    while True:
        print_fn("\n=== Admin ===")
        print_fn(f"1) Toggle unlock override (currently {'on' if session.override_enabled else 'off'})")
        print_fn("2) Verify pending earnings")
        print_fn("3) Feedback console")
        print_fn("4) Export current profile")
        print_fn("b) Back")
        print_fn("q) Quit")
        choice = input_fn("Choose admin option: ").strip().lower()
        if choice in MENU_BACK_COMMANDS:
            return
        if choice in MENU_QUIT_COMMANDS:
            raise QuitApp()
        if choice == "1":
            enabled = session.toggle_override()
            print_fn(f"Override {'enabled' if enabled else 'disabled'}.")
        elif choice == "2":
            _verify_pending_flow(session, input_fn, print_fn)
        elif choice == "3":
            _feedback_flow(service, input_fn, print_fn)
        elif choice == "4":
            _export_profile_flow(service, session.profile_id, input_fn, print_fn)
        else:
            print_fn("Invalid choice.")


def _verify_pending_flow(session: ProgressionSession, input_fn: InputFn, print_fn: PrintFn) -> None:
    pending = [item for item in session.ledger().transactions if item.is_open_pending]
    if not pending:
        print_fn("Nothing awaiting verification.")
        return
    for idx, item in enumerate(pending, start=1):
        print_fn(f"{idx}) {item.description} ({item.category}) +{item.amount}")
    choice = input_fn("Choose item: ").strip()
    if not choice.isdigit() or not (0 <= int(choice) - 1 < len(pending)):
        print_fn("Invalid choice.")
        return
    decision = input_fn("a) Approve  r) Reject: ").strip().lower()
    outcome = {"a": APPROVE, "r": REJECT}.get(decision)
    if outcome is None:
        print_fn("Invalid choice.")
        return
    try:
        session.resolve_pending(pending[int(choice) - 1].id, outcome)
    except EngineError as exc:
        print_fn(f"Rejected: {exc}")
        return
    print_fn("Approved." if outcome == APPROVE else "Rejected and voided.")


def _feedback_flow(service: ProgressionService, input_fn: InputFn, print_fn: PrintFn) -> None:
    """Browse and triage rated model responses."""
    view = "all"
    while True:
        stats = service.feedback_stats()
        print_fn("\n=== Feedback ===")
        print_fn(f"Total {stats.total} | +{stats.positive} | -{stats.negative} | new {stats.pending}")
        records = service.list_feedback(view)
        if not records:
            print_fn(f"No feedback in view '{view}'.")
        for record in records:
            print_fn(f"#{record.id} [{record.status}] {record.rating}: {record.user_prompt[:60]}")
        print_fn("v) Change view  s) Star  a) Archive  d) Delete  b) Back")
        choice = input_fn("Choose: ").strip().lower()
        if choice in MENU_BACK_COMMANDS:
            return
        if choice == "v":
            requested = input_fn("View (all/positive/negative/starred/archived/pending): ").strip().lower()
            try:
                service.list_feedback(requested)
            except ValueError:
                print_fn("Unknown view.")
                continue
            view = requested
            continue
        if choice in {"s", "a", "d"}:
            raw_id = input_fn("Feedback id: ").strip().lstrip("#")
            if not raw_id.isdigit():
                print_fn("Invalid id.")
                continue
            feedback_id = int(raw_id)
            if choice == "s":
                found = service.progress.toggle_feedback_star(feedback_id) is not None
            elif choice == "a":
                found = service.progress.toggle_feedback_archive(feedback_id) is not None
            else:
                found = service.progress.delete_feedback(feedback_id)
            if not found:
                print_fn("Feedback was not found.")
            continue
        print_fn("Invalid choice.")


def _export_profile_flow(service: ProgressionService, profile_id: int, input_fn: InputFn, print_fn: PrintFn) -> None:
    """Export current profile progress to a JSON file."""
    print_fn("\n=== Export Profile ===")
    path_text = input_fn("Export file path: ").strip()
    if not path_text:
        print_fn("File path is required.")
        return
    try:
        summary = service.export_profile(profile_id, path_text)
    except Exception as exc:
        print_fn(f"Export failed: {exc}")
        return
    print_fn(f"Exported profile '{summary.profile_name}' to {path_text}")
    print_fn(f"- module rows: {summary.module_rows}")
    print_fn(f"- transaction rows: {summary.transaction_rows}")


def _import_profile_flow(service: ProgressionService, input_fn: InputFn, print_fn: PrintFn) -> None:
    """Import profile progress from a JSON file as a new profile."""
    print_fn("\n=== Import Profile ===")
    path_text = input_fn("Import file path: ").strip()
    if not path_text:
        print_fn("File path is required.")
        return
    name_text = input_fn("Imported profile name (blank = file value): ").strip()
    target_name = name_text if name_text else None
    try:
        summary = service.import_profile(path_text, target_name)
    except Exception as exc:
        print_fn(f"Import failed: {exc}")
        return
    print_fn(f"Imported profile '{summary.profile_name}'.")
    print_fn(f"- module rows: {summary.module_rows}")
    print_fn(f"- transaction rows: {summary.transaction_rows}")


def _format_local(timestamp: str) -> str:
    """Convert ISO timestamp to local human-readable datetime."""
    try:
        dt = datetime.fromisoformat(timestamp)
    except ValueError:
        return timestamp
    return dt.astimezone().strftime("%Y-%m-%d %H:%M")


def main_entry() -> None:
    """Console script entrypoint."""
    raise SystemExit(run())


if __name__ == "__main__":  # pragma: no cover
    main_entry()
