"""
Console entry point for running a tutoring session by hand.
"""

import asyncio
import argparse
from pathlib import Path

from lesson_tutor.core.orchestrator import TurnOrchestrator
from lesson_tutor.lesson.catalog import LessonCatalog
from lesson_tutor.session.store import SqliteSessionStore
from lesson_tutor.shared.config import settings
from lesson_tutor.shared.exceptions import ProviderError
from lesson_tutor.shared.logging import setup_logging


async def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Lesson tutor console")
    parser.add_argument("--lesson", required=True, help="Lesson id")
    parser.add_argument("--learner", default="console", help="Learner id")
    parser.add_argument(
        "--lessons-dir",
        type=Path,
        default=Path(settings.session.lessons_dir),
        help="Directory with lesson YAML files"
    )
    parser.add_argument(
        "--db",
        type=Path,
        default=Path(settings.session.db_path),
        help="Session database path"
    )

    args = parser.parse_args()

    # Keep the console readable
    setup_logging(log_level="WARNING")

    orchestrator = TurnOrchestrator(
        catalog=LessonCatalog.from_directory(args.lessons_dir),
        store=SqliteSessionStore(args.db),
    )
    state = orchestrator.start_session(args.learner, args.lesson)

    print("=" * 50)
    print(f"Session {state.session_id} (type 'quit' to leave)")
    print("=" * 50)
    print(f"\nTutor: {state.last_question_shown}")

    while not state.is_completed:
        answer = input("\nYou: ").strip()
        if answer.lower() in ("quit", "exit"):
            break
        if not answer:
            continue

        try:
            result = await orchestrator.process_turn(
                state.session_id,
                state.current_moment_id,
                state.last_question_shown or "",
                answer,
            )
        except ProviderError as e:
            print(f"\n[tutor unavailable: {e}]")
            continue

        state = result.session_state
        print(f"\nTutor: {result.message}")
        for hint in result.hints:
            print(f"  hint: {hint}")
        if result.transition and result.transition.moved:
            print(f"\n-- moment {result.transition.to_moment} --")

    print("\n" + "=" * 50)
    print(f"Global mastery: {state.global_mastery:.2f}")
    print(f"Completed moments: {sorted(state.completed_moments)}")
    print(f"Answers: {state.total_attempts} ({state.correct_answers} correct)")
    print("=" * 50)


if __name__ == "__main__":
    asyncio.run(main())
