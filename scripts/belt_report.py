"""
CLI entry point for a belt progress report.
"""

import asyncio
import argparse
import sys
from pathlib import Path

from dojo.mastery.advancement import check_assessment_eligibility, evaluate
from dojo.mastery.decay import effective_mastery
from dojo.mastery.reinforcement import prioritize
from dojo.memory.store import EnrollmentStore
from dojo.session.manager import SessionManager
from dojo.shared.config import settings
from dojo.shared.exceptions import DojoError
from dojo.shared.logging import setup_logging


async def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Dojo belt progress report")
    parser.add_argument("enrollment_id", help="Enrollment to report on")
    parser.add_argument(
        "--db",
        type=Path,
        default=Path(settings.database_path),
        help="Database path"
    )
    parser.add_argument(
        "--refresh",
        action="store_true",
        help="Persist the assessment flag as well"
    )

    args = parser.parse_args()

    # Setup logging
    setup_logging()

    store = EnrollmentStore(args.db)
    sessions = SessionManager(args.db)

    try:
        enrollment = store.get_enrollment(args.enrollment_id)
        count = sessions.count_completed(enrollment.id)
        if args.refresh:
            report = await check_assessment_eligibility(store, enrollment.id, count)
        else:
            report = evaluate(enrollment, count)
    except DojoError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    details = report.details

    # Print summary
    print("\n" + "=" * 50)
    print(f"Belt Report: {enrollment.skill_id} ({enrollment.user_id})")
    print("=" * 50)
    print(f"Current belt: {enrollment.current_belt}")
    print(f"Next belt: {report.next_belt or '-'}")
    print(f"Eligible for assessment: {report.eligible}")
    if details.reason:
        print(f"Note: {details.reason}")
    else:
        print(f"Concepts mastered: {details.mastered_concepts}/{details.total_concepts} "
              f"({details.concept_pct:.0%}, need {details.required_pct:.0%})")
        print(f"Concepts at level: {details.total_concepts} (need {details.required_concepts})")
        print(f"Completed sessions: {details.session_count} (need {details.required_sessions})")

    print("-" * 50)
    for key, record in sorted(enrollment.concepts.items()):
        print(f"  {key:<30} {effective_mastery(record):>5.0%}  [{record.belt_level}]")

    focus = prioritize(enrollment)
    if focus:
        print("-" * 50)
        print("Suggested focus:")
        for item in focus:
            print(f"  - {item.concept}: {item.reason}")
    print("=" * 50)


if __name__ == "__main__":
    asyncio.run(main())
