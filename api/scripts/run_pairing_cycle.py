import argparse
import logging
import sys
from datetime import date
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))

from daily_pairs.database import SessionLocal
from daily_pairs.repo import SqlPairingRepository
from daily_pairs.services.cycle import make_rng, run_pairing_cycle


def main() -> int:
    parser = argparse.ArgumentParser(description="Run the daily pairing cycle")
    parser.add_argument("--date", type=str, default="", help="cycle date override, YYYY-MM-DD")
    parser.add_argument("--seed", type=int, default=None)
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")

    cycle_date = date.fromisoformat(args.date) if args.date.strip() else None
    rng = make_rng(args.seed) if args.seed is not None else None
    with SessionLocal() as db:
        report = run_pairing_cycle(SqlPairingRepository(db), cycle_date=cycle_date, rng=rng)

    if not report.success:
        print(f"Pairing failed: {report.reason}")
        return 1

    print("Pairing completed")
    for k in ("cycle_date", "eligible_users", "pairings_created", "migrated_pairings", "waitlisted_users"):
        print(f"- {k}: {getattr(report, k)}")
    for d in report.details:
        print(f"  [{d['type']}] {d['user_a']} + {d['user_b']} ({d['id']})")
    return 0


if __name__ == "__main__":
    sys.exit(main())
