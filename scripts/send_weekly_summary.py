"""
Send the weekly work summary emails once, outside the scheduler.

    python scripts/send_weekly_summary.py
    python scripts/send_weekly_summary.py --date 2024-05-13
"""
import argparse
import os
import sys
from datetime import date

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

try:
    from dotenv import load_dotenv
    load_dotenv()
except Exception as e:
    print(f"WARNING: Could not load .env file: {e}")

from pmhub.db import SessionLocal
from pmhub.logging import setup_logging
from pmhub.services.weekly_summary import send_weekly_summary


def main():
    parser = argparse.ArgumentParser(description="Send weekly work summaries")
    parser.add_argument("--date", help="Any day of the week to summarize (YYYY-MM-DD); defaults to today")
    args = parser.parse_args()

    setup_logging()
    today = date.fromisoformat(args.date) if args.date else None
    db = SessionLocal()
    try:
        result = send_weekly_summary(db, today=today)
    finally:
        db.close()
    print(f"Users summarized: {result['users']}, emails sent: {result['sent']}")
    if result["failed"]:
        sys.exit(1)


if __name__ == "__main__":
    main()
