#!/usr/bin/env python3
"""Scheduled annual leave-balance reset.

Resets every company whose reset date has passed this year and whose
balances were not yet reset for the year. Each company runs in its own
transaction; a company that fails is logged and the run continues.

Usage:
    python scripts/run_annual_reset.py                       # all companies that are due
    python scripts/run_annual_reset.py --dry-run             # list due companies only
    python scripts/run_annual_reset.py --company <uuid>      # a single company
    python scripts/run_annual_reset.py --company <uuid> --force   # ignore the reset date for one company
    python scripts/run_annual_reset.py --year 2025           # catch up a year whose reset date has passed
    python scripts/run_annual_reset.py --year 2027 --force   # reset for a year before its reset date

Exit codes:
    0 = every selected company was reset (or nothing was due)
    1 = one or more companies failed or were only partially reset
"""

import argparse
import asyncio
import logging
import sys
import uuid
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Optional

# ── Path setup ────────────────────────────────────────────────────────
SCRIPT_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = SCRIPT_DIR.parent
sys.path.insert(0, str(PROJECT_ROOT))

from dotenv import load_dotenv

load_dotenv(PROJECT_ROOT / ".env")

from hrdesk.common.exceptions import AlreadyResetError, AppException
from hrdesk.database import async_session_factory, engine
from hrdesk.timeoff.reset import ResetService

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s — %(message)s",
)
logger = logging.getLogger("run_annual_reset")


async def _select_companies(
    today: date,
    year: int,
    company: Optional[uuid.UUID],
    force: bool,
) -> list[uuid.UUID]:
    if company is not None and force:
        return [company]
    async with async_session_factory() as session:
        due = await ResetService.companies_due(
            session, today, year=year, ignore_reset_date=force,
        )
    if company is not None:
        return [c for c in due if c == company]
    return due


async def _reset_company(company_id: uuid.UUID, year: int) -> bool:
    async with async_session_factory() as session:
        try:
            result = await ResetService.run_reset(session, company_id, year)
            await session.commit()
        except AlreadyResetError:
            await session.rollback()
            logger.info("Company %s already reset for %s, skipped", company_id, year)
            return True
        except AppException as exc:
            await session.rollback()
            logger.error("Company %s: %s", company_id, exc.detail)
            return False

    logger.info(
        "Company %s: %d employees reset, %d failed",
        company_id, result.employees_affected, result.employees_failed,
    )
    return result.completed


async def run(args: argparse.Namespace) -> int:
    today = datetime.now(timezone.utc).date()
    year = args.year or today.year

    try:
        companies = await _select_companies(today, year, args.company, args.force)
        if not companies:
            logger.info("No company is due for the %s balance reset on %s", year, today)
            return 0

        if args.dry_run:
            for company_id in companies:
                logger.info("[dry-run] would reset company %s for %s", company_id, year)
            return 0

        ok = True
        for company_id in companies:
            ok = await _reset_company(company_id, year) and ok
        return 0 if ok else 1
    finally:
        await engine.dispose()


def main():
    parser = argparse.ArgumentParser(
        description="Reset leave balances to the configured yearly maxima",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--company", type=uuid.UUID, default=None,
                        help="Only this company (UUID)")
    parser.add_argument("--year", type=int, default=None,
                        help="Reset year (default: current UTC year)")
    parser.add_argument("--dry-run", action="store_true",
                        help="List companies that would be reset, change nothing")
    parser.add_argument("--force", action="store_true",
                        help="Reset even before the configured reset date")
    args = parser.parse_args()

    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
