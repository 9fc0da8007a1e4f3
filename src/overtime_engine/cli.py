"""Overtime engine command line interface.

Provides operational tools for:
- Running the job worker and the periodic dispatcher
- Enqueueing and running recalculations by hand
- Weekly reconciliation and authorization expiry
- Balance queries and organization-wide time-bank statistics
- Viewing and updating overtime settings

Usage:
    python -m overtime_engine.cli worker
    python -m overtime_engine.cli run-once
    python -m overtime_engine.cli enqueue-workday --org-id X --employee-id Y --date 2025-01-06
    python -m overtime_engine.cli reconcile-week --org-id X --week-start 2025-01-06
    python -m overtime_engine.cli balance --org-id X --employee-id Y
    python -m overtime_engine.cli settings --org-id X --tolerance-minutes 20
"""

from __future__ import annotations

import argparse
import asyncio
import json
import signal
import sys
from dataclasses import fields, replace
from datetime import date, datetime
from typing import Any, Callable
from uuid import UUID

from overtime_engine.calculators.policy_resolver import PolicyResolver
from overtime_engine.calculators.types import (
    ApprovalMode,
    CalculationMode,
    CompensationType,
    NonWorkingDayPolicy,
)
from overtime_engine.config import get_settings
from overtime_engine.database import create_schema, dispose_db, init_db
from overtime_engine.jobs.payloads import (
    AuthorizationExpireJob,
    WeeklyReconciliationJob,
    WorkdaySweepJob,
)
from overtime_engine.jobs.queue import JobQueue
from overtime_engine.jobs.worker import Worker, run_payload
from overtime_engine.logging_config import configure_logging
from overtime_engine.models import Organization, utcnow
from overtime_engine.services.ledger_service import LedgerWriter
from overtime_engine.services.overtime_settings import (
    OvertimeSettings,
    OvertimeSettingsService,
    SettingsValidationError,
)
from overtime_engine.services.workday_processor import (
    mark_workday_dirty,
    process_workday_overtime,
)
from overtime_engine.timeutils import local_now, resolve_timezone


def parse_date(s: str) -> date:
    """Parse ISO date string."""
    return date.fromisoformat(s)


def parse_datetime(s: str) -> datetime:
    """Parse ISO datetime string."""
    return datetime.fromisoformat(s.replace("Z", "+00:00"))


def parse_uuid(s: str) -> UUID:
    """Parse UUID string."""
    return UUID(s)


SETTINGS_ENUMS = {
    "calculation_mode": CalculationMode,
    "approval_mode": ApprovalMode,
    "compensation_type": CompensationType,
    "non_working_day_policy": NonWorkingDayPolicy,
}


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


class OvertimeCli:
    """Overtime engine command line interface."""

    def __init__(self) -> None:
        self.parser = self._build_parser()

    def _build_parser(self) -> argparse.ArgumentParser:
        """Build argument parser."""
        parser = argparse.ArgumentParser(
            prog="python -m overtime_engine.cli",
            description="Overtime engine operational tools",
        )
        subparsers = parser.add_subparsers(dest="command", help="Commands")

        # init-db command
        subparsers.add_parser(
            "init-db",
            help="Create all tables (development only)",
        )

        # worker command
        worker = subparsers.add_parser(
            "worker",
            help="Run the job worker until interrupted",
        )
        worker.add_argument(
            "--no-dispatch",
            action="store_true",
            help="Do not run the periodic dispatcher in this process",
        )

        # run-once command
        subparsers.add_parser(
            "run-once",
            help="Claim and run one batch of due jobs",
        )

        # dispatch command
        dispatch = subparsers.add_parser(
            "dispatch",
            help="Run one periodic dispatcher tick",
        )
        dispatch.add_argument(
            "--now",
            type=parse_datetime,
            help="Pretend the current time is this instant (ISO format)",
        )

        # enqueue-workday command
        enqueue = subparsers.add_parser(
            "enqueue-workday",
            help="Mark a workday dirty and queue its recalculation",
        )
        self._add_workday_args(enqueue)

        # recalculate command
        recalc = subparsers.add_parser(
            "recalculate",
            help="Recalculate a workday synchronously",
        )
        self._add_workday_args(recalc)

        # sweep command
        sweep = subparsers.add_parser(
            "sweep",
            help="Re-enqueue dirty workdays of the recent past",
        )
        sweep.add_argument("--org-id", type=parse_uuid, required=True, help="Organization ID")
        sweep.add_argument(
            "--lookback-days",
            type=int,
            default=None,
            help="Days to look back (default: $OVERTIME_SWEEP_LOOKBACK_DAYS)",
        )

        # reconcile-week command
        reconcile = subparsers.add_parser(
            "reconcile-week",
            help="Reconcile one ISO week",
        )
        reconcile.add_argument("--org-id", type=parse_uuid, required=True, help="Organization ID")
        reconcile.add_argument(
            "--week-start",
            type=parse_date,
            required=True,
            help="Monday of the week (YYYY-MM-DD)",
        )

        # expire-authorizations command
        expire = subparsers.add_parser(
            "expire-authorizations",
            help="Expire authorizations left pending too long",
        )
        expire.add_argument("--org-id", type=parse_uuid, required=True, help="Organization ID")
        expire.add_argument(
            "--expiry-days",
            type=int,
            default=None,
            help="Days before expiry (default: $OVERTIME_AUTHORIZATION_EXPIRY_DAYS)",
        )

        # balance command
        balance = subparsers.add_parser(
            "balance",
            help="Query an employee's time-bank balance",
        )
        balance.add_argument("--org-id", type=parse_uuid, required=True, help="Organization ID")
        balance.add_argument("--employee-id", type=parse_uuid, required=True, help="Employee ID")

        # admin-stats command
        admin_stats = subparsers.add_parser(
            "admin-stats",
            help="Show time-bank balances across the organization",
        )
        admin_stats.add_argument(
            "--org-id", type=parse_uuid, required=True, help="Organization ID"
        )

        # settings command
        settings = subparsers.add_parser(
            "settings",
            help="Show overtime settings, or update the given fields",
        )
        settings.add_argument("--org-id", type=parse_uuid, required=True, help="Organization ID")
        settings.add_argument(
            "--actor-id", type=parse_uuid, help="User recorded as author of the change"
        )
        for name, enum_cls in SETTINGS_ENUMS.items():
            settings.add_argument(
                f"--{name.replace('_', '-')}",
                dest=name,
                choices=[member.value for member in enum_cls],
            )
        for name in (
            "tolerance_minutes",
            "daily_limit_minutes",
            "weekly_limit_minutes",
            "monthly_limit_minutes",
            "annual_limit_minutes",
        ):
            settings.add_argument(f"--{name.replace('_', '-')}", dest=name, type=int)
        settings.add_argument("--full-time-weekly-hours", type=float)
        reconciliation = settings.add_mutually_exclusive_group()
        reconciliation.add_argument(
            "--enable-weekly-reconciliation",
            dest="weekly_reconciliation_enabled",
            action="store_true",
            default=None,
        )
        reconciliation.add_argument(
            "--disable-weekly-reconciliation",
            dest="weekly_reconciliation_enabled",
            action="store_false",
            default=None,
        )

        # jobs command
        jobs = subparsers.add_parser(
            "jobs",
            help="List queued jobs",
        )
        jobs.add_argument(
            "--status",
            type=str,
            choices=["PENDING", "RUNNING", "COMPLETED", "DEAD"],
            help="Filter by status",
        )
        jobs.add_argument("--queue", type=str, help="Filter by queue name")
        jobs.add_argument(
            "--limit",
            type=int,
            default=50,
            help="Maximum jobs to list (default: 50)",
        )

        return parser

    @staticmethod
    def _add_workday_args(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--org-id", type=parse_uuid, required=True, help="Organization ID")
        parser.add_argument("--employee-id", type=parse_uuid, required=True, help="Employee ID")
        parser.add_argument(
            "--date",
            dest="work_date",
            type=parse_date,
            required=True,
            help="Work date (YYYY-MM-DD)",
        )

    def run(self, args: list[str] | None = None) -> int:
        """Run the CLI with given arguments."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 1

        configure_logging(get_settings().log_level)

        # Dispatch to command handler
        handlers: dict[str, Callable[..., Any]] = {
            "init-db": self._cmd_init_db,
            "worker": self._cmd_worker,
            "run-once": self._cmd_run_once,
            "dispatch": self._cmd_dispatch,
            "enqueue-workday": self._cmd_enqueue_workday,
            "recalculate": self._cmd_recalculate,
            "sweep": self._cmd_sweep,
            "reconcile-week": self._cmd_reconcile_week,
            "expire-authorizations": self._cmd_expire,
            "balance": self._cmd_balance,
            "admin-stats": self._cmd_admin_stats,
            "settings": self._cmd_settings,
            "jobs": self._cmd_jobs,
        }

        handler = handlers.get(parsed.command)
        if handler is None:
            print(f"Unknown command: {parsed.command}", file=sys.stderr)
            return 1
        return asyncio.run(self._run_async(handler, parsed))

    async def _run_async(self, handler: Callable[..., Any], args: argparse.Namespace) -> int:
        try:
            return await handler(args)
        except ValueError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 2
        finally:
            await dispose_db()

    async def _cmd_init_db(self, args: argparse.Namespace) -> int:
        """Create the schema."""
        await create_schema()
        print("Schema created.")
        return 0

    async def _cmd_worker(self, args: argparse.Namespace) -> int:
        """Run the worker until SIGINT / SIGTERM."""
        _, factory = init_db()
        worker = Worker(factory)
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, worker.stop)
            except NotImplementedError:
                # Not supported on this platform; Ctrl+C still interrupts.
                pass
        await worker.run_forever(dispatch=not args.no_dispatch)
        return 0

    async def _cmd_run_once(self, args: argparse.Namespace) -> int:
        """Run one batch of due jobs."""
        _, factory = init_db()
        report = await Worker(factory).run_once()
        print(f"Claimed: {report.claimed}  Completed: {report.completed}  Failed: {report.failed}")
        return 0 if report.failed == 0 else 1

    async def _cmd_dispatch(self, args: argparse.Namespace) -> int:
        """Run one dispatcher tick."""
        _, factory = init_db()
        report = await Worker(factory).dispatch(now=args.now)
        print(f"Organizations: {report.organizations}")
        for key in report.enqueued:
            print(f"  + {key}")
        for key in report.merged:
            print(f"  = {key} (already queued)")
        return 0

    async def _cmd_enqueue_workday(self, args: argparse.Namespace) -> int:
        """Queue a workday recalculation."""
        _, factory = init_db()
        async with factory() as session:
            result = await mark_workday_dirty(
                session, args.org_id, args.employee_id, args.work_date
            )
            await session.commit()
        state = "queued" if result.is_new else "merged into active job"
        print(f"{result.job.singleton_key}: {state} ({result.job.job_id})")
        return 0

    async def _cmd_recalculate(self, args: argparse.Namespace) -> int:
        """Recalculate a workday now."""
        _, factory = init_db()
        async with factory() as session:
            outcome = await process_workday_overtime(
                session, args.org_id, args.employee_id, args.work_date
            )
        _print_json(
            {
                "status": outcome.status.value if outcome.status else None,
                "candidate_id": outcome.candidate_id,
                "candidate_minutes": outcome.candidate_minutes,
                "authorization_id": outcome.authorization_id,
                "movement_written": outcome.movement_written,
                "left_dirty": outcome.left_dirty,
            }
        )
        return 0

    async def _cmd_sweep(self, args: argparse.Namespace) -> int:
        """Run the dirty-workday sweep for one organization."""
        lookback = args.lookback_days or get_settings().sweep_lookback_days
        _, factory = init_db()
        async with factory() as session:
            report = await run_payload(
                session, WorkdaySweepJob(org_id=args.org_id, lookback_days=lookback)
            )
        print(
            f"Scanned: {report.scanned}  Enqueued: {report.enqueued}  "
            f"Merged: {report.merged}  Capped: {report.capped}"
        )
        return 0

    async def _cmd_reconcile_week(self, args: argparse.Namespace) -> int:
        """Reconcile one week."""
        job = WeeklyReconciliationJob(org_id=args.org_id, week_start=args.week_start)
        _, factory = init_db()
        async with factory() as session:
            report = await run_payload(session, job)

        if report.skipped_reason:
            print(f"Skipped: {report.skipped_reason}")
            if report.corrections_removed:
                print(f"Corrections removed: {report.corrections_removed}")
            return 0
        print(f"Week {report.week_start} .. {report.week_end}")
        for entry in report.employees:
            line = f"  {entry.employee_id}: correction {entry.correction_minutes:+d} min"
            if entry.skipped_reason:
                line += f" ({entry.skipped_reason})"
            elif entry.clamped:
                line += f" (applied {entry.applied_minutes:+d}, clamped)"
            print(line)
        print(f"Corrections written: {report.corrections_written}")
        if report.corrections_removed:
            print(f"Corrections removed: {report.corrections_removed}")
        return 0

    async def _cmd_expire(self, args: argparse.Namespace) -> int:
        """Expire stale authorizations."""
        days = args.expiry_days or get_settings().authorization_expiry_days
        _, factory = init_db()
        async with factory() as session:
            report = await run_payload(
                session, AuthorizationExpireJob(org_id=args.org_id, expiry_days=days)
            )
        print(
            f"Cutoff: {report.cutoff.isoformat()}  Expired: {report.expired}  "
            f"Candidates rejected: {report.candidates_rejected}"
        )
        return 0

    async def _cmd_balance(self, args: argparse.Namespace) -> int:
        """Query an employee's balance."""
        _, factory = init_db()
        async with factory() as session:
            organization = await session.get(Organization, args.org_id)
            tz = resolve_timezone(
                organization.timezone if organization else None,
                get_settings().default_timezone,
            )
            policy = await PolicyResolver(session).resolve(args.org_id)
            summary = await LedgerWriter(session).get_summary(
                args.org_id, args.employee_id, policy, local_now(utcnow(), tz).date()
            )

        print(f"Balance for employee: {args.employee_id}")
        print(f"\n  Total:    {summary.total_minutes:>8,d} min ({summary.total_hours:,.2f} h)")
        print(f"  Today:    {summary.todays_minutes:>8,d} min")
        print(f"  Limits:   -{summary.max_negative_minutes:,d} .. +{summary.max_positive_minutes:,d}")
        print(f"  Pending requests: {summary.pending_requests}")
        if summary.breakdown:
            print("\n  By type:")
            for movement_type, minutes in summary.breakdown.items():
                print(f"    {movement_type:<12} {minutes:>8,d}")
        return 0

    async def _cmd_admin_stats(self, args: argparse.Namespace) -> int:
        """Show every employee's balance."""
        _, factory = init_db()
        async with factory() as session:
            stats = await LedgerWriter(session).get_admin_stats(args.org_id)

        print(f"Employees with balance: {stats.total_employees_with_balance}")
        print(f"  Positive: {stats.total_positive_minutes:>8,d} min")
        print(f"  Negative: {stats.total_negative_minutes:>8,d} min")
        print(f"  Pending requests: {stats.pending_requests_count}")
        for entry in stats.employees:
            name = f"{entry.first_name} {entry.last_name}".strip()
            line = f"    {name:<30} {entry.total_minutes:>8,d}"
            if entry.pending_requests:
                line += f"  ({entry.pending_requests} pending)"
            print(line)
        return 0

    async def _cmd_settings(self, args: argparse.Namespace) -> int:
        """Show or update overtime settings."""
        changes = {
            f.name: getattr(args, f.name)
            for f in fields(OvertimeSettings)
            if getattr(args, f.name, None) is not None
        }
        for name, enum_cls in SETTINGS_ENUMS.items():
            if name in changes:
                changes[name] = enum_cls(changes[name])

        _, factory = init_db()
        async with factory() as session:
            service = OvertimeSettingsService(session)
            settings = await service.get_settings(args.org_id)
            if changes:
                try:
                    settings = await service.update_settings(
                        args.org_id, replace(settings, **changes), actor_user_id=args.actor_id
                    )
                except SettingsValidationError as e:
                    print(f"Error: {e}", file=sys.stderr)
                    return 2
                await session.commit()

        _print_json(settings.to_json())
        return 0

    async def _cmd_jobs(self, args: argparse.Namespace) -> int:
        """List jobs."""
        _, factory = init_db()
        async with factory() as session:
            jobs = await JobQueue(session).list_jobs(
                status=args.status, queue=args.queue, limit=args.limit
            )
        for job in jobs:
            line = f"{job.status:<9} {job.attempts}/{job.max_attempts} {job.singleton_key}"
            if job.last_error:
                line += f"  [{job.last_error[:80]}]"
            print(line)
        print(f"\n{len(jobs)} job(s)")
        return 0


def main() -> int:
    """CLI entry point."""
    cli = OvertimeCli()
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
