"""Payroll run operator command line interface.

Provides operational tools for:
- Creating, processing, approving and paying runs
- Inspecting a run's totals and failures
- Listing stale PROCESSING runs

Usage:
    payrun init-db
    payrun serve [--host 0.0.0.0] [--port 8000]
    payrun create --tenant-id X --month 3 --year 2025
    payrun process --run-id Y [--full-reset]
    payrun approve --run-id Y --actor alice [--override]
    payrun mark-paid --run-id Y
    payrun show --run-id Y
    payrun stale
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from typing import Any, Awaitable, Callable
from uuid import UUID

import uvicorn

from payrun_engine.calculators.types import FactsUnavailableError
from payrun_engine.config import Settings, get_settings
from payrun_engine.database import create_schema, get_engine, make_session_factory
from payrun_engine.logging_config import configure_logging
from payrun_engine.models import PayrollRun
from payrun_engine.services.payroll_run_service import (
    PayrollProviders,
    PayrollRunService,
    RunAlreadyProcessingError,
)
from payrun_engine.services.repository import DuplicateRunError, PayrollRunNotFoundError
from payrun_engine.services.state_machine import InvalidTransitionError

# Domain errors reported as a one-line message with exit code 1
EXPECTED_ERRORS = (
    DuplicateRunError,
    PayrollRunNotFoundError,
    RunAlreadyProcessingError,
    InvalidTransitionError,
    FactsUnavailableError,
    ValueError,
)


def parse_uuid(s: str) -> UUID:
    """Parse UUID string."""
    return UUID(s)


def run_to_dict(run: PayrollRun) -> dict[str, Any]:
    return {
        "payroll_run_id": str(run.payroll_run_id),
        "tenant_id": str(run.tenant_id),
        "period": f"{run.year:04d}-{run.month:02d}",
        "status": run.status,
        "processed_count": run.processed_count,
        "error_count": run.error_count,
        "total_gross": str(run.total_gross),
        "total_deductions": str(run.total_deductions),
        "total_net": str(run.total_net),
        "approved_by": run.approved_by,
        "approval_override": run.approval_override,
    }


class PayrunCli:
    """Payroll run command line interface."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings
        self.parser = self._build_parser()

    def _build_parser(self) -> argparse.ArgumentParser:
        """Build argument parser."""
        parser = argparse.ArgumentParser(
            prog="payrun",
            description="Payroll run operational tools",
        )
        parser.add_argument(
            "--database-url",
            help="Override DATABASE_URL",
        )
        subparsers = parser.add_subparsers(dest="command", help="Commands")

        subparsers.add_parser("init-db", help="Create all tables")

        serve = subparsers.add_parser("serve", help="Serve the HTTP API")
        serve.add_argument("--host")
        serve.add_argument("--port", type=int)

        create = subparsers.add_parser("create", help="Create a DRAFT run")
        create.add_argument("--tenant-id", type=parse_uuid, required=True)
        create.add_argument("--month", type=int, required=True)
        create.add_argument("--year", type=int, required=True)
        create.add_argument("--remarks")

        process = subparsers.add_parser("process", help="Compute payslips for a run")
        process.add_argument("--run-id", type=parse_uuid, required=True)
        process.add_argument(
            "--full-reset",
            action="store_true",
            help="Recompute every eligible employee, not only missing ones",
        )

        approve = subparsers.add_parser("approve", help="Approve a COMPUTED run")
        approve.add_argument("--run-id", type=parse_uuid, required=True)
        approve.add_argument("--actor")
        approve.add_argument(
            "--override",
            action="store_true",
            help="Approve despite per-employee errors",
        )

        paid = subparsers.add_parser("mark-paid", help="Mark an APPROVED run as PAID")
        paid.add_argument("--run-id", type=parse_uuid, required=True)
        paid.add_argument("--actor")

        delete = subparsers.add_parser("delete", help="Delete a DRAFT run")
        delete.add_argument("--run-id", type=parse_uuid, required=True)

        show = subparsers.add_parser("show", help="Show a run with its failures")
        show.add_argument("--run-id", type=parse_uuid, required=True)

        subparsers.add_parser("stale", help="List PROCESSING runs without a recent heartbeat")

        return parser

    def run(self, args: list[str] | None = None) -> int:
        """Run the CLI with given arguments."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 1

        settings = self.settings or get_settings()
        configure_logging(settings.log_level)

        if parsed.command == "serve":
            return self._cmd_serve(parsed, settings)

        # Dispatch to command handler
        handlers: dict[str, Callable[..., Awaitable[int]]] = {
            "init-db": self._cmd_init_db,
            "create": self._cmd_create,
            "process": self._cmd_process,
            "approve": self._cmd_approve,
            "mark-paid": self._cmd_mark_paid,
            "delete": self._cmd_delete,
            "show": self._cmd_show,
            "stale": self._cmd_stale,
        }

        handler = handlers.get(parsed.command)
        if handler is None:
            print(f"Unknown command: {parsed.command}", file=sys.stderr)
            return 1

        try:
            return asyncio.run(self._dispatch(handler, parsed, settings))
        except EXPECTED_ERRORS as e:
            print(f"ERROR: {e}", file=sys.stderr)
            return 1

    async def _dispatch(
        self,
        handler: Callable[..., Awaitable[int]],
        args: argparse.Namespace,
        settings: Settings,
    ) -> int:
        engine = get_engine(args.database_url or settings.database_url)
        try:
            if args.command == "init-db":
                return await self._cmd_init_db(engine)
            session_factory = make_session_factory(engine)
            providers = PayrollProviders.from_database(session_factory, settings)
            async with session_factory() as session:
                service = PayrollRunService(session, providers, settings=settings)
                return await handler(service, args)
        finally:
            await engine.dispose()

    async def _cmd_init_db(self, engine: Any) -> int:
        """Create all tables."""
        await create_schema(engine)
        print("Tables created.")
        return 0

    def _cmd_serve(self, args: argparse.Namespace, settings: Settings) -> int:
        """Serve the HTTP API with uvicorn."""
        if args.database_url:
            # The app module builds its own settings at import
            os.environ["DATABASE_URL"] = args.database_url
            get_settings.cache_clear()
        uvicorn.run(
            "payrun_engine.api.app:app",
            host=args.host or settings.host,
            port=args.port or settings.port,
            reload=settings.debug,
            log_level=settings.log_level.lower(),
        )
        return 0

    async def _cmd_create(self, service: PayrollRunService, args: argparse.Namespace) -> int:
        run = await service.create_run(
            args.tenant_id, args.month, args.year, args.remarks, actor="cli"
        )
        print(json.dumps(run_to_dict(await service.get_run(run.payroll_run_id)), indent=2))
        return 0

    async def _cmd_process(self, service: PayrollRunService, args: argparse.Namespace) -> int:
        result = await service.process(args.run_id, full_reset=args.full_reset, actor="cli")
        print(json.dumps(run_to_dict(result.run), indent=2))
        print(
            f"\nComputed {len(result.computed)}, failed {len(result.failed)}, "
            f"skipped {result.skipped}" + (" (resumed)" if result.resumed else "")
        )
        for employee_id, kind in sorted(result.failed.items(), key=lambda kv: str(kv[0])):
            print(f"  - {employee_id}: {kind}")
        return 0

    async def _cmd_approve(self, service: PayrollRunService, args: argparse.Namespace) -> int:
        run = await service.approve(args.run_id, actor=args.actor, override=args.override)
        print(json.dumps(run_to_dict(run), indent=2))
        return 0

    async def _cmd_mark_paid(self, service: PayrollRunService, args: argparse.Namespace) -> int:
        run = await service.mark_paid(args.run_id, actor=args.actor)
        print(json.dumps(run_to_dict(run), indent=2))
        return 0

    async def _cmd_delete(self, service: PayrollRunService, args: argparse.Namespace) -> int:
        await service.delete_run(args.run_id, actor="cli")
        print(f"Deleted run {args.run_id}")
        return 0

    async def _cmd_show(self, service: PayrollRunService, args: argparse.Namespace) -> int:
        summary = await service.get_run_summary(args.run_id)
        payload = run_to_dict(summary.run)
        payload["failures"] = [
            {
                "employee_id": str(f.employee_id),
                "error_kind": f.error_kind,
                "message": f.message,
                "attempts": f.attempts,
            }
            for f in summary.failures
        ]
        print(json.dumps(payload, indent=2))
        return 0

    async def _cmd_stale(self, service: PayrollRunService, args: argparse.Namespace) -> int:
        runs = await service.find_stale_runs()
        if not runs:
            print("No stale runs.")
            return 0
        for run in runs:
            heartbeat = run.heartbeat_at.isoformat() if run.heartbeat_at else "never"
            print(f"{run.payroll_run_id}  {run.year:04d}-{run.month:02d}  heartbeat {heartbeat}")
        return 0


def main() -> int:
    """CLI entry point."""
    cli = PayrunCli()
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
