from __future__ import annotations

import argparse
import json

from settlement.core.config import get_settings
from settlement.core.errors import SettlementError
from settlement.core.logging import configure_logging
from settlement.domain.orders.invoice import build_invoice
from settlement.domain.refunds.ledger import RefundLedger, serialize_refund
from settlement.orchestration.refunds import RefundOrchestrator
from settlement.persistence.pg import init_db, session_scope
from settlement.providers.registry import build_payment_provider
from settlement.reconciliation.rules import run_reconciliation


def _print(payload: object) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2, default=str))


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Supermarket settlement CLI")
    top = parser.add_subparsers(dest="command", required=True)

    top.add_parser("init-db", help="Create database tables")

    orders = top.add_parser("orders", help="Order operations")
    orders_sub = orders.add_subparsers(dest="orders_command", required=True)
    show = orders_sub.add_parser("show", help="Print an order with its totals, refund and transaction")
    show.add_argument("order_id", type=int)

    refunds = top.add_parser("refunds", help="Refund operations")
    refunds_sub = refunds.add_subparsers(dest="refunds_command", required=True)
    refunds_sub.add_parser("pending", help="List refund requests awaiting a decision")
    approve = refunds_sub.add_parser("approve", help="Refund at the provider and record it")
    approve.add_argument("refund_id", type=int)
    approve.add_argument("--admin-id", default=None)
    reject = refunds_sub.add_parser("reject", help="Reject a refund request")
    reject.add_argument("refund_id", type=int)
    reject.add_argument("--admin-id", default=None)
    reject.add_argument("--reason", default=None)

    top.add_parser("reconcile", help="Run reconciliation checks; exit 1 if any fails")
    return parser


def _admin_id(args: argparse.Namespace) -> str:
    return str(args.admin_id or get_settings().admin_actor_id)


def _show_order(args: argparse.Namespace) -> int:
    with session_scope() as session:
        _print(build_invoice(session, args.order_id))
    return 0


def _pending_refunds(_: argparse.Namespace) -> int:
    with session_scope() as session:
        rows = RefundLedger(session).get_pending()
        _print({"count": len(rows), "refunds": [serialize_refund(row) for row in rows]})
    return 0


def _approve_refund(args: argparse.Namespace) -> int:
    with session_scope() as session:
        orchestrator = RefundOrchestrator(session, build_payment_provider())
        outcome = orchestrator.approve_refund(args.refund_id, admin_id=_admin_id(args))
        _print(outcome.as_dict())
    return 0


def _reject_refund(args: argparse.Namespace) -> int:
    with session_scope() as session:
        orchestrator = RefundOrchestrator(session, build_payment_provider())
        refund = orchestrator.reject_refund(args.refund_id, admin_id=_admin_id(args), reason=args.reason)
        _print(serialize_refund(refund))
    return 0


def _reconcile(_: argparse.Namespace) -> int:
    with session_scope() as session:
        results = run_reconciliation(session)
        _print([result.as_dict() for result in results])
    return 0 if all(result.passed for result in results) else 1


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    configure_logging()
    init_db()

    handlers = {
        ("orders", "show"): _show_order,
        ("refunds", "pending"): _pending_refunds,
        ("refunds", "approve"): _approve_refund,
        ("refunds", "reject"): _reject_refund,
    }
    if args.command == "init-db":
        print("database initialised")
        return 0
    if args.command == "reconcile":
        handler = _reconcile
    else:
        sub = getattr(args, f"{args.command}_command", None)
        handler = handlers.get((args.command, sub))
    if handler is None:
        parser.error("unsupported command")
        return 2

    try:
        return handler(args)
    except SettlementError as exc:
        _print(exc.to_dict())
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
