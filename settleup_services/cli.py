"""
settleup command line.

Reads a YAML ledger of expenses and settlements and prints balances and
suggested transfers, or splits a single amount.

Usage:
    settleup balances ledger.yaml
    settleup balances ledger.yaml --group trip --json
    settleup split 100.00 alice bob carol
    settleup split 90 --policy shares alice=2 bob=1

Ledger format:
    currency: USD
    expenses:
      - id: e1
        payer: alice
        amount: "90.00"
        groupId: trip
        split: {alice: "30.00", bob: "30.00", carol: "30.00"}
      - id: e2                    # no split: computed from policy
        payer: bob
        amount: "10.00"
        policy: equal
        members: [alice, bob]
    settlements:
      - id: s1
        fromUser: bob
        toUser: alice
        amount: "10.00"
        status: completed
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from collections.abc import Sequence
from dataclasses import replace
from pathlib import Path
from typing import Any, TextIO

import yaml

from settleup_config import ConfigError, CoreConfig, get_active_config
from settleup_engines.balances import aggregate_balances
from settleup_engines.settlement import minimize_settlements
from settleup_engines.split import SplitCalculator, compute_split
from settleup_kernel.domain.parsing import parse_policy
from settleup_kernel.domain.records import Balance, SettlementTransaction
from settleup_kernel.exceptions import SettleUpError
from settleup_kernel.logging_config import configure_logging, get_logger
from settleup_services.calculation_service import (
    CalculationService,
    build_split_calculator,
)
from settleup_services.memory_source import InMemoryRecordSource

logger = get_logger("services.cli")

EXIT_OK = 0
EXIT_ERROR = 1


def _load_ledger(path: Path) -> dict[str, Any]:
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: ledger must be a mapping")
    for section in ("expenses", "settlements"):
        if not isinstance(data.get(section) or [], list):
            raise ValueError(f"{path}: {section} must be a list")
    return data


def _complete_expense(doc: Any, calculator: SplitCalculator, currency: str) -> Any:
    """Fill in ``split`` from ``policy`` and ``members``/``weights`` when absent."""
    if not isinstance(doc, dict) or doc.get("split") is not None:
        return doc
    members = doc.get("weights") or doc.get("customRatios") or doc.get("members")
    if members is None or doc.get("amount") is None:
        return doc
    try:
        result = compute_split(
            doc["amount"],
            parse_policy(doc.get("policy", doc.get("splitType", "equal"))),
            members,
            currency=doc.get("currency") or currency,
            calculator=calculator,
        )
    except (SettleUpError, ValueError) as e:
        # Left without a split, the aggregator skips and reports it
        logger.warning("ledger_split_failed", extra={
            "record_id": doc.get("id"),
            "error": str(e),
        })
        return doc
    return {**doc, "split": {m: str(v) for m, v in result.as_amounts().items()}}


def _signed(value: Any) -> str:
    text = str(value.amount)
    return text if value.is_negative else f"+{text}"


def _print_summary(
    balance: Balance,
    transactions: Sequence[SettlementTransaction],
    out: TextIO,
) -> None:
    print(f"Balances ({balance.currency.code})", file=out)
    width = max((len(m) for m in balance), default=0)
    for member in sorted(balance):
        print(f"  {member:<{width}}  {_signed(balance[member]):>12}", file=out)
    print("Transfers", file=out)
    if not transactions:
        print("  (none)", file=out)
    for tx in transactions:
        print(f"  {tx.from_member} -> {tx.to_member}  {tx.amount.amount}", file=out)
    if balance.issues:
        print("Warnings", file=out)
        for issue in balance.issues:
            print(f"  {issue}", file=out)


def _cmd_balances(args: argparse.Namespace, config: CoreConfig, out: TextIO) -> int:
    ledger = _load_ledger(Path(args.ledger))
    if ledger.get("currency"):
        config = replace(config, currency=str(ledger["currency"]).strip().upper())

    calculator = build_split_calculator(config)
    source = InMemoryRecordSource(
        expenses=[
            _complete_expense(doc, calculator, config.currency)
            for doc in ledger.get("expenses") or []
        ],
        settlements=ledger.get("settlements") or [],
    )

    if args.group:
        with CalculationService.from_config(source, config) as service:
            summary = service.group_summary(args.group)
        balance, transactions = summary.balance, summary.transactions
    else:
        balance = aggregate_balances(
            source.all_expenses(), source.all_settlements(), currency=config.currency
        )
        transactions = tuple(
            minimize_settlements(
                balance, epsilon_minor_units=config.settlement.epsilon_minor_units
            )
        )

    if args.json:
        payload = {
            "currency": balance.currency.code,
            "balances": {m: str(v) for m, v in balance.as_amounts().items()},
            "transactions": [t.as_dict() for t in transactions],
            "issues": [str(issue) for issue in balance.issues],
        }
        print(json.dumps(payload, indent=2, sort_keys=True), file=out)
    else:
        _print_summary(balance, transactions, out)
    return EXIT_OK


def _parse_members(items: Sequence[str]) -> list[str] | dict[str, str]:
    """``a b c`` gives a member list; ``a=2 b=1`` gives member weights."""
    if not any("=" in item for item in items):
        return list(items)
    weights: dict[str, str] = {}
    for item in items:
        member, sep, value = item.partition("=")
        if not sep:
            raise ValueError(f"member {item!r} has no value; use member=value")
        weights[member] = value
    return weights


def _cmd_split(args: argparse.Namespace, config: CoreConfig, out: TextIO) -> int:
    currency = args.currency or config.currency
    result = compute_split(
        args.amount,
        args.policy,
        _parse_members(args.members),
        currency=currency,
        calculator=build_split_calculator(config),
    )
    if args.json:
        payload = {
            "policy": result.policy.value,
            "total": str(result.total.amount),
            "currency": result.total.currency.code,
            "shares": {m: str(v) for m, v in result.as_amounts().items()},
        }
        print(json.dumps(payload, indent=2), file=out)
    else:
        print(f"{result.policy.value} split of {result.total}", file=out)
        width = max(len(m) for m in result.shares)
        for member, share in result.shares.items():
            print(f"  {member:<{width}}  {share.amount:>12}", file=out)
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="settleup", description="Shared-expense balances and settlements"
    )
    parser.add_argument("--config", help="YAML file merged over the default configuration")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log at INFO to stderr")
    sub = parser.add_subparsers(dest="command", required=True)

    balances = sub.add_parser("balances", help="Balances and suggested transfers")
    balances.add_argument("ledger", help="YAML ledger of expenses and settlements")
    balances.add_argument("--group", help="Only this group's records")
    balances.add_argument("--json", action="store_true", help="Print JSON")
    balances.set_defaults(handler=_cmd_balances)

    split = sub.add_parser("split", help="Split one amount among members")
    split.add_argument("amount", help="Amount in major units, e.g. 100.00")
    split.add_argument("members", nargs="+", help="member ids, or member=value pairs")
    split.add_argument(
        "--policy",
        default="equal",
        choices=["equal", "percentage", "shares", "exact", "adjustment"],
    )
    split.add_argument("--currency", help="ISO 4217 code (default from config)")
    split.add_argument("--json", action="store_true", help="Print JSON")
    split.set_defaults(handler=_cmd_split)
    return parser


def main(argv: Sequence[str] | None = None, out: TextIO | None = None) -> int:
    args = build_parser().parse_args(argv)
    out = out or sys.stdout
    configure_logging(level=logging.INFO if args.verbose else logging.WARNING)

    try:
        config = get_active_config(args.config)
        return args.handler(args, config, out)
    except (SettleUpError, ConfigError, ValueError, OSError, yaml.YAMLError) as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
