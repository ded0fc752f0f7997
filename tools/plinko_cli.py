#!/usr/bin/env python3
"""
Plinko Lounge - Operator CLI

Usage:
    python -m tools.plinko_cli record --rows 8
    python -m tools.plinko_cli record --all --visual --bps 50
    python -m tools.plinko_cli status
    python -m tools.plinko_cli clear --rows 12
    python -m tools.plinko_cli probs show
    python -m tools.plinko_cli probs set --rows 8 --weights 0,0,0,0,100,0,0,0,0
    python -m tools.plinko_cli probs reset
    python -m tools.plinko_cli drop --rows 8 --count 20 --bet 10 --balance 1000
    python -m tools.plinko_cli audit --rows 16 --draws 100000 --risk high
    python -m tools.plinko_cli serve --port 5000
"""

import argparse
import os
import random
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from pydantic import ValidationError
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from config.settings import PlinkoConfig, configure_logging, get_store
from sim_engine.plinko.payouts import audit_draws, expected_return, multipliers_for
from sim_engine.plinko.playback import Balance, PlinkoBoard
from sim_engine.plinko.recorder import FastRecorder, VisualRecorder
from sim_engine.plinko.render import ConsoleRenderer
from tools.plinko_config import BoardSettings
from tools.plinko_paths import PathLibrary
from tools.plinko_probabilities import BucketProbabilityTable

console = Console()


def _row_list(args) -> list:
    if getattr(args, "all", False) or args.rows is None:
        return list(PlinkoConfig.ROW_COUNTS)
    return [args.rows]


def _library(store, args) -> PathLibrary:
    lib = PathLibrary(store, paths_per_bucket=getattr(args, "paths_per_bucket", None)
                      or PlinkoConfig.PATHS_PER_BUCKET)
    lib.ensure_loaded()
    return lib


# ═══════════════════════════════════════════════
# Commands
# ═══════════════════════════════════════════════

def cmd_record(args, store) -> int:
    library = _library(store, args)
    failed = 0
    for rows in _row_list(args):
        console.print(f"\n[bold cyan]Recording {rows} rows "
                      f"({'visual' if args.visual else 'fast'})[/bold cyan]")
        if args.visual:
            recorder = VisualRecorder(
                library, rows,
                balls_per_second=args.bps,
                max_attempts=args.max_attempts,
                renderer=ConsoleRenderer(console, every=60),
            )
            try:
                report = recorder.run()
            except KeyboardInterrupt:
                report = recorder.cancel()
        else:
            recorder = FastRecorder(
                library, rows,
                max_attempts=args.max_attempts,
                on_progress=lambda line: console.print(f"  [dim]{line}[/dim]"),
                progress_every=250,
            )
            report = recorder.record_until_filled()

        color = "green" if report.complete else "yellow"
        console.print(f"[{color}]{report.summary()}[/{color}]")
        console.print(f"  {library.status_line(rows, rows + 1)}")
        if not report.complete:
            failed += 1
    return 1 if failed else 0


def cmd_status(args, store) -> int:
    library = _library(store, args)
    table = Table(title="Path library")
    table.add_column("Rows", justify="right")
    table.add_column("Paths", justify="right")
    table.add_column("Full", justify="center")
    table.add_column("Buckets")
    for rows in _row_list(args):
        buckets = rows + 1
        total = sum(library.path_count(rows, b) for b in range(buckets))
        full = library.has_enough_paths(rows, buckets)
        table.add_row(
            str(rows),
            f"{total}/{buckets * library.paths_per_bucket}",
            "[green]yes[/green]" if full else "[yellow]no[/yellow]",
            library.status_line(rows, buckets),
        )
    console.print(table)
    return 0


def cmd_clear(args, store) -> int:
    library = _library(store, args)
    library.clear(args.rows)
    console.print(f"[green]Cleared paths for "
                  f"{'all row counts' if args.rows is None else f'{args.rows} rows'}[/green]")
    return 0


def cmd_probs(args, store) -> int:
    probs = BucketProbabilityTable(store)
    probs.ensure_loaded()

    if args.action == "set":
        if args.rows is None or not args.weights:
            console.print("[red]probs set needs --rows and --weights[/red]")
            return 2
        try:
            weights = [float(w) for w in args.weights.split(",")]
            probs.set(args.rows, weights)
        except ValueError as e:
            console.print(f"[red]{e}[/red]")
            return 2
        console.print(f"[green]Updated probabilities for {args.rows} rows[/green]")
    elif args.action == "reset":
        probs.reset()
        console.print("[green]Probabilities reset to defaults[/green]")

    table = Table(title="Bucket probabilities")
    table.add_column("Rows", justify="right")
    table.add_column("Weights")
    table.add_column(f"RTP ({args.risk})", justify="right")
    for rows in _row_list(args):
        weights = probs.get(rows)
        rtp = expected_return(weights, multipliers_for(rows, args.risk)) \
            if len(weights) == rows + 1 else float("nan")
        table.add_row(str(rows), ", ".join(f"{w:g}" for w in weights), f"{rtp * 100:.2f}%")
    console.print(table)
    return 0


def cmd_drop(args, store) -> int:
    library = _library(store, args)
    rng = random.Random(args.seed) if args.seed is not None else None
    probs = BucketProbabilityTable(store, rng=rng)
    try:
        settings = BoardSettings(rows=args.rows or PlinkoConfig.DEFAULT_ROWS, risk=args.risk,
                                 bet=args.bet, manual_bucket=args.manual_bucket)
    except ValidationError as e:
        console.print(f"[red]Invalid board settings: {e.errors()[0]['msg']}[/red]")
        return 2
    balance = Balance(args.balance)
    renderer = ConsoleRenderer(console, every=120) if args.watch else None
    board = PlinkoBoard(library, probs, settings, ledger=balance, renderer=renderer, rng=rng)
    mode = board.start()
    console.print(f"[bold]Board {board.rows} rows, {mode.value} mode, "
                  f"balance {balance.amount}[/bold]")

    for _ in range(args.count):
        if board.drop() is None:
            console.print("[yellow]Insufficient balance, stopping[/yellow]")
            break
        # Spread drops out a little like a player tapping the button
        for _ in range(args.spacing):
            board.tick()
    board.run_until_idle()
    results = board.results

    table = Table(title="Drops")
    for col in ("#", "Source", "Bucket", "Multiplier", "Bet", "Payout"):
        table.add_column(col, justify="right")
    for r in results:
        table.add_row(str(r.drop_id), r.source + (" (rec)" if r.recorded else ""),
                      str(r.bucket), f"{r.multiplier}x", str(r.bet), str(r.payout))
    console.print(table)
    console.print(Panel(
        f"Wagered: {balance.wagered}   Paid: {balance.paid}   "
        f"Balance: {balance.amount}   Mode: {board.mode.value}",
        title="Session", expand=False))
    return 0


def cmd_audit(args, store) -> int:
    probs = BucketProbabilityTable(store)
    probs.ensure_loaded()
    rng = random.Random(args.seed) if args.seed is not None else None
    for rows in _row_list(args):
        audit = audit_draws(probs, rows, draws=args.draws, risk=args.risk, rng=rng)
        verdict = "[green]PASS[/green]" if audit.chi_squared_pass else "[red]FAIL[/red]"
        console.print(Panel(
            f"Draws: {audit.draws:,}\n"
            f"Counts: {audit.counts}\n"
            f"Chi-square: {audit.chi_squared:.2f} (critical {audit.chi_squared_critical:.2f}) "
            f"{verdict}\n"
            f"RTP: theoretical {audit.theoretical_rtp * 100:.3f}%  "
            f"measured {audit.measured_rtp * 100:.3f}%",
            title=f"Audit {rows} rows / {audit.risk}", expand=False))
    return 0


def cmd_serve(args, store) -> int:
    from web_app import create_app

    create_app(store).run(host=args.host, port=args.port,
                          debug=os.getenv("FLASK_DEBUG", "false").lower() == "true")
    return 0


# ═══════════════════════════════════════════════
# Entry point
# ═══════════════════════════════════════════════

COMMANDS = {
    "record": cmd_record,
    "status": cmd_status,
    "clear": cmd_clear,
    "probs": cmd_probs,
    "drop": cmd_drop,
    "audit": cmd_audit,
    "serve": cmd_serve,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Plinko path recording and playback")
    parser.add_argument("--log-level", type=str, default=None)
    sub = parser.add_subparsers(dest="command", required=True)

    rows_kw = dict(type=int, choices=PlinkoConfig.ROW_COUNTS, default=None)
    risk_kw = dict(type=str, choices=["low", "medium", "high"],
                   default=PlinkoConfig.DEFAULT_RISK)

    p = sub.add_parser("record", help="Fill the path library")
    p.add_argument("--rows", **rows_kw)
    p.add_argument("--all", action="store_true", help="Every row count")
    p.add_argument("--visual", action="store_true", help="Real-time recording with progress")
    p.add_argument("--bps", type=int, default=PlinkoConfig.BALLS_PER_SECOND,
                   help="Balls per second (visual)")
    p.add_argument("--max-attempts", type=int, default=PlinkoConfig.MAX_ATTEMPTS)
    p.add_argument("--paths-per-bucket", type=int, default=None)

    p = sub.add_parser("status", help="Show library fill per row count")
    p.add_argument("--rows", **rows_kw)

    p = sub.add_parser("clear", help="Delete recorded paths")
    p.add_argument("--rows", **rows_kw)

    p = sub.add_parser("probs", help="Show, edit or reset bucket probabilities")
    p.add_argument("action", choices=["show", "set", "reset"])
    p.add_argument("--rows", **rows_kw)
    p.add_argument("--weights", type=str, help="Comma-separated, rows + 1 values")
    p.add_argument("--risk", **risk_kw)

    p = sub.add_parser("drop", help="Headless play session")
    p.add_argument("--rows", **rows_kw)
    p.add_argument("--count", type=int, default=10)
    p.add_argument("--bet", type=int, default=PlinkoConfig.DEFAULT_BET)
    p.add_argument("--balance", type=int, default=1000)
    p.add_argument("--risk", **risk_kw)
    p.add_argument("--manual-bucket", type=int, default=None)
    p.add_argument("--spacing", type=int, default=6, help="Frames between drops")
    p.add_argument("--seed", type=int, default=None)
    p.add_argument("--watch", action="store_true")

    p = sub.add_parser("audit", help="Monte Carlo the weighted draw")
    p.add_argument("--rows", **rows_kw)
    p.add_argument("--draws", type=int, default=100_000)
    p.add_argument("--risk", **risk_kw)
    p.add_argument("--seed", type=int, default=None)

    p = sub.add_parser("serve", help="Run the storage API")
    p.add_argument("--host", type=str, default="0.0.0.0")
    p.add_argument("--port", type=int, default=int(os.getenv("PORT", 5000)))
    return parser


def main(argv=None, store=None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)
    store = store if store is not None else get_store()
    return COMMANDS[args.command](args, store)


if __name__ == "__main__":
    sys.exit(main())
