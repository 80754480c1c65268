"""CLI tool for admin operations.

Usage:
    python -m tradebot.cli health
    python -m tradebot.cli strategies
    python -m tradebot.cli performance
    python -m tradebot.cli clear-data
"""

import asyncio
import sys

from tradebot.config import settings
from tradebot.container import TradingServices, build_services
from tradebot.utils.logging import setup_logging


def run_health(services: TradingServices):
    """Run the full health check and print the report."""

    async def _run():
        try:
            return await services.health.run()
        finally:
            await services.exchange.close()

    report = asyncio.run(_run())
    print(f"Overall: {report.overall.upper()}")
    for name, ok in report.checks.items():
        print(f"  [{'ok' if ok else 'FAIL'}] {name}")
    for title, items in (("Errors", report.errors), ("Warnings", report.warnings),
                         ("Recommendations", report.recommendations)):
        if items:
            print(f"\n{title}:")
            for item in items:
                print(f"  - {item}")
    if report.overall == "critical":
        sys.exit(1)


def list_strategies(services: TradingServices):
    strategies = services.strategies.get_all()
    if not strategies:
        print("No strategies configured.")
        return
    for s in strategies:
        state = "active" if s.is_active else "inactive"
        print(
            f"{s.id:<20} {state:<9} {s.name} | {', '.join(s.symbols)} | {', '.join(s.timeframes)} "
            f"| SL {s.stop_loss}% TP {s.take_profit}% risk {s.risk_per_trade}%"
        )


def show_performance(services: TradingServices):
    ledger = services.ledger
    print(f"Equity: {ledger.current_equity():.2f} (initial {ledger.initial_balance:.2f})")
    print(f"Open trades: {len(ledger.get_open_trades())}")

    performance = ledger.calculate_performance()
    if performance:
        print("\nPer strategy:")
        for p in performance:
            print(
                f"  {p.strategy_id:<20} trades={p.total_trades} wins={p.winning_trades} "
                f"losses={p.losing_trades} win_rate={p.win_rate * 100:.1f}% profit={p.total_profit:.2f}"
            )

    print("\nLast 7 days:")
    for day in ledger.get_daily_performance(7):
        print(f"  {day.date}  trades={day.trades:<3} profit={day.profit:>10.2f}  win_rate={day.win_rate * 100:.1f}%")


def clear_data(services: TradingServices):
    """Delete all trades and reset the equity curve after confirmation."""
    answer = input("This deletes ALL trades and resets equity. Type 'yes' to continue: ").strip()
    if answer != "yes":
        print("Aborted.")
        sys.exit(1)
    services.ledger.clear_all_data()
    print("All trading data cleared.")


COMMANDS = {
    "health": run_health,
    "strategies": list_strategies,
    "performance": show_performance,
    "clear-data": clear_data,
}


def main():
    if len(sys.argv) < 2:
        print("Usage: python -m tradebot.cli <command>")
        print(f"Commands: {', '.join(COMMANDS)}")
        sys.exit(1)

    command = sys.argv[1]
    handler = COMMANDS.get(command)
    if handler is None:
        print(f"Unknown command: {command}")
        sys.exit(1)

    setup_logging()
    handler(build_services(settings))


if __name__ == "__main__":
    main()
