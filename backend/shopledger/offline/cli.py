# backend/shopledger/offline/cli.py
# Commands Legend:
# - shopledger-agent sync
#   Replay queued writes against the backend, then reload the local cache.
# - shopledger-agent queue list
#   Show queued writes, including why a blocked entry failed.
# - shopledger-agent queue discard QID
#   Drop one queued write by hand (e.g. one the server keeps rejecting).
# - shopledger-agent report monthly
#   Print totals for a period; falls back to the local cache when offline.
#
# Settings come from SHOPLEDGER_API_BASE / SHOPLEDGER_CACHE_PATH / SHOPLEDGER_TIMEOUT
# unless given as options.

import json
import logging

import click

from .config import AgentConfig
from .engine import ReconciliationEngine
from .errors import LocalValidationError, ServerRejectedError
from .store import DeviceStore


@click.group()
@click.option('--api-base', default=None, help='Backend base URL')
@click.option('--cache-path', default=None, help='Local sqlite file')
@click.option('--timeout', type=float, default=None, help='Request timeout in seconds')
@click.option('-v', '--verbose', is_flag=True, help='Log engine activity')
@click.pass_context
def main(ctx, api_base, cache_path, timeout, verbose):
    """Device-side sync agent."""
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    config = AgentConfig.from_env()
    ctx.obj = AgentConfig(
        api_base=api_base or config.api_base,
        cache_path=cache_path or config.cache_path,
        timeout=timeout if timeout is not None else config.timeout,
    )


def _engine(config: AgentConfig) -> ReconciliationEngine:
    return ReconciliationEngine.from_config(config)


@main.command('sync')
@click.pass_obj
def sync_command(config):
    """Drain the pending-action queue."""
    engine = _engine(config)
    try:
        result = engine.sync()
    finally:
        engine.close()

    click.echo(f"Replayed {result.replayed}, remaining {result.remaining}.")
    if result.stopped_at is not None:
        click.echo(f"FAIL Stopped at qid={result.stopped_at}: {result.error}", err=True)
        raise SystemExit(1)


@main.group('queue')
def queue_group():
    """Inspect and repair the pending-action queue."""


@queue_group.command('list')
@click.option('--json', 'as_json', is_flag=True, help='Print raw JSON')
@click.pass_obj
def queue_list(config, as_json):
    store = DeviceStore(config.cache_path)
    try:
        actions = store.queue.list_all()
    finally:
        store.close()

    if as_json:
        click.echo(json.dumps([a.to_dict() for a in actions], indent=2))
        return
    if not actions:
        click.echo("Queue is empty.")
        return
    for a in actions:
        line = f"{a.qid:>5}  {a.kind:<15} {a.method:<6} {a.path}"
        if a.failure:
            line += f"  [{a.failure} x{a.attempts}: {a.last_error}]"
        click.echo(line)


@queue_group.command('discard')
@click.argument('qid', type=int)
@click.option('--yes', is_flag=True, help='Skip confirmation')
@click.pass_obj
def queue_discard(config, qid, yes):
    """Remove one queued action; the remaining queue is drained afterwards."""
    if not yes:
        click.confirm(f"Discard queued action {qid}? Its change will never reach the server.", abort=True)

    engine = _engine(config)
    try:
        action = engine.discard_action(qid)
    except LocalValidationError as e:
        raise click.ClickException(str(e))
    finally:
        engine.close()
    click.echo(f"PASS Discarded {action.kind} {action.method} {action.path}")


@main.command('report')
@click.argument('period', required=False, default='monthly')
@click.pass_obj
def report_command(config, period):
    """Print sales, expenses and profit for PERIOD (daily|weekly|monthly|yearly)."""
    engine = _engine(config)
    try:
        report = engine.generate_report(period)
    except (LocalValidationError, ServerRejectedError) as e:
        raise click.ClickException(str(e))
    finally:
        engine.close()

    totals = report["totals"]
    click.echo(f"{report['period']} since {report['from']} ({report['source']})")
    click.echo(f"  Sales:    {totals['totalSales']}")
    click.echo(f"  Expenses: {totals['totalExpenses']}")
    click.echo(f"  Profit:   {totals['profit']}")


if __name__ == '__main__':
    main()
