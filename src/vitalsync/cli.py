"""CLI for the vitalsync aggregation engine."""

import asyncio
import logging

import click

from vitalsync.config import LogLevel, Settings, load_settings
from vitalsync.errors import ConfigError, CorruptStateError, PersistenceWriteFailure
from vitalsync.persistence import JsonStore


def _fmt(value: float | None, digits: int = 1) -> str:
    return "-" if value is None else f"{value:.{digits}f}"


@click.group()
@click.option("--log-level", default=None, type=click.Choice([lvl.value for lvl in LogLevel]),
              help="Override VITALSYNC_LOG_LEVEL.")
@click.option("--state-dir", default=None, help="Override VITALSYNC_STATE_DIR.")
@click.pass_context
def main(ctx: click.Context, log_level: str | None, state_dir: str | None) -> None:
    """vitalsync: daily readiness signals and personal baselines."""
    try:
        settings = load_settings(log_level=log_level, state_dir=state_dir)
    except ConfigError as e:
        raise click.ClickException(str(e)) from e
    logging.basicConfig(
        level=settings.log_level.value,
        format="%(asctime)s %(levelname)s %(message)s",
    )
    ctx.obj = settings


@main.command()
@click.option("--samples", "-s", required=True, type=click.Path(exists=True),
              help="JSONL sample export to aggregate.")
@click.option("--output", "-o", default=None, help="Also write the report JSON here.")
@click.option("--quiet", "-q", is_flag=True, help="Do not print the readiness summary.")
@click.pass_obj
def refresh(settings: Settings, samples: str, output: str | None, quiet: bool) -> None:
    """Run one aggregation pass over a sample export."""
    from vitalsync.source import InMemorySource
    from vitalsync.sync import SyncCoordinator

    source = InMemorySource.from_jsonl(samples)
    coordinator = SyncCoordinator(source, JsonStore(settings.state_dir), settings)
    result = asyncio.run(coordinator.refresh())
    report = result.report

    if not quiet:
        click.echo(f"\n{'=' * 60}")
        windows = report.windows
        if windows.night_start is not None:
            click.echo(f"  Night: {windows.night_start.isoformat()} -> {windows.night_end.isoformat()}")
        else:
            click.echo("  Night: none found")
        click.echo(f"{'=' * 60}")
        for name in sorted(report.readiness_signals):
            m = report.readiness_signals[name]
            z = f"  z={m.z_score_30d:+.2f}" if m.z_score_30d is not None else ""
            click.echo(f"  {name:<28} {_fmt(m.value):>8} {m.unit:<7} [{m.baseline_status}]{z}")
        click.echo(f"{'=' * 60}")
        raised = [k for k, v in report.flags.items() if v]
        click.echo(f"  Flags: {', '.join(raised) if raised else 'none'}")
        click.echo(f"  Committed: {'yes' if result.committed else 'no'}, "
                   f"new samples: {report.meta.new_samples}")

    if output:
        with open(output, "w", encoding="utf-8") as f:
            f.write(result.report_json)
        if not quiet:
            click.echo(f"\nReport written to {output}")


@main.command()
@click.pass_obj
def show(settings: Settings) -> None:
    """Print the last saved report."""
    text = JsonStore(settings.state_dir).load_last_report_json()
    if text is None:
        raise click.ClickException("no report saved yet")
    click.echo(text)


@main.command()
@click.pass_obj
def baselines(settings: Settings) -> None:
    """List per-metric baseline status."""
    try:
        records = JsonStore(settings.state_dir).load_baselines()
    except CorruptStateError as e:
        raise click.ClickException(str(e)) from e
    if not records:
        click.echo("No baselines yet.")
        return

    click.echo(f"  {'metric':<28} {'status':<8} {'ema7':>8} {'mean30':>8} {'std30':>8} {'n':>4}")
    for metric in sorted(records):
        rec = records[metric]
        status = rec.status(settings.ema_days, settings.rolling_days)
        click.echo(
            f"  {metric:<28} {status:<8} {_fmt(rec.ema_7d, 2):>8} "
            f"{_fmt(rec.mean_30d, 2):>8} {_fmt(rec.std_30d, 2):>8} {len(rec.observations):>4}"
        )


@main.command()
@click.option("--baselines", "reset_baselines", is_flag=True, help="Clear all baselines.")
@click.option("--anchors", "reset_anchors", is_flag=True, help="Clear all sync anchors.")
@click.pass_obj
def reset(settings: Settings, reset_baselines: bool, reset_anchors: bool) -> None:
    """Explicitly clear baselines and/or anchors."""
    if not (reset_baselines or reset_anchors):
        raise click.UsageError("pass --baselines and/or --anchors")
    store = JsonStore(settings.state_dir)
    try:
        if reset_baselines:
            store.reset_baselines()
            click.echo("Baselines cleared.")
        if reset_anchors:
            store.reset_anchors()
            click.echo("Anchors cleared.")
    except (CorruptStateError, PersistenceWriteFailure) as e:
        raise click.ClickException(str(e)) from e


if __name__ == "__main__":
    main()
