"""
Motion Log Replay

Replays a recorded measurement session through the compensation engine:
sensor readings are ingested in time order and each recorded measurement
is compensated and validated at its own timestamp.

Usage:
    python -m compensation.replay replay session.json
    python -m compensation.replay check session.json
    python -m compensation.replay tiers
"""

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from utils.validation import MeasurementEntry, MotionLog, TrackingFrame, load_motion_log, validate_motion_log

from .config import EngineConfig, load_config
from .engine import CompensatedMeasurement, CompensationEngine
from .models import AccuracyTier, MeasurementKind, RawMeasurement
from .motion import MotionSample
from .tracking import TrackingValidationResult

console = Console()
app = typer.Typer(help="Motion compensation replay tools")


class ReplayError(Exception):
    """Error while replaying a motion log."""
    pass


@dataclass(frozen=True)
class ReplayResult:
    index: int
    entry: MeasurementEntry
    result: CompensatedMeasurement


def _direct_raw(entry: MeasurementEntry) -> RawMeasurement:
    kind = MeasurementKind(entry.kind)
    return RawMeasurement(
        kind=kind,
        value=entry.value,
        distance=entry.value if kind == MeasurementKind.DISTANCE else 0.0,
        timestamp=entry.timestamp,
    )


def replay_log(
    log: MotionLog,
    engine: CompensationEngine
) -> Tuple[List[ReplayResult], List[TrackingValidationResult]]:
    """
    Replay a motion log through a running engine.

    Readings are ingested before measurements and frames that share their
    timestamp.

    Returns:
        Tuple of (measurement results, tracking results)
    """
    is_valid, _, warnings = validate_motion_log(log)
    if not is_valid:
        raise ReplayError(f"Motion log is not replayable: {'; '.join(warnings)}")

    events: List[Tuple[float, int, int, Union[MotionSample, MeasurementEntry, TrackingFrame]]] = []
    for i, reading in enumerate(log.readings):
        events.append((reading.timestamp, 0, i, MotionSample.from_reading(reading)))
    for i, entry in enumerate(log.measurements):
        events.append((entry.timestamp, 1, i, entry))
    for i, frame in enumerate(log.frames):
        events.append((frame.timestamp, 2, i, frame))
    events.sort(key=lambda e: (e[0], e[1], e[2]))

    results: List[ReplayResult] = []
    tracking: List[TrackingValidationResult] = []
    for _, order, index, payload in events:
        if order == 0:
            engine.ingest(payload)
        elif order == 1:
            if payload.points:
                result = engine.measure(
                    MeasurementKind(payload.kind),
                    payload.points,
                    timestamp=payload.timestamp,
                )
            else:
                result = engine.compensate_measurement(_direct_raw(payload))
            results.append(ReplayResult(index=index, entry=payload, result=result))
        else:
            tracking.append(engine.validate_tracking(payload))

    return results, tracking


def results_table(results: List[ReplayResult]) -> Table:
    table = Table(title="Compensated Measurements")
    table.add_column("#", justify="right")
    table.add_column("Kind")
    table.add_column("Label")
    table.add_column("Raw", justify="right")
    table.add_column("Compensated", justify="right")
    table.add_column("Correction", justify="right")
    table.add_column("Tier")
    table.add_column("Confidence", justify="right")
    table.add_column("Valid")

    for r in results:
        kind = MeasurementKind(r.entry.kind)
        valid = "[green]yes[/green]" if r.result.validation.is_valid else "[red]no[/red]"
        table.add_row(
            str(r.index),
            kind.value,
            r.entry.label or "",
            f"{r.result.raw.value:.4f} {kind.unit}",
            f"{r.result.compensated.value:.4f} {kind.unit}",
            f"{r.result.correction:+.6f}",
            r.result.accuracy.tier.display_name,
            f"{r.result.compensated.confidence:.3f}",
            valid,
        )
    return table


def summary_dict(results: List[ReplayResult], engine: CompensationEngine) -> Dict:
    metrics = engine.metrics()
    return {
        "measurements": [
            {
                "index": r.index,
                "kind": r.entry.kind,
                "label": r.entry.label,
                "raw": r.result.raw.value,
                "compensated": r.result.compensated.value,
                "stage": r.result.compensated.stage.value,
                "confidence": r.result.compensated.confidence,
                "estimated_error": r.result.accuracy.estimated_error,
                "tier": r.result.accuracy.tier.value,
                "meets_requirements": r.result.accuracy.meets_requirements,
                "is_effective": r.result.accuracy.is_effective,
                "valid": r.result.validation.is_valid,
            }
            for r in results
        ],
        "metrics": {
            "average_effectiveness": metrics.average_effectiveness,
            "average_confidence": metrics.average_confidence,
            "validation_success_rate": metrics.validation_success_rate,
            "average_precision": metrics.average_precision,
            "total_validations": metrics.total_validations,
            "average_processing_time": metrics.average_processing_time,
            "performance_level": metrics.performance_level.value,
        },
    }


@app.command()
def replay(
    log_path: Path = typer.Argument(..., help="Path to motion log JSON"),
    config_path: Optional[Path] = typer.Option(None, "--config", help="Engine config JSON"),
    output: Optional[Path] = typer.Option(None, help="Write a JSON summary here"),
    calibrate: bool = typer.Option(False, "--calibrate", help="Run an identity calibration first"),
):
    """Replay a motion log and print the compensated measurements."""
    is_valid, log, errors = load_motion_log(log_path)
    if not is_valid:
        for error in errors:
            console.print(f"[bold red]Invalid log:[/bold red] {error}")
        raise typer.Exit(1)

    engine_config = load_config(config_path) if config_path else EngineConfig()

    console.print(Panel.fit(
        "[bold blue]Motion Compensation Replay[/bold blue]\n"
        f"Session: {log.session_id}\n"
        f"Readings: {len(log.readings)}  Measurements: {len(log.measurements)}",
        border_style="blue"
    ))

    with CompensationEngine.from_config(engine_config) as engine:
        if calibrate:
            engine.perform_calibration()
        try:
            results, tracking = replay_log(log, engine)
        except ReplayError as e:
            console.print(f"[bold red]Replay failed:[/bold red] {e}")
            raise typer.Exit(1)

        console.print(results_table(results))

        valid_frames = sum(1 for t in tracking if t.is_valid)
        if tracking:
            console.print(f"Tracking frames valid: {valid_frames}/{len(tracking)}")

        summary = summary_dict(results, engine)

    metrics = summary["metrics"]
    console.print(
        f"\n[bold]Effectiveness:[/bold] {metrics['average_effectiveness']:.3f}  "
        f"[bold]Success rate:[/bold] {metrics['validation_success_rate'] * 100:.1f}%  "
        f"[bold]Performance:[/bold] {metrics['performance_level']}"
    )

    if output:
        with open(output, "w") as f:
            json.dump(summary, f, indent=2)
        console.print(f"[green]Summary written to {output}[/green]")


@app.command()
def check(
    log_path: Path = typer.Argument(..., help="Path to motion log JSON"),
):
    """Validate a motion log without replaying it."""
    is_valid, log, errors = load_motion_log(log_path)
    if not is_valid:
        for error in errors:
            console.print(f"[bold red]Invalid log:[/bold red] {error}")
        raise typer.Exit(1)

    is_valid, stats, warnings = validate_motion_log(log)

    console.print(f"[bold]Session:[/bold] {log.session_id}")
    console.print(f"  Readings: {stats['total_readings']} over {stats['duration']:.2f}s "
                  f"({stats['avg_rate']:.1f}Hz)")
    console.print(f"  Measurements: {stats['total_measurements']}  Frames: {stats['total_frames']}")
    for warning in warnings:
        console.print(f"  [yellow]{warning}[/yellow]")

    if not is_valid:
        console.print("[bold red]Log is not replayable[/bold red]")
        raise typer.Exit(1)
    console.print("[green]Log OK[/green]")


@app.command("tiers")
def list_tiers():
    """List accuracy tiers and their error ranges."""
    console.print("[bold]Accuracy Tiers:[/bold]\n")
    for tier in AccuracyTier:
        low, high = tier.range
        console.print(f"  [blue]{tier.display_name}[/blue]: {low * 1000:g}mm - {high * 1000:g}mm")


if __name__ == "__main__":
    app()
