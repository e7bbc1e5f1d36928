import asyncio
import json
import logging
import os
from typing import Optional
import typer
import uvicorn
import yaml

from smart_capture.app.config import CONFIG_ENV, load_config
from smart_capture.app.errors import ConfigInvalid
from smart_capture.app.messages import challenge_message
from smart_capture.models.source import ReplaySource, load_recording
from smart_capture.pipeline.detection_loop import DetectionLoop, DetectionObserver
from smart_capture.pipeline.replay import replay_recording


app = typer.Typer(name="capture")
state = {"config": None, "verbose": False}


def _load(config_path: Optional[str]):
    try:
        cfg = load_config(config_path)
    except (ConfigInvalid, FileNotFoundError) as e:
        typer.echo(f"Config error: {e}", err=True)
        raise typer.Exit(code=2)
    level = logging.DEBUG if state["verbose"] else getattr(logging, cfg.log_level, logging.INFO)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    return cfg


def _challenge_kinds(challenges: Optional[str], liveness: bool, cfg):
    if challenges:
        return [k.strip() for k in challenges.split(",") if k.strip()]
    return list(cfg.liveness.challenges) if liveness else None


@app.callback()
def main(
    config: Optional[str] = typer.Option(None, "--config", "-c", help="YAML config file"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    state["config"] = config
    state["verbose"] = verbose


@app.command()
def replay(
    path: str,
    liveness: bool = typer.Option(False, help="Run the configured liveness challenges first"),
    challenges: Optional[str] = typer.Option(None, help="Comma-separated challenge kinds, implies --liveness"),
    as_json: bool = typer.Option(False, "--json", help="Print a JSON summary"),
):
    """Replay a JSON-lines sample recording at its recorded timestamps."""
    cfg = _load(state["config"])
    kinds = _challenge_kinds(challenges, liveness, cfg)
    try:
        recording = load_recording(path)
        report = replay_recording(recording, cfg, kinds)
    except (ValueError, ConfigInvalid) as e:
        typer.echo(f"Replay failed: {e}", err=True)
        raise typer.Exit(code=1)

    seq = report.sequence
    summary = {
        "samples": len(recording),
        "final_state": report.last.state.value if report.last else None,
        "capture_ready_at": report.capture_ready_at,
        "countdown_ticks": [n for _, n in report.countdown_ticks],
        "liveness": None if seq is None else {
            "passed": seq.passed,
            "failed": [k.value for k in seq.failed_kinds],
            "challenges": [{"kind": r.kind.value, "state": r.state.value, "confidence": round(r.confidence, 3)} for r in seq.challenges],
        },
    }
    if as_json:
        typer.echo(json.dumps(summary, indent=2))
        return
    typer.echo(f"Replayed {summary['samples']} samples, final state: {summary['final_state']}")
    if seq is not None:
        for r in seq.challenges:
            typer.echo(f"  {challenge_message(r.kind, cfg.locale)}: {r.state.value} ({r.confidence:.2f})")
        typer.echo("Liveness: " + ("passed" if seq.passed else "failed"))
    if report.capture_ready_at:
        typer.echo(f"Capture ready at t={report.capture_ready_at[0]:.0f} ms")
    else:
        typer.echo("No capture")


class _EchoObserver(DetectionObserver):
    def __init__(self):
        self.last = None

    def on_state_change(self, state, snapshot):
        if state is not self.last:
            typer.echo(f"[{snapshot.timestamp:10.0f}] {state.value}: {snapshot.message}")
            self.last = state

    def on_capture_ready(self, snapshot):
        typer.echo("Capture ready")

    def on_challenge_event(self, event):
        typer.echo(f"  {event.kind.value}: {event.outcome}")

    def on_sequence_complete(self, result):
        typer.echo("Liveness: " + ("passed" if result.passed else "failed"))


@app.command()
def run(
    path: str,
    fps: Optional[int] = typer.Option(None, help="Override the sampling rate"),
    liveness: bool = typer.Option(False, help="Run the configured liveness challenges first"),
    challenges: Optional[str] = typer.Option(None, help="Comma-separated challenge kinds, implies --liveness"),
):
    """Run the live detection loop against a recording, paced in real time."""
    cfg = _load(state["config"])
    if fps is not None:
        cfg.sampling.target_fps = fps
    kinds = _challenge_kinds(challenges, liveness, cfg)
    try:
        source = ReplaySource.from_file(path)
        loop = DetectionLoop(source, cfg, _EchoObserver(), challenges=kinds)
    except ConfigInvalid as e:
        typer.echo(f"Config error: {e}", err=True)
        raise typer.Exit(code=2)
    except ValueError as e:
        typer.echo(f"Run failed: {e}", err=True)
        raise typer.Exit(code=1)

    async def _main():
        await loop.start()
        await loop.wait()

    asyncio.run(_main())


@app.command()
def config():
    """Print the effective configuration."""
    cfg = _load(state["config"])
    typer.echo(yaml.safe_dump(cfg.to_dict(), sort_keys=False))


@app.command()
def api(host: str = "127.0.0.1", port: int = 8000):
    """Run the FastAPI service."""
    _load(state["config"])
    if state["config"]:
        os.environ[CONFIG_ENV] = os.path.abspath(state["config"])
    uvicorn.run("smart_capture.api.server:app", host=host, port=port, reload=False)


if __name__ == "__main__":
    app()
