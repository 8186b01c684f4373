"""Rich progress display for an inline ``qascan scan`` run."""

from __future__ import annotations

from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn

console = Console()


class PipelineProgress:
    """One spinner line per pipeline step, driven by orchestrator events."""

    def __init__(self) -> None:
        self._progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            TimeElapsedColumn(),
            console=console,
        )
        self._task_ids: dict[str, int] = {}

    def __enter__(self) -> "PipelineProgress":
        self._progress.__enter__()
        return self

    def __exit__(self, *args: object) -> None:
        self._progress.__exit__(*args)

    def start_step(self, step: str) -> None:
        tid = self._progress.add_task(f"[cyan]{step}[/]", total=None)
        self._task_ids[step] = tid

    def _settle(self, step: str, description: str) -> None:
        if step not in self._task_ids:
            self._task_ids[step] = self._progress.add_task(description, total=None)
        self._progress.update(self._task_ids[step], description=description, completed=True)

    def finish_step(self, step: str) -> None:
        self._settle(step, f"[green]✓ {step}[/]")

    def skip_step(self, step: str, reason: str) -> None:
        self._settle(step, f"[yellow]– {step} skipped: {reason}[/]")

    def fail_step(self, step: str, error: str) -> None:
        self._settle(step, f"[red]✗ {step}: {error}[/]")

    def on_event(self, step: str, state: str, detail: str = "") -> None:
        """Callback for ``ScanOrchestrator(on_event=...)``."""
        if step == "Pipeline":
            if state == "fail":
                self.log_event("Pipeline", detail, style="red")
            return
        if state == "start":
            self.start_step(step)
        elif state == "finish":
            self.finish_step(step)
        elif state == "skip":
            self.skip_step(step, detail)
        else:
            self.fail_step(step, detail)

    def log_event(self, step: str, message: str, style: str = "dim") -> None:
        """Print a persistent log line above the spinners."""
        self._progress.console.print(f"  [{style}]{step}:[/] {message}")

    def print_phase(self, label: str) -> None:
        self._progress.console.print(Panel(f"[bold]{label}[/bold]", style="blue"))
