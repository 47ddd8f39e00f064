"""
Functions for formatting and displaying data in the console using Rich.
"""

from pathlib import Path
from typing import Any, Iterable

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from depot_packer.models.config import AppConfig
from depot_packer.models.job import Job, JobStatus
from depot_packer.models.stats import QueueStats
from depot_packer.utils.formatting import (
    format_duration,
    format_job_status,
    mask_secret,
)

SENSITIVE_KEYS = ("compression_password",)

STATUS_STYLES = {
    JobStatus.QUEUED: "dim",
    JobStatus.RUNNING: "cyan",
    JobStatus.COMPRESSING: "magenta",
    JobStatus.DONE: "green",
    JobStatus.FAILED: "red",
}


def format_error_with_suggestions(
    error: Exception, context: dict | None = None
) -> Panel:
    """Formats an error with actionable suggestions into a Rich Panel."""
    error_type = type(error).__name__
    error_msg = str(error)

    suggestions_map = {
        "ConfigurationError": [
            "• Check the values in your configuration file.",
            "• Run `depot-packer init --force` to write a fresh configuration.",
            "• Use `depot-packer --show-config` to see what is being loaded.",
        ],
        "RunnerInvocationError": [
            "• Make sure DepotDownloader and 7-Zip are installed.",
            "• Set `downloader_path` and `archiver_path` with `depot-packer init`.",
            "• Run the command with -vv for the full runner log.",
        ],
        "QueueBusyError": [
            "• Wait for the running job to finish, or cancel it with Ctrl-C.",
        ],
        "NoQueuedJobsError": [
            "• Pass at least one numeric App ID to `depot-packer run`.",
        ],
        "LoginStoreError": [
            "• The saved login file may be corrupt.",
            "• Run `depot-packer login delete` and save the login again.",
        ],
        "InvalidTemplateError": [
            "• The template file is not valid JSON or has the wrong shape.",
            "• Run `depot-packer template-init --force` to restore the default.",
        ],
        "UnsupportedFieldError": [
            "• Only documented placeholders can be used in each block.",
            "• Depot placeholders only work inside the depot list block.",
        ],
        "NoMetadataError": [
            "• Pass the `job.json` written next to a finished output.",
            "• Run a job first so its metadata is available.",
        ],
        "NoDepotsError": [
            "• The job metadata lists no depots. Check the App ID and OS.",
        ],
        "DepotLimitError": [
            "• Remove the depot list block or split the release text by hand.",
        ],
        "OutputLengthError": [
            "• Shorten the free text blocks of your template.",
        ],
    }

    suggestions = suggestions_map.get(
        error_type, ["• Run the command with -vv for detailed logs."]
    )

    error_text = Text()
    error_text.append(f"{error_type}: ", style="bold red")
    error_text.append(error_msg)

    suggestion_text = Text("\n".join(suggestions))

    content = Table.grid(padding=(1, 0))
    content.add_row(error_text)
    content.add_row()
    content.add_row(Text("Suggestions", style="bold yellow"))
    content.add_row(suggestion_text)

    if context:
        content.add_row()
        content.add_row(Text(f"Context: {context}", style="dim"))

    return Panel(
        content,
        title="[bold red]An Error Occurred[/bold red]",
        border_style="red",
        expand=False,
    )


def print_config(config_path: Path, config_data: dict[str, Any]):
    """Displays the current configuration, hiding sensitive data."""
    console = Console()
    content = ""
    for key, value in config_data.items():
        if key in SENSITIVE_KEYS:
            value = mask_secret(str(value)) or "[dim]<not set>[/dim]"
        content += f"{key} = {value}\n"

    console.print(
        Panel(
            content.strip(),
            title=f"Configuration ([dim]{config_path}[/dim])",
            border_style="cyan",
        )
    )


def print_validation_table(config: AppConfig):
    """Displays a summary of the current settings."""
    console = Console()
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column(style="bold cyan")
    table.add_column()

    table.add_row("Downloader:", f"[green]{config.downloader_path}[/green]")
    table.add_row("Archiver:", f"[green]{config.archiver_path}[/green]")
    table.add_row("Output Directory:", f"[dim]{config.output_dir}[/dim]")
    table.add_row(
        "Compression:", "✗ Skipped" if config.skip_compression else "✓ Enabled"
    )
    table.add_row(
        "Archive Password:",
        "✓ Enabled" if config.effective_compression_password else "✗ Disabled",
    )
    table.add_row(
        "Default QR Login:", "✓ Enabled" if config.default_qr_login else "✗ Disabled"
    )
    table.add_row(
        "Console Log:",
        f"{config.log_line_cap} lines (+{config.log_trim_margin}), "
        f"flush every {config.console_flush_interval_ms} ms",
    )

    console.print(
        Panel(
            table,
            title="[bold green]✓ Validated Settings[/bold green]",
            border_style="green",
        )
    )


def print_queue_table(jobs: Iterable[Job], console: Console | None = None):
    """Displays the queue in run order."""
    console = console or Console()
    table = Table(title="Queue", box=box.ROUNDED)
    table.add_column("#", style="dim", justify="right")
    table.add_column("App ID", style="cyan")
    table.add_column("OS")
    table.add_column("Branch")
    table.add_column("Login")
    table.add_column("Status")
    for index, job in enumerate(jobs, 1):
        login = "QR" if job.qr_enabled else (job.username or "[dim]anonymous[/dim]")
        style = STATUS_STYLES.get(job.status, "white")
        table.add_row(
            str(index),
            job.app_id,
            job.os,
            job.branch,
            login,
            f"[{style}]{format_job_status(job)}[/{style}]",
        )
    console.print(table)


def print_summary_panel(stats: QueueStats, duration_s: float | None = None):
    """Displays a final summary of the queue session."""
    console = Console()
    duration_s = stats.elapsed if duration_s is None else duration_s

    stats_table = Table(show_header=False, box=None, padding=(0, 2))
    stats_table.add_column(style="bold cyan", justify="right", width=20)
    stats_table.add_column(style="white", justify="left")

    stats_table.add_row("✓ Packaged:", f"[bold green]{stats.jobs_done}[/bold green]")
    if stats.jobs_failed > 0:
        stats_table.add_row("✗ Failed:", f"[bold red]{stats.jobs_failed}[/bold red]")
    if stats.start_failures > 0:
        stats_table.add_row(
            "⚠ Failed to Start:", f"[yellow]{stats.start_failures}[/yellow]"
        )
    if stats.email_retries > 0:
        stats_table.add_row("Email Retries:", f"[yellow]{stats.email_retries}[/yellow]")
    if stats.cancellations > 0:
        stats_table.add_row("Cancelled:", f"[yellow]{stats.cancellations}[/yellow]")

    stats_table.add_row("", "")  # Spacer
    stats_table.add_row("Time Elapsed:", f"[blue]{format_duration(duration_s)}[/blue]")

    if stats.jobs_failed or stats.start_failures:
        title = "⚠ [bold]Queue Finished With Errors[/bold]"
        border_color = "yellow"
    else:
        title = "📦 [bold]Queue Complete![/bold]"
        border_color = "green"

    console.print()
    console.print(
        Panel(
            stats_table,
            title=title,
            border_style=border_color,
            box=box.DOUBLE,
            expand=False,
            padding=(1, 2),
        )
    )
    console.print()
