"""
Defines the command-line interface for the application using Typer.
"""

import asyncio
import json
import logging
import signal
import threading
from pathlib import Path
from typing import Callable, Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler

from depot_packer import __version__
from depot_packer.core.events import EventBus
from depot_packer.core.session import QueueSession
from depot_packer.exceptions import (
    ChallengeError,
    ConflictError,
    DepotPackerError,
    QueueIdleError,
    RunnerInvocationError,
    TemplateError,
)
from depot_packer.models.events import ConflictChoice
from depot_packer.models.job import DEFAULT_OS, OS_TARGETS, EmailState, JobSpec
from depot_packer.runner.subprocess_runner import SubprocessRunner
from depot_packer.storage.config_manager import ConfigManager, default_config_dir
from depot_packer.storage.login_store import LoginStore
from depot_packer.storage.template_store import TemplateStore
from depot_packer.template import (
    default_template,
    load_metadata_json,
    render_template,
)

from .formatters import (
    print_config,
    print_queue_table,
    print_summary_panel,
    print_validation_table,
)
from .progress_manager import ProgressManager, PromptRequest

console = Console()

logging.basicConfig(
    level="INFO",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[
        RichHandler(
            console=console,
            rich_tracebacks=True,
            show_path=False,
            show_level=False,
            markup=True,
        )
    ],
)
log = logging.getLogger("depot_packer")

app = typer.Typer(
    name="depot-packer",
    help=(
        "Queue Steam depot downloads, package them with 7-Zip and write BBCode"
        " release text. Use 'depot-packer <command> --help' for more info."
    ),
    rich_markup_mode="rich",
    pretty_exceptions_show_locals=False,
    add_completion=False,
)
login_app = typer.Typer(help="Manage the saved DepotDownloader login.")
app.add_typer(login_app, name="login")

CONFIG_DIR = default_config_dir()
CONFIG_FILE = CONFIG_DIR / "config.ini"


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    verbose: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help="Increase logging verbosity (-vv for debug).",
    ),
    version: bool = typer.Option(
        False, "--version", help="Show version and exit.", is_eager=True
    ),
    show_config: bool = typer.Option(
        False, "--show-config", help="Display the current configuration."
    ),
):
    """Depot Packer CLI"""
    if version:
        console.print(f"[bold]depot-packer[/bold] version [cyan]{__version__}[/cyan]")
        raise typer.Exit()

    log_level = "INFO"
    if verbose >= 2:
        log_level = "DEBUG"
    logging.getLogger("depot_packer").setLevel(log_level)

    if show_config:
        if not CONFIG_FILE.is_file():
            console.print(
                "[red]✗ Config file not found.[/] Run [cyan]depot-packer init[/cyan]"
                " first."
            )
            raise typer.Exit(code=1)
        config_manager = ConfigManager(CONFIG_FILE)
        config_manager.load_config()
        print_config(CONFIG_FILE, config_manager._get_config_as_dict())
        raise typer.Exit()

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


@app.command()
def init(
    downloader_path: str = typer.Option(
        "DepotDownloader", "--downloader", help="DepotDownloader executable."
    ),
    archiver_path: str = typer.Option("7zz", "--archiver", help="7-Zip executable."),
    output_dir: str = typer.Option(
        "~/DepotPacker", "--output-dir", "-o", help="Where finished outputs go."
    ),
    skip_compression: bool = typer.Option(
        False, "--skip-compression", help="Keep outputs as plain folders."
    ),
    compression_password: Optional[str] = typer.Option(
        None, "--compression-password", help="Password-protect created archives."
    ),
    qr: bool = typer.Option(False, "--qr", help="Use QR login by default."),
    force: bool = typer.Option(
        False, "--force", "-f", help="Overwrite the existing configuration."
    ),
):
    """Initialize the configuration file."""
    if (
        CONFIG_FILE.exists()
        and not force
        and not typer.confirm("Configuration file already exists. Overwrite it?")
    ):
        raise typer.Abort()

    settings = {
        "downloader_path": downloader_path,
        "archiver_path": archiver_path,
        "output_dir": output_dir,
        "skip_compression": skip_compression,
        "compression_password_enabled": bool(compression_password),
        "compression_password": compression_password or "",
        "default_qr_login": qr,
    }
    config_manager = ConfigManager(CONFIG_FILE)
    config_manager.save_new_config(settings)
    console.print(f"\n[bold green]✓ Configuration saved to '{CONFIG_FILE}'[/bold green]")
    console.print("Ready to go! Try: [cyan]depot-packer run <APP_ID>[/cyan]")


@app.command()
def validate():
    """Validate the current configuration."""
    try:
        config_manager = ConfigManager(CONFIG_FILE)
        config = config_manager.load_config()
        print_validation_table(config)
    except DepotPackerError as e:
        console.print(f"[red]✗ Configuration is invalid: {e}[/red]")
        raise typer.Exit(code=1) from e


# --- run ---------------------------------------------------------------------


def _prompt_in_background(
    loop: asyncio.AbstractEventLoop, ask: Callable[[], str]
) -> asyncio.Future:
    """
    Runs a blocking prompt on a daemon thread so an unanswered question never
    keeps the process alive after the queue finishes.
    """
    future = loop.create_future()

    def deliver(setter, value):
        if not future.done():
            setter(value)

    def worker():
        try:
            answer = ask()
        except (typer.Abort, EOFError) as e:
            loop.call_soon_threadsafe(deliver, future.set_exception, e)
        else:
            loop.call_soon_threadsafe(deliver, future.set_result, answer)

    threading.Thread(target=worker, name="depot-packer-prompt", daemon=True).start()
    return future


async def _answer_prompts(session: QueueSession, progress: ProgressManager) -> None:
    """Asks the user for email codes and conflict choices, one at a time."""
    loop = asyncio.get_running_loop()
    choices = "/".join(choice.value for choice in ConflictChoice)
    while True:
        request: PromptRequest = await progress.requests.get()
        if request.kind == "email":
            try:
                answer = await _prompt_in_background(
                    loop, lambda: typer.prompt("Steam Guard email code")
                )
            except (typer.Abort, EOFError):
                console.print("[dim]No email code entered.[/dim]")
                continue
            if request.job.email_state is not EmailState.PENDING:
                console.print("[dim]Email prompt closed, code not sent.[/dim]")
                continue
            try:
                await session.auth.submit_email_code(answer, request.job)
            except (ChallengeError, RunnerInvocationError) as e:
                console.print(f"[red]✗ {e}[/red]")
        elif request.kind == "conflict":
            while session.conflicts.active is request.conflict:
                try:
                    answer = await _prompt_in_background(
                        loop,
                        lambda: typer.prompt(
                            f"Existing output {request.conflict.display_name} "
                            f"[{choices}]",
                            default=ConflictChoice.COPY.value,
                            show_default=True,
                        ),
                    )
                except (typer.Abort, EOFError):
                    answer = ConflictChoice.CANCEL.value
                try:
                    await session.conflicts.resolve(answer.strip().lower())
                except ConflictError as e:
                    console.print(f"[red]✗ {e}[/red]")
                except RunnerInvocationError as e:
                    console.print(f"[red]✗ {e}[/red]")
                    break


def _resolve_credentials(
    username: Optional[str], password: Optional[str], qr: bool
) -> tuple[str, str]:
    """Fills missing credentials from the saved login."""
    if qr:
        return "", ""
    saved = LoginStore(CONFIG_DIR).load()
    if saved is None:
        return username or "", password or ""
    if not username:
        log.info(f"[dim]Using saved login for {saved.username}[/dim]")
        return saved.username, password or saved.password
    if not password and username == saved.username:
        return username, saved.password
    return username, password or ""


@app.command(name="run")
def run_command(
    app_ids: list[str] = typer.Argument(  # noqa: B008
        ..., help="One or more numeric Steam App IDs, processed in order."
    ),
    os_name: str = typer.Option(
        DEFAULT_OS,
        "--os",
        help=f"Target OS. One of: {', '.join(OS_TARGETS)}.",
    ),
    branch: str = typer.Option("public", "--branch", "-b", help="Depot branch."),
    username: Optional[str] = typer.Option(
        None, "--username", "-u", help="Steam username (anonymous if omitted)."
    ),
    password: Optional[str] = typer.Option(
        None, "--password", "-p", help="Steam password."
    ),
    qr: Optional[bool] = typer.Option(
        None, "--qr/--no-qr", help="Log in by scanning a QR code."
    ),
    skip_compression: Optional[bool] = typer.Option(
        None,
        "--skip-compression/--compress",
        help="Keep outputs as plain folders instead of 7z archives.",
    ),
    output_dir: Optional[str] = typer.Option(
        None, "--output-dir", "-o", help="Override the configured output directory."
    ),
    quiet: bool = typer.Option(
        False, "--quiet", "-q", help="Do not echo the downloader console."
    ),
):
    """Download, package and describe one or more Steam apps."""
    cli_options = {
        key: value
        for key, value in {
            "skip_compression": skip_compression,
            "output_dir": output_dir,
        }.items()
        if value is not None
    }
    config = ConfigManager(CONFIG_FILE).load_config(cli_options)
    use_qr = config.default_qr_login if qr is None else qr
    if use_qr and (username or password):
        console.print("[yellow]⚠️  QR login selected, ignoring username/password.[/yellow]")
    user, secret = _resolve_credentials(username, password, use_qr)
    try:
        specs = [
            JobSpec(
                app_id=app_id,
                os=os_name,
                branch=branch,
                username=user,
                password=secret,
                qr_enabled=use_qr,
            )
            for app_id in app_ids
        ]
    except ValidationError as e:
        raise typer.BadParameter(e.errors()[0]["msg"]) from e

    async def _run_async():
        bus = EventBus()
        runner = SubprocessRunner(config, bus, TemplateStore(CONFIG_DIR))
        async with ProgressManager(console, show_console=not quiet) as progress:
            session = QueueSession(runner, bus, config, progress)
            progress.bind(session.registry)
            for spec in specs:
                session.scheduler.enqueue(spec)
            print_queue_table(session.registry, console)

            loop = asyncio.get_running_loop()

            async def _cancel():
                try:
                    await session.scheduler.cancel()
                except (QueueIdleError, RunnerInvocationError) as e:
                    console.print(f"[red]✗ {e}[/red]")

            def _on_interrupt():
                console.print("\n[yellow]⚠️  Cancelling the running job...[/yellow]")
                loop.create_task(_cancel())

            try:
                loop.add_signal_handler(signal.SIGINT, _on_interrupt)
            except (NotImplementedError, RuntimeError):
                log.debug("Signal handlers unavailable, Ctrl-C aborts the run.")

            prompts = asyncio.create_task(_answer_prompts(session, progress))
            try:
                console.print("[bold cyan]📦 Starting queue...[/bold cyan]")
                await session.scheduler.advance()
                await session.run_until_idle()
                await runner.wait_closed()
                await session.drain()
            finally:
                prompts.cancel()
                try:
                    loop.remove_signal_handler(signal.SIGINT)
                except (NotImplementedError, RuntimeError):
                    pass
        print_queue_table(session.registry, console)
        return session.stats

    stats = asyncio.run(_run_async())
    print_summary_panel(stats)
    if stats.jobs_failed or stats.start_failures:
        raise typer.Exit(code=1)


# --- templates ---------------------------------------------------------------


@app.command(name="render-template")
def render_template_command(
    metadata_json: Path = typer.Argument(  # noqa: B008
        ..., help="A job.json written next to an output, or flat template metadata."
    ),
    template_file: Optional[Path] = typer.Option(  # noqa: B008
        None, "--template", "-t", help="Template JSON (defaults to the saved one)."
    ),
    output: Optional[Path] = typer.Option(  # noqa: B008
        None, "--output", "-o", help="Write the BBCode here instead of printing it."
    ),
):
    """Render BBCode release text from job metadata."""

    async def _render_async() -> str:
        if template_file is not None:
            if not template_file.is_file():
                raise TemplateError(f"Template file not found: {template_file}")
            store = TemplateStore(template_file.parent, template_file.name)
        else:
            store = TemplateStore(CONFIG_DIR)
        blocks = await store.load() or default_template()
        try:
            content = metadata_json.read_text(encoding="utf-8")
        except OSError as e:
            raise TemplateError(f"Cannot read metadata file: {e}") from e
        return render_template(blocks, load_metadata_json(content))

    text = asyncio.run(_render_async())
    if output is None:
        console.print(text, markup=False, highlight=False)
        return
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(text, encoding="utf-8")
    console.print(f"[green]✓ Release text written to '{output}'[/green]")


@app.command(name="template-init")
def template_init(
    force: bool = typer.Option(
        False, "--force", "-f", help="Overwrite the saved template."
    ),
):
    """Save the default template so it can be edited."""
    store = TemplateStore(CONFIG_DIR)
    if store.path.exists() and not force:
        console.print(
            f"[yellow]Template already exists at '{store.path}'.[/yellow] "
            "Use [cyan]--force[/cyan] to replace it."
        )
        raise typer.Exit(code=1)
    path = asyncio.run(store.save(default_template()))
    console.print(f"[green]✓ Default template saved to '{path}'[/green]")


# --- login -------------------------------------------------------------------


@login_app.command("save")
def login_save(
    username: str = typer.Argument(..., help="Steam username."),
    password: str = typer.Option(
        ..., prompt=True, hide_input=True, help="Steam password."
    ),
):
    """Save a login used when `run` gets no credentials."""
    store = LoginStore(CONFIG_DIR)
    store.save(username, password)
    console.print(f"[green]✓ Login for {username.strip()} saved.[/green]")


@login_app.command("delete")
def login_delete():
    """Delete the saved login."""
    if LoginStore(CONFIG_DIR).delete():
        console.print("[green]✓ Saved login deleted.[/green]")
    else:
        console.print("[dim]No saved login.[/dim]")


@login_app.command("show")
def login_show():
    """Show which username is saved."""
    saved = LoginStore(CONFIG_DIR).load()
    if saved is None:
        console.print("[dim]No saved login.[/dim]")
        return
    console.print(
        json.dumps({"username": saved.username, "password": "********"}, indent=2),
        markup=False,
    )
