"""
Runs DepotDownloader and 7-Zip as asyncio subprocesses and reports what they
do on the event bus.

One download runs at a time. After a clean exit the download is finalized:
metadata is derived from the staged depots, the output folder is placed under
the output directory (asking the user when it already exists), optionally
compressed, and the release text is written next to it.
"""

import asyncio
import logging
import os
import shutil
from pathlib import Path
from typing import Optional

from depot_packer.core.events import EventBus
from depot_packer.exceptions import (
    FinalizationError,
    RunnerInvocationError,
    TemplateError,
)
from depot_packer.models.config import AppConfig
from depot_packer.models.events import ConflictChoice, EventSource, Stream
from depot_packer.models.job import RunRequest, os_target
from depot_packer.runner.streams import ArchiverLineSplitter, DownloaderLineSplitter
from depot_packer.storage.template_store import TemplateStore
from depot_packer.template.metadata import (
    DepotInfo,
    JobMetadataFile,
    template_metadata_from_job,
)
from depot_packer.template.renderer import write_template_file
from depot_packer.utils.path import (
    archive_path_for,
    capitalize_first,
    copy_output_path,
    create_dir,
    generate_job_id,
    output_folder_name,
    staging_dir_for,
)

log = logging.getLogger(__name__)

READ_CHUNK_SIZE = 1024
DEPOTS_DIR_NAME = "depots"
DOWNLOADER_STATE_DIR = ".DepotDownloader"
REDACTED = "********"


def build_downloader_args(request: RunRequest) -> list[str]:
    args: list[str] = []
    if request.app_id and request.app_id != "unknown":
        args += ["-app", request.app_id]
    if request.branch:
        args += ["-branch", request.branch]

    os_name, arch, _ = os_target(request.os)
    args += ["-os", os_name, "-osarch", arch]

    if request.qr_enabled:
        args.append("-qr")
    elif request.username:
        args += ["-username", request.username]
        if request.password:
            args += ["-password", request.password]
        args.append("-remember-password")
    return args


def redact_downloader_args(args: list[str]) -> list[str]:
    redacted = list(args)
    for index, arg in enumerate(redacted[:-1]):
        if arg == "-password":
            redacted[index + 1] = REDACTED
    return redacted


def archiver_thread_count(cpu_count: Optional[int] = None) -> int:
    """Leaves headroom so compression does not starve the rest of the system."""
    cores = cpu_count or os.cpu_count() or 1
    if cores <= 2:
        return 1
    if cores <= 4:
        return 2
    if cores <= 8:
        return 4
    if cores <= 16:
        return 8
    return 12


def build_archiver_args(
    source_dir: Path, archive_path: Path, password: Optional[str] = None
) -> list[str]:
    args = ["a", "-t7z", "-mx9", f"-mmt{archiver_thread_count()}", "-bsp1"]
    if password:
        args.append(f"-p{password}")
    args += [str(archive_path), str(source_dir)]
    return args


def redact_archiver_args(args: list[str]) -> list[str]:
    return [f"-p{REDACTED}" if arg.startswith("-p") else arg for arg in args]


def _scan_depots(staging_dir: Path) -> list[tuple[str, str]]:
    """(depot id, manifest id) pairs for every depot folder the download produced."""
    depots_dir = staging_dir / DEPOTS_DIR_NAME
    if not depots_dir.is_dir():
        raise FinalizationError(
            f"Staging directory missing {DEPOTS_DIR_NAME}/: {staging_dir}"
        )
    found = []
    for depot_path in sorted(depots_dir.iterdir()):
        if not depot_path.is_dir() or depot_path.name == DOWNLOADER_STATE_DIR:
            continue
        manifests = sorted(p for p in depot_path.iterdir() if p.is_dir())
        if manifests:
            found.append((depot_path.name, manifests[0].name))
    if not found:
        raise FinalizationError("No depots found in download")
    return found


def _assemble_output(staging_dir: Path, temp_dir: Path, final_path: Path) -> None:
    """Merges every downloaded manifest folder into one tree, then moves it in place."""
    if temp_dir.exists():
        shutil.rmtree(temp_dir)
    temp_dir.mkdir(parents=True)
    try:
        depots_dir = staging_dir / DEPOTS_DIR_NAME
        for depot_id, manifest_id in _scan_depots(staging_dir):
            shutil.copytree(
                depots_dir / depot_id / manifest_id,
                temp_dir,
                dirs_exist_ok=True,
                ignore=shutil.ignore_patterns(DOWNLOADER_STATE_DIR),
            )
        temp_dir.rename(final_path)
    except BaseException:
        shutil.rmtree(temp_dir, ignore_errors=True)
        raise


def _remove_path(path: Path) -> None:
    if path.is_dir():
        shutil.rmtree(path)
    elif path.exists():
        path.unlink()


class SubprocessRunner:
    """`ExternalRunner` backed by local DepotDownloader and 7-Zip binaries."""

    def __init__(
        self,
        config: AppConfig,
        bus: EventBus,
        template_store: Optional[TemplateStore] = None,
    ):
        self.config = config
        self.bus = bus
        self.template_store = template_store
        self._job_id: Optional[str] = None
        self._download: Optional[asyncio.subprocess.Process] = None
        self._archiver: Optional[asyncio.subprocess.Process] = None
        self._task: Optional[asyncio.Task] = None
        self._active = False
        self._cancelled = False
        self._conflicts: dict[str, asyncio.Future] = {}

    @property
    def output_root(self) -> Path:
        return Path(self.config.output_dir).expanduser()

    @property
    def busy(self) -> bool:
        return self._active

    def _system(self, job_id: Optional[str], message: str) -> None:
        self.bus.publish_log(message, Stream.SYSTEM, job_id)

    async def get_output_folder(self) -> str:
        root = self.output_root
        await asyncio.to_thread(create_dir, root)
        return str(root)

    async def run_download(self, request: RunRequest) -> str:
        """
        Starts a download in the background and returns its job id.

        Raises:
            RunnerInvocationError: If a download is already running or the
            downloader executable cannot be found.
        """
        if self.busy:
            raise RunnerInvocationError("DepotDownloader is already running")
        executable = shutil.which(self.config.downloader_path)
        if executable is None:
            raise RunnerInvocationError(
                f"DepotDownloader not found at '{self.config.downloader_path}'"
            )

        job_id = generate_job_id()
        self._job_id = job_id
        self._cancelled = False
        self._active = True
        self.bus.publish_status("starting", job_id=job_id)
        self._task = asyncio.create_task(self._run(request, job_id, executable))
        return job_id

    async def wait_closed(self) -> None:
        if self._task is not None:
            await self._task

    async def _run(self, request: RunRequest, job_id: str, executable: str) -> None:
        """
        Runs one job to its end. The terminal status is published last, once
        the staging directory is gone and the runner can accept the next job.
        """
        staging_dir = staging_dir_for(self.output_root, job_id)
        status, code = "error", None
        try:
            try:
                await asyncio.to_thread(staging_dir.mkdir, parents=True)
            except OSError as e:
                self._system(job_id, f"Failed to create staging directory: {e}")
                return

            self._system(job_id, f"Job ID: {job_id}")
            self._system(job_id, f"Staging directory: {staging_dir}")
            status, code = await self._download_and_finalize(
                request, job_id, executable, staging_dir
            )
            await self._cleanup_staging(staging_dir, job_id)
        except Exception as e:
            log.exception(f"Runner failed for job {job_id}")
            self._system(job_id, f"Runner error: {e}")
            status, code = "error", None
        finally:
            self._download = None
            self._job_id = None
            self._active = False
            self.bus.publish_status(status, code, job_id=job_id)

    async def _download_and_finalize(
        self, request: RunRequest, job_id: str, executable: str, staging_dir: Path
    ) -> tuple[str, Optional[int]]:
        """Returns the terminal status and exit code for the job."""
        args = build_downloader_args(request)
        self._system(job_id, "Starting DepotDownloader...")
        self._system(
            job_id, f"DepotDownloader args: {' '.join(redact_downloader_args(args))}"
        )
        try:
            process = await asyncio.create_subprocess_exec(
                executable,
                *args,
                cwd=staging_dir,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            self._system(job_id, f"Failed to spawn DepotDownloader: {e}")
            return "error", None

        self._download = process
        self.bus.publish_status("running", job_id=job_id)
        await asyncio.gather(
            self._pump_downloader(process.stdout, Stream.STDOUT, job_id),
            self._pump_downloader(process.stderr, Stream.STDERR, job_id),
        )
        code = await process.wait()
        self._download = None

        if code == 0 and not self._cancelled:
            return await self._finalize(request, job_id, staging_dir)

        if self._cancelled:
            self._system(job_id, "Job cancelled. Cleaning up staging directory.")
        else:
            self._system(job_id, "Job failed. Cleaning up staging directory.")
        return "exited", code

    async def _pump_downloader(self, stream, stream_name: Stream, job_id: str) -> None:
        splitter = DownloaderLineSplitter()
        while chunk := await stream.read(READ_CHUNK_SIZE):
            for line in splitter.feed(chunk):
                self.bus.publish_log(line, stream_name, job_id)
        for line in splitter.close():
            self.bus.publish_log(line, stream_name, job_id)

    async def _cleanup_staging(self, staging_dir: Path, job_id: str) -> None:
        try:
            await asyncio.to_thread(_remove_path, staging_dir)
        except OSError as e:
            self._system(job_id, f"Failed to clean up staging directory: {e}")

    # --- Finalization --------------------------------------------------------

    async def _finalize(
        self, request: RunRequest, job_id: str, staging_dir: Path
    ) -> tuple[str, Optional[int]]:
        self.bus.publish_status("finalizing", job_id=job_id)
        compress = not request.skip_compression
        try:
            metadata = await self._derive_metadata(request, job_id, staging_dir)
            output_path = await self._place_output(job_id, staging_dir, metadata, compress)
        except (FinalizationError, OSError) as e:
            self._system(job_id, f"Finalization failed: {e}")
            return "finalization_failed", None

        self._system(job_id, f"Output ready: {output_path}")
        final_path = output_path
        if compress:
            self.bus.publish_status("compressing", job_id=job_id)
            try:
                final_path = await self._compress(
                    output_path, job_id, request.compression_password
                )
                self._system(job_id, f"Compression complete: {final_path}")
            except (FinalizationError, RunnerInvocationError, OSError) as e:
                self._system(
                    job_id, f"Compression failed: {e}. Uncompressed output available."
                )

        await self._write_release_text(final_path, metadata, job_id)
        return "completed", 0

    async def _derive_metadata(
        self, request: RunRequest, job_id: str, staging_dir: Path
    ) -> JobMetadataFile:
        depots = await asyncio.to_thread(_scan_depots, staging_dir)
        game_name = f"app_{request.app_id}"
        primary_depot_id, build_id = depots[0]
        metadata = JobMetadataFile(
            job_id=job_id,
            appid=request.app_id,
            branch=capitalize_first(request.branch),
            platform=os_target(request.os)[2],
            primary_depot_id=primary_depot_id,
            game_name=game_name,
            build_id=build_id,
            depots=[
                DepotInfo(
                    depot_id=depot_id,
                    depot_name=(
                        game_name
                        if depot_id == primary_depot_id
                        else f"depot_{depot_id}"
                    ),
                    manifest_id=manifest_id,
                )
                for depot_id, manifest_id in depots
            ],
        )
        await metadata.write_to_dir(staging_dir)
        self._system(job_id, "Metadata derived from download output")
        return metadata

    async def _place_output(
        self,
        job_id: str,
        staging_dir: Path,
        metadata: JobMetadataFile,
        compress: bool,
    ) -> Path:
        final_path = self.output_root / output_folder_name(
            metadata.game_name, metadata.build_id, metadata.platform, metadata.branch
        )
        archive_path = archive_path_for(final_path) if compress else None

        existing = None
        if final_path.exists():
            existing = final_path
        elif archive_path is not None and archive_path.exists():
            existing = archive_path

        if existing is not None:
            choice = await self._request_conflict(job_id, existing)
            if choice is ConflictChoice.CANCEL:
                raise FinalizationError(
                    f"Output already exists: {existing}. Job cancelled by user."
                )
            if choice is ConflictChoice.COPY:
                final_path = await asyncio.to_thread(copy_output_path, final_path, compress)
            else:
                await asyncio.to_thread(_remove_path, final_path)
                if archive_path is not None:
                    await asyncio.to_thread(_remove_path, archive_path)

        temp_dir = self.output_root / f".tmp_{job_id}"
        await asyncio.to_thread(_assemble_output, staging_dir, temp_dir, final_path)
        return final_path

    async def _request_conflict(self, job_id: str, existing: Path) -> ConflictChoice:
        if job_id in self._conflicts:
            raise FinalizationError("Output conflict resolution already pending")
        future = asyncio.get_running_loop().create_future()
        self._conflicts[job_id] = future
        self.bus.publish_conflict(job_id, existing.name, str(existing))
        try:
            return await future
        finally:
            self._conflicts.pop(job_id, None)

    async def resolve_output_conflict(self, job_id: str, choice: ConflictChoice) -> None:
        future = self._conflicts.get(job_id)
        if future is None or future.done():
            raise RunnerInvocationError("No pending output conflict for this job")
        future.set_result(ConflictChoice(choice))

    async def _compress(
        self, output_path: Path, job_id: str, password: Optional[str]
    ) -> Path:
        archive_path = archive_path_for(output_path)
        if archive_path.exists():
            raise FinalizationError(f"Archive already exists: {archive_path}")
        executable = shutil.which(self.config.archiver_path)
        if executable is None:
            raise RunnerInvocationError(f"7-Zip not found at '{self.config.archiver_path}'")

        args = build_archiver_args(output_path, archive_path, password)
        self._system(
            job_id,
            f"7-Zip command: {self.config.archiver_path} "
            f"{' '.join(redact_archiver_args(args))}",
        )

        self.bus.publish_status("starting", source=EventSource.COMPRESSION)
        try:
            process = await asyncio.create_subprocess_exec(
                executable,
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            self.bus.publish_status("error", source=EventSource.COMPRESSION)
            raise RunnerInvocationError(f"Failed to spawn 7-Zip: {e}") from e

        self._archiver = process
        self.bus.publish_status("running", source=EventSource.COMPRESSION)
        try:
            await asyncio.gather(
                self._pump_archiver(process.stdout, Stream.STDOUT),
                self._pump_archiver(process.stderr, Stream.STDERR),
            )
            code = await process.wait()
        finally:
            self._archiver = None
        self.bus.publish_status("exited", code, source=EventSource.COMPRESSION)

        if code != 0:
            await asyncio.to_thread(archive_path.unlink, missing_ok=True)
            raise FinalizationError(f"7-Zip exited with code {code}")
        if not archive_path.exists():
            raise FinalizationError("Archive not found after compression")

        self._system(job_id, "Removing uncompressed folder...")
        try:
            await asyncio.to_thread(shutil.rmtree, output_path)
        except OSError as e:
            self._system(
                job_id,
                f"Warning: Failed to remove folder: {e}. "
                "Archive still created successfully.",
            )
        return archive_path

    async def _pump_archiver(self, stream, stream_name: Stream) -> None:
        splitter = ArchiverLineSplitter()
        while chunk := await stream.read(READ_CHUNK_SIZE):
            lines, percents = splitter.feed(chunk)
            for line in lines:
                self.bus.publish_log(line, stream_name, source=EventSource.COMPRESSION)
            for percent in percents:
                self.bus.publish_progress(percent)
        for line in splitter.close():
            self.bus.publish_log(line, stream_name, source=EventSource.COMPRESSION)

    async def _write_release_text(
        self, output_path: Path, metadata: JobMetadataFile, job_id: str
    ) -> None:
        self._system(job_id, "Generating template file...")
        blocks = None
        if self.template_store is not None:
            try:
                blocks = await self.template_store.load()
            except TemplateError as e:
                self._system(job_id, f"Saved template ignored: {e}")
        try:
            await write_template_file(
                output_path, template_metadata_from_job(metadata), blocks
            )
        except TemplateError as e:
            self._system(job_id, f"Failed to generate template file: {e}")
            return
        self._system(job_id, "Template file generated successfully.")

    # --- Control -------------------------------------------------------------

    async def cancel_download(self) -> None:
        """
        Kills the running download; the run reports `exited` once it is gone.

        Raises:
            RunnerInvocationError: If no download process is running.
        """
        process = self._download
        if process is None:
            raise RunnerInvocationError("DepotDownloader is not running")
        self._cancelled = True
        try:
            process.kill()
        except ProcessLookupError:
            log.debug("DepotDownloader already exited before cancel.")
        await process.wait()

    async def cancel_compression(self) -> None:
        process = self._archiver
        if process is None:
            raise RunnerInvocationError("7-Zip is not running")
        try:
            process.kill()
        except ProcessLookupError:
            log.debug("7-Zip already exited before cancel.")
        await process.wait()

    async def submit_email_code(self, code: str) -> None:
        """Writes the code and a newline to the downloader's stdin."""
        code = code.strip()
        if not code:
            raise RunnerInvocationError("Steam Guard code is empty")
        process = self._download
        if process is None or process.stdin is None:
            raise RunnerInvocationError("DepotDownloader is not running")
        try:
            process.stdin.write(code.encode("utf-8") + b"\n")
            await process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            raise RunnerInvocationError(f"Failed to write Steam Guard code: {e}") from e
