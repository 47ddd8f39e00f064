"""User-facing lines written into job logs."""

QUEUE_RUNNING = "A download is already running. Please wait or cancel."
NO_QUEUED_JOBS = "No queued jobs."
CLEAR_WHILE_RUNNING = "Cannot clear queue while a job is running. Cancel the job first."
NO_REORDER_WHILE_RUNNING = "Cannot reorder/remove while running"

OUTPUT_DIR = "Output directory: {path}"
OUTPUT_DIR_ERROR = "Output directory lookup failed: {error}"
SELECTED_OS = "[system] Selected OS: {os}"
STARTING = "Starting DepotDownloader for AppID {app_id}..."
START_FAILED = "Start failed: {error}"
CANCELING = "[system] Cancelling job..."
CANCELLED = "[system] Job cancelled by user."
CANCEL_FAILED = "[system] Cancel failed: {error}"
NO_DEPOTS = (
    "[system] DepotDownloader reported no depots. Verify the OS selection matches "
    "the target app (Windows x64 is typical)."
)
ARCHIVER_STATUS = "[system] 7-Zip status: {status}"

REUSE_QR = "[system] Reusing QR login for {username}."
EMAIL_SENT = "[system] Steam Guard email code submitted."
EMAIL_INCORRECT = (
    "[system] Steam Guard email code incorrect. Restarting queue to request a new code."
)
EMAIL_FAILED = "[system] Steam Guard email code failed: {error}"

CONFLICT_LOG = (
    "[system] Output already exists: {path}. Choose overwrite, copy, or cancel."
)
CONFLICT_CHOICE = {
    "overwrite": "[system] Overwriting existing output.",
    "copy": "[system] Creating a copy output.",
    "cancel": "[system] Output conflict cancelled by user.",
}
CONFLICT_RESOLVE_ERROR = "[system] Output conflict response failed: {error}"
