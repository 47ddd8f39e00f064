"""
Classifies raw runner output into semantic signals.

Line rules live in an ordered table. Each rule belongs to a category; within a
category the first matching rule wins, while rules from different categories
may all fire for the same line. Structured status payloads go through a fixed
mapping table instead. Classification never mutates anything.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from depot_packer.models.events import Stream
from depot_packer.models.job import JobStatus

PERCENT_PATTERN = re.compile(r"(\d{1,3})%")
QR_ART_GLYPHS = re.compile(r"[█▀▄]")
EMAIL_PROVIDER_PATTERN = re.compile(r"email at ([^:]+):?", re.IGNORECASE)
REMEMBERED_USERNAME_PATTERN = re.compile(r"-username\s+(\S+)")

QR_ART_MIN_BLANK_WIDTH = 10


class SignalKind(str, Enum):
    PROGRESS = "progress"
    QR_PROMPT_START = "qr_prompt_start"
    QR_ART_LINE = "qr_art_line"
    QR_LOGIN_SUCCESS = "qr_login_success"
    HARDWARE_TOKEN_PROMPT = "hardware_token_prompt"
    HARDWARE_TOKEN_CONFIRMED = "hardware_token_confirmed"
    EMAIL_PROMPT = "email_prompt"
    EMAIL_INVALID_CODE = "email_invalid_code"
    EMAIL_NO_CODE_PROVIDED = "email_no_code_provided"
    MISSING_DEPOTS_WARNING = "missing_depots_warning"
    STATUS_TRANSITION = "status_transition"


@dataclass(frozen=True)
class Signal:
    kind: SignalKind
    percent: int | None = None
    text: str | None = None
    status: JobStatus | None = None


@dataclass(frozen=True)
class LineRule:
    name: str
    category: str
    match: Callable[[str, Stream], Optional[Signal]]


# --- Individual matchers -----------------------------------------------------


def extract_percent(line: str) -> int | None:
    """Returns the first `NN%` value in the line if it lies within 0-100."""
    match = PERCENT_PATTERN.search(line)
    if not match:
        return None
    value = int(match.group(1))
    if value < 0 or value > 100:
        return None
    return value


def is_qr_art_line(line: str) -> bool:
    if not line:
        return False
    if QR_ART_GLYPHS.search(line):
        return True
    return line.isspace() and len(line) >= QR_ART_MIN_BLANK_WIDTH


def is_blank(line: str) -> bool:
    return not line.strip()


def extract_email_provider(line: str) -> str:
    match = EMAIL_PROVIDER_PATTERN.search(line)
    return match.group(1).strip() if match else "email"


def extract_remembered_username(line: str) -> str | None:
    match = REMEMBERED_USERNAME_PATTERN.search(line)
    return match.group(1) if match else None


def _progress(line: str, stream: Stream) -> Optional[Signal]:
    percent = extract_percent(line)
    if percent is None:
        return None
    return Signal(SignalKind.PROGRESS, percent=percent)


def _qr_prompt_start(line: str, stream: Stream) -> Optional[Signal]:
    lower = line.lower()
    if stream is Stream.STDOUT and "steam mobile app" in lower and "qr code" in lower:
        return Signal(SignalKind.QR_PROMPT_START)
    return None


def _qr_art(line: str, stream: Stream) -> Optional[Signal]:
    if stream is Stream.STDOUT and is_qr_art_line(line):
        return Signal(SignalKind.QR_ART_LINE, text=line)
    return None


def _qr_login_success(line: str, stream: Stream) -> Optional[Signal]:
    if "Success! Next time you can login with -username" in line:
        return Signal(
            SignalKind.QR_LOGIN_SUCCESS, text=extract_remembered_username(line)
        )
    return None


def _hardware_token_prompt(line: str, stream: Stream) -> Optional[Signal]:
    if "STEAM GUARD!" in line and "Steam Mobile App" in line:
        return Signal(SignalKind.HARDWARE_TOKEN_PROMPT)
    return None


def _hardware_token_confirmed(line: str, stream: Stream) -> Optional[Signal]:
    if line.strip() == "Done!" or (stream is Stream.STDOUT and " Done!" in line):
        return Signal(SignalKind.HARDWARE_TOKEN_CONFIRMED)
    return None


def _email_prompt(line: str, stream: Stream) -> Optional[Signal]:
    lower = line.lower()
    if "steam guard" in lower and "auth code sent to the email at" in lower:
        return Signal(SignalKind.EMAIL_PROMPT, text=extract_email_provider(line))
    return None


def _email_no_code(line: str, stream: Stream) -> Optional[Signal]:
    if "No code was provided by the authenticator" in line:
        return Signal(SignalKind.EMAIL_NO_CODE_PROVIDED)
    return None


def _email_invalid_code(line: str, stream: Stream) -> Optional[Signal]:
    if "previous 2-factor auth code you have provided is incorrect" in line.lower():
        return Signal(SignalKind.EMAIL_INVALID_CODE)
    return None


def _missing_depots(line: str, stream: Stream) -> Optional[Signal]:
    if "Couldn't find any depots to download for app" in line:
        return Signal(SignalKind.MISSING_DEPOTS_WARNING)
    return None


LINE_RULES: list[LineRule] = [
    LineRule("progress", "progress", _progress),
    LineRule("qr_login_success", "qr", _qr_login_success),
    LineRule("qr_prompt_start", "qr", _qr_prompt_start),
    LineRule("qr_art", "qr", _qr_art),
    LineRule("hardware_token_prompt", "hardware_token", _hardware_token_prompt),
    LineRule("hardware_token_confirmed", "hardware_token", _hardware_token_confirmed),
    LineRule("email_prompt", "email", _email_prompt),
    LineRule("email_no_code", "email", _email_no_code),
    LineRule("email_invalid_code", "email", _email_invalid_code),
    LineRule("missing_depots", "depots", _missing_depots),
]


def classify_line(line: str, stream: Stream = Stream.STDOUT) -> list[Signal]:
    """Runs every rule against `line`; at most one signal per category."""
    signals: list[Signal] = []
    matched: set[str] = set()
    for rule in LINE_RULES:
        if rule.category in matched:
            continue
        signal = rule.match(line, stream)
        if signal is not None:
            matched.add(rule.category)
            signals.append(signal)
    return signals


# --- Status mapping ----------------------------------------------------------

STATUS_TABLE: dict[str, JobStatus] = {
    "starting": JobStatus.RUNNING,
    "resolving_metadata": JobStatus.RUNNING,
    "running": JobStatus.RUNNING,
    "finalizing": JobStatus.RUNNING,
    "compressing": JobStatus.COMPRESSING,
    "completed": JobStatus.DONE,
    "finalization_failed": JobStatus.FAILED,
    "error": JobStatus.FAILED,
}


def map_status(status: str | None, code: int | None = None) -> JobStatus | None:
    """Maps a runner status payload to a job status; unknown values map to None."""
    if not status:
        return None
    if status == "exited":
        return JobStatus.DONE if code == 0 else JobStatus.FAILED
    return STATUS_TABLE.get(status)


def classify_status(status: str | None, code: int | None = None) -> Optional[Signal]:
    new_status = map_status(status, code)
    if new_status is None:
        return None
    return Signal(SignalKind.STATUS_TRANSITION, status=new_status)
