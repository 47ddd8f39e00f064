"""
Incremental splitting of raw process output into log lines.

Both external tools write to pipes in arbitrary chunks. The downloader
leaves its email-code prompt unterminated while it waits on stdin, and the
archiver redraws its progress in place with carriage returns and
backspaces, so neither can be read with a plain `readline()`.
"""

import codecs
import re
from typing import Optional

# Prompts printed without a trailing newline while the downloader waits on stdin.
PENDING_PROMPTS = ("STEAM GUARD! Please enter the auth code sent to the email at",)

_ARCHIVER_PERCENT = re.compile(r"(\d+)%")
_BARE_PERCENT = re.compile(r"^\d+%$")


def decode_output(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


class DownloaderLineSplitter:
    """Splits downloader output on newlines, flushing a pending prompt early."""

    def __init__(self):
        self._pending = b""
        self._prompt_emitted = False

    def feed(self, chunk: bytes) -> list[str]:
        self._pending += chunk
        lines = []
        while b"\n" in self._pending:
            raw, self._pending = self._pending.split(b"\n", 1)
            lines.append(decode_output(raw.rstrip(b"\r")))

        if not self._prompt_emitted and self._pending:
            text = decode_output(self._pending)
            if any(prompt in text for prompt in PENDING_PROMPTS):
                lines.append(text.rstrip("\r"))
                self._pending = b""
                self._prompt_emitted = True
        return lines

    def close(self) -> list[str]:
        if not self._pending:
            return []
        line = decode_output(self._pending.rstrip(b"\r"))
        self._pending = b""
        return [line]


def extract_archiver_percent(text: str) -> Optional[int]:
    """The last `NN%` value in `text` that lies within 0-100."""
    for match in reversed(_ARCHIVER_PERCENT.findall(text)):
        value = int(match)
        if value <= 100:
            return value
    return None


def is_bare_progress_line(line: str) -> bool:
    return bool(_BARE_PERCENT.match(line.strip())) and int(line.strip()[:-1]) <= 100


class ArchiverLineSplitter:
    """
    Splits archiver output on `\\r` and `\\n`, applying backspaces, and reports
    progress percentages as they appear mid-line.

    `feed` returns `(lines, percents)`; lines that are only a percentage are
    dropped since they are reported as progress instead.
    """

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._current = ""
        self._last_was_cr = False
        self._last_percent: Optional[int] = None

    def feed(self, chunk: bytes) -> tuple[list[str], list[int]]:
        lines: list[str] = []
        percents: list[int] = []
        self._consume(self._decoder.decode(chunk), lines, percents)
        return lines, percents

    def _consume(self, text: str, lines: list[str], percents: list[int]) -> None:
        # A character split across two chunks stays in the decoder until complete.
        for ch in text:
            if ch == "\r":
                self._emit_current(lines)
                self._last_was_cr = True
                continue
            if ch == "\n":
                if not self._last_was_cr:
                    self._emit_current(lines)
                self._last_was_cr = False
                continue
            if ch == "\b":
                self._current = self._current[:-1]
            else:
                self._current += ch
            self._last_was_cr = False

            percent = extract_archiver_percent(self._current)
            if percent is not None and percent != self._last_percent:
                self._last_percent = percent
                percents.append(percent)

    def _emit_current(self, lines: list[str]) -> None:
        if not self._current:
            return
        line, self._current = self._current, ""
        if not is_bare_progress_line(line):
            lines.append(line)

    def close(self) -> list[str]:
        lines: list[str] = []
        self._consume(self._decoder.decode(b"", final=True), lines, [])
        self._emit_current(lines)
        return lines
