#!/usr/bin/env python3
"""Content-hash duplicate purger with structured NDJSON logging."""

from __future__ import annotations

import hashlib
import json
import logging
import os
import sys
import time
import uuid
from contextlib import nullcontext
from dataclasses import dataclass, field
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict
from tqdm import tqdm
from tqdm.contrib.logging import logging_redirect_tqdm

MODULE_VERSION = "1.0.0"
DEFAULT_ENV = "dev"
PROGRESS_STEP = 500
SCANNER_COMPONENT = "scanner"
LOGGER_NAME = "duplicate_purger"

HASH_ALGORITHM = "blake2b"
CHUNK_SIZE = 4096
PROGRESS_BAR_WIDTH = 80

LOG_DIR_ENV = "PURGE_LOG_DIR"
ENV_VAR = "PURGE_ENV"
DEFAULT_LOG_DIR = Path(__file__).resolve().parent / "logs"
USER_LOG_DIR = Path("~/.purge-duplicates/logs").expanduser()
GENERAL_LOG_FILENAME = "purge-duplicates.log"
GENERAL_TEXT_LOG_FILENAME = "purge-duplicates.txt"
LOG_MAX_BYTES = 5 * 1024 * 1024
LOG_BACKUP_COUNT = 5


def _iso_utc(timestamp: float) -> str:
    """Return ISO-8601 UTC timestamp with Z suffix."""
    dt = datetime.fromtimestamp(timestamp, tz=timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%SZ")


class NDJSONFormatter(logging.Formatter):
    """Render log records as single-line JSON objects."""

    def format(self, record: logging.LogRecord) -> str:
        payload = getattr(record, "log_payload", {}).copy()
        payload.setdefault("timestamp", _iso_utc(record.created))
        payload.setdefault("level", record.levelname)

        message = record.getMessage()
        if not payload.get("message"):
            payload["message"] = message

        payload.setdefault("event", getattr(record, "event", message))
        return json.dumps(payload, ensure_ascii=False, default=str)


class PlainTextFormatter(logging.Formatter):
    """Render log records as human-readable text."""

    def __init__(self, *, fields: Optional[Tuple[str, ...]] = None) -> None:
        super().__init__()
        # None renders every payload field; the console only needs a few.
        self._fields = fields

    def format(self, record: logging.LogRecord) -> str:
        payload = getattr(record, "log_payload", {}).copy()
        timestamp = _iso_utc(record.created)
        level = record.levelname
        message = record.getMessage()
        event = payload.get("event") or getattr(record, "event", message)
        human_message = payload.get("message") or message
        extras = {
            k: v
            for k, v in payload.items()
            if k not in {"event", "message"}
            and (self._fields is None or k in self._fields)
        }
        extra_str = " ".join(f"{key}={value}" for key, value in sorted(extras.items()))
        base = f"{timestamp} [{level}] {event}: {human_message}"
        return f"{base} | {extra_str}" if extra_str else base


class _ComponentFilter(logging.Filter):
    def __init__(self, *, component: str) -> None:
        super().__init__()
        self._component = component

    def filter(self, record: logging.LogRecord) -> bool:
        payload = getattr(record, "log_payload", {})
        return payload.get("component") == self._component


def _resolve_log_dir() -> Optional[Path]:
    """Return the first usable log directory, or None when none can be created."""
    candidates: List[Path] = []
    override = os.getenv(LOG_DIR_ENV)
    if override:
        candidates.append(Path(override).expanduser())
    candidates.extend([DEFAULT_LOG_DIR, USER_LOG_DIR])
    for candidate in candidates:
        try:
            candidate.mkdir(parents=True, exist_ok=True)
        except OSError:
            continue
        if os.access(candidate, os.W_OK):
            return candidate
    return None


def build_console_handler(stream: Optional[Any] = None) -> logging.StreamHandler:
    """Per-file error stream: scanner warnings and errors only."""
    handler = logging.StreamHandler(stream)
    handler.setLevel(logging.WARNING)
    handler.setFormatter(PlainTextFormatter(fields=("file", "directory", "exception_msg")))
    # The CLI prints its own fatal errors.
    handler.addFilter(_ComponentFilter(component=SCANNER_COMPONENT))
    return handler


def _is_console_handler(handler: logging.Handler) -> bool:
    return isinstance(handler, logging.StreamHandler) and not isinstance(
        handler, logging.FileHandler
    )


def get_logger(name: str = LOGGER_NAME) -> logging.Logger:
    """Return the purge logger, attaching its handlers on first use."""
    logger = logging.getLogger(name)
    logger.setLevel(logging.INFO)
    if not logger.handlers:
        logger.addHandler(build_console_handler())

        log_dir = _resolve_log_dir()
        if log_dir is None:
            logger.warning(
                "No writable log directory; file logging disabled",
                extra={
                    "log_payload": {
                        "event": "log_dir_unavailable",
                        "component": SCANNER_COMPONENT,
                        "directory": os.getenv(LOG_DIR_ENV) or str(DEFAULT_LOG_DIR),
                    }
                },
            )
            return logger

        file_handler = RotatingFileHandler(
            log_dir / GENERAL_LOG_FILENAME,
            maxBytes=LOG_MAX_BYTES,
            backupCount=LOG_BACKUP_COUNT,
            encoding="utf-8",
            delay=True,
        )
        file_handler.setFormatter(NDJSONFormatter())
        logger.addHandler(file_handler)

        text_handler = RotatingFileHandler(
            log_dir / GENERAL_TEXT_LOG_FILENAME,
            maxBytes=LOG_MAX_BYTES,
            backupCount=LOG_BACKUP_COUNT,
            encoding="utf-8",
            delay=True,
        )
        text_handler.setFormatter(PlainTextFormatter())
        logger.addHandler(text_handler)

    return logger


class FingerprintError(Exception):
    """A file could not be fingerprinted."""

    def __init__(self, message: str, path: Union[str, Path]) -> None:
        super().__init__(message)
        self.path = str(path)


class FileReadError(FingerprintError):
    """The file could not be opened or read."""


class DigestError(FingerprintError):
    """The digest engine failed to initialize, update or finalize."""


def generate_hash(file_path: Union[str, Path], chunk_size: int = CHUNK_SIZE) -> str:
    """Return the hex BLAKE2b digest of a file's content.

    The file is streamed in ``chunk_size`` blocks, so memory use stays bounded
    regardless of file size. The digest depends only on the bytes, never on
    the name, location, timestamps or permissions of the file.

    Raises:
        FileReadError: the file cannot be opened or read.
        DigestError: the digest engine cannot be initialized, updated or
            finalized.
    """
    path = Path(file_path)
    try:
        hasher = hashlib.new(HASH_ALGORITHM)
    except ValueError as exc:
        raise DigestError(
            f"Failed to initialize digest with {HASH_ALGORITHM}: {exc}", path
        ) from exc

    try:
        handle = path.open("rb")
    except OSError as exc:
        raise FileReadError(f"Could not open file: {path} ({exc.strerror or exc})", path) from exc

    with handle:
        while True:
            try:
                chunk = handle.read(chunk_size)
            except OSError as exc:
                raise FileReadError(
                    f"Failed to read file: {path} ({exc.strerror or exc})", path
                ) from exc
            if not chunk:
                break
            try:
                hasher.update(chunk)
            except (TypeError, ValueError) as exc:
                raise DigestError(
                    f"Failed to update {HASH_ALGORITHM} hash during file processing: {exc}",
                    path,
                ) from exc

    try:
        return hasher.hexdigest()
    except ValueError as exc:
        raise DigestError(f"Failed to finalize {HASH_ALGORITHM} hash: {exc}", path) from exc


class RunConfiguration(BaseModel):
    """Settings for a single purge invocation."""

    model_config = ConfigDict(frozen=True)

    directory: Path
    show_progress: bool = False
    live_run: bool = False


@dataclass
class PurgeReport:
    """Outcome of one ``scan_and_dispose`` call."""

    live_run: bool
    files_scanned: int = 0
    unique_files: Dict[str, str] = field(default_factory=dict)
    duplicates: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)
    errors: List[Tuple[str, str]] = field(default_factory=list)

    @property
    def unique_count(self) -> int:
        return len(self.unique_files)


class DuplicatePurger:
    """Find files whose content was already seen and report or delete them."""

    def __init__(
        self,
        config: RunConfiguration,
        *,
        environment: Optional[str] = None,
        version: str = MODULE_VERSION,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.config = config
        self.env = (environment or os.getenv(ENV_VAR, DEFAULT_ENV)).lower()
        self.version = version
        self.component = SCANNER_COMPONENT
        self.logger = logger or get_logger()

    def _build_log_context(self, scan_id: str, root_dir: Path) -> Dict[str, Any]:
        return {
            "scan_id": scan_id,
            "component": self.component,
            "version": self.version,
            "env": self.env,
            "root_dir": str(root_dir),
            "live_run": self.config.live_run,
            "show_progress": self.config.show_progress,
            "hash_algorithm": HASH_ALGORITHM,
            "chunk_size": CHUNK_SIZE,
        }

    def _log_event(
        self,
        event: str,
        level: int,
        message: str,
        context: Dict[str, Any],
        **fields: Any,
    ) -> None:
        payload: Dict[str, Any] = {"event": event, "message": message}
        payload.update(context)
        payload.update(fields)
        self.logger.log(level, message, extra={"log_payload": payload})

    @staticmethod
    def _duration_ms(start_time: float) -> int:
        return max(0, int((time.perf_counter() - start_time) * 1000))

    def _validate_root(self) -> Path:
        dir_path = Path(self.config.directory).expanduser()
        if not dir_path.exists():
            raise FileNotFoundError(f"Directory not found: {dir_path}")
        if not dir_path.is_dir():
            raise NotADirectoryError(f"Path is not a directory: {dir_path}")
        if not os.access(dir_path, os.R_OK | os.X_OK):
            raise PermissionError(f"Directory is not traversable: {dir_path}")
        return dir_path

    def _iter_regular_files(self, root: Path, context: Dict[str, Any]) -> Iterator[Path]:
        """Yield regular files depth-first; files of a directory come before its subdirectories."""

        def _on_walk_error(exc: OSError) -> None:
            self._log_event(
                "directory_unreadable",
                logging.WARNING,
                "Skipped unreadable directory",
                context,
                directory=exc.filename,
                exception_type=exc.__class__.__name__,
                exception_msg=exc.strerror or str(exc),
            )

        for current, dirnames, filenames in os.walk(root, onerror=_on_walk_error):
            dirnames.sort()
            for name in sorted(filenames):
                entry = Path(current) / name
                if entry.is_symlink():
                    self._log_event(
                        "file_skipped_symlink",
                        logging.DEBUG,
                        "Skipped symbolic link",
                        context,
                        file=str(entry),
                    )
                    continue
                if entry.is_file():
                    yield entry

    def scan_and_dispose(self) -> PurgeReport:
        """Classify every file under the configured directory, then report or delete duplicates.

        Raises ``FileNotFoundError``, ``NotADirectoryError`` or
        ``PermissionError`` when the root directory cannot be walked. Every
        other failure is per file and only skips that file.
        """
        root = self._validate_root()
        context = self._build_log_context(str(uuid.uuid4()), root.resolve())
        report = PurgeReport(live_run=self.config.live_run)
        start = time.perf_counter()

        self._log_event("scan_started", logging.INFO, "Scan started", context)

        if self.config.show_progress:
            files = list(self._iter_regular_files(root, context))
            if not files:
                print("No files found in the directory.")
                self._log_event("scan_no_files", logging.INFO, "No files found", context)
                return report
            consoles = [h for h in self.logger.handlers if _is_console_handler(h)]
            # Loggers without a console handler get no tqdm console handler either.
            redirect = logging_redirect_tqdm(loggers=[self.logger]) if consoles else nullcontext()
            with redirect:
                self._restrict_tqdm_handlers(consoles)
                self._classify(files, len(files), report, context, start)
        else:
            self._classify(self._iter_regular_files(root, context), None, report, context, start)

        self._log_event(
            "scan_classified",
            logging.INFO,
            "Scan classified",
            context,
            files_processed=report.files_scanned,
            unique_files=report.unique_count,
            duplicates_found=len(report.duplicates),
            errors=len(report.errors),
            duration_ms=self._duration_ms(start),
        )

        if self.config.live_run:
            self._delete_duplicates(report, context)
        else:
            self._report_dry_run(report, context)
        return report

    def _restrict_tqdm_handlers(self, consoles: List[logging.Handler]) -> None:
        """Give the handlers installed by tqdm the level and filters of the console ones they replaced."""
        if not consoles:
            return
        template = consoles[0]
        for handler in self.logger.handlers:
            if handler in consoles or not _is_console_handler(handler):
                continue
            handler.setLevel(template.level)
            for log_filter in template.filters:
                handler.addFilter(log_filter)

    def _classify(
        self,
        files: Iterable[Path],
        total: Optional[int],
        report: PurgeReport,
        context: Dict[str, Any],
        start: float,
    ) -> None:
        seen = report.unique_files
        progress = tqdm(
            files,
            total=total,
            desc="Scanning",
            unit=" files",
            ncols=PROGRESS_BAR_WIDTH,
            file=sys.stdout,
            disable=not self.config.show_progress,
        )
        for entry in progress:
            file_str = str(entry)
            report.files_scanned += 1
            try:
                file_hash = generate_hash(entry)
            except FingerprintError as exc:
                report.errors.append((file_str, str(exc)))
                self._log_event(
                    "file_error_hash",
                    logging.ERROR,
                    "Error processing file",
                    context,
                    file=file_str,
                    exception_type=exc.__class__.__name__,
                    exception_msg=str(exc),
                )
                continue

            original = seen.get(file_hash)
            if original is not None:
                report.duplicates.append(file_str)
                if self.logger.isEnabledFor(logging.DEBUG):
                    self._log_event(
                        "duplicate_found",
                        logging.DEBUG,
                        "Duplicate found",
                        context,
                        file=file_str,
                        original=original,
                    )
            else:
                seen[file_hash] = file_str

            if report.files_scanned % PROGRESS_STEP == 0:
                self._log_event(
                    "directory_walk_progress",
                    logging.INFO,
                    "Directory walk progress",
                    context,
                    files_processed=report.files_scanned,
                    duration_ms=self._duration_ms(start),
                )

            if self.logger.isEnabledFor(logging.DEBUG):
                self._log_event(
                    "hash_computed",
                    logging.DEBUG,
                    "Hash computed",
                    context,
                    file=file_str,
                    hash_prefix=file_hash[:12],
                )
        progress.close()

    def _delete_duplicates(self, report: PurgeReport, context: Dict[str, Any]) -> None:
        for duplicate in report.duplicates:
            try:
                Path(duplicate).unlink()
            except OSError as exc:
                report.errors.append((duplicate, str(exc)))
                self._log_event(
                    "file_error_delete",
                    logging.ERROR,
                    "Error deleting file",
                    context,
                    file=duplicate,
                    exception_type=exc.__class__.__name__,
                    exception_msg=exc.strerror or str(exc),
                )
                continue
            report.deleted.append(duplicate)
            print(f"Removed duplicate: {duplicate}")
            self._log_event(
                "duplicate_deleted",
                logging.INFO,
                "Duplicate deleted",
                context,
                file=duplicate,
            )

        print(f"Duplicate removal complete. Processed {report.unique_count} unique files.")
        self._log_event(
            "purge_completed",
            logging.INFO,
            "Duplicate removal complete",
            context,
            unique_files=report.unique_count,
            deleted=len(report.deleted),
            failed=len(report.duplicates) - len(report.deleted),
        )

    def _report_dry_run(self, report: PurgeReport, context: Dict[str, Any]) -> None:
        print("Dry Run: The following files would be deleted:")
        for duplicate in report.duplicates:
            print(f"  {duplicate}")
        print("Dry run complete. No files were deleted.")
        print("To perform the actual deletion, re-run the command with the --live-run flag.")
        self._log_event(
            "dry_run_completed",
            logging.INFO,
            "Dry run completed",
            context,
            would_delete=len(report.duplicates),
            unique_files=report.unique_count,
        )
