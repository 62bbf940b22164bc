#!/usr/bin/env python3
"""Archive analysis and cleanup engine.

Takes the raw bytes of an uploaded ZIP archive and produces a reduced archive
plus a statistics report:
- SHA-256 content hashing of every entry in a single decode pass
- Duplicate / stale / screenshot-like / oversized classification
- Cleanup plan with exactly one removal reason per removed entry
- Deterministic rewrite of the surviving entries
- Serializable report for dashboards and report generators
"""

from __future__ import annotations

import argparse
import dataclasses
import datetime as dt
import hashlib
import io
import json
import logging
import os
import re
import sys
import tempfile
import zipfile
import zlib
from collections import defaultdict
from pathlib import Path, PurePosixPath
from typing import IO, Any, Callable, Iterable, Sequence

# ------------------------------- Constants ---------------------------------- #

APP_NAME = "clarity"
DEFAULT_LOG_FILE = Path.home() / ".local" / "share" / APP_NAME / "clarity.log"

BYTES_PER_MB = 1024 * 1024
HASH_BUFFER = 1024 * 1024

DEFAULT_STALE_DAYS = 730
DEFAULT_LARGE_FILE_THRESHOLD = 50 * BYTES_PER_MB
DEFAULT_COMPRESSION_LEVEL = 6
DEFAULT_SCREENSHOT_PATTERNS: tuple[str, ...] = (
    r"screenshot",
    r"screen shot",
    r"^img_\d+",
    r"^image_\d+",
    r"^photo_\d+",
)

# Zip writers emit the DOS epoch when they have no modification time.
DOS_EPOCH = (1980, 1, 1, 0, 0, 0)

REASON_DUPLICATE = "duplicate"
REASON_STALE = "stale"
REASON_SCREENSHOT = "screenshot"

OTHER_CATEGORY = "Other"

DEFAULT_CATEGORY_RULES: dict[str, set[str]] = {
    "Images": {"jpg", "jpeg", "png", "gif", "bmp", "webp", "svg", "ico", "heic", "heif"},
    "Videos": {"mp4", "mov", "avi", "mkv", "webm", "flv", "wmv", "m4v"},
    "Audio": {"mp3", "wav", "flac", "aac", "m4a", "ogg", "wma"},
    "Documents": {"pdf", "doc", "docx", "txt", "rtf", "odt", "pages"},
    "Spreadsheets": {"xls", "xlsx", "csv", "ods", "numbers"},
    "Presentations": {"ppt", "pptx", "key", "odp"},
    "Archives": {"zip", "rar", "7z", "tar", "gz", "bz2"},
    "Code": {
        "js", "ts", "jsx", "tsx", "py", "java", "cpp", "c", "h", "css", "html", "json", "xml", "yaml", "yml"
    },
}

CATEGORIES: tuple[str, ...] = (*DEFAULT_CATEGORY_RULES, OTHER_CATEGORY)


# -------------------------------- Errors ------------------------------------ #


class ArchiveAnalysisError(Exception):
    """Base error for a failed pipeline run."""


class MalformedArchiveError(ArchiveAnalysisError):
    """The archive, or one of its entries, cannot be decoded."""


class ArchiveRewriteError(ArchiveAnalysisError):
    """A surviving entry could not be re-read while building the cleaned archive."""


# Everything zipfile/zlib raise for corrupt, truncated, encrypted or unsupported members.
ZIP_READ_ERRORS = (
    zipfile.BadZipFile,
    zipfile.LargeZipFile,
    zlib.error,
    EOFError,
    NotImplementedError,
    RuntimeError,
    OSError,
    ValueError,
)


# ------------------------------- Utilities ---------------------------------- #


def now_utc() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def now_utc_iso() -> str:
    return now_utc().replace(microsecond=0).isoformat()


def human_bytes(size: int) -> str:
    val = float(max(size, 0))
    for unit in ["B", "KB", "MB", "GB", "TB", "PB"]:
        if val < 1024.0 or unit == "PB":
            if unit == "B":
                return f"{int(val)} {unit}"
            return f"{val:.2f} {unit}"
        val /= 1024.0
    return f"{size} B"


def parse_size_to_bytes(value: str) -> int:
    """Parse values like 50MB, 2GB, 1024 into bytes."""
    text = value.strip().lower().replace(" ", "")
    units: list[tuple[str, int]] = [
        ("tb", 1024**4),
        ("gb", 1024**3),
        ("mb", 1024**2),
        ("kb", 1024),
        ("b", 1),
    ]
    for u, factor in units:
        if text.endswith(u):
            number = float(text[: -len(u)] or "0")
            return int(number * factor)
    return int(float(text))


def to_mb(size: int) -> float:
    """Display-only conversion; aggregate in bytes first."""
    return round(size / BYTES_PER_MB, 2)


def reduction_percentage(original_bytes: int, cleaned_bytes: int) -> float:
    if original_bytes == 0:
        return 0.0
    return round((original_bytes - cleaned_bytes) / original_bytes * 100, 1)


def setup_logger(log_file: Path) -> logging.Logger:
    logger = logging.getLogger(APP_NAME)
    if logger.handlers:
        return logger

    chosen = log_file
    try:
        chosen.parent.mkdir(parents=True, exist_ok=True)
    except OSError:
        chosen = Path(tempfile.gettempdir()) / APP_NAME / "clarity.log"
        chosen.parent.mkdir(parents=True, exist_ok=True)

    logger.setLevel(logging.INFO)
    formatter = logging.Formatter("%(asctime)s %(levelname)s %(message)s")

    fh = logging.FileHandler(chosen, encoding="utf-8")
    fh.setFormatter(formatter)
    logger.addHandler(fh)

    sh = logging.StreamHandler()
    sh.setFormatter(formatter)
    logger.addHandler(sh)
    return logger


# ------------------------------ Configuration ------------------------------- #


@dataclasses.dataclass(slots=True)
class PipelineConfig:
    """Thresholds and output settings for one analysis run."""

    stale_days: int = DEFAULT_STALE_DAYS
    large_file_threshold: int = DEFAULT_LARGE_FILE_THRESHOLD
    screenshot_patterns: tuple[str, ...] = DEFAULT_SCREENSHOT_PATTERNS
    compression_level: int = DEFAULT_COMPRESSION_LEVEL
    category_rule_file: str | None = None

    def __post_init__(self) -> None:
        if self.stale_days < 0:
            raise ValueError(f"stale_days must be non-negative: {self.stale_days}")
        if self.large_file_threshold < 0:
            raise ValueError(f"large_file_threshold must be non-negative: {self.large_file_threshold}")
        if not 0 <= self.compression_level <= 9:
            raise ValueError(f"compression_level must be between 0 and 9: {self.compression_level}")
        self.screenshot_patterns = tuple(self.screenshot_patterns)

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> PipelineConfig:
        env = os.environ if environ is None else environ
        patterns = DEFAULT_SCREENSHOT_PATTERNS
        raw_patterns = env.get("CLARITY_SCREENSHOT_PATTERNS", "").strip()
        if raw_patterns:
            data = json.loads(raw_patterns)
            if not isinstance(data, list) or not all(isinstance(p, str) for p in data):
                raise ValueError("CLARITY_SCREENSHOT_PATTERNS must be a JSON list of strings")
            patterns = tuple(data)
        return cls(
            stale_days=int(env.get("CLARITY_STALE_DAYS", DEFAULT_STALE_DAYS)),
            large_file_threshold=parse_size_to_bytes(env.get("CLARITY_LARGE_FILE_SIZE", "50MB")),
            screenshot_patterns=patterns,
            compression_level=int(env.get("CLARITY_COMPRESSION_LEVEL", DEFAULT_COMPRESSION_LEVEL)),
            category_rule_file=env.get("CLARITY_CATEGORY_RULES") or None,
        )


# ------------------------------ Data Models --------------------------------- #


@dataclasses.dataclass(frozen=True, slots=True)
class ArchiveEntry:
    """One classified file record from the submitted archive."""

    path: str
    size: int
    modified_at: dt.datetime | None
    content_hash: str
    category: str
    is_duplicate: bool = False
    is_stale: bool = False
    is_screenshot_like: bool = False
    is_oversized: bool = False


@dataclasses.dataclass(slots=True)
class ReasonStats:
    count: int = 0
    size_bytes: int = 0

    def add(self, entry: ArchiveEntry) -> None:
        self.count += 1
        self.size_bytes += entry.size


@dataclasses.dataclass(frozen=True, slots=True)
class DuplicateGroup:
    content_hash: str
    size_each: int
    keep_path: str
    remove_paths: tuple[str, ...]


@dataclasses.dataclass(slots=True)
class CleanupPlan:
    """Keep/remove partition of one archive plus its removal statistics."""

    keep: list[ArchiveEntry]
    remove: list[ArchiveEntry]
    removal_reasons: dict[str, str]
    reason_stats: dict[str, ReasonStats]
    oversized_stats: ReasonStats
    duplicate_groups: list[DuplicateGroup]

    @property
    def keep_paths(self) -> list[str]:
        return [e.path for e in self.keep]

    @property
    def entries(self) -> list[ArchiveEntry]:
        return [*self.keep, *self.remove]


@dataclasses.dataclass(frozen=True, slots=True)
class FileTypeBreakdown:
    type: str
    count: int
    size_bytes: int
    size_mb: float


@dataclasses.dataclass(frozen=True, slots=True)
class RemovedFile:
    path: str
    reason: str
    category: str
    size_bytes: int


@dataclasses.dataclass(frozen=True, slots=True)
class AnalysisReport:
    """Aggregate statistics for one analyzed archive. Safe to hand to other consumers."""

    source_filename: str
    original_size_bytes: int
    original_size_mb: float
    cleaned_size_bytes: int
    cleaned_size_mb: float
    reduction_percentage: float
    duplicate_files: int
    duplicate_size_removed_bytes: int
    duplicate_size_removed_mb: float
    archived_old_files: int
    forgotten_file_size_bytes: int
    forgotten_file_size_mb: float
    unwanted_screenshots: int
    screenshot_size_bytes: int
    screenshot_size_mb: float
    large_file_count: int
    large_file_size_bytes: int
    large_file_size_mb: float
    file_type_breakdown: tuple[FileTypeBreakdown, ...]
    total_files_analyzed: int
    total_files_removed: int
    removed_files: tuple[RemovedFile, ...] = ()
    duplicate_groups: tuple[DuplicateGroup, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        data = dataclasses.asdict(self)
        data["file_type_breakdown"] = [dataclasses.asdict(b) for b in self.file_type_breakdown]
        data["removed_files"] = [dataclasses.asdict(r) for r in self.removed_files]
        data["duplicate_groups"] = [
            dataclasses.asdict(g) | {"remove_paths": list(g.remove_paths)} for g in self.duplicate_groups
        ]
        return data


@dataclasses.dataclass(frozen=True, slots=True)
class AnalysisResult:
    report: AnalysisReport
    cleaned_archive: bytes


# ----------------------------- Content Hashing ------------------------------ #


def hash_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def hash_entry_stream(fh: IO[bytes], buffer_size: int = HASH_BUFFER) -> tuple[str, int]:
    """Return (sha256 hex digest, byte count) of a readable stream."""
    h = hashlib.sha256()
    size = 0
    while True:
        chunk = fh.read(buffer_size)
        if not chunk:
            break
        h.update(chunk)
        size += len(chunk)
    return h.hexdigest(), size


# ---------------------------- Classification -------------------------------- #


class HashIndex:
    """Digest -> paths in archive iteration order. The first path is the original."""

    def __init__(self) -> None:
        self._paths: dict[str, list[str]] = defaultdict(list)

    def add(self, digest: str, path: str) -> None:
        self._paths[digest].append(path)

    def paths_for(self, digest: str) -> list[str]:
        return list(self._paths.get(digest, []))

    def original_for(self, digest: str) -> str | None:
        paths = self._paths.get(digest)
        return paths[0] if paths else None

    def is_duplicate(self, digest: str, path: str) -> bool:
        original = self.original_for(digest)
        return original is not None and original != path

    def duplicate_groups(self) -> Iterable[tuple[str, list[str]]]:
        for digest, paths in self._paths.items():
            if len(paths) > 1:
                yield digest, list(paths)

    def __len__(self) -> int:
        return len(self._paths)


class EntryClassifier:
    """Per-entry predicates and the extension category tagger."""

    def __init__(self, config: PipelineConfig):
        self.config = config
        self.stale_after = dt.timedelta(days=config.stale_days)
        self.screenshot_patterns = [re.compile(p, re.IGNORECASE) for p in config.screenshot_patterns]
        self.rules = {k: set(v) for k, v in DEFAULT_CATEGORY_RULES.items()}
        if config.category_rule_file:
            self._merge_custom_rules(config.category_rule_file)

    def _merge_custom_rules(self, rule_file: str) -> None:
        path = Path(rule_file)
        if not path.exists():
            raise FileNotFoundError(f"Custom category rule file not found: {rule_file}")
        data = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError("Custom category rules must be a JSON object")
        for category, exts in data.items():
            if category not in self.rules:
                raise ValueError(f"Unknown category in custom rules: {category}")
            if not isinstance(exts, list):
                continue
            self.rules[category].update(str(x).lower().lstrip(".") for x in exts)

    def category_for(self, path: str) -> str:
        ext = PurePosixPath(path).suffix.lower().lstrip(".")
        if not ext:
            return OTHER_CATEGORY
        for cat, exts in self.rules.items():
            if ext in exts:
                return cat
        return OTHER_CATEGORY

    def is_stale(self, modified_at: dt.datetime | None, now: dt.datetime) -> bool:
        if modified_at is None:
            return False
        return (now - modified_at) > self.stale_after

    def is_screenshot_like(self, path: str) -> bool:
        name = PurePosixPath(path).name
        return any(p.search(name) for p in self.screenshot_patterns)

    def is_oversized(self, size: int) -> bool:
        return size > self.config.large_file_threshold


# Evaluated in order; the first match is the single attributed reason. Oversized is never one.
REMOVAL_RULES: tuple[tuple[str, Callable[[ArchiveEntry], bool]], ...] = (
    (REASON_DUPLICATE, lambda e: e.is_duplicate),
    (REASON_STALE, lambda e: e.is_stale),
    (REASON_SCREENSHOT, lambda e: e.is_screenshot_like),
)


def removal_reason(entry: ArchiveEntry) -> str | None:
    for reason, predicate in REMOVAL_RULES:
        if predicate(entry):
            return reason
    return None


# ------------------------------ Archive Reader ------------------------------ #


def entry_modified_at(info: zipfile.ZipInfo) -> dt.datetime | None:
    """Member timestamp as UTC, or None when the archive does not carry a usable one."""
    if tuple(info.date_time) == DOS_EPOCH:
        return None
    try:
        return dt.datetime(*info.date_time, tzinfo=dt.timezone.utc)
    except (TypeError, ValueError):
        return None


def open_archive(data: bytes) -> zipfile.ZipFile:
    try:
        return zipfile.ZipFile(io.BytesIO(data))
    except ZIP_READ_ERRORS as exc:
        raise MalformedArchiveError(f"Unreadable archive: {exc}") from exc


def file_members(zf: zipfile.ZipFile) -> list[zipfile.ZipInfo]:
    """Non-directory members in archive order; duplicate names are rejected."""
    members: list[zipfile.ZipInfo] = []
    seen: set[str] = set()
    for info in zf.infolist():
        if info.is_dir():
            continue
        if info.filename in seen:
            raise MalformedArchiveError(f"Duplicate entry path in archive: {info.filename}")
        seen.add(info.filename)
        members.append(info)
    return members


def scan_archive(
    zf: zipfile.ZipFile,
    classifier: EntryClassifier,
    now: dt.datetime,
) -> tuple[list[ArchiveEntry], HashIndex]:
    """Single decode pass: hash every member, build the hash index, then classify."""
    raw: list[tuple[zipfile.ZipInfo, str, int]] = []
    index = HashIndex()

    for info in file_members(zf):
        try:
            with zf.open(info) as fh:
                digest, size = hash_entry_stream(fh)
        except ZIP_READ_ERRORS as exc:
            raise MalformedArchiveError(f"Unreadable entry {info.filename}: {exc}") from exc
        index.add(digest, info.filename)
        raw.append((info, digest, size))

    entries: list[ArchiveEntry] = []
    for info, digest, size in raw:
        modified_at = entry_modified_at(info)
        entries.append(
            ArchiveEntry(
                path=info.filename,
                size=size,
                modified_at=modified_at,
                content_hash=digest,
                category=classifier.category_for(info.filename),
                is_duplicate=index.is_duplicate(digest, info.filename),
                is_stale=classifier.is_stale(modified_at, now),
                is_screenshot_like=classifier.is_screenshot_like(info.filename),
                is_oversized=classifier.is_oversized(size),
            )
        )
    return entries, index


# ----------------------------- Cleanup Planner ------------------------------ #


class CleanupPlanner:
    """Partition classified entries into keep/remove sets and aggregate removal reasons."""

    def build_plan(self, entries: Sequence[ArchiveEntry], index: HashIndex | None = None) -> CleanupPlan:
        keep: list[ArchiveEntry] = []
        remove: list[ArchiveEntry] = []
        reasons: dict[str, str] = {}
        stats = {reason: ReasonStats() for reason, _ in REMOVAL_RULES}
        oversized = ReasonStats()

        for entry in entries:
            if entry.is_oversized and not entry.is_duplicate:
                oversized.add(entry)

            reason = removal_reason(entry)
            if reason is None:
                keep.append(entry)
                continue
            remove.append(entry)
            reasons[entry.path] = reason
            stats[reason].add(entry)

        return CleanupPlan(
            keep=keep,
            remove=remove,
            removal_reasons=reasons,
            reason_stats=stats,
            oversized_stats=oversized,
            duplicate_groups=self._duplicate_groups(entries, index),
        )

    @staticmethod
    def _duplicate_groups(entries: Sequence[ArchiveEntry], index: HashIndex | None) -> list[DuplicateGroup]:
        if index is None:
            index = HashIndex()
            for e in entries:
                index.add(e.content_hash, e.path)

        size_by_path = {e.path: e.size for e in entries}
        groups = [
            DuplicateGroup(
                content_hash=digest,
                size_each=size_by_path.get(paths[0], 0),
                keep_path=paths[0],
                remove_paths=tuple(paths[1:]),
            )
            for digest, paths in index.duplicate_groups()
        ]
        groups.sort(key=lambda g: (-g.size_each * len(g.remove_paths), g.keep_path))
        return groups


# ----------------------------- Archive Rewriter ----------------------------- #


class ArchiveRewriter:
    """Write the keep set into a new archive with a fixed compression level."""

    def __init__(self, compression_level: int = DEFAULT_COMPRESSION_LEVEL):
        self.compression_level = compression_level

    def rewrite(self, source: zipfile.ZipFile, keep_paths: Sequence[str]) -> bytes:
        buf = io.BytesIO()
        with zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED, compresslevel=self.compression_level) as out:
            for path in keep_paths:
                try:
                    src = source.getinfo(path)
                    payload = source.read(src)
                except KeyError as exc:
                    raise ArchiveRewriteError(f"Entry missing from source archive: {path}") from exc
                except ZIP_READ_ERRORS as exc:
                    raise ArchiveRewriteError(f"Could not re-read entry {path}: {exc}") from exc

                zinfo = zipfile.ZipInfo(filename=src.filename, date_time=src.date_time)
                zinfo.create_system = src.create_system
                zinfo.external_attr = src.external_attr
                out.writestr(
                    zinfo,
                    payload,
                    compress_type=zipfile.ZIP_DEFLATED,
                    compresslevel=self.compression_level,
                )
        return buf.getvalue()


# ------------------------------ Report Builder ------------------------------ #


def file_type_breakdown(entries: Sequence[ArchiveEntry]) -> list[FileTypeBreakdown]:
    counts: dict[str, int] = defaultdict(int)
    sizes: dict[str, int] = defaultdict(int)
    for e in entries:
        counts[e.category] += 1
        sizes[e.category] += e.size

    breakdown = [
        FileTypeBreakdown(type=cat, count=counts[cat], size_bytes=sizes[cat], size_mb=to_mb(sizes[cat]))
        for cat in counts
    ]
    breakdown.sort(key=lambda b: (-b.size_bytes, b.type))
    return breakdown


def build_report(plan: CleanupPlan, source_filename: str = "") -> AnalysisReport:
    original = sum(e.size for e in plan.entries)
    cleaned = sum(e.size for e in plan.keep)
    dup = plan.reason_stats[REASON_DUPLICATE]
    stale = plan.reason_stats[REASON_STALE]
    shots = plan.reason_stats[REASON_SCREENSHOT]
    large = plan.oversized_stats

    return AnalysisReport(
        source_filename=source_filename,
        original_size_bytes=original,
        original_size_mb=to_mb(original),
        cleaned_size_bytes=cleaned,
        cleaned_size_mb=to_mb(cleaned),
        reduction_percentage=reduction_percentage(original, cleaned),
        duplicate_files=dup.count,
        duplicate_size_removed_bytes=dup.size_bytes,
        duplicate_size_removed_mb=to_mb(dup.size_bytes),
        archived_old_files=stale.count,
        forgotten_file_size_bytes=stale.size_bytes,
        forgotten_file_size_mb=to_mb(stale.size_bytes),
        unwanted_screenshots=shots.count,
        screenshot_size_bytes=shots.size_bytes,
        screenshot_size_mb=to_mb(shots.size_bytes),
        large_file_count=large.count,
        large_file_size_bytes=large.size_bytes,
        large_file_size_mb=to_mb(large.size_bytes),
        file_type_breakdown=tuple(file_type_breakdown(plan.keep)),
        total_files_analyzed=len(plan.keep) + len(plan.remove),
        total_files_removed=len(plan.remove),
        removed_files=tuple(
            RemovedFile(path=e.path, reason=plan.removal_reasons[e.path], category=e.category, size_bytes=e.size)
            for e in plan.remove
        ),
        duplicate_groups=tuple(plan.duplicate_groups),
    )


# ------------------------------- Orchestrator ------------------------------- #


class ArchiveAnalyzer:
    """Runs decode -> hash/classify -> plan -> rewrite -> report for one archive."""

    def __init__(self, config: PipelineConfig | None = None, logger: logging.Logger | None = None):
        self.config = config or PipelineConfig()
        self.logger = logger or logging.getLogger(APP_NAME)
        self.classifier = EntryClassifier(self.config)
        self.planner = CleanupPlanner()
        self.rewriter = ArchiveRewriter(self.config.compression_level)

    def analyze(self, data: bytes, filename: str = "", now: dt.datetime | None = None) -> AnalysisResult:
        ref = now or now_utc()
        self.logger.info("analysis_start file=%s bytes=%s", filename, len(data))

        with open_archive(data) as zf:
            entries, index = scan_archive(zf, self.classifier, ref)
            plan = self.planner.build_plan(entries, index)
            cleaned = self.rewriter.rewrite(zf, plan.keep_paths)

        report = build_report(plan, source_filename=filename)
        self.logger.info(
            "analysis_complete file=%s files=%s removed=%s original=%s cleaned=%s reduction=%s%%",
            filename,
            report.total_files_analyzed,
            report.total_files_removed,
            human_bytes(report.original_size_bytes),
            human_bytes(report.cleaned_size_bytes),
            report.reduction_percentage,
        )
        return AnalysisResult(report=report, cleaned_archive=cleaned)


def analyze_archive(
    data: bytes,
    filename: str = "",
    config: PipelineConfig | None = None,
    now: dt.datetime | None = None,
) -> AnalysisResult:
    return ArchiveAnalyzer(config).analyze(data, filename, now=now)


# -------------------------------- CLI -------------------------------------- #


def export_json(path: Path, obj: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(obj, indent=2, ensure_ascii=True), encoding="utf-8")


def build_parser() -> argparse.ArgumentParser:
    defaults = PipelineConfig.from_env()
    parser = argparse.ArgumentParser(
        prog="clarity",
        description="Deduplicate and clean up a ZIP archive",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--log-file", default=os.getenv("CLARITY_LOG", str(DEFAULT_LOG_FILE)), help="Log file")

    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("analyze", help="Analyze an archive and write the cleaned copy")
    p.add_argument("archive", help="Path to the ZIP archive")
    p.add_argument("--output", default=None, help="Report JSON path (default: <archive>.report.json)")
    p.add_argument("--cleaned", default=None, help="Cleaned archive path (default: <archive>.cleaned.zip)")
    p.add_argument("--stale-days", type=int, default=defaults.stale_days)
    p.add_argument("--large-file-size", default=str(defaults.large_file_threshold), help="e.g. 50MB")
    p.add_argument("--compression-level", type=int, default=defaults.compression_level)
    p.add_argument("--category-rules", default=defaults.category_rule_file, help="Custom category JSON rule file")
    p.add_argument("--report-only", action="store_true", help="Skip writing the cleaned archive")
    return parser


def command_analyze(args: argparse.Namespace, logger: logging.Logger) -> dict[str, Any]:
    source = Path(args.archive)
    if not source.is_file():
        raise FileNotFoundError(f"Archive not found: {source}")

    config = dataclasses.replace(
        PipelineConfig.from_env(),
        stale_days=args.stale_days,
        large_file_threshold=parse_size_to_bytes(args.large_file_size),
        compression_level=args.compression_level,
        category_rule_file=args.category_rules,
    )
    result = ArchiveAnalyzer(config, logger).analyze(source.read_bytes(), source.name)

    report_path = Path(args.output) if args.output else source.with_name(source.name + ".report.json")
    export_json(report_path, result.report.to_dict())
    out: dict[str, Any] = {"report": str(report_path.resolve())}

    if not args.report_only:
        cleaned_path = Path(args.cleaned) if args.cleaned else source.with_name(source.stem + ".cleaned.zip")
        cleaned_path.parent.mkdir(parents=True, exist_ok=True)
        cleaned_path.write_bytes(result.cleaned_archive)
        out["cleaned"] = str(cleaned_path.resolve())
    return out


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logger = setup_logger(Path(args.log_file))

    try:
        if args.command != "analyze":
            raise ValueError(f"Unknown command: {args.command}")
        outputs = command_analyze(args, logger)
        print(json.dumps({
            "status": "ok",
            "command": args.command,
            "outputs": outputs,
            "timestamp": now_utc_iso(),
        }, indent=2))
        return 0
    except Exception as exc:  # pylint: disable=broad-except
        logger.error("command_failed command=%s err=%s", args.command, exc)
        print(json.dumps({
            "status": "error",
            "command": getattr(args, "command", None),
            "error": str(exc),
            "timestamp": now_utc_iso(),
        }, indent=2), file=sys.stderr)
        return 1


__all__ = [
    "AnalysisReport",
    "AnalysisResult",
    "ArchiveAnalysisError",
    "ArchiveAnalyzer",
    "ArchiveEntry",
    "ArchiveRewriteError",
    "ArchiveRewriter",
    "CleanupPlan",
    "CleanupPlanner",
    "EntryClassifier",
    "HashIndex",
    "MalformedArchiveError",
    "PipelineConfig",
    "analyze_archive",
    "build_report",
    "hash_bytes",
    "hash_entry_stream",
    "removal_reason",
]


if __name__ == "__main__":
    raise SystemExit(main())
