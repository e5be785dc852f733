"""Parser for memory documents: YAML frontmatter plus ## sections."""

import logging
import re
from datetime import date, datetime, timezone
from pathlib import Path

import yaml

from squad_memory.errors import ParseError
from squad_memory.indexer.models import (
    REQUIRED_SECTIONS,
    IssueType,
    MemoryDocument,
    Risk,
    Section,
    SectionId,
)
from squad_memory.indexer.walker import compute_hash

logger = logging.getLogger(__name__)

FRONTMATTER_DELIMITER = "---"

# Level-2 headings only; ### and deeper stay inside the section
HEADING_PATTERN = re.compile(r"^##(?!#)\s+(.+?)\s*$")
FENCE_MARKERS = ("```", "~~~")

PRIORITY_RANGE = range(0, 5)

SECTION_IDS = {s.value: s for s in SectionId}


def normalize_heading(heading: str) -> str:
    """Normalize heading text to a snake_case identifier.

    "Key Files" -> "key_files", "Cross-Agent Intel" -> "cross_agent_intel"
    """
    words = re.sub(r"[^a-z0-9]+", " ", heading.lower()).split()
    return "_".join(words)


def split_frontmatter(lines: list[str], path: str) -> tuple[dict, int]:
    """
    Extract the YAML frontmatter mapping.

    Returns:
        Tuple of (frontmatter dict, 0-based index of the first body line)

    Raises:
        ParseError: If the block is missing, unterminated, or not a mapping.
    """
    if not lines or lines[0].strip() != FRONTMATTER_DELIMITER:
        raise ParseError(path, "missing frontmatter")

    end = None
    for i in range(1, len(lines)):
        if lines[i].strip() == FRONTMATTER_DELIMITER:
            end = i
            break
    if end is None:
        raise ParseError(path, "unterminated frontmatter")

    try:
        raw = yaml.safe_load("\n".join(lines[1:end]))
    except yaml.YAMLError as e:
        raise ParseError(path, f"invalid YAML frontmatter: {e}") from e

    if not isinstance(raw, dict):
        raise ParseError(path, "frontmatter is not a mapping")

    return raw, end + 1


def split_sections(lines: list[str], body_start: int) -> list[Section]:
    """
    Split the body into known sections.

    Unknown ## headings are folded into the preceding section; text before
    the first known heading is ignored. Sections with no text are dropped.
    """
    sections: list[Section] = []
    current_id: SectionId | None = None
    current_lines: list[str] = []
    heading_index = 0

    def flush(end_index: int) -> None:
        if current_id is None:
            return
        text = "\n".join(current_lines).strip()
        if not text:
            return
        first = next(i for i, line in enumerate(current_lines) if line.strip())
        sections.append(
            Section(
                section_id=current_id,
                text=text,
                start_line=heading_index + 1,
                end_line=end_index,
                text_line=heading_index + 2 + first,
            )
        )

    fence = None
    for i in range(body_start, len(lines)):
        line = lines[i]
        marker = line.lstrip()[:3]
        if marker in FENCE_MARKERS and (fence is None or marker == fence):
            fence = marker if fence is None else None
        # Headings inside fenced code blocks are body text
        match = HEADING_PATTERN.match(line) if fence is None else None
        section_id = SECTION_IDS.get(normalize_heading(match.group(1))) if match else None

        if section_id is None:
            if match and current_id is None:
                logger.debug("Ignoring heading before first section: %s", line)
            current_lines.append(line)
            continue

        flush(i)
        current_id = section_id
        current_lines = []
        heading_index = i

    flush(len(lines))
    return sections


def _parse_datetime(value, path: str) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError as e:
            raise ParseError(path, f"invalid completed timestamp {value!r}") from e
    else:
        raise ParseError(path, f"invalid completed timestamp {value!r}")

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_list(value, key: str, path: str) -> list[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value if v is not None]
    if isinstance(value, (str, int, float)):
        return [str(value)]
    raise ParseError(path, f"{key} must be a list")


def _parse_enum(enum_cls, value, key: str, path: str):
    if value is None or value == "":
        return None
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError as e:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ParseError(path, f"{key} must be one of {allowed}, got {value!r}") from e


def _parse_priority(value, path: str) -> int | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ParseError(path, f"priority must be an integer, got {value!r}")
    try:
        priority = int(value)
    except (TypeError, ValueError) as e:
        raise ParseError(path, f"priority must be an integer, got {value!r}") from e
    if priority not in PRIORITY_RANGE:
        raise ParseError(path, f"priority must be between 0 and 4, got {priority}")
    return priority


def parse_document(raw: bytes, path: str, default_project: str = "") -> MemoryDocument:
    """
    Parse the raw bytes of a memory file.

    Args:
        raw: File content as read from disk
        path: Path relative to the memory directory
        default_project: Project name used when frontmatter omits it

    Raises:
        ParseError: On undecodable bytes, bad frontmatter, or missing
            required sections.
    """
    try:
        content = raw.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise ParseError(path, f"invalid UTF-8: {e}") from e

    lines = content.splitlines()
    frontmatter, body_start = split_frontmatter(lines, path)

    task = frontmatter.get("task")
    if task is None or not str(task).strip():
        raise ParseError(path, "frontmatter field 'task' is required")

    sections = split_sections(lines, body_start)
    present = {s.section_id for s in sections}
    for required in REQUIRED_SECTIONS:
        if required not in present:
            raise ParseError(path, f"missing required section '{required.value}'")

    issue_type = frontmatter.get("type", frontmatter.get("issue_type"))

    return MemoryDocument(
        path=path,
        task_id=str(task).strip(),
        agent=str(frontmatter.get("agent") or ""),
        project=str(frontmatter.get("project") or default_project),
        completed_at=_parse_datetime(frontmatter.get("completed"), path),
        files=_parse_list(frontmatter.get("files"), "files", path),
        tags=set(_parse_list(frontmatter.get("tags"), "tags", path)),
        labels=set(_parse_list(frontmatter.get("labels"), "labels", path)),
        priority=_parse_priority(frontmatter.get("priority"), path),
        type=_parse_enum(IssueType, issue_type, "type", path),
        risk=_parse_enum(Risk, frontmatter.get("risk"), "risk", path),
        content_hash=compute_hash(raw),
        sections=sections,
    )


class DocumentStore:
    """Reads memory documents from a project's memory directory.

    Has no side effects beyond reading. I/O errors (OSError) propagate to
    the caller.
    """

    def __init__(self, memory_dir: Path, project_name: str = ""):
        self.memory_dir = memory_dir
        self.project_name = project_name

    def read_bytes(self, relative_path: str) -> bytes:
        return (self.memory_dir / relative_path).read_bytes()

    def parse(self, raw: bytes, relative_path: str) -> MemoryDocument:
        return parse_document(raw, relative_path, default_project=self.project_name)

    def load(self, relative_path: str) -> MemoryDocument:
        """Read and parse one document."""
        return self.parse(self.read_bytes(relative_path), relative_path)
