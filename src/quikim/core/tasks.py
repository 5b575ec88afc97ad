"""Tasks artifacts as milestones: markdown parsing, rendering, and duplicate detection.

A ``tasks`` file is one milestone: an H1 title, an optional description, and a
``## Tasks`` checklist. The server stores the milestone and each checklist
item separately, so push splits the file and pull rebuilds it.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from quikim.core.hashing import normalize_for_comparison

_FRONTMATTER_RE = re.compile(r"\A---[ \t]*\n(.*?)\n---[ \t]*(?:\n|\Z)", re.DOTALL)
_FRONTMATTER_TITLE_RE = re.compile(r"^title:\s*(.+)$", re.MULTILINE)
_H1_RE = re.compile(r"^#\s+(.+)$", re.MULTILINE)
_H2_RE = re.compile(r"^##\s+(.+)$", re.MULTILINE)
_TASKS_HEADING_RE = re.compile(r"^#{1,2}\s+tasks?\s*$", re.IGNORECASE)
_CHECKBOX_RE = re.compile(r"^\s*[-*]\s+\[([ xX])\]\s*(.*)$")
_BULLET_RE = re.compile(r"^\s*[-*]\s+(.*)$")

_STATUS_HINTS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\b(in progress|running)\b", re.IGNORECASE), "in_progress"),
    (re.compile(r"\b(review|in queue)\b", re.IGNORECASE), "review"),
    (re.compile(r"\b(cancelled|canceled)\b", re.IGNORECASE), "cancelled"),
)


@dataclass
class ParsedTask:
    title: str
    description: str = ""
    status: str = "todo"
    required: bool = True
    order: int = 0


@dataclass
class ParsedMilestone:
    name: str
    description: str = ""
    tasks: list[ParsedTask] = field(default_factory=list)


def _split_frontmatter(content: str) -> tuple[str | None, str]:
    match = _FRONTMATTER_RE.match(content)
    if match is None:
        return None, content
    return match.group(1), content[match.end() :]


def extract_title(content: str) -> str | None:
    """Return the first H1, else the first non-"Tasks" H2, else a frontmatter ``title``."""
    frontmatter, body = _split_frontmatter(content or "")
    match = _H1_RE.search(body)
    if match:
        return match.group(1).strip()
    for match in _H2_RE.finditer(body):
        heading = match.group(0).strip()
        if not _TASKS_HEADING_RE.match(heading):
            return match.group(1).strip()
    if frontmatter:
        match = _FRONTMATTER_TITLE_RE.search(frontmatter)
        if match:
            return match.group(1).strip().strip("\"'")
    return None


def _status_for(checked: bool, text: str) -> str:
    for pattern, status in _STATUS_HINTS:
        if pattern.search(text):
            return status
    return "completed" if checked else "todo"


def parse_tasks_markdown(content: str, milestone_name: str) -> ParsedMilestone:
    """Split a tasks file into its milestone description and checklist items.

    Text before the ``## Tasks`` heading (other than headings) is the
    milestone description. Each ``- [ ]``/``- [x]`` line is a task; a trailing
    ``*`` marks it optional. Indented lines and plain bullets under a task
    extend its description. Nested checkboxes are flattened into the list.
    """
    _, body = _split_frontmatter(content or "")
    milestone = ParsedMilestone(name=extract_title(content or "") or milestone_name)
    description: list[str] = []
    in_tasks = False
    current: ParsedTask | None = None

    for line in body.splitlines():
        stripped = line.strip()
        if _TASKS_HEADING_RE.match(stripped):
            in_tasks = True
            current = None
            continue
        if not in_tasks:
            if stripped and not stripped.startswith("#"):
                description.append(stripped)
            continue

        checkbox = _CHECKBOX_RE.match(line)
        if checkbox:
            text = checkbox.group(2).strip()
            optional = text.endswith("*")
            title = text[:-1].strip() if optional else text
            if not title:
                continue
            current = ParsedTask(
                title=title,
                status=_status_for(checkbox.group(1).lower() == "x", title),
                required=not optional,
                order=len(milestone.tasks),
            )
            milestone.tasks.append(current)
            continue

        if current is None or not stripped or stripped.startswith("#"):
            continue
        if line[0].isspace() or _BULLET_RE.match(line):
            bullet = _BULLET_RE.match(line)
            extra = bullet.group(1).strip() if bullet else stripped
            if current.description:
                extra = f"{current.description}\n{extra}"
            current.description = extra

    milestone.description = "\n".join(description)
    return milestone


def render_tasks_markdown(name: str, description: str | None, tasks: list[dict]) -> str:
    """Rebuild a tasks file from a milestone and its server task records.

    Tasks are ordered by their ``order`` field. ``completed`` tasks are
    checked, and tasks that are not ``locked`` carry the optional marker.
    """
    lines = [f"# {name}", ""]
    if description and description.strip():
        lines.extend([description.strip(), ""])
    lines.extend(["## Tasks", ""])

    for task in sorted(tasks, key=lambda t: t.get("order") or 0):
        box = "[x]" if task.get("status") == "completed" else "[ ]"
        marker = "" if task.get("locked") else "*"
        lines.append(f"- {box} {str(task.get('title') or '').strip()}{marker}")
        for extra in str(task.get("description") or "").splitlines():
            if extra.strip():
                lines.append(f"  {extra.strip()}")
    return "\n".join(lines).rstrip() + "\n"


def normalize_task_description(text: str | None) -> str:
    return normalize_for_comparison(text)


def find_duplicate_task(task: ParsedTask, existing: list[dict]) -> dict | None:
    """Return the server task *task* duplicates, or ``None``.

    Tasks match on normalized description. A task with no description
    matches on normalized title instead, so untitled details never collide.
    """
    key = "description"
    wanted = normalize_task_description(task.description)
    if not wanted:
        key = "title"
        wanted = normalize_task_description(task.title)
    if not wanted:
        return None
    for record in existing:
        if normalize_task_description(str(record.get(key) or "")) == wanted:
            return record
    return None
