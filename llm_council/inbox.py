"""Inbox folder scanning, frontmatter parsing, and archive logic.

An inbox item is a markdown file whose body is the question or topic.
Optional YAML frontmatter selects the mode and its options:

    ---
    mode: discussion        # council (default), roundtable or discussion
    models: openai/gpt-4o, anthropic/claude-sonnet-4-20250514
    chairman: google/gemini-2.5-pro
    roles: [optimist, pessimist]
    max_rounds: 3
    ---
"""

import shutil
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

import frontmatter

VALID_MODES = ("council", "roundtable", "discussion")


@dataclass
class InboxItem:
    path: Path
    content: str
    mode: str = "council"
    models: list[str] = field(default_factory=list)
    chairman: str | None = None
    roles: list[str] = field(default_factory=list)
    max_rounds: int | None = None


def ensure_dirs(inbox_dir: Path, archive_dir: Path) -> None:
    """Create inbox and archive directories if they don't exist."""
    inbox_dir.mkdir(parents=True, exist_ok=True)
    archive_dir.mkdir(parents=True, exist_ok=True)


def scan_inbox(inbox_dir: Path) -> list[Path]:
    """Return all .md files in inbox_dir, oldest first."""
    return sorted(inbox_dir.glob("*.md"), key=lambda p: p.stat().st_mtime)


def _as_list(value) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [v.strip() for v in value.split(",") if v.strip()]
    return [str(v).strip() for v in value if str(v).strip()]


def parse_file(file_path: Path) -> InboxItem:
    """Parse a markdown file with optional YAML frontmatter.

    Raises:
        ValueError: On an empty body, an unknown mode or a bad max_rounds.
    """
    post = frontmatter.load(str(file_path))
    content = post.content.strip()
    if not content:
        raise ValueError(f"{file_path.name} has no question")

    meta = dict(post.metadata)
    mode = str(meta.get("mode", "council")).strip().lower()
    if mode not in VALID_MODES:
        raise ValueError(f"{file_path.name}: unknown mode '{mode}'")

    max_rounds = meta.get("max_rounds")
    if max_rounds is not None:
        try:
            max_rounds = int(max_rounds)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"{file_path.name}: max_rounds must be an integer") from exc

    chairman = meta.get("chairman")
    return InboxItem(
        path=file_path,
        content=content,
        mode=mode,
        models=_as_list(meta.get("models")),
        chairman=str(chairman).strip() if chairman else None,
        roles=_as_list(meta.get("roles")),
        max_rounds=max_rounds,
    )


def archive_file(file_path: Path, archive_dir: Path, *, failed: bool = False) -> Path:
    """Move file to archive_dir with a timestamp prefix ("FAILED_" first when failed)."""
    timestamp = datetime.now().strftime("%Y-%m-%dT%H%M")
    prefix = "FAILED_" if failed else ""
    dest = archive_dir / f"{prefix}{timestamp}_{file_path.name}"
    shutil.move(str(file_path), str(dest))
    return dest
