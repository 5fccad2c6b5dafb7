"""Workspace preparation for agent assignments."""

from __future__ import annotations

from pathlib import Path

from src.common.constants import INSTRUCTIONS_FILE
from src.orchestrator.errors import WorkspaceError
from src.orchestrator.models import WorkItem


def workspace_path(root: Path, agent_id: int, work_item_id: int) -> Path:
    """Directory for one (agent, work item) assignment."""
    return Path(root) / f"agent-{agent_id}" / f"work-item-{work_item_id}"


def render_instructions(
    agent_id: int,
    work_item_id: int,
    work_item: WorkItem | None = None,
) -> str:
    """Build the instructions document an agent reads on startup."""
    lines = [f"# Work Item {work_item_id}", ""]
    if work_item is not None:
        lines += [
            f"**{work_item.title}**",
            "",
            f"Priority: {work_item.priority}",
            "",
        ]
        if work_item.description:
            lines += [work_item.description.strip(), ""]
    lines += [
        f"You are agent {agent_id}. Use the current directory for all file operations.",
        "",
        'When you are done, type "exit" to close the session.',
        "",
    ]
    return "\n".join(lines)


def prepare_workspace(path: Path, instructions: str) -> Path:
    """Create *path* if needed and (re)write the instructions file inside it."""
    path = Path(path)
    try:
        path.mkdir(parents=True, exist_ok=True)
        (path / INSTRUCTIONS_FILE).write_text(instructions, encoding="utf-8")
    except OSError as exc:
        raise WorkspaceError(f"Cannot prepare workspace {path}: {exc}") from exc
    return path


def list_artifacts(path: Path) -> list[str]:
    """Files in a workspace (relative paths), excluding the instructions file."""
    path = Path(path)
    if not path.is_dir():
        return []
    return sorted(
        str(p.relative_to(path))
        for p in path.rglob("*")
        if p.is_file() and p.name != INSTRUCTIONS_FILE
    )
