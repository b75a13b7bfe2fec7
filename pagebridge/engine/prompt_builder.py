"""Build the agent prompt from a chat request.

Sections appear in a fixed order: page URL, target elements, attached
files, then the user's request. Empty sections are left out.
"""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Iterable, Sequence

from pagebridge.shared.models.conversation import ElementInfo

logger = logging.getLogger(__name__)

TEXT_EXTENSIONS = frozenset({
    ".txt", ".md", ".json", ".js", ".ts", ".tsx", ".jsx", ".css", ".scss",
    ".html", ".htm", ".xml", ".yaml", ".yml", ".toml", ".ini", ".cfg",
    ".py", ".rb", ".go", ".rs", ".java", ".c", ".cpp", ".h", ".hpp",
    ".sh", ".bash", ".zsh", ".fish", ".ps1", ".bat", ".cmd",
    ".sql", ".graphql", ".vue", ".svelte", ".astro",
    ".env", ".gitignore", ".dockerignore", ".editorconfig",
    ".csv", ".log", ".conf", ".properties",
})

LANG_MAP = {
    "js": "javascript",
    "ts": "typescript",
    "tsx": "tsx",
    "jsx": "jsx",
    "py": "python",
    "rb": "ruby",
    "go": "go",
    "rs": "rust",
    "java": "java",
    "c": "c",
    "cpp": "cpp",
    "h": "c",
    "hpp": "cpp",
    "css": "css",
    "scss": "scss",
    "html": "html",
    "htm": "html",
    "xml": "xml",
    "json": "json",
    "yaml": "yaml",
    "yml": "yaml",
    "md": "markdown",
    "sh": "bash",
    "bash": "bash",
    "sql": "sql",
}


def _extension(path: Path) -> str:
    # Dotfiles such as ".env" have no suffix; use the name itself.
    if path.suffix:
        return path.suffix.lower()
    if path.name.startswith("."):
        return path.name.lower()
    return ""


def element_heading(element: ElementInfo) -> str:
    """``tag#id.class1.class2`` label for an element."""
    label = element.tag_name
    if element.id_attr:
        label += f"#{element.id_attr}"
    classes = element.class_name.split()
    if classes:
        label += "." + ".".join(classes)
    return label


def _render_element(element: ElementInfo) -> str:
    parts = [
        f"### Element: {element_heading(element)}\n\n",
        f"- Selector: `{element.selector}`\n",
        f"- XPath: `{element.xpath}`\n",
    ]
    if element.comment:
        parts.append(f"- Comment: {element.comment}\n")
    parts.append(f"\n**HTML:**\n```html\n{element.outer_html}\n```\n\n")
    styles = json.dumps(element.computed_styles, indent=2, ensure_ascii=False)
    parts.append(f"**Computed styles:**\n```json\n{styles}\n```\n\n")
    return "".join(parts)


def _render_attachment(file_path: str) -> str:
    path = Path(file_path).expanduser()
    parts = [
        f"### File: {path.name}\n\n",
        f"- Path: `{file_path}`\n",
    ]
    try:
        if not path.exists():
            parts.append(f"- Error: file not found: {file_path}\n\n")
            return "".join(parts)
        if path.is_dir():
            parts.append(f"- Error: is a directory: {file_path}\n\n")
            return "".join(parts)
        ext = _extension(path)
        if ext in TEXT_EXTENSIONS:
            content = path.read_text(encoding="utf-8", errors="replace")
            lang = LANG_MAP.get(ext.lstrip("."), "")
            parts.append(f"\n**Content:**\n```{lang}\n{content}\n```\n\n")
        else:
            size = path.stat().st_size
            parts.append(f"\n*Binary file ({size} bytes)*\n\n")
    except OSError as exc:
        logger.warning("Failed to read attachment %s: %s", file_path, exc)
        parts.append(f"- Error: could not read file: {exc}\n\n")
    return "".join(parts)


def build_prompt(
    message: str,
    elements: Sequence[ElementInfo],
    page_url: str | None = None,
    attachments: Iterable[str] | None = None,
) -> str:
    """Assemble the prompt text passed to the agent with ``-p``.

    Attachments are local file paths and are read here. Text files are
    inlined in a fenced block, binary files get a size note, and
    unreadable paths get an error line.
    """
    sections: list[str] = []

    if page_url:
        sections.append(f"## Page URL\n\n{page_url}\n\n")

    if elements:
        sections.append("## Target elements\n\n")
        for element in elements:
            if not isinstance(element, ElementInfo):
                element = ElementInfo(element)
            sections.append(_render_element(element))

    attachments = list(attachments or [])
    if attachments:
        sections.append("## Attached files\n\n")
        for file_path in attachments:
            sections.append(_render_attachment(file_path))

    sections.append(f"## Request\n\n{message}")
    return "".join(sections)
