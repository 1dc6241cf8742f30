"""
Note source for a Markdown vault.

Walks the vault for ``*.md`` files, splits off YAML frontmatter and
produces :class:`~vault_search.kb.local.models.Note` snapshots for the
indexer.  The search core never touches the filesystem itself.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
from typing import Optional

import yaml

from .local.models import Note

logger = logging.getLogger(__name__)

_FRONTMATTER_DELIM = "---"


def split_frontmatter(content: str) -> tuple[dict, str]:
    """
    Split ``---`` delimited YAML frontmatter from the body.

    Returns ``({}, content)`` when there is no frontmatter block, and
    ``({}, body)`` when the block is not a valid YAML mapping.
    """
    lines = content.splitlines(keepends=True)
    if not lines or lines[0].strip() != _FRONTMATTER_DELIM:
        return {}, content
    for idx in range(1, len(lines)):
        if lines[idx].strip() == _FRONTMATTER_DELIM:
            raw = "".join(lines[1:idx])
            body = "".join(lines[idx + 1:])
            try:
                data = yaml.safe_load(raw)
            except yaml.YAMLError as exc:
                logger.warning("Invalid frontmatter: %s", exc)
                return {}, body
            return (data if isinstance(data, dict) else {}), body
    return {}, content


def _as_tags(value) -> list[str]:
    if isinstance(value, str):
        return [t.strip().lstrip("#") for t in value.replace(",", " ").split() if t.strip()]
    if isinstance(value, list):
        return [str(t).strip().lstrip("#") for t in value if str(t).strip()]
    return []


def _as_text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, list):
        return " ".join(str(v) for v in value)
    return str(value)


def _optional_str(value) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def content_hash(text: str, metadata: dict) -> str:
    """SHA-256 over the note text and its filterable metadata."""
    h = hashlib.sha256()
    h.update(text.encode("utf-8"))
    h.update(b"\0")
    h.update(json.dumps(metadata, sort_keys=True, default=str).encode("utf-8"))
    return h.hexdigest()


class VaultNoteSource:
    """
    Produces note snapshots from a vault directory.

    Parameters
    ----------
    vault_root:
        Vault directory.
    exclude_dirs:
        Directory names skipped anywhere in the tree (hidden directories
        are always skipped).
    embed_fields:
        Frontmatter fields folded into the note text ahead of the body.
    """

    def __init__(
        self,
        vault_root: str,
        exclude_dirs: Optional[list[str]] = None,
        embed_fields: Optional[list[str]] = None,
    ) -> None:
        self.vault_root = os.path.abspath(vault_root)
        self._exclude = set(exclude_dirs if exclude_dirs is not None else ["Templates"])
        self._embed_fields = list(embed_fields if embed_fields is not None
                                  else ["title", "gist", "tags"])

    def _walk(self) -> list[str]:
        results: list[str] = []
        for dirpath, dirnames, filenames in os.walk(self.vault_root, topdown=True):
            dirnames[:] = [
                d for d in dirnames
                if not d.startswith(".") and d not in self._exclude
            ]
            for fname in filenames:
                if fname.lower().endswith(".md"):
                    results.append(os.path.join(dirpath, fname))
        return sorted(results)

    def _note_id(self, abs_path: str) -> str:
        rel = os.path.relpath(abs_path, self.vault_root)
        return os.path.splitext(rel)[0].replace(os.sep, "/")

    def load_note(self, abs_path: str) -> Note:
        """Build a :class:`Note` for one file."""
        note_id = self._note_id(abs_path)
        rel_path = os.path.relpath(abs_path, self.vault_root).replace(os.sep, "/")
        stem = os.path.splitext(os.path.basename(abs_path))[0]
        try:
            modified_at = os.path.getmtime(abs_path)
            with open(abs_path, encoding="utf-8") as fh:
                content = fh.read()
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Cannot read %s: %s", rel_path, exc)

            def _unreadable(error=exc) -> str:
                raise error

            return Note(id=note_id, text=_unreadable, content_hash="",
                        title=stem, path=rel_path)

        fm, body = split_frontmatter(content)
        title = _as_text(fm.get("title")) or stem
        tags = _as_tags(fm.get("tags"))
        parts: list[str] = []
        for field_name in self._embed_fields:
            if field_name == "title":
                parts.append(title)
            elif field_name == "tags":
                parts.append(" ".join(tags))
            else:
                parts.append(_as_text(fm.get(field_name)))
        parts.append(body)
        text = "\n".join(p for p in parts if p)

        meta = {
            "title": title,
            "type": _optional_str(fm.get("type")),
            "area": _optional_str(fm.get("area")),
            "status": _optional_str(fm.get("status")),
            "tags": tags,
        }
        return Note(
            id=note_id,
            text=text,
            content_hash=content_hash(text, meta),
            modified_at=modified_at,
            title=title,
            path=rel_path,
            note_type=meta["type"],
            area=meta["area"],
            status=meta["status"],
            tags=tags,
        )

    def list_notes(self) -> list[Note]:
        """Return a snapshot of every note in the vault, sorted by id."""
        notes = [self.load_note(p) for p in self._walk()]
        notes.sort(key=lambda n: n.id)
        return notes
