"""
Tests for the Markdown vault note source: frontmatter parsing, note ids,
directory exclusion and unreadable files.
"""

from __future__ import annotations

import pytest


def _write(root, rel: str, content) -> None:
    path = root / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(content, bytes):
        path.write_bytes(content)
    else:
        path.write_text(content, encoding="utf-8")


# ---------------------------------------------------------------------------
# Frontmatter
# ---------------------------------------------------------------------------

class TestSplitFrontmatter:

    def test_with_frontmatter(self):
        from vault_search.kb.vault import split_frontmatter
        fm, body = split_frontmatter("---\ntitle: Rust\ntype: note\n---\nBody text\n")
        assert fm == {"title": "Rust", "type": "note"}
        assert body == "Body text\n"

    def test_without_frontmatter(self):
        from vault_search.kb.vault import split_frontmatter
        assert split_frontmatter("Just text") == ({}, "Just text")

    def test_unterminated_block(self):
        from vault_search.kb.vault import split_frontmatter
        content = "---\ntitle: Rust\nno closing line"
        assert split_frontmatter(content) == ({}, content)

    def test_invalid_yaml(self):
        from vault_search.kb.vault import split_frontmatter
        fm, body = split_frontmatter("---\ntitle: [unclosed\n---\nbody")
        assert fm == {}
        assert body == "body"

    def test_non_mapping_yaml(self):
        from vault_search.kb.vault import split_frontmatter
        fm, body = split_frontmatter("---\n- a\n- b\n---\nbody")
        assert fm == {}
        assert body == "body"


# ---------------------------------------------------------------------------
# VaultNoteSource
# ---------------------------------------------------------------------------

class TestVaultNoteSource:

    def test_note_ids_and_exclusions(self, tmp_path):
        from vault_search.kb.vault import VaultNoteSource
        _write(tmp_path, "Inbox.md", "inbox")
        _write(tmp_path, "Notes/Rust Ownership.md", "rust")
        _write(tmp_path, "Templates/Daily.md", "template")
        _write(tmp_path, ".obsidian/cache.md", "hidden")
        _write(tmp_path, "Notes/image.png", "not a note")
        notes = VaultNoteSource(str(tmp_path)).list_notes()
        assert [n.id for n in notes] == ["Inbox", "Notes/Rust Ownership"]
        assert notes[1].path == "Notes/Rust Ownership.md"

    def test_frontmatter_metadata_and_text(self, tmp_path):
        from vault_search.kb.vault import VaultNoteSource
        _write(tmp_path, "Notes/rust.md", (
            "---\n"
            "title: Rust Ownership\n"
            "type: concept\n"
            "area: programming\n"
            "status: active\n"
            "gist: Borrowing rules\n"
            "tags: [rust, '#memory']\n"
            "---\n"
            "Body about lifetimes.\n"
        ))
        note = VaultNoteSource(str(tmp_path)).list_notes()[0]
        assert note.title == "Rust Ownership"
        assert note.note_type == "concept"
        assert note.area == "programming"
        assert note.status == "active"
        assert note.tags == ["rust", "memory"]
        text = note.read_text()
        assert "Rust Ownership" in text
        assert "Borrowing rules" in text
        assert "Body about lifetimes." in text
        assert "type: concept" not in text

    def test_title_defaults_to_file_stem(self, tmp_path):
        from vault_search.kb.vault import VaultNoteSource
        _write(tmp_path, "Plain Note.md", "no frontmatter")
        note = VaultNoteSource(str(tmp_path)).list_notes()[0]
        assert note.title == "Plain Note"
        assert note.note_type is None

    def test_hash_changes_with_metadata(self, tmp_path):
        from vault_search.kb.vault import VaultNoteSource
        source = VaultNoteSource(str(tmp_path))
        _write(tmp_path, "a.md", "---\nstatus: active\n---\nbody")
        before = source.list_notes()[0].content_hash
        _write(tmp_path, "a.md", "---\nstatus: done\n---\nbody")
        after = source.list_notes()[0].content_hash
        assert before != after
        _write(tmp_path, "a.md", "---\nstatus: done\n---\nbody")
        assert source.list_notes()[0].content_hash == after

    def test_unreadable_file_raises_content_read_error(self, tmp_path):
        from vault_search.errors import ContentReadError
        from vault_search.kb.vault import VaultNoteSource
        _write(tmp_path, "bad.md", b"\xff\xfe\xfa broken")
        note = VaultNoteSource(str(tmp_path)).list_notes()[0]
        assert note.id == "bad"
        with pytest.raises(ContentReadError):
            note.read_text()

    def test_custom_exclusions(self, tmp_path):
        from vault_search.kb.vault import VaultNoteSource
        _write(tmp_path, "Archive/old.md", "old")
        _write(tmp_path, "Templates/t.md", "template")
        source = VaultNoteSource(str(tmp_path), exclude_dirs=["Archive"])
        assert [n.id for n in source.list_notes()] == ["Templates/t"]


# ---------------------------------------------------------------------------
# Note records
# ---------------------------------------------------------------------------

class TestNote:

    def test_read_text_variants(self):
        from vault_search.errors import ContentReadError
        from vault_search.kb.local.models import Note
        assert Note(id="a", text="hello", content_hash="h").read_text() == "hello"
        assert Note(id="a", text=lambda: "lazy", content_hash="h").read_text() == "lazy"
        with pytest.raises(ContentReadError):
            Note(id="a", text=None, content_hash="h").read_text()
        with pytest.raises(ContentReadError):
            Note(id="a", text=lambda: b"bytes", content_hash="h").read_text()

    def test_metadata(self):
        from vault_search.kb.local.models import Note
        note = Note(id="a", text="", content_hash="h", note_type="project", area="work")
        assert note.metadata() == {"type": "project", "area": "work", "status": None}
