"""Tests for the conversation writer."""

import gzip
import json
from pathlib import Path

import pytest

from conftest import make_asset, make_conversation, make_workspace
from convo_vault.archive.writer import (
    ConversationWriter,
    format_markdown,
    format_project_markdown,
    format_workspace_markdown,
    sanitize,
)
from convo_vault.models import Attachment


class TestSanitize:
    def test_replaces_unsafe_characters(self) -> None:
        assert sanitize("abc/../d e:f") == "abc____d_e_f"
        assert sanitize("conv-1_ok") == "conv-1_ok"


class TestConversationWriter:
    """Tests for ConversationWriter."""

    def test_writes_json_and_markdown_by_default(self, tmp_path: Path) -> None:
        """Should write both default formats under the provider directory."""
        writer = ConversationWriter(tmp_path)
        conversation = make_conversation()

        conv_dir = writer.write(conversation)

        assert conv_dir == tmp_path / "fake" / "conversations" / "conv-1"
        doc = json.loads((conv_dir / "conversation.json").read_text())
        assert doc["id"] == "conv-1"
        assert (conv_dir / "conversation.md").read_text().startswith("# Test conversation")

    def test_gzip_format(self, tmp_path: Path) -> None:
        writer = ConversationWriter(tmp_path, formats=["json.gz"])

        conv_dir = writer.write(make_conversation())

        with gzip.open(conv_dir / "conversation.json.gz", "rt", encoding="utf-8") as f:
            assert json.load(f)["title"] == "Test conversation"
        assert not (conv_dir / "conversation.json").exists()

    def test_organize_by_date(self, tmp_path: Path) -> None:
        """Should nest conversations under their creation year and month."""
        writer = ConversationWriter(tmp_path, organize_by_date=True)
        assert writer.relative_path(make_conversation()) == "conversations/2025/03/conv-1"

    def test_rejects_unknown_format(self, tmp_path: Path) -> None:
        with pytest.raises(ValueError):
            ConversationWriter(tmp_path, formats=["pdf"])

    def test_overwrites_on_rewrite(self, tmp_path: Path) -> None:
        """Should replace an earlier copy of the same conversation."""
        writer = ConversationWriter(tmp_path, formats=["json"])
        writer.write(make_conversation(title="Old"))
        conv_dir = writer.write(make_conversation(title="New"))

        assert json.loads((conv_dir / "conversation.json").read_text())["title"] == "New"

    @pytest.mark.parametrize("formats", [["json"], ["json.gz"]])
    def test_read_back(self, tmp_path: Path, formats: list[str]) -> None:
        """Should load a stored conversation from either JSON form."""
        writer = ConversationWriter(tmp_path, formats=formats)
        conversation = make_conversation(messages=3)
        writer.write(conversation)

        restored = writer.read("fake", writer.relative_path(conversation))

        assert restored is not None
        assert len(restored.messages) == 3

    def test_read_missing(self, tmp_path: Path) -> None:
        assert ConversationWriter(tmp_path).read("fake", "conversations/none") is None


class TestFormatMarkdown:
    """Tests for the Markdown rendering."""

    def test_layout(self) -> None:
        """Should render header, messages, attachments and metadata."""
        conversation = make_conversation(
            attachments=[
                Attachment(id="img", type="image", url="https://x.test/a.png"),
                Attachment(id="doc", type="document", url="https://x.test/b.pdf"),
            ]
        )

        text = format_markdown(conversation)

        assert "**Provider:** fake" in text
        assert "**Messages:** 2" in text
        assert "## User" in text
        assert "## Assistant" in text
        assert "- ![img](https://x.test/a.png)" in text
        assert "- [document: doc](https://x.test/b.pdf)" in text
        assert text.rstrip().endswith("```")
        assert '"mediaCount": 2' in text


class TestWriteAssets:
    """Tests for ConversationWriter.write_assets."""

    def test_writes_index_and_per_type_documents(self, tmp_path: Path) -> None:
        """Should write one index plus a document per asset grouped by type."""
        writer = ConversationWriter(tmp_path)

        assets_dir = writer.write_assets("claude", [make_asset("img-1"), make_asset("doc:2", "document")])

        assert assets_dir == tmp_path / "claude" / "assets"
        index = json.loads((assets_dir / "assets-index.json").read_text())
        assert [a["id"] for a in index] == ["img-1", "doc:2"]
        assert index[0]["mimeType"] == "image/png"
        assert index[0]["createdAt"] == "2025-03-15T12:00:00.000Z"
        assert index[0]["lastUsedAt"] is None
        assert (assets_dir / "by-type" / "image" / "img-1.json").exists()
        doc = json.loads((assets_dir / "by-type" / "document" / "doc_2.json").read_text())
        assert doc["name"] == "doc:2.png"


class TestWriteWorkspaces:
    """Tests for ConversationWriter.write_workspaces."""

    def test_writes_workspace_and_project_tree(self, tmp_path: Path) -> None:
        """Should lay out index, workspace, project and file documents."""
        writer = ConversationWriter(tmp_path)

        root = writer.write_workspaces("claude", [make_workspace("ws-1")])

        index = json.loads((root / "workspaces-index.json").read_text())
        assert index[0]["projectCount"] == 1
        assert "projects" not in index[0]

        ws_dir = root / "ws-1"
        workspace = json.loads((ws_dir / "workspace.json").read_text())
        assert workspace["provider"] == "fake"
        assert "projects" not in workspace
        assert (ws_dir / "workspace.md").read_text().startswith("# Research\n")

        project_dir = ws_dir / "projects" / "proj_1"
        project = json.loads((project_dir / "project.json").read_text())
        assert project["files"][0]["path"] == "docs/notes.md"
        assert (project_dir / "project.md").exists()
        assert (project_dir / "files" / "notes_md").read_text() == "# Notes\n"

    def test_empty_list_writes_empty_index(self, tmp_path: Path) -> None:
        root = ConversationWriter(tmp_path).write_workspaces("claude", [])
        assert json.loads((root / "workspaces-index.json").read_text()) == []


class TestLibraryMarkdown:
    def test_workspace_markdown_lists_projects(self) -> None:
        text = format_workspace_markdown(make_workspace())

        assert "Shared research space" in text
        assert "**Projects:** 1" in text
        assert "### Launch plan" in text
        assert "**Type:** instructions" in text
        assert "**Last Used:**" not in text
        assert '"color": "blue"' in text

    def test_project_markdown_includes_content_and_files(self) -> None:
        project = make_workspace().projects[0]

        text = format_project_markdown(project)

        assert "## Content\n\n```\nBe concise.\n```" in text
        assert "### notes.md" in text
        assert "**Path:** docs/notes.md" in text
        assert "```markdown\n# Notes\n\n```" in text
