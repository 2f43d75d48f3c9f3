"""Write conversations to disk in their structured and readable forms."""

import gzip
import json
import re
from pathlib import Path

from convo_vault.logging import get_logger
from convo_vault.models import Asset, Conversation, Project, Workspace, format_timestamp

logger = get_logger("writer")

FORMAT_FILES = {
    "json": "conversation.json",
    "markdown": "conversation.md",
    "json.gz": "conversation.json.gz",
}

# Any one of these present means the conversation has content on disk
CONTENT_FILES = tuple(FORMAT_FILES.values())

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_-]")


def sanitize(name: str) -> str:
    """Make a conversation ID safe to use as a directory name."""
    return _UNSAFE_CHARS.sub("_", name)


def format_markdown(conversation: Conversation) -> str:
    """Render a conversation as a human-readable Markdown document."""
    lines = [
        f"# {conversation.title}\n",
        f"**Provider:** {conversation.provider}",
        f"**Created:** {format_timestamp(conversation.created_at)}",
        f"**Updated:** {format_timestamp(conversation.updated_at)}",
        f"**Messages:** {len(conversation.messages)}",
        "",
        "---\n",
    ]

    for message in conversation.messages:
        lines.append(f"## {message.role[:1].upper()}{message.role[1:]}")
        lines.append(f"*{format_timestamp(message.timestamp)}*\n")
        lines.append(message.content)

        if message.attachments:
            lines.append("\n**Attachments:**")
            for attachment in message.attachments:
                if attachment.type == "image":
                    lines.append(f"- ![{attachment.id}]({attachment.url})")
                else:
                    lines.append(f"- [{attachment.type}: {attachment.id}]({attachment.url})")

        lines.append("\n---\n")

    lines.append("## Metadata\n")
    lines.append("```json")
    lines.append(json.dumps(conversation.metadata.to_dict(), indent=2))
    lines.append("```")

    return "\n".join(lines)


def _metadata_block(metadata: dict) -> list[str]:
    return ["## Metadata\n", "```json", json.dumps(metadata, indent=2), "```"]


def format_workspace_markdown(workspace: Workspace) -> str:
    lines = [f"# {workspace.name}\n"]
    if workspace.description:
        lines.append(f"{workspace.description}\n")
    lines.append(f"**Created:** {format_timestamp(workspace.created_at)}")
    lines.append(f"**Updated:** {format_timestamp(workspace.updated_at)}")
    if workspace.last_used_at:
        lines.append(f"**Last Used:** {format_timestamp(workspace.last_used_at)}")
    lines.append(f"**Projects:** {len(workspace.projects)}")
    lines.extend(["", "---\n"])

    if workspace.projects:
        lines.append("## Projects\n")
        for project in workspace.projects:
            lines.append(f"### {project.name}")
            if project.description:
                lines.append(f"{project.description}\n")
            if project.type:
                lines.append(f"**Type:** {project.type}")
            lines.append(f"**Files:** {len(project.files)}")
            lines.append(f"**Updated:** {format_timestamp(project.updated_at)}")
            lines.append("")

    lines.extend(_metadata_block(workspace.metadata))
    return "\n".join(lines)


def format_project_markdown(project: Project) -> str:
    lines = [f"# {project.name}\n"]
    if project.description:
        lines.append(f"{project.description}\n")
    if project.type:
        lines.append(f"**Type:** {project.type}")
    lines.append(f"**Created:** {format_timestamp(project.created_at)}")
    lines.append(f"**Updated:** {format_timestamp(project.updated_at)}")
    if project.last_used_at:
        lines.append(f"**Last Used:** {format_timestamp(project.last_used_at)}")
    lines.append(f"**Files:** {len(project.files)}")
    lines.extend(["", "---\n"])

    if project.content:
        lines.extend(["## Content\n", "```", project.content, "```\n"])

    if project.files:
        lines.append("## Files\n")
        for file in project.files:
            lines.append(f"### {file.name}")
            if file.path:
                lines.append(f"**Path:** {file.path}")
            if file.language:
                lines.append(f"**Language:** {file.language}")
            lines.extend(["", f"```{file.language or ''}", file.content, "```\n"])

    lines.extend(_metadata_block(project.metadata))
    return "\n".join(lines)


def _write_json(path: Path, document: object) -> None:
    path.write_text(json.dumps(document, indent=2), encoding="utf-8")


class ConversationWriter:
    """Writes conversations under ``<base>/<provider>/conversations/``."""

    def __init__(
        self,
        base_dir: Path,
        formats: list[str] | None = None,
        organize_by_date: bool = False,
    ) -> None:
        self.base_dir = Path(base_dir)
        self.formats = list(formats or ["json", "markdown"])
        self.organize_by_date = organize_by_date

        for fmt in self.formats:
            if fmt not in FORMAT_FILES:
                raise ValueError(f"Unknown conversation format: {fmt}")

    def provider_dir(self, provider: str) -> Path:
        return self.base_dir / provider

    def relative_path(self, conversation: Conversation) -> str:
        """Directory of a conversation relative to its provider directory."""
        name = sanitize(conversation.id)
        if self.organize_by_date:
            created = conversation.created_at
            return f"conversations/{created.year}/{created.month:02d}/{name}"
        return f"conversations/{name}"

    def write(self, conversation: Conversation) -> Path:
        """Write every configured format and return the conversation directory."""
        conv_dir = self.provider_dir(conversation.provider) / self.relative_path(conversation)
        conv_dir.mkdir(parents=True, exist_ok=True)

        for fmt in self.formats:
            target = conv_dir / FORMAT_FILES[fmt]
            if fmt == "json":
                target.write_text(json.dumps(conversation.to_dict(), indent=2), encoding="utf-8")
            elif fmt == "json.gz":
                with gzip.open(target, "wt", encoding="utf-8") as f:
                    json.dump(conversation.to_dict(), f)
            else:
                target.write_text(format_markdown(conversation), encoding="utf-8")

        logger.info(
            "Wrote conversation: provider=%s id=%s dir=%s formats=%s",
            conversation.provider,
            conversation.id,
            conv_dir,
            ",".join(self.formats),
        )
        return conv_dir

    def read(self, provider: str, relative_path: str) -> Conversation | None:
        """Load a stored conversation from its JSON or gzipped JSON form."""
        conv_dir = self.provider_dir(provider) / relative_path

        json_path = conv_dir / FORMAT_FILES["json"]
        if json_path.exists():
            with open(json_path, encoding="utf-8") as f:
                return Conversation.from_dict(json.load(f))

        gz_path = conv_dir / FORMAT_FILES["json.gz"]
        if gz_path.exists():
            with gzip.open(gz_path, "rt", encoding="utf-8") as f:
                return Conversation.from_dict(json.load(f))

        return None

    def write_assets(self, provider: str, assets: list[Asset]) -> Path:
        """Write the asset library under ``<provider>/assets/``.

        ``assets-index.json`` lists every asset; each asset also gets its own
        document under ``by-type/<type>/``.
        """
        assets_dir = self.provider_dir(provider) / "assets"
        assets_dir.mkdir(parents=True, exist_ok=True)
        _write_json(assets_dir / "assets-index.json", [asset.to_dict() for asset in assets])

        for asset in assets:
            type_dir = assets_dir / "by-type" / sanitize(asset.type)
            type_dir.mkdir(parents=True, exist_ok=True)
            _write_json(type_dir / f"{sanitize(asset.id)}.json", asset.to_dict())

        logger.info("Wrote assets: provider=%s count=%d dir=%s", provider, len(assets), assets_dir)
        return assets_dir

    def write_workspaces(self, provider: str, workspaces: list[Workspace]) -> Path:
        """Write workspaces and their projects under ``<provider>/workspaces/``."""
        workspaces_dir = self.provider_dir(provider) / "workspaces"
        workspaces_dir.mkdir(parents=True, exist_ok=True)

        summaries = []
        for workspace in workspaces:
            summary = workspace.to_dict()
            del summary["projects"], summary["provider"]
            summary["projectCount"] = len(workspace.projects)
            summaries.append(summary)
        _write_json(workspaces_dir / "workspaces-index.json", summaries)

        for workspace in workspaces:
            workspace_dir = workspaces_dir / sanitize(workspace.id)
            workspace_dir.mkdir(parents=True, exist_ok=True)
            document = workspace.to_dict()
            del document["projects"]
            _write_json(workspace_dir / "workspace.json", document)
            (workspace_dir / "workspace.md").write_text(format_workspace_markdown(workspace), encoding="utf-8")

            for project in workspace.projects:
                self._write_project(workspace_dir / "projects" / sanitize(project.id), project)

        logger.info("Wrote workspaces: provider=%s count=%d dir=%s", provider, len(workspaces), workspaces_dir)
        return workspaces_dir

    def _write_project(self, project_dir: Path, project: Project) -> None:
        project_dir.mkdir(parents=True, exist_ok=True)
        _write_json(project_dir / "project.json", project.to_dict())
        (project_dir / "project.md").write_text(format_project_markdown(project), encoding="utf-8")

        if project.files:
            files_dir = project_dir / "files"
            files_dir.mkdir(exist_ok=True)
            for file in project.files:
                (files_dir / sanitize(file.name)).write_text(file.content, encoding="utf-8")
