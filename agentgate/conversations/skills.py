"""SKILL.md discovery for the system prompt.

A skill is a directory holding a SKILL.md file that starts with YAML
front-matter:

    ---
    name: pdf-tools
    description: Split, merge and extract text from PDF files
    ---

    # Instructions ...

Only the front-matter is shown to the model. The agent reads the full
file with the shell tool when it decides to use the skill.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from agentgate.errors import SkillError

logger = logging.getLogger(__name__)

SKILL_FILE = "SKILL.md"

FRONTMATTER_PATTERN = re.compile(r"^---\s*\n(.*?)\n---\s*(?:\n(.*))?$", re.DOTALL)
NAME_PATTERN = re.compile(r"[a-z0-9]+(-[a-z0-9]+)*")
MAX_NAME_LENGTH = 64


@dataclass(frozen=True)
class Skill:
    name: str
    description: str
    path: Path
    body: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def skill_file(self) -> Path:
        return self.path / SKILL_FILE


def parse_skill(path: Path) -> Skill:
    """Load the skill in directory ``path``. Raises SkillError."""
    path = path.expanduser().resolve()
    skill_file = path / SKILL_FILE
    try:
        content = skill_file.read_text(encoding="utf-8")
    except OSError as e:
        raise SkillError(f"Cannot read {skill_file}: {e}") from e

    match = FRONTMATTER_PATTERN.match(content)
    if not match:
        raise SkillError(f"Invalid SKILL.md format (missing frontmatter): {skill_file}")

    try:
        frontmatter = yaml.safe_load(match.group(1))
    except yaml.YAMLError as e:
        raise SkillError(f"Invalid YAML frontmatter in {skill_file}: {e}") from e
    if not isinstance(frontmatter, dict):
        raise SkillError(f"Frontmatter must be a mapping: {skill_file}")

    name = str(frontmatter.get("name") or "")
    description = str(frontmatter.get("description") or "").strip()
    if not name:
        raise SkillError(f"Missing 'name' in skill frontmatter: {skill_file}")
    if not description:
        raise SkillError(f"Missing 'description' in skill frontmatter: {skill_file}")
    if len(name) > MAX_NAME_LENGTH or not NAME_PATTERN.fullmatch(name):
        raise SkillError(
            f"Invalid skill name '{name}' in {skill_file}. "
            "Must be 1-64 chars, lowercase alphanumeric and hyphens only, "
            "no leading/trailing/consecutive hyphens."
        )

    metadata = frontmatter.get("metadata")
    if not isinstance(metadata, dict):
        metadata = {}

    return Skill(
        name=name,
        description=description,
        path=path,
        body=(match.group(2) or "").strip(),
        metadata=metadata,
    )


def load_skills(skills_dir: str | Path) -> list[Skill]:
    """Every valid skill directly under ``skills_dir``, sorted by name.

    Broken skills are logged and skipped. A missing directory yields [].
    """
    root = Path(skills_dir).expanduser()
    if not root.is_dir():
        return []

    skills = []
    for entry in sorted(root.iterdir()):
        if not entry.is_dir() or not (entry / SKILL_FILE).is_file():
            continue
        try:
            skills.append(parse_skill(entry))
        except SkillError as e:
            logger.warning("Skipping skill %s: %s", entry.name, e)
    return sorted(skills, key=lambda s: s.name)


def skills_table(skills: list[Skill]) -> str:
    """Markdown table of name, description and path."""
    if not skills:
        return "No skills available."
    rows = [
        "| Skill Name | Description | Path |",
        "|------------|-------------|------|",
    ]
    rows += [f"| {s.name} | {s.description} | {s.path} |" for s in skills]
    return "\n".join(rows)
