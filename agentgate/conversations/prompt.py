"""System prompt assembly.

The prompt is rebuilt for every run so date, time and the operator's
OPERATOR.md / IDENTITY.md edits and new skills are picked up without a restart.
"""

from __future__ import annotations

import logging
import os
import platform
from datetime import datetime
from pathlib import Path

from agentgate.api.tools import ToolRegistry
from agentgate.config import Settings
from agentgate.conversations.skills import load_skills, skills_table

logger = logging.getLogger(__name__)

_OPERATOR_QUESTIONS = (
    "1. Ask the operator their name\n"
    "2. Ask their location and timezone\n"
    "3. Ask their preferred language\n"
    "4. Ask about their interests, hobbies, or work\n"
    "5. Ask any relevant personal context they're comfortable sharing (birthday, family, etc.)\n\n"
)

_IDENTITY_QUESTIONS = (
    "1. What name should I use for myself?\n"
    "2. How formal or casual should I be?\n"
    "3. Should I be concise or detailed in responses?\n"
    "4. Any other personality preferences?\n\n"
)


def _read_prompt_file(path: Path) -> str | None:
    """File content stripped, or None if the file does not exist."""
    try:
        return path.read_text(encoding="utf-8").strip()
    except FileNotFoundError:
        return None
    except OSError as e:
        logger.warning("Could not read %s: %s", path, e)
        return None


def _operator_section(prompt_dir: Path) -> str:
    path = prompt_dir / "OPERATOR.md"
    content = _read_prompt_file(path)
    section = (
        "\n\nOPERATOR.md\n"
        "Information about the operator - their preferences, context, background, and more.\n\n"
    )
    if content:
        return (
            section
            + f"{content}\n\n"
            + f"You can update {path} when you learn something new about the operator "
            "(eg. their name, birthday, what they like, etc.)."
        )

    state = "is empty" if content == "" else "does not exist"
    section += f"CRITICAL: This file {state}. Before helping with other tasks, you MUST:\n\n"
    section += _OPERATOR_QUESTIONS
    if content == "":
        return section + f"Then create {path} with this information."
    return section + f"Then create {path} with: `cat > {path} << 'EOF'\n[content here]\nEOF`"


def _identity_section(prompt_dir: Path) -> str:
    path = prompt_dir / "IDENTITY.md"
    content = _read_prompt_file(path)
    section = "\n\nIDENTITY.md\nDefines who you are - your name, personality, and how you behave.\n\n"
    if content:
        return (
            section
            + f"{content}\n\n"
            + f"You can update {path} when the operator wants you to act differently "
            "or call you differently (eg. 'Be more concise from now on')."
        )

    state = "is empty" if content == "" else "does not exist"
    section += f"CRITICAL: This file {state}. After setting up OPERATOR.md, ask the operator:\n\n"
    section += _IDENTITY_QUESTIONS
    if content == "":
        return section + f"Then create {path} with this information."
    return section + f"Then create {path} with: `cat > {path} << 'EOF'\n[content here]\nEOF`"


def _skills_section(skills_dir: str) -> str:
    skills = load_skills(skills_dir)
    if not skills:
        return ""
    example = skills[0].skill_file
    return (
        "\n\nAvailable Skills:\n"
        f"{skills_table(skills)}\n\n"
        "To use a skill, read its SKILL.md file at the provided path using the shell tool "
        f"(e.g., `cat {example}`).\n"
        "Skills follow progressive disclosure: only metadata is shown above. "
        "Full instructions are loaded on demand."
    )


def build_system_prompt(settings: Settings, registry: ToolRegistry, now: datetime | None = None) -> str:
    """Identity line, environment, tools, ReAct instructions, skills, operator files."""
    now = now or datetime.now().astimezone()
    prompt_dir = Path(settings.prompt_dir).expanduser()

    lines = [
        f"You are {settings.agent_name}, an autonomous AI agent.",
        "",
        "Environment:",
        f"- OS: {platform.system()} {platform.machine()}",
        f"- Shell: {os.environ.get('SHELL', 'unknown')}",
        f"- Working Directory: {settings.workspace}",
        f"- Date: {now.strftime('%Y-%m-%d')}",
        f"- Time: {now.strftime('%H:%M:%S %Z')}",
    ]

    descriptions = registry.descriptions()
    if descriptions:
        lines += ["", "Available tools:"]
        lines += [f"- {name}: {desc}" for name, desc in descriptions.items()]

    lines += [
        "",
        "You operate in a ReAct loop: Reason about the task, Act using tools, Observe results.",
        f"You have at most {settings.max_iterations} iterations per request. "
        "When you have enough information, reply with your final answer and no tool calls.",
    ]

    return (
        "\n".join(lines)
        + _skills_section(settings.skills_dir)
        + _operator_section(prompt_dir)
        + _identity_section(prompt_dir)
    )
