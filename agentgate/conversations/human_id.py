"""Human-readable conversation ids: color-animal-NNN (e.g. ``teal-otter-417``).

Ids are stored and compared in lowercase.
"""

from __future__ import annotations

import random

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from agentgate.errors import IdGenerationError
from agentgate.storage.models import Conversation

MAX_RETRIES = 10

COLORS = (
    "amber", "azure", "beige", "black", "blue", "bronze", "brown", "coral",
    "crimson", "cyan", "gold", "gray", "green", "indigo", "ivory", "jade",
    "khaki", "lavender", "lemon", "lilac", "lime", "magenta", "maroon", "mint",
    "navy", "olive", "orange", "peach", "pink", "plum", "purple", "red",
    "rose", "ruby", "rust", "salmon", "sand", "scarlet", "silver", "tan",
    "teal", "turquoise", "violet", "white", "yellow",
)

ANIMALS = (
    "badger", "bat", "bear", "beaver", "bison", "boar", "camel", "cat",
    "cobra", "crab", "crane", "crow", "deer", "dog", "dolphin", "donkey",
    "duck", "eagle", "falcon", "ferret", "finch", "fox", "frog", "gecko",
    "goat", "goose", "hare", "hawk", "heron", "horse", "ibis", "jaguar",
    "koala", "lemur", "lion", "llama", "lynx", "magpie", "mole", "moose",
    "mouse", "newt", "otter", "owl", "panda", "parrot", "pelican", "pony",
    "puma", "rabbit", "raven", "seal", "shark", "sheep", "sloth", "swan",
    "tiger", "toad", "trout", "turtle", "viper", "walrus", "wolf", "wombat",
    "yak", "zebra",
)


def normalize(identifier: str | None) -> str:
    """Lowercase and strip an id for storage and comparison."""
    return (identifier or "").strip().lower()


def build_id(rng: random.Random | None = None) -> str:
    """Build a single id candidate."""
    rng = rng or random
    return f"{rng.choice(COLORS)}-{rng.choice(ANIMALS)}-{rng.randint(100, 999)}"


async def exists(session: AsyncSession, identifier: str) -> bool:
    """Case-insensitive check against stored conversation ids."""
    result = await session.execute(
        select(func.count()).select_from(Conversation).where(func.lower(Conversation.id) == normalize(identifier))
    )
    return (result.scalar() or 0) > 0


async def generate(session: AsyncSession, rng: random.Random | None = None) -> str:
    """Generate an id that is not yet used in the store.

    Raises IdGenerationError after MAX_RETRIES collisions.
    """
    for _ in range(MAX_RETRIES):
        candidate = build_id(rng)
        if not await exists(session, candidate):
            return candidate
    raise IdGenerationError(f"Failed to generate unique ID after {MAX_RETRIES} attempts")
