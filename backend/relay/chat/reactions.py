"""Reaction toggling.

A reaction event flips the presence of one reactor under one emoji, so two
identical events in a row cancel out.
"""
from typing import Iterable, Optional, Tuple

from .schemas import Reactions


def parse_reaction_request(
    data: dict, allowed_emojis: Iterable[str]
) -> Optional[Tuple[str, str]]:
    """Extract ``(mensajeId, emoji)`` from a ``reaccion`` payload.

    Returns:
        The trimmed pair, or None if either is blank or the emoji is not allowed.
    """
    message_id = data.get("mensajeId")
    emoji = data.get("emoji")
    if not isinstance(message_id, str) or not isinstance(emoji, str):
        return None
    message_id = message_id.strip()
    emoji = emoji.strip()
    if not message_id or not emoji or emoji not in allowed_emojis:
        return None
    return message_id, emoji


def toggle_reaction(reactions: Reactions, emoji: str, reactor_id: str) -> Reactions:
    """Return a new reactions map with *reactor_id* toggled under *emoji*.

    The input map is not modified. Emojis left without reactors are pruned.
    """
    updated: Reactions = {key: list(reactors) for key, reactors in reactions.items()}
    reactors = updated.get(emoji, [])
    if reactor_id in reactors:
        reactors = [r for r in reactors if r != reactor_id]
    else:
        reactors = reactors + [reactor_id]
    updated[emoji] = reactors
    return {key: value for key, value in updated.items() if value}
