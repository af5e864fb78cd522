"""
Prompt assembly for the chat completions endpoint.

Maps a transcript to the exact ``{"role", "content"}`` list that is sent.

Rules
-----
* An optional system prompt is prepended as one ``system`` entry, even if
  the transcript already carries a system message.  No de-duplication.
* Roles outside :data:`~models.VALID_ROLES` are sent as ``user``.
* Output length is ``len(transcript) + (1 if system_prompt else 0)``.
"""

from typing import Iterable

from .models import VALID_ROLES, Message


def normalise_role(role: str) -> str:
    """Return *role* when the endpoint accepts it, otherwise ``"user"``."""
    return role if role in VALID_ROLES else "user"


def build_prompt(
    transcript: Iterable[Message],
    system_prompt: str | None = None,
) -> list[dict]:
    """Return the outbound message list for *transcript*.

    Pure function: the transcript is only read, never modified.
    """
    prompt: list[dict] = []
    if system_prompt:
        prompt.append({"role": "system", "content": system_prompt})
    for msg in transcript:
        prompt.append({"role": normalise_role(msg.role), "content": msg.content})
    return prompt
