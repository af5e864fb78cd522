"""Token counting for outbound prompts.

Uses the ``o200k_base`` tokeniser (tiktoken).  The count is diagnostic
only: the store logs a warning when a replayed prompt exceeds the model's
prompt budget, but it never trims the prompt.

If tiktoken cannot load the BPE file (e.g. no internet access on first
run), a character-based approximation (1 token ≈ 3 characters) is used and
a warning is emitted.
"""

import logging

import tiktoken

log = logging.getLogger("copilot_chat")

#: Per-message framing overhead charged by the OpenAI message format.
TOKENS_PER_MESSAGE: int = 4

#: Reply-priming overhead added once per request.
REPLY_PRIMING_TOKENS: int = 3

try:
    _enc = tiktoken.get_encoding("o200k_base")
    log.debug("[CTX] tiktoken o200k_base encoder loaded successfully.")
except Exception:  # noqa: BLE001 – BPE download can fail offline
    _enc = None
    log.warning(
        "[CTX] tiktoken o200k_base encoder is unavailable. "
        "Falling back to approximate token counting (1 token ≈ 3 chars)."
    )


def count_text_tokens(text: str) -> int:
    """Return the token count for a plain string.

    Special-token markers such as ``<|endoftext|>`` are counted as plain
    text.
    """
    if _enc is not None:
        return len(_enc.encode(text, disallowed_special=()))
    return max(1, (len(text) + 2) // 3)


def count_message_tokens(message: dict) -> int:
    """Return the token count for one ``{"role", "content"}`` dict,
    including the :data:`TOKENS_PER_MESSAGE` framing overhead."""
    content = message.get("content", "")
    if not isinstance(content, str):
        content = str(content)
    return TOKENS_PER_MESSAGE + count_text_tokens(content)


def count_messages_tokens(messages: list[dict]) -> int:
    """Return the total token count for an outbound message list."""
    return sum(count_message_tokens(m) for m in messages) + REPLY_PRIMING_TOKENS
