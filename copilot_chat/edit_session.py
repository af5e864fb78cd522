"""
Edit-and-replay state machine.

States
------
* **Idle** — ``editing_index is None``.
* **Editing** — a user message has been picked; ``edit_value`` holds the
  draft.  :meth:`EditSession.cancel_edit` goes back to Idle without
  touching the transcript.
* **Replaying** — entered by :meth:`EditSession.submit_edit`.  Edit mode is
  cleared *before* anything else so the caller can show "thinking" at
  once; the truncated transcript is committed before the network call and
  is never rolled back.

The edited message is remembered by id as well as by index.  On submit
the index is re-derived from the currently committed transcript, and a
target that has disappeared in the meantime raises
:class:`EditTargetStale` instead of truncating at the wrong position.
"""

import logging

from .models import Message, find_message

log = logging.getLogger("copilot_chat")


class EditTargetStale(Exception):
    """The message being edited is no longer in its conversation."""

    def __init__(self, message_id: str, conversation_id: str | None = None) -> None:
        self.message_id = message_id
        self.conversation_id = conversation_id
        where = f"conversation {conversation_id}" if conversation_id else "the transcript"
        super().__init__(f"Message {message_id} is no longer in {where}")


class EditSession:
    """Edit state for one presentation surface, bound to a store."""

    def __init__(self, store) -> None:
        self._store = store
        self.editing_index: int | None = None
        self.edit_value: str = ""
        self._target_id: str | None = None
        self._conversation_id: str | None = None

    @property
    def is_editing(self) -> bool:
        return self.editing_index is not None

    def _reset(self) -> None:
        self.editing_index = None
        self.edit_value = ""
        self._target_id = None
        self._conversation_id = None

    def begin_edit(self, index: int) -> bool:
        """Start editing the displayed message at *index*.

        Only user messages can be edited; anything else (including an
        out-of-range index) leaves the session untouched and returns
        ``False``.
        """
        messages = self._store.display_messages
        if not 0 <= index < len(messages) or messages[index].role != "user":
            log.debug("[EDIT] Ignoring edit request for index %d", index)
            return False
        target = messages[index]
        self.editing_index = index
        self.edit_value = target.content
        self._target_id = target.id
        self._conversation_id = self._store.active_conversation_id
        return True

    def cancel_edit(self) -> None:
        self._reset()

    def submit_edit(self, context=None) -> Message | None:
        """Truncate at the edited message, commit, and replay.

        Returns the new assistant message, or ``None`` when nothing was
        appended.  Credential and transport failures are absorbed by the
        store; only a stale target raises.
        """
        if self.editing_index is None:
            return None
        context = context if context is not None else self._store.context
        if context is None:
            log.warning("[EDIT] submit_edit called before the service was initialised")
            return None

        index = self.editing_index
        draft = self.edit_value
        target_id = self._target_id
        conversation_id = self._conversation_id
        # Leave edit mode before any work so the UI is never stuck in it.
        self._reset()

        if conversation_id is None:
            log.debug("[EDIT] No active conversation; edit of the default "
                      "transcript dropped")
            return None

        store = self._store
        conversation = store.get_conversation(conversation_id)
        if conversation is None:
            raise EditTargetStale(target_id, conversation_id)
        transcript = conversation.messages

        position = find_message(transcript, target_id, hint=index)
        if position is None:
            raise EditTargetStale(target_id, conversation_id)
        if position != index:
            log.debug("[EDIT] Edit target %s moved from %d to %d",
                      target_id, index, position)

        truncated = transcript[:position] + (transcript[position].with_content(draft),)
        log.info("[EDIT] Replaying from message %d (%d message(s) discarded)",
                 position, len(transcript) - position - 1)

        committed = conversation.with_messages(truncated)
        store.update_conversation(context, committed)
        return store.complete(context, committed, truncated)
