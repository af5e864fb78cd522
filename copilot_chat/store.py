"""
Conversation store — single source of truth for conversations and request
status.

The store holds an immutable :class:`~models.StoreState` snapshot and
replaces it wholesale on every change.  Presentation code reads
:attr:`ConversationStore.state` (or subscribes to changes) and talks back
only through the command methods below.

Request pipeline
----------------
Both :meth:`ConversationStore.send_message` and the edit/replay flow in
:mod:`.edit_session` end in :meth:`ConversationStore.complete`:

1. set ``is_loading``;
2. build the prompt (:func:`~prompt_builder.build_prompt`);
3. acquire a bearer token (:meth:`check_and_refresh_token`);
4. dispatch a non-streaming request through the transport;
5. append the first choice as an assistant message, if there is one;
6. clear ``is_loading`` on every path.

Failures in steps 3–4 are logged and swallowed: the transcript is left as
it was committed before the call and no assistant turn is added.

Concurrency is last-write-wins.  A command issued while another request
is in flight works on whatever is committed at that moment, and the later
commit replaces the whole conversation.
"""

import logging
import threading
from dataclasses import replace

from .auth import AuthError
from .copilot_api import ChatRequest, TransportError, send_chat
from .models import DEFAULT_TITLE, Conversation, Message, StoreState, now_ms
from .prompt_builder import build_prompt
from .token_counter import count_messages_tokens

log = logging.getLogger("copilot_chat")

#: Auto-generated titles are cut to this many characters.
TITLE_MAX_CHARS = 40


def auto_title(conversation: Conversation) -> Conversation:
    """Title a ``"New Chat"`` conversation after its first user message."""
    if conversation.title != DEFAULT_TITLE:
        return conversation
    first = next((m for m in conversation.messages if m.role == "user"), None)
    if first is None or not first.content.strip():
        return conversation
    text = first.content.strip()
    title = text[:TITLE_MAX_CHARS]
    if len(text) > TITLE_MAX_CHARS:
        title += "…"
    return replace(conversation, title=title)


class ConversationStore:
    """Holds all conversations, the active selection and the loading flag."""

    def __init__(self, transport=send_chat,
                 token_counter=count_messages_tokens) -> None:
        self._transport = transport
        self._token_counter = token_counter
        self._state = StoreState()
        self._context = None
        self._listeners: list = []
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # State access
    # ------------------------------------------------------------------

    @property
    def state(self) -> StoreState:
        return self._state

    @property
    def context(self):
        return self._context

    @property
    def conversations(self) -> tuple[Conversation, ...]:
        return self._state.conversations

    @property
    def active_conversation_id(self) -> str | None:
        return self._state.active_conversation_id

    @property
    def messages(self) -> tuple[Message, ...]:
        return self._state.messages

    @property
    def is_loading(self) -> bool:
        return self._state.is_loading

    @property
    def active_conversation(self) -> Conversation | None:
        cid = self._state.active_conversation_id
        return self.get_conversation(cid) if cid else None

    @property
    def display_messages(self) -> tuple[Message, ...]:
        """Transcript of the active conversation, or the default one."""
        conv = self.active_conversation
        return conv.messages if conv is not None else self._state.messages

    def get_conversation(self, conversation_id: str) -> Conversation | None:
        for conv in self._state.conversations:
            if conv.id == conversation_id:
                return conv
        return None

    def subscribe(self, listener):
        """Call *listener(state)* after every change; returns an unsubscribe."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _set_state(self, **changes) -> StoreState:
        with self._lock:
            self._state = replace(self._state, **changes)
            state = self._state
        self._notify(state)
        return state

    def _apply(self, build) -> bool:
        """Replace the state with ``build(state)`` under the lock.

        *build* returns a dict of field changes, or ``None`` to leave the
        state alone.  Listeners run after the lock is released.
        """
        with self._lock:
            changes = build(self._state)
            if changes is None:
                return False
            self._state = replace(self._state, **changes)
            state = self._state
        self._notify(state)
        return True

    def _notify(self, state: StoreState) -> None:
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:  # noqa: BLE001
                log.exception("[STORE] State listener %r failed", listener)

    # ------------------------------------------------------------------
    # Service wiring
    # ------------------------------------------------------------------

    def init_conversation_service(self, context) -> None:
        """Bind the host context.  Re-binding an equal context is a no-op."""
        if self._context is not None and self._context == context:
            return
        if self._context is not None:
            log.info("[STORE] Re-binding conversation service to a new context")
        self._context = context

    def _resolve_context(self, context):
        return context if context is not None else self._context

    # ------------------------------------------------------------------
    # Conversation management
    # ------------------------------------------------------------------

    def add_conversation(self, conversation: Conversation,
                         activate: bool = True) -> Conversation:
        def build(state: StoreState) -> dict:
            if any(c.id == conversation.id for c in state.conversations):
                raise ValueError(f"Conversation {conversation.id!r} already exists")
            changes = {"conversations": state.conversations + (conversation,)}
            if activate:
                changes["active_conversation_id"] = conversation.id
            return changes

        self._apply(build)
        return conversation

    def new_conversation(self, context=None, title: str = DEFAULT_TITLE) -> Conversation:
        """Create an empty conversation on the context's default model."""
        context = self._resolve_context(context)
        kwargs = {"title": title}
        if context is not None:
            kwargs["model"] = context.default_model_option()
        return self.add_conversation(Conversation(**kwargs))

    def set_active_conversation(self, conversation_id: str | None) -> None:
        if conversation_id is not None and self.get_conversation(conversation_id) is None:
            log.debug("[STORE] Ignoring selection of unknown conversation %s",
                      conversation_id)
            return
        self._set_state(active_conversation_id=conversation_id)

    def delete_conversation(self, conversation_id: str) -> None:
        def build(state: StoreState) -> dict | None:
            remaining = tuple(c for c in state.conversations
                              if c.id != conversation_id)
            if len(remaining) == len(state.conversations):
                return None
            active = state.active_conversation_id
            if active == conversation_id:
                active = None
            return {"conversations": remaining, "active_conversation_id": active}

        self._apply(build)

    def update_conversation(self, context, conversation: Conversation) -> bool:
        """Replace the stored conversation that has ``conversation.id``.

        Returns ``False`` (and changes nothing) when no conversation has
        that id; the conversation is never appended.
        """
        def build(state: StoreState) -> dict | None:
            convs = state.conversations
            for i, existing in enumerate(convs):
                if existing.id == conversation.id:
                    return {"conversations": convs[:i] + (conversation,) + convs[i + 1:]}
            return None

        if self._apply(build):
            return True
        log.debug("[STORE] update_conversation: no conversation with id %s",
                  conversation.id)
        return False

    def commit_transcript(self, context, conversation: Conversation | None,
                          messages) -> Conversation | None:
        """Commit *messages* as the transcript of *conversation*.

        ``None`` targets the default transcript used when no conversation
        is selected.  Returns the committed conversation value.
        """
        messages = tuple(messages)
        if conversation is None:
            self._set_state(messages=messages)
            return None
        updated = conversation.with_messages(messages)
        self.update_conversation(context, updated)
        return updated

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    def check_and_refresh_token(self, context) -> str:
        """Return a valid bearer token or raise :class:`AuthError`."""
        context = self._resolve_context(context)
        if context is None or getattr(context, "credentials", None) is None:
            raise AuthError("No credential provider is configured")
        token = context.credentials.check_and_refresh_token()
        if not token:
            raise AuthError("Failed to get a valid access token")
        return token

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def send_message(self, context, content: str,
                     linked_notes=None) -> Message | None:
        """Append a user message and request the assistant's reply.

        Returns the assistant message, or ``None`` when nothing was
        appended (empty input, auth/transport failure, empty choices).
        """
        context = self._resolve_context(context)
        if context is None:
            log.warning("[STORE] send_message called before the service was initialised")
            return None
        if not content or not content.strip():
            return None

        user_msg = Message.create("user", content, linked_notes)
        conversation = self.active_conversation
        if conversation is None:
            transcript = self._state.messages + (user_msg,)
            self.commit_transcript(context, None, transcript)
        else:
            conversation = auto_title(
                conversation.with_messages(conversation.messages + (user_msg,))
            )
            transcript = conversation.messages
            self.update_conversation(context, conversation)

        return self.complete(context, conversation, transcript)

    def complete(self, context, conversation: Conversation | None,
                 transcript) -> Message | None:
        """Run the request pipeline for *transcript* and merge the reply.

        *conversation* is the committed value the reply is merged into
        (``None`` for the default transcript).  Never raises for
        credential or transport failures.
        """
        context = self._resolve_context(context)
        if context is None:
            log.warning("[STORE] complete called before the service was initialised")
            return None
        transcript = tuple(transcript)
        if conversation is not None:
            model = conversation.model.value
        else:
            model = context.default_model_option().value

        self._set_state(is_loading=True)
        try:
            prompt = build_prompt(transcript, getattr(context, "system_prompt", None))
            try:
                self._check_prompt_budget(context, model, prompt)
            except Exception as exc:  # noqa: BLE001
                log.debug("[CTX] Prompt budget check skipped: %s: %s",
                          type(exc).__name__, exc)

            token = self.check_and_refresh_token(context)
            response = self._transport(ChatRequest.for_replay(model, prompt), token)

            if not response.choices:
                log.info("[STORE] Response for model %s had no choices; "
                         "no assistant turn appended", model)
                return None

            ts = now_ms()
            reply = Message(
                id=response.id or f"{ts}-assistant",
                role="assistant",
                content=response.first_content,
                timestamp=ts,
            )
            self.commit_transcript(context, conversation, transcript + (reply,))
            return reply
        except AuthError as exc:
            log.error("[STORE] Could not obtain a Copilot token: %s", exc)
        except TransportError as exc:
            log.error("[STORE] Chat request to %s failed: %s", model, exc)
        except Exception as exc:  # noqa: BLE001
            log.error("[STORE] Unexpected error during chat request: %s: %s",
                      type(exc).__name__, exc, exc_info=True)
        finally:
            self._set_state(is_loading=False)
        return None

    def _check_prompt_budget(self, context, model: str, prompt: list[dict]) -> None:
        used = self._token_counter(prompt)
        limits = getattr(context, "model_limits", {}).get(model)
        log.debug("[CTX] Prompt for %s: %d messages, ~%d tokens",
                  model, len(prompt), used)
        if limits is not None and used > limits.max_prompt_tokens:
            log.warning(
                "[CTX] Prompt (~%d tokens) exceeds the %d-token prompt "
                "limit of %s; the endpoint may reject it.",
                used, limits.max_prompt_tokens, model,
            )
