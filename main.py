"""
Copilot Chat Replay — console entry point.

Run with:
    python main.py

Commands
--------
    <text>     send a message
    /edit N    edit your message number N, then type the new text
               (``/cancel`` aborts the edit)
    /list      show the transcript
    /new       start a new conversation
    /quit      exit
"""

import logging
import sys

# Require Python 3.10+ for the union-type hints used throughout the package.
if sys.version_info < (3, 10):
    sys.exit(
        "Python 3.10 or later is required.\n"
        f"You are running Python {sys.version_info.major}.{sys.version_info.minor}."
    )

from copilot_chat.auth import CredentialProvider, resolve_github_token  # noqa: E402
from copilot_chat.copilot_api import fetch_model_limits  # noqa: E402
from copilot_chat.edit_session import EditSession, EditTargetStale  # noqa: E402
from copilot_chat.settings import HostContext, load_settings  # noqa: E402
from copilot_chat.store import ConversationStore  # noqa: E402

log = logging.getLogger("copilot_chat")


def _print_transcript(store: ConversationStore) -> None:
    messages = store.display_messages
    if not messages:
        print("(no messages yet)")
        return
    for i, msg in enumerate(messages, start=1):
        name = "Copilot" if msg.role == "assistant" else msg.role.capitalize()
        print(f"[{i}] {name}: {msg.content}")


def _print_reply(store: ConversationStore, reply) -> None:
    if reply is None:
        print("⚠️  No reply (see log for details).")
    else:
        print(f"Copilot: {reply.content}")


def _run_edit(store: ConversationStore, session: EditSession,
              context: HostContext, arg: str) -> None:
    try:
        number = int(arg)
    except ValueError:
        print("Usage: /edit N")
        return
    if not session.begin_edit(number - 1):
        print(f"Message {number} is not one of your messages.")
        return
    print(f"Editing [{number}]: {session.edit_value}")
    draft = input("new text> ").strip()
    if not draft or draft == "/cancel":
        session.cancel_edit()
        print("Edit cancelled.")
        return
    session.edit_value = draft
    try:
        reply = session.submit_edit(context)
    except EditTargetStale as exc:
        print(f"⚠️  {exc}")
        return
    _print_reply(store, reply)


def main() -> None:
    settings = load_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s  %(message)s",
        datefmt="%H:%M:%S",
    )

    github_token = resolve_github_token()
    if not github_token:
        log.warning("[APP] No GitHub token found; requests will fail until "
                    "$COPILOT_GITHUB_TOKEN is set.")
    credentials = CredentialProvider(github_token)
    context = HostContext(settings=settings, credentials=credentials)

    store = ConversationStore()
    store.init_conversation_service(context)
    session = EditSession(store)
    store.new_conversation(context)

    if github_token:
        try:
            context.model_limits = fetch_model_limits(
                credentials.check_and_refresh_token(),
            )
        except Exception as exc:  # noqa: BLE001
            log.warning("[APP] Could not load model limits: %s", exc)

    print(f"Copilot Chat — model {context.default_model_option().value}. "
          f"Type /quit to exit.")
    while True:
        try:
            line = input("you> ").strip()
        except (EOFError, KeyboardInterrupt):
            print()
            break
        if not line:
            continue
        if line == "/quit":
            break
        if line == "/list":
            _print_transcript(store)
        elif line == "/new":
            store.new_conversation(context)
            print("Started a new conversation.")
        elif line.startswith("/edit"):
            _run_edit(store, session, context, line[len("/edit"):].strip())
        else:
            _print_reply(store, store.send_message(context, line))


if __name__ == "__main__":
    main()
