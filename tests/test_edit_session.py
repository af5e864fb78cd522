"""Tests for the edit-and-replay flow in copilot_chat/edit_session.py."""

import unittest

from copilot_chat.auth import AuthError
from copilot_chat.copilot_api import TransportError
from copilot_chat.edit_session import EditSession, EditTargetStale
from copilot_chat.store import ConversationStore

from fakes import (
    FakeCredentials,
    FakeTransport,
    make_context,
    make_conversation,
    msg,
    reply_with,
)


def _contents(messages) -> list[tuple[str, str]]:
    return [(m.role, m.content) for m in messages]


class EditTestCase(unittest.TestCase):

    def setUp(self) -> None:
        self.transport = FakeTransport()
        self.store = ConversationStore(transport=self.transport)
        self.transport.store = self.store
        self.context = make_context()
        self.store.init_conversation_service(self.context)
        self.session = EditSession(self.store)

    def add(self, *turns, cid: str = "c1"):
        return self.store.add_conversation(make_conversation(*turns, cid=cid))

    def committed(self, cid: str = "c1"):
        return self.store.get_conversation(cid).messages


class TestBeginAndCancel(EditTestCase):

    def test_begin_edit_seeds_draft(self) -> None:
        self.add(("user", "q"), ("assistant", "a"))
        self.assertTrue(self.session.begin_edit(0))
        self.assertEqual(self.session.editing_index, 0)
        self.assertEqual(self.session.edit_value, "q")
        self.assertTrue(self.session.is_editing)

    def test_non_user_message_is_not_editable(self) -> None:
        self.add(("system", "s"), ("user", "q"), ("assistant", "a"))
        for index in (0, 2):
            self.assertFalse(self.session.begin_edit(index))
            self.assertIsNone(self.session.editing_index)
            self.assertEqual(self.session.edit_value, "")

    def test_out_of_range_index_ignored(self) -> None:
        self.add(("user", "q"))
        self.assertFalse(self.session.begin_edit(5))
        self.assertFalse(self.session.begin_edit(-1))
        self.assertIsNone(self.session.editing_index)

    def test_cancel_leaves_transcript_identical(self) -> None:
        conv = self.add(("user", "q"), ("assistant", "a"), ("user", "q2"))
        before = self.store.state
        self.session.begin_edit(2)
        self.session.edit_value = "something else"
        self.session.cancel_edit()

        self.assertIsNone(self.session.editing_index)
        self.assertEqual(self.session.edit_value, "")
        self.assertIs(self.store.state, before)
        self.assertEqual(self.committed(), conv.messages)
        self.assertEqual(self.transport.requests, [])

    def test_submit_without_edit_is_noop(self) -> None:
        self.add(("user", "q"))
        self.assertIsNone(self.session.submit_edit(self.context))
        self.assertEqual(self.transport.requests, [])


class TestSubmitEdit(EditTestCase):

    def test_end_to_end_replay(self) -> None:
        self.add(("user", "2+2?"), ("assistant", "4"), ("user", "and 3+3?"))
        self.transport.replies.append(reply_with("6"))
        transcripts_at_dispatch = []
        self.transport.on_call = lambda: transcripts_at_dispatch.append(
            _contents(self.committed()))

        self.session.begin_edit(0)
        self.session.edit_value = "3+3?"
        reply = self.session.submit_edit(self.context)

        self.assertEqual(transcripts_at_dispatch, [[("user", "3+3?")]])
        self.assertEqual(reply.content, "6")
        self.assertEqual(_contents(self.committed()),
                         [("user", "3+3?"), ("assistant", "6")])
        self.assertFalse(self.store.is_loading)
        self.assertEqual(self.transport.requests[0].messages,
                         [{"role": "user", "content": "3+3?"}])

    def test_truncation_keeps_other_fields(self) -> None:
        conv = self.add(("user", "a"), ("assistant", "b"), ("user", "c"),
                        ("assistant", "d"), ("user", "e"))
        self.transport.replies.append(reply_with())
        original = conv.messages[2]

        self.session.begin_edit(2)
        self.session.edit_value = "C!"
        self.session.submit_edit(self.context)

        result = self.committed()
        self.assertEqual(result[:2], conv.messages[:2])
        self.assertEqual(len(result), 3)
        edited = result[2]
        self.assertEqual(edited.content, "C!")
        self.assertEqual(edited.id, original.id)
        self.assertEqual(edited.role, original.role)
        self.assertEqual(edited.timestamp, original.timestamp)

    def test_edit_mode_cleared_before_dispatch(self) -> None:
        self.add(("user", "q"))
        states = []
        self.transport.on_call = lambda: states.append(
            (self.session.editing_index, self.session.edit_value))
        self.transport.replies.append(reply_with("a"))

        self.session.begin_edit(0)
        self.session.edit_value = "q'"
        self.session.submit_edit(self.context)
        self.assertEqual(states, [(None, "")])

    def test_zero_choices_leaves_truncated_transcript(self) -> None:
        self.add(("user", "q"), ("assistant", "a"), ("user", "q2"))
        self.transport.replies.append(reply_with())

        self.session.begin_edit(0)
        self.session.edit_value = "new"
        self.assertIsNone(self.session.submit_edit(self.context))
        self.assertEqual(_contents(self.committed()), [("user", "new")])
        self.assertFalse(self.store.is_loading)

    def test_transport_failure_keeps_truncation(self) -> None:
        self.add(("user", "q"), ("assistant", "a"), ("user", "q2"), ("assistant", "a2"))
        self.transport.replies.append(TransportError("gateway", status_code=502))

        self.session.begin_edit(2)
        self.session.edit_value = "q2'"
        with self.assertLogs("copilot_chat", level="ERROR"):
            self.assertIsNone(self.session.submit_edit(self.context))
        self.assertEqual(_contents(self.committed()),
                         [("user", "q"), ("assistant", "a"), ("user", "q2'")])
        self.assertFalse(self.store.is_loading)

    def test_auth_failure_skips_dispatch_and_keeps_truncation(self) -> None:
        self.add(("user", "q"), ("assistant", "a"))
        ctx = make_context(credentials=FakeCredentials(error=AuthError("no token")))

        self.session.begin_edit(0)
        self.session.edit_value = "q'"
        with self.assertLogs("copilot_chat", level="ERROR"):
            self.assertIsNone(self.session.submit_edit(ctx))
        self.assertEqual(self.transport.requests, [])
        self.assertEqual(_contents(self.committed()), [("user", "q'")])
        self.assertFalse(self.store.is_loading)

    def test_system_prompt_prepended_on_replay(self) -> None:
        self.add(("user", "q"))
        self.transport.replies.append(reply_with("a"))
        self.session.begin_edit(0)
        self.session.submit_edit(make_context(system_prompt="Be brief."))
        self.assertEqual(self.transport.requests[0].messages, [
            {"role": "system", "content": "Be brief."},
            {"role": "user", "content": "q"},
        ])

    def test_submit_without_active_conversation_is_noop(self) -> None:
        self.store.commit_transcript(self.context, None,
                                     [msg("user", "x", "m0"), msg("assistant", "y", "m1")])
        before = self.store.messages
        self.transport.replies.append(reply_with("z"))

        self.assertTrue(self.session.begin_edit(0))
        self.session.edit_value = "x'"
        self.assertIsNone(self.session.submit_edit(self.context))

        self.assertIsNone(self.session.editing_index)
        self.assertEqual(self.session.edit_value, "")
        self.assertEqual(self.store.messages, before)
        self.assertEqual(self.transport.requests, [])
        self.assertFalse(self.store.is_loading)

    def test_edit_targets_conversation_chosen_at_begin(self) -> None:
        self.add(("user", "q"), ("assistant", "a"), cid="c1")
        self.add(("user", "other"), cid="c2")
        self.store.set_active_conversation("c1")
        self.transport.replies.append(reply_with("a'"))

        self.session.begin_edit(0)
        self.store.set_active_conversation("c2")
        self.session.edit_value = "q'"
        self.session.submit_edit(self.context)

        self.assertEqual(_contents(self.committed("c1")),
                         [("user", "q'"), ("assistant", "a'")])
        self.assertEqual(_contents(self.committed("c2")), [("user", "other")])


class TestStaleTarget(EditTestCase):

    def test_removed_message_raises(self) -> None:
        conv = self.add(("user", "q"), ("assistant", "a"), ("user", "q2"))
        self.session.begin_edit(2)
        self.store.update_conversation(self.context,
                                       conv.with_messages(conv.messages[:2]))
        with self.assertRaises(EditTargetStale) as ctx:
            self.session.submit_edit(self.context)
        self.assertEqual(ctx.exception.message_id, "m2")
        self.assertIsNone(self.session.editing_index)
        self.assertEqual(self.transport.requests, [])

    def test_deleted_conversation_raises(self) -> None:
        self.add(("user", "q"))
        self.session.begin_edit(0)
        self.store.delete_conversation("c1")
        with self.assertRaises(EditTargetStale):
            self.session.submit_edit(self.context)

    def test_moved_message_is_found_by_id(self) -> None:
        conv = self.add(("user", "q"), ("assistant", "a"), ("user", "q2"))
        self.session.begin_edit(2)
        # Something removed the first exchange; the target now sits at 0.
        self.store.update_conversation(self.context,
                                       conv.with_messages(conv.messages[2:]))
        self.transport.replies.append(reply_with("ok"))
        self.session.edit_value = "q2'"
        self.session.submit_edit(self.context)
        self.assertEqual(_contents(self.committed()),
                         [("user", "q2'"), ("assistant", "ok")])


class TestReentrancy(EditTestCase):
    """A second command issued while a request is in flight works on the
    committed state of that moment; the last commit wins."""

    def test_second_submit_truncates_first_commit(self) -> None:
        self.add(("user", "q0"), ("assistant", "a0"), ("user", "q1"), ("assistant", "a1"))
        second = EditSession(self.store)
        seen_by_second = []

        def interleave() -> None:
            # The first edit has already committed [q0, a0, q1'].
            seen_by_second.append(_contents(self.committed()))
            second.begin_edit(0)
            second.edit_value = "q0'"
            second.submit_edit(self.context)

        self.transport.on_call = interleave
        self.transport.replies.extend([reply_with("first"), reply_with("second")])

        self.session.begin_edit(2)
        self.session.edit_value = "q1'"
        self.session.submit_edit(self.context)

        self.assertEqual(seen_by_second,
                         [[("user", "q0"), ("assistant", "a0"), ("user", "q1'")]])
        # The inner replay replies with the first queued response …
        self.assertEqual(len(self.transport.requests), 2)
        self.assertEqual(self.transport.requests[1].messages,
                         [{"role": "user", "content": "q0'"}])
        # … and the outer request, finishing last, overwrites it.
        self.assertEqual(_contents(self.committed()),
                         [("user", "q0"), ("assistant", "a0"),
                          ("user", "q1'"), ("assistant", "second")])
        self.assertFalse(self.store.is_loading)

    def test_send_while_replaying(self) -> None:
        self.add(("user", "q"), ("assistant", "a"))
        self.transport.on_call = lambda: self.store.send_message(self.context, "extra")
        self.transport.replies.extend([reply_with("to-extra"), reply_with("to-edit")])

        self.session.begin_edit(0)
        self.session.edit_value = "q'"
        self.session.submit_edit(self.context)

        self.assertEqual(self.transport.requests[1].messages,
                         [{"role": "user", "content": "q'"},
                          {"role": "user", "content": "extra"}])
        self.assertEqual(_contents(self.committed()),
                         [("user", "q'"), ("assistant", "to-edit")])
        self.assertFalse(self.store.is_loading)

    def test_cancel_does_not_stop_running_replay(self) -> None:
        self.add(("user", "q"))
        self.transport.on_call = self.session.cancel_edit
        self.transport.replies.append(reply_with("done"))

        self.session.begin_edit(0)
        self.session.submit_edit(self.context)
        self.assertEqual(_contents(self.committed()),
                         [("user", "q"), ("assistant", "done")])


if __name__ == "__main__":
    unittest.main()
