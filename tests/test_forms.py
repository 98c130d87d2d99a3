import types
import unittest
from unittest import mock

from modbbsd.database import Forum, Topic
from modbbsd.forms import (SINGLE_LINE_LIMIT, change_password_form, edit_forum_form,
                           new_post_form, new_topic_form, new_user_form)
from modbbsd.messages import (Command, NavigateBack, OperationFailed, OperationSucceeded,
                              PasswordChanged, PostCreated, TopicCreated)


def make_session(role: str = 'admin') -> types.SimpleNamespace:
    return types.SimpleNamespace(username='alice', role=role, store=mock.Mock(),
                                 width=80, height=24)


def type_text(form, text: str, session) -> None:
    for ch in text:
        form.handle_key(ch, session)


class FormFocusTests(unittest.TestCase):
    def setUp(self) -> None:
        self.session = make_session()
        self.form = change_password_form()

    def test_tab_cycles_with_wraparound(self) -> None:
        self.assertEqual(self.form.focus, 0)
        self.form.handle_key('tab', self.session)
        self.form.handle_key('tab', self.session)
        self.assertEqual(self.form.focus, 2)
        self.form.handle_key('tab', self.session)
        self.assertEqual(self.form.focus, 0)
        self.form.handle_key('shift+tab', self.session)
        self.assertEqual(self.form.focus, 2)

    def test_enter_advances_then_submits_from_last_field(self) -> None:
        type_text(self.form, 'old', self.session)
        self.assertEqual(self.form.handle_key('enter', self.session), [])
        self.assertEqual(self.form.focus, 1)
        type_text(self.form, 'new', self.session)
        self.form.handle_key('enter', self.session)
        type_text(self.form, 'new', self.session)
        effects = self.form.handle_key('enter', self.session)
        self.assertEqual(len(effects), 1)
        self.assertIsInstance(effects[0], Command)

    def test_escape_and_ctrl_c_cancel(self) -> None:
        self.assertEqual(self.form.handle_key('esc', self.session), [NavigateBack()])
        self.assertEqual(self.form.handle_key('ctrl+c', self.session), [NavigateBack()])

    def test_backspace(self) -> None:
        type_text(self.form, 'abc', self.session)
        self.form.handle_key('backspace', self.session)
        self.assertEqual(self.form.focused.value, 'ab')

    def test_password_fields_are_masked(self) -> None:
        type_text(self.form, 'hunter2', self.session)
        rendered = '\n'.join(self.form.render(self.session))
        self.assertNotIn('hunter2', rendered)
        self.assertIn('*******', rendered)

    def test_password_mismatch_fails_locally(self) -> None:
        self.form.fields[0].value = 'old'
        self.form.fields[1].value = 'one'
        self.form.fields[2].value = 'two'
        effects = self.form.handle_key('ctrl+s', self.session)
        self.assertEqual(len(effects), 1)
        self.assertIsInstance(effects[0], OperationFailed)

    def test_command_reports_password_changed(self) -> None:
        self.form.fields[0].value = 'old'
        self.form.fields[1].value = 'new'
        self.form.fields[2].value = 'new'
        command = self.form.handle_key('ctrl+s', self.session)[0]
        self.assertEqual(command.run(), PasswordChanged())
        self.session.store.change_password.assert_called_once_with('alice', 'old', 'new')


class FormValidationTests(unittest.TestCase):
    def setUp(self) -> None:
        self.session = make_session()
        self.forum = Forum(1, 'General')
        self.topic = Topic(7, 1, 1, 'alice', 'Hello')

    def test_empty_title_fails_without_touching_store(self) -> None:
        form = new_topic_form(self.forum)
        type_text(form, '   ', self.session)
        effects = form.handle_key('enter', self.session)
        self.assertEqual(effects, [OperationFailed('Title cannot be empty.')])
        self.assertEqual(self.session.store.mock_calls, [])

    def test_single_line_limit(self) -> None:
        form = new_topic_form(self.forum)
        type_text(form, 'x' * (SINGLE_LINE_LIMIT + 10), self.session)
        self.assertEqual(len(form.focused.value), SINGLE_LINE_LIMIT)

    def test_new_topic_command(self) -> None:
        form = new_topic_form(self.forum)
        type_text(form, ' Welcome ', self.session)
        command = form.handle_key('enter', self.session)[0]
        self.assertEqual(command.run(), TopicCreated(self.forum, 'Welcome'))
        self.session.store.create_topic.assert_called_once_with(1, 'alice', 'Welcome')

    def test_multiline_enter_inserts_newline(self) -> None:
        form = new_post_form(self.topic)
        type_text(form, 'line one', self.session)
        self.assertEqual(form.handle_key('enter', self.session), [])
        type_text(form, 'line two', self.session)
        self.assertEqual(form.focused.value, 'line one\nline two')
        command = form.handle_key('ctrl+s', self.session)[0]
        self.assertEqual(command.run(), PostCreated(self.topic))
        self.session.store.create_post.assert_called_once_with(7, 'alice', 'line one\nline two')

    def test_escape_codes_are_stripped_on_submit(self) -> None:
        form = new_topic_form(self.forum)
        form.fields[0].value = '\x1b[31mred\x1b[0m'
        command = form.handle_key('enter', self.session)[0]
        command.run()
        self.session.store.create_topic.assert_called_once_with(1, 'alice', 'red')

    def test_new_user_rejects_unknown_role(self) -> None:
        form = new_user_form()
        form.fields[0].value = 'bob'
        form.fields[1].value = 'pw'
        form.fields[2].value = 'root'
        effects = form.handle_key('ctrl+s', self.session)
        self.assertIsInstance(effects[0], OperationFailed)
        self.assertEqual(self.session.store.mock_calls, [])

    def test_edit_forum_is_prefilled(self) -> None:
        origin = object()
        form = edit_forum_form(Forum(3, 'Lobby', 'chat'), origin)
        self.assertEqual([f.value for f in form.fields], ['Lobby', 'chat'])
        command = form.handle_key('enter', self.session)[0]
        result = command.run()
        self.assertIsInstance(result, OperationSucceeded)
        self.assertIs(result.origin, origin)
        self.assertTrue(result.reload)
        self.session.store.update_forum.assert_called_once_with(3, 'Lobby', 'chat')


if __name__ == '__main__':
    unittest.main()
