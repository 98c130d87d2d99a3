"""Input forms: new topic, new post, password change, user and forum editing."""

from dataclasses import dataclass, replace
from typing import Callable, Dict, List, Optional

from . import render
from .database import ROLES, Forum, Topic
from .keys import KeyMap, help_line
from .messages import (Command, FormKind, Message, NavigateBack, OperationFailed,
                       OperationSucceeded, PasswordChanged, PostCreated, TopicCreated, View)
from .screens import Effect, Screen

SINGLE_LINE_LIMIT = 150
MULTI_LINE_LIMIT = 4096


@dataclass
class FormField:
    name: str
    label: str
    value: str = ''
    multiline: bool = False
    secret: bool = False
    required: bool = True

    @property
    def limit(self) -> int:
        return MULTI_LINE_LIMIT if self.multiline else SINGLE_LINE_LIMIT

    def insert(self, text: str) -> None:
        if len(self.value) + len(text) <= self.limit:
            self.value += text

    def backspace(self) -> None:
        self.value = self.value[:-1]

    def display(self) -> str:
        if self.secret:
            return '*' * len(self.value)
        return self.value


Submit = Callable[[Dict[str, str], object], List[Effect]]


class FormScreen(Screen):
    """A set of text fields with one focused at a time.

    Tab and Shift+Tab cycle the focus. Enter moves to the next single-line
    field and submits from the last one; inside a multi-line field it inserts
    a newline. Ctrl+S submits from anywhere, Esc cancels. Once a submit has
    sent its command, further submits are ignored until the command fails.
    """

    view = View.FORM

    def __init__(self, kind: FormKind, label: str, fields: List[FormField], submit: Submit,
                 origin: Optional[Screen] = None) -> None:
        super().__init__()
        self.kind = kind
        self.label = label
        self.fields = fields
        self.focus = 0
        self.submit_fn = submit
        self.origin = origin
        self.submitting = False

    @property
    def focused(self) -> FormField:
        return self.fields[self.focus]

    def values(self) -> Dict[str, str]:
        values = {}
        for field in self.fields:
            text = render.sanitize_text(field.value)
            values[field.name] = text if field.secret else text.strip()
        return values

    def _last_single_line(self) -> int:
        last = -1
        for i, field in enumerate(self.fields):
            if not field.multiline:
                last = i
        return last

    def failed(self) -> None:
        super().failed()
        self.submitting = False

    def submit(self, session) -> List[Effect]:
        if self.submitting:
            return []
        values = self.values()
        for field in self.fields:
            if field.required and not values[field.name]:
                return [OperationFailed(f"{field.label} cannot be empty.")]
        effects = []
        for effect in self.submit_fn(values, session):
            if isinstance(effect, Command):
                self.submitting = True
                effect = replace(effect, origin=self)
            effects.append(effect)
        return effects

    def handle_key(self, key: str, session) -> List[Effect]:
        field = self.focused
        if KeyMap.cancel.matches(key):
            return [NavigateBack()]
        if KeyMap.submit.matches(key):
            return self.submit(session)
        if KeyMap.next_field.matches(key):
            self.focus = (self.focus + 1) % len(self.fields)
        elif KeyMap.prev_field.matches(key):
            self.focus = (self.focus - 1) % len(self.fields)
        elif key == 'enter':
            if field.multiline:
                field.insert('\n')
            elif self.focus == self._last_single_line():
                return self.submit(session)
            else:
                self.focus = (self.focus + 1) % len(self.fields)
        elif key == 'backspace':
            field.backspace()
        elif len(key) == 1 and key.isprintable():
            field.insert(key)
        return []

    def render(self, session) -> List[str]:
        lines = [render.title(self.label), '']
        for i, field in enumerate(self.fields):
            focused = i == self.focus
            marker = render.prompt('>') if focused else ' '
            lines.append(f"{marker} {field.label}:")
            text = field.display()
            if focused:
                text += '_'
            for line in text.split('\n'):
                lines.append(f"    {line}")
            lines.append('')
        if self.submitting:
            lines.append(render.footer('Saving...'))
        return lines

    def help(self, session) -> str:
        bindings = [KeyMap.next_field, KeyMap.submit, KeyMap.cancel]
        if self.focused.multiline:
            return 'enter newline • ' + help_line(*bindings)
        return help_line(*bindings)


###############################################################################
# Form factories
###############################################################################

def new_topic_form(forum: Forum, origin=None) -> FormScreen:
    def submit(values, session) -> List[Effect]:
        store, username, title = session.store, session.username, values['title']

        def run() -> Message:
            store.create_topic(forum.id, username, title)
            return TopicCreated(forum, title)
        return [Command(run, error_prefix='Failed to create topic: ')]

    fields = [FormField('title', 'Title')]
    return FormScreen(FormKind.NEW_TOPIC, 'New Topic', fields, submit, origin)


def new_post_form(topic: Topic, origin=None) -> FormScreen:
    def submit(values, session) -> List[Effect]:
        store, username, content = session.store, session.username, values['content']

        def run() -> Message:
            store.create_post(topic.id, username, content)
            return PostCreated(topic)
        return [Command(run, error_prefix='Failed to create post: ')]

    fields = [FormField('content', 'Message', multiline=True)]
    return FormScreen(FormKind.NEW_POST, 'New Post', fields, submit, origin)


def change_password_form(origin=None) -> FormScreen:
    def submit(values, session) -> List[Effect]:
        if values['new'] != values['confirm']:
            return [OperationFailed('New passwords do not match.')]
        store, username = session.store, session.username
        current, new = values['current'], values['new']

        def run() -> Message:
            store.change_password(username, current, new)
            return PasswordChanged()
        return [Command(run, error_prefix='Failed to change password: ')]

    fields = [
        FormField('current', 'Current Password', secret=True),
        FormField('new', 'New Password', secret=True),
        FormField('confirm', 'Confirm New Password', secret=True),
    ]
    return FormScreen(FormKind.CHANGE_PASSWORD, 'Change Password', fields, submit, origin)


def new_user_form(origin=None) -> FormScreen:
    def submit(values, session) -> List[Effect]:
        role = values['role'].lower()
        if role not in ROLES:
            return [OperationFailed(f"Invalid role '{values['role']}'. Use user, moderator or admin.")]
        store = session.store
        username, password = values['username'], values['password']

        def run() -> Message:
            store.create_user(username, password, role)
            return OperationSucceeded(f"User '{username}' created.", origin=origin, reload=True)
        return [Command(run, error_prefix='Failed to create user: ')]

    fields = [
        FormField('username', 'Username'),
        FormField('password', 'Password', secret=True),
        FormField('role', 'Role (user, moderator, admin)', value='user'),
    ]
    return FormScreen(FormKind.NEW_USER, 'Create User', fields, submit, origin)


def new_forum_form(origin=None) -> FormScreen:
    def submit(values, session) -> List[Effect]:
        store = session.store
        name, description = values['name'], values['description']

        def run() -> Message:
            store.create_forum(name, description)
            return OperationSucceeded(f"Forum '{name}' created.", origin=origin, reload=True)
        return [Command(run, error_prefix='Failed to create forum: ')]

    fields = [
        FormField('name', 'Name'),
        FormField('description', 'Description', multiline=True, required=False),
    ]
    return FormScreen(FormKind.NEW_FORUM, 'New Forum', fields, submit, origin)


def edit_forum_form(forum: Forum, origin=None) -> FormScreen:
    def submit(values, session) -> List[Effect]:
        store = session.store
        name, description = values['name'], values['description']

        def run() -> Message:
            store.update_forum(forum.id, name, description)
            return OperationSucceeded(f"Forum '{name}' updated.", origin=origin, reload=True)
        return [Command(run, error_prefix='Failed to update forum: ')]

    fields = [
        FormField('name', 'Name', value=forum.name),
        FormField('description', 'Description', value=forum.description,
                  multiline=True, required=False),
    ]
    return FormScreen(FormKind.EDIT_FORUM, f"Edit Forum: {forum.name}", fields, submit, origin)


def build_form(kind: FormKind, context, origin=None) -> FormScreen:
    if kind is FormKind.NEW_TOPIC:
        return new_topic_form(context, origin)
    if kind is FormKind.NEW_POST:
        return new_post_form(context, origin)
    if kind is FormKind.CHANGE_PASSWORD:
        return change_password_form(origin)
    if kind is FormKind.NEW_USER:
        return new_user_form(origin)
    if kind is FormKind.NEW_FORUM:
        return new_forum_form(origin)
    if kind is FormKind.EDIT_FORUM:
        return edit_forum_form(context, origin)
    raise ValueError(f"Unknown form kind: {kind}")
