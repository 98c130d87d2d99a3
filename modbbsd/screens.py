"""Screen state machines.

Each screen owns its own cursor, loaded list and overlay state. Screens never
touch the session's navigation state: ``handle_key`` returns the messages and
commands it wants the controller to act on, and store access always goes
through a :class:`~modbbsd.messages.Command` run off the session loop.
"""

import enum
import textwrap
from typing import Any, Callable, List, Optional, Sequence, Tuple, Union

from . import render
from .database import Forum, Topic, User
from .keys import KeyMap, help_line
from .messages import (Command, DataLoaded, FormKind, Message, Navigate, NavigateBack,
                       OperationFailed, OperationSucceeded, Quit, View)

Effect = Union[Message, Command]

ROLE_RANK = {'user': 0, 'moderator': 1, 'admin': 2}

# Lines taken by the breadcrumb header, status line and footer.
CHROME_LINES = 6


def has_role(role: str, minimum: str) -> bool:
    """True if ``role`` is at least ``minimum`` in user < moderator < admin."""
    return ROLE_RANK.get(role, -1) >= ROLE_RANK[minimum]


def visible_window(count: int, cursor: int, height: int) -> Tuple[int, int]:
    """Return the [start, end) slice of a list that keeps the cursor on screen."""
    height = max(height, 1)
    if count <= height:
        return 0, count
    start = min(max(cursor - height // 2, 0), count - height)
    return start, start + height


###############################################################################
# Base classes
###############################################################################

class Screen:
    """Common behaviour: a cursor and an optional asynchronously loaded list."""

    view: View
    label = ''

    def __init__(self) -> None:
        self.cursor = 0
        self.items: List[Any] = []
        self.loading = False
        # Bumped on every load so older results can be recognised and dropped.
        self.load_seq = 0

    def load(self, session) -> Optional[Command]:
        """Return the command that (re)loads this screen's data, if any."""
        return None

    def _list_command(self, fetch: Callable[[], Sequence[Any]], what: str) -> Command:
        self.load_seq += 1
        self.loading = True
        seq = self.load_seq
        return Command(lambda: DataLoaded(self, seq, tuple(fetch())),
                       error_prefix=f"Failed to load {what}: ", origin=self)

    def loaded(self, items: Sequence[Any]) -> None:
        self.items = list(items)
        self.loading = False
        if self.cursor >= len(self.items):
            self.cursor = max(len(self.items) - 1, 0)

    def failed(self) -> None:
        """Undo whatever a failed command had marked as in progress."""
        self.loading = False

    def move_cursor(self, key: str, count: int) -> bool:
        if KeyMap.up.matches(key):
            if self.cursor > 0:
                self.cursor -= 1
            return True
        if KeyMap.down.matches(key):
            if self.cursor < count - 1:
                self.cursor += 1
            return True
        return False

    def selected(self) -> Any:
        if not self.items:
            return None
        return self.items[self.cursor]

    def handle_key(self, key: str, session) -> List[Effect]:
        return []

    def render(self, session) -> List[str]:
        return []

    def help(self, session) -> str:
        return ''


class MenuScreen(Screen):
    """A fixed list of choices; Enter acts on the highlighted one."""

    def __init__(self, choices: List[str]) -> None:
        super().__init__()
        self.choices = choices

    def choose(self, choice: str, session) -> List[Effect]:
        raise NotImplementedError

    def handle_key(self, key: str, session) -> List[Effect]:
        if self.move_cursor(key, len(self.choices)):
            return []
        if KeyMap.enter.matches(key):
            return self.choose(self.choices[self.cursor], session)
        if KeyMap.back.matches(key):
            return [NavigateBack()]
        return []

    def render(self, session) -> List[str]:
        return render.menu(self.choices, self.cursor)

    def help(self, session) -> str:
        return help_line(KeyMap.up, KeyMap.down, KeyMap.enter, KeyMap.back)


class ConfirmingListScreen(Screen):
    """A list screen with a delete confirmation overlay.

    While ``confirming`` is set every key other than confirm/deny is ignored.
    """

    def __init__(self) -> None:
        super().__init__()
        self.confirming = False

    def delete_command(self, item: Any, session) -> Command:
        raise NotImplementedError

    def describe(self, item: Any) -> str:
        raise NotImplementedError

    def request_delete(self, session) -> List[Effect]:
        if has_role(session.role, 'moderator') and self.items:
            self.confirming = True
        return []

    def handle_confirmation(self, key: str, session) -> List[Effect]:
        if KeyMap.confirm.matches(key):
            self.confirming = False
            item = self.selected()
            if item is None:
                return []
            return [self.delete_command(item, session)]
        if KeyMap.deny.matches(key):
            self.confirming = False
        return []

    def confirmation_lines(self) -> List[str]:
        if not self.confirming or not self.items:
            return []
        return ['', render.prompt(f"Delete {self.describe(self.selected())}? (y/n)")]


###############################################################################
# Main menu, settings and administration
###############################################################################

class MainMenuScreen(MenuScreen):
    view = View.MAIN_MENU
    label = 'Home'

    def __init__(self, role: str) -> None:
        choices = ['Forums', 'Settings']
        if role == 'admin':
            choices.append('Administration')
        choices.append('Quit')
        super().__init__(choices)

    def choose(self, choice: str, session) -> List[Effect]:
        if choice == 'Forums':
            return [Navigate(View.FORUMS)]
        if choice == 'Settings':
            return [Navigate(View.SETTINGS)]
        if choice == 'Administration':
            return [Navigate(View.ADMIN)]
        return [Quit()]

    def handle_key(self, key: str, session) -> List[Effect]:
        if KeyMap.quit.matches(key):
            return [Quit()]
        return super().handle_key(key, session)

    def render(self, session) -> List[str]:
        return [f"Welcome to modbbsd, {session.username}!", ''] + super().render(session)

    def help(self, session) -> str:
        return help_line(KeyMap.up, KeyMap.down, KeyMap.enter, KeyMap.quit)


class SettingsScreen(MenuScreen):
    view = View.SETTINGS
    label = 'Settings'

    def __init__(self, role: str) -> None:
        choices = ['Change Password']
        if has_role(role, 'moderator'):
            choices.append('Manage Users')
        if role == 'admin':
            choices.append('Create User')
        super().__init__(choices)

    def choose(self, choice: str, session) -> List[Effect]:
        if choice == 'Change Password':
            return [Navigate(View.FORM, form=FormKind.CHANGE_PASSWORD)]
        if choice == 'Manage Users':
            return [Navigate(View.USER_MANAGEMENT)]
        if choice == 'Create User':
            return [Navigate(View.FORM, form=FormKind.NEW_USER)]
        return []

    def render(self, session) -> List[str]:
        return ['Select a setting:', ''] + super().render(session)


class AdminScreen(MenuScreen):
    view = View.ADMIN
    label = 'Administration'

    DESCRIPTIONS = {
        'User Management': 'Change roles, delete users, reset passwords',
        'Forum Management': 'Create, edit and delete forums',
    }

    def __init__(self) -> None:
        super().__init__(['User Management', 'Forum Management'])

    def choose(self, choice: str, session) -> List[Effect]:
        if choice == 'User Management':
            return [Navigate(View.USER_MANAGEMENT)]
        return [Navigate(View.FORUM_MANAGEMENT)]

    def render(self, session) -> List[str]:
        lines = [render.title('Administration'), '']
        for i, choice in enumerate(self.choices):
            lines.append(render.item(choice, i == self.cursor))
            lines.append(render.footer(f"    {self.DESCRIPTIONS[choice]}"))
        return lines


###############################################################################
# Forums, topics and posts
###############################################################################

class ForumsScreen(Screen):
    view = View.FORUMS
    label = 'Forums'

    def load(self, session) -> Optional[Command]:
        return self._list_command(session.store.list_forums, 'forums')

    def handle_key(self, key: str, session) -> List[Effect]:
        if self.move_cursor(key, len(self.items)):
            return []
        if KeyMap.enter.matches(key):
            forum = self.selected()
            if forum is not None:
                return [Navigate(View.TOPICS, forum)]
        elif KeyMap.back.matches(key):
            return [NavigateBack()]
        elif KeyMap.quit.matches(key):
            return [Quit()]
        return []

    def render(self, session) -> List[str]:
        if self.loading and not self.items:
            return ['Loading forums...']
        if not self.items:
            return ['No forums yet.']
        start, end = visible_window(len(self.items), self.cursor, session.height - CHROME_LINES)
        lines = []
        for i in range(start, end):
            forum = self.items[i]
            text = forum.name
            if forum.description:
                text += render.footer(f" - {forum.description.splitlines()[0]}")
            lines.append(render.item(text, i == self.cursor))
        return lines

    def help(self, session) -> str:
        return help_line(KeyMap.up, KeyMap.down, KeyMap.enter, KeyMap.back, KeyMap.quit)


class TopicsScreen(ConfirmingListScreen):
    view = View.TOPICS

    def __init__(self, forum: Forum) -> None:
        super().__init__()
        self.forum = forum
        self.label = forum.name

    def load(self, session) -> Optional[Command]:
        forum_id = self.forum.id
        return self._list_command(lambda: session.store.list_topics(forum_id), 'topics')

    def delete_command(self, topic: Topic, session) -> Command:
        store = session.store

        def run() -> Message:
            store.delete_topic(topic.id)
            return OperationSucceeded(f"Topic '{topic.title}' deleted.", origin=self, reload=True)
        return Command(run, error_prefix='Failed to delete topic: ')

    def describe(self, topic: Topic) -> str:
        return f"topic '{topic.title}'"

    def handle_key(self, key: str, session) -> List[Effect]:
        if self.confirming:
            return self.handle_confirmation(key, session)
        if self.move_cursor(key, len(self.items)):
            return []
        if KeyMap.enter.matches(key):
            topic = self.selected()
            if topic is not None:
                return [Navigate(View.POSTS, topic)]
        elif KeyMap.new.matches(key):
            if has_role(session.role, 'moderator'):
                return [Navigate(View.FORM, self.forum, FormKind.NEW_TOPIC)]
        elif KeyMap.delete.matches(key):
            return self.request_delete(session)
        elif KeyMap.back.matches(key):
            return [NavigateBack()]
        elif KeyMap.quit.matches(key):
            return [Quit()]
        return []

    def render(self, session) -> List[str]:
        lines = [render.title(f"Topics in '{self.forum.name}'"), '']
        if self.loading and not self.items:
            lines.append('Loading topics...')
        elif not self.items:
            lines.append('No topics found.')
        else:
            start, end = visible_window(len(self.items), self.cursor, session.height - CHROME_LINES - 4)
            for i in range(start, end):
                topic = self.items[i]
                lines.append(render.item(f"{topic.title} (by {topic.author})", i == self.cursor))
        return lines + self.confirmation_lines()

    def help(self, session) -> str:
        if self.confirming:
            return help_line(KeyMap.confirm, KeyMap.deny)
        bindings = [KeyMap.up, KeyMap.down, KeyMap.enter]
        if has_role(session.role, 'moderator'):
            bindings += [KeyMap.new, KeyMap.delete]
        return help_line(*bindings, KeyMap.back, KeyMap.quit)


class PostsScreen(ConfirmingListScreen):
    view = View.POSTS

    def __init__(self, topic: Topic) -> None:
        super().__init__()
        self.topic = topic
        self.label = topic.title

    def load(self, session) -> Optional[Command]:
        topic_id = self.topic.id
        return self._list_command(lambda: session.store.list_posts(topic_id), 'posts')

    def delete_command(self, post, session) -> Command:
        store = session.store

        def run() -> Message:
            store.delete_post(post.id)
            return OperationSucceeded('Post deleted.', origin=self, reload=True)
        return Command(run, error_prefix='Failed to delete post: ')

    def describe(self, post) -> str:
        return f"the post by {post.author}"

    def handle_key(self, key: str, session) -> List[Effect]:
        if self.confirming:
            return self.handle_confirmation(key, session)
        if self.move_cursor(key, len(self.items)):
            return []
        if KeyMap.new.matches(key):
            return [Navigate(View.FORM, self.topic, FormKind.NEW_POST)]
        if KeyMap.delete.matches(key):
            return self.request_delete(session)
        if KeyMap.back.matches(key):
            return [NavigateBack()]
        if KeyMap.quit.matches(key):
            return [Quit()]
        return []

    def render(self, session) -> List[str]:
        lines = [render.title(f"Reading: {self.topic.title}"), '']
        if self.loading and not self.items:
            lines.append('Loading posts...')
        elif not self.items:
            lines.append('No posts in this topic yet.')
        else:
            width = max(session.width - 4, 20)
            for i, post in enumerate(self.items):
                selected = i == self.cursor
                created = post.created_at[:19].replace('T', ' ')
                lines.append(render.item(f"From: {post.author} at {created}", selected))
                for paragraph in post.content.split('\n'):
                    for line in textwrap.wrap(paragraph, width) or ['']:
                        lines.append(f"    {line}")
                lines.append('---')
        return lines + self.confirmation_lines()

    def help(self, session) -> str:
        if self.confirming:
            return help_line(KeyMap.confirm, KeyMap.deny)
        bindings = [KeyMap.up, KeyMap.down, KeyMap.new]
        if has_role(session.role, 'moderator'):
            bindings.append(KeyMap.delete)
        return help_line(*bindings, KeyMap.back, KeyMap.quit)


###############################################################################
# Forum management
###############################################################################

class ForumManagementScreen(ConfirmingListScreen):
    view = View.FORUM_MANAGEMENT
    label = 'Forum Management'

    def load(self, session) -> Optional[Command]:
        return self._list_command(session.store.list_forums, 'forums')

    def delete_command(self, forum: Forum, session) -> Command:
        store = session.store

        def run() -> Message:
            store.delete_forum(forum.id)
            return OperationSucceeded(f"Forum '{forum.name}' deleted.", origin=self, reload=True)
        return Command(run, error_prefix='Failed to delete forum: ')

    def describe(self, forum: Forum) -> str:
        return f"forum '{forum.name}' with all its topics and posts"

    def handle_key(self, key: str, session) -> List[Effect]:
        if self.confirming:
            return self.handle_confirmation(key, session)
        if self.move_cursor(key, len(self.items)):
            return []
        if KeyMap.new.matches(key):
            return [Navigate(View.FORM, form=FormKind.NEW_FORUM)]
        if KeyMap.edit.matches(key):
            forum = self.selected()
            if forum is not None:
                return [Navigate(View.FORM, forum, FormKind.EDIT_FORUM)]
        elif KeyMap.delete.matches(key):
            return self.request_delete(session)
        elif KeyMap.back.matches(key):
            return [NavigateBack()]
        return []

    def render(self, session) -> List[str]:
        lines = [render.title('Forum Management'), '']
        if self.loading and not self.items:
            lines.append('Loading forums...')
        elif not self.items:
            lines.append('No forums yet. Press n to create one.')
        else:
            for i, forum in enumerate(self.items):
                lines.append(render.item(forum.name, i == self.cursor))
        return lines + self.confirmation_lines()

    def help(self, session) -> str:
        if self.confirming:
            return help_line(KeyMap.confirm, KeyMap.deny)
        return help_line(KeyMap.up, KeyMap.down, KeyMap.new, KeyMap.edit, KeyMap.delete, KeyMap.back)


###############################################################################
# User management
###############################################################################

class UserState(enum.Enum):
    BROWSING = 'browsing'
    ACTION_SELECT = 'action_select'
    ROLE_SELECT = 'role_select'


def can_manage(actor: User, target: User, new_role: Optional[str] = None) -> Optional[str]:
    """Return why ``actor`` may not act on ``target``, or None if allowed.

    Admins may do anything except delete themselves. Everyone else may only
    act on accounts ranked below their own and may not grant a role equal to
    or above their own.
    """
    if actor.role == 'admin':
        return None
    if ROLE_RANK.get(target.role, 0) >= ROLE_RANK.get(actor.role, 0):
        return f"you cannot manage {target.role} accounts"
    if new_role is not None and ROLE_RANK[new_role] >= ROLE_RANK.get(actor.role, 0):
        return f"you cannot grant the {new_role} role"
    return None


class UserManagementScreen(Screen):
    view = View.USER_MANAGEMENT
    label = 'User Management'

    ACTIONS = ['Change Role', 'Delete User', 'Reset Password']
    ROLES = ['user', 'moderator', 'admin']

    def __init__(self) -> None:
        super().__init__()
        self.state = UserState.BROWSING
        self.selected_user: Optional[User] = None
        self.action_cursor = 0
        self.role_cursor = 0

    def load(self, session) -> Optional[Command]:
        return self._list_command(session.store.list_users, 'users')

    def _browse(self) -> None:
        self.state = UserState.BROWSING
        self.selected_user = None

    def _commit(self, session, action: str, role: Optional[str] = None) -> List[Effect]:
        target = self.selected_user
        self._browse()
        actor = User(0, session.username, session.role)
        denied = can_manage(actor, target, role)
        if denied is None and action == 'delete' and target.username == session.username:
            denied = 'you cannot delete your own account'
        if denied is not None:
            return [OperationFailed(f"Permission denied: {denied}.")]
        store = session.store
        username = target.username
        if action == 'role':
            def run() -> Message:
                store.set_role(username, role)
                return OperationSucceeded(f"Role of {username} changed to {role}.", origin=self, reload=True)
        elif action == 'delete':
            def run() -> Message:
                store.delete_user(username)
                return OperationSucceeded(f"User {username} deleted.", origin=self, reload=True)
        else:
            new_password = session.reset_password

            def run() -> Message:
                store.reset_password(username, new_password)
                return OperationSucceeded(f"Password of {username} reset to '{new_password}'.",
                                          origin=self, reload=True)
        return [Command(run)]

    def handle_key(self, key: str, session) -> List[Effect]:
        if self.state is UserState.ROLE_SELECT:
            if self.move_cursor_in('role_cursor', key, len(self.ROLES)):
                return []
            if KeyMap.enter.matches(key):
                return self._commit(session, 'role', self.ROLES[self.role_cursor])
            if KeyMap.back.matches(key):
                self._browse()
            return []
        if self.state is UserState.ACTION_SELECT:
            if self.move_cursor_in('action_cursor', key, len(self.ACTIONS)):
                return []
            if KeyMap.enter.matches(key):
                action = self.ACTIONS[self.action_cursor]
                if action == 'Change Role':
                    self.state = UserState.ROLE_SELECT
                    self.role_cursor = 0
                    return []
                if action == 'Delete User':
                    return self._commit(session, 'delete')
                return self._commit(session, 'reset')
            if KeyMap.back.matches(key):
                self._browse()
            return []
        if self.move_cursor(key, len(self.items)):
            return []
        if KeyMap.enter.matches(key):
            if self.items:
                self.selected_user = self.selected()
                self.state = UserState.ACTION_SELECT
                self.action_cursor = 0
        elif KeyMap.back.matches(key):
            return [NavigateBack()]
        return []

    def move_cursor_in(self, attr: str, key: str, count: int) -> bool:
        value = getattr(self, attr)
        if KeyMap.up.matches(key):
            setattr(self, attr, max(value - 1, 0))
            return True
        if KeyMap.down.matches(key):
            setattr(self, attr, min(value + 1, count - 1))
            return True
        return False

    def render(self, session) -> List[str]:
        if self.state is UserState.ROLE_SELECT:
            return ([render.title(f"Change role of {self.selected_user.username}:"), '']
                    + render.menu(self.ROLES, self.role_cursor))
        if self.state is UserState.ACTION_SELECT:
            return ([render.title(f"Actions for {self.selected_user.username}:"), '']
                    + render.menu(self.ACTIONS, self.action_cursor))
        lines = [render.title('User Management'), '']
        if self.loading and not self.items:
            lines.append('Loading users...')
        else:
            start, end = visible_window(len(self.items), self.cursor, session.height - CHROME_LINES - 2)
            for i in range(start, end):
                user = self.items[i]
                lines.append(render.item(f"{user.username} ({user.role})", i == self.cursor))
        return lines

    def help(self, session) -> str:
        return help_line(KeyMap.up, KeyMap.down, KeyMap.enter, KeyMap.back)
