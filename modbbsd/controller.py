"""Per-connection session state and the navigation controller.

Each SSH session gets one :class:`Session` and one :class:`Controller`. The
controller drains a single message queue: it applies one message, then
redraws. Store commands run in the default thread pool and post their result
back onto the same queue, so the session state is only ever touched from the
controller loop.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from . import render
from .forms import FormScreen, build_form
from .messages import (Command, DataLoaded, FormKind, KeyPressed, Message, Navigate,
                       NavigateBack, OperationFailed, OperationSucceeded, PasswordChanged,
                       PostCreated, Quit, StatusExpired, TopicCreated, View, WindowResized)
from .screens import (AdminScreen, ForumManagementScreen, ForumsScreen, MainMenuScreen,
                      PostsScreen, Screen, SettingsScreen, TopicsScreen, UserManagementScreen,
                      has_role)

logger = logging.getLogger(__name__)

# Minimum role needed to open each view. Views not listed are open to all.
VIEW_MIN_ROLE = {
    View.ADMIN: 'admin',
    View.FORUM_MANAGEMENT: 'admin',
    View.USER_MANAGEMENT: 'moderator',
}
FORM_MIN_ROLE = {
    FormKind.NEW_TOPIC: 'moderator',
    FormKind.NEW_USER: 'admin',
    FormKind.NEW_FORUM: 'admin',
    FormKind.EDIT_FORUM: 'admin',
}


@dataclass
class StatusBanner:
    text: str
    severity: str
    token: int


class Session:
    """Everything one connected user sees and owns.

    ``role`` is read once when the session starts and is not refreshed.
    """

    def __init__(self, username: str, role: str, store, width: int = 80, height: int = 24,
                 reset_password: str = 'password', status_timeout: float = 5.0,
                 password_status_timeout: float = 3.0) -> None:
        self.username = username
        self.role = role
        self.store = store
        self.width = width
        self.height = height
        self.reset_password = reset_password
        self.status_timeout = status_timeout
        self.password_status_timeout = password_status_timeout
        self.stack: List[Screen] = []
        self.retained: Dict[Tuple[View, Any], Screen] = {}
        self.banner: Optional[StatusBanner] = None

    @property
    def active(self) -> Screen:
        return self.stack[-1]

    @property
    def breadcrumbs(self) -> List[str]:
        return [screen.label for screen in self.stack]


class Controller:
    """Runs one session: consumes messages, updates state, redraws."""

    def __init__(self, session: Session, write: Callable[[str], None]) -> None:
        self.session = session
        self.write = write
        self.queue: asyncio.Queue = asyncio.Queue()
        self.pending: Set[asyncio.Future] = set()
        self.done = False
        self._banner_token = 0
        self._banner_timer: Optional[asyncio.TimerHandle] = None
        session.stack.append(self._retained(View.MAIN_MENU, None,
                                            lambda: MainMenuScreen(session.role)))

    def post(self, msg: Message) -> None:
        if not self.done:
            self.queue.put_nowait(msg)

    async def run(self) -> None:
        self.write(self.render())
        while not self.done:
            msg = await self.queue.get()
            self.update(msg)
            if not self.done:
                self.write(self.render())

    def stop(self) -> None:
        """End the session; results of still-running commands are dropped."""
        self.done = True
        if self._banner_timer is not None:
            self._banner_timer.cancel()
        self.queue.put_nowait(Quit())

    ###########################################################################
    # Rendering
    ###########################################################################

    def render(self) -> str:
        session = self.session
        screen = session.active
        lines = [render.header(' > '.join(session.breadcrumbs)), '']
        lines += screen.render(session)
        lines.append('')
        banner = session.banner
        if banner is not None:
            style = render.error if banner.severity == 'error' else render.ok
            lines.append(style(banner.text))
        else:
            lines.append('')
        lines.append(render.footer(screen.help(session)))
        return render.compose_frame(lines)

    ###########################################################################
    # Commands and status banner
    ###########################################################################

    def spawn(self, command: Command) -> None:
        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(None, command.run)
        task = asyncio.ensure_future(self._deliver(future, command))
        self.pending.add(task)
        task.add_done_callback(self.pending.discard)

    async def _deliver(self, future: asyncio.Future, command: Command) -> None:
        try:
            msg = await future
        except Exception as e:
            logger.debug(f"Command for {self.session.username} failed: {e}")
            msg = OperationFailed(f"{command.error_prefix}{e}", origin=command.origin)
        self.post(msg)

    def set_status(self, text: str, severity: str, timeout: Optional[float] = None) -> None:
        self._banner_token += 1
        token = self._banner_token
        self.session.banner = StatusBanner(text, severity, token)
        if self._banner_timer is not None:
            self._banner_timer.cancel()
        if timeout is None:
            timeout = self.session.status_timeout
        loop = asyncio.get_running_loop()
        self._banner_timer = loop.call_later(timeout, self.post, StatusExpired(token))

    ###########################################################################
    # Navigation
    ###########################################################################

    def _retained(self, view: View, key: Any, factory: Callable[[], Screen]) -> Screen:
        screen = self.session.retained.get((view, key))
        if screen is None:
            screen = factory()
            self.session.retained[(view, key)] = screen
        return screen

    def _find(self, predicate: Callable[[Screen], bool]) -> Optional[Screen]:
        for screen in reversed(self.session.stack):
            if predicate(screen):
                return screen
        return None

    def _close_form_over(self, origin: Screen) -> None:
        """Pop the active form if it was submitted from ``origin``."""
        stack = self.session.stack
        form = stack[-1]
        if (isinstance(form, FormScreen) and form.submitting and form.origin is origin
                and len(stack) > 1 and stack[-2] is origin):
            stack.pop()

    def _load(self, screen: Screen) -> None:
        command = screen.load(self.session)
        if command is not None:
            self.spawn(command)

    def open(self, msg: Navigate) -> None:
        session = self.session
        minimum = VIEW_MIN_ROLE.get(msg.view)
        if msg.form is not None:
            minimum = FORM_MIN_ROLE.get(msg.form)
        if minimum is not None and not has_role(session.role, minimum):
            logger.warning(f"{session.username} ({session.role}) denied access to {msg.view.value}")
            self.set_status('Permission denied.', 'error')
            return

        view, context = msg.view, msg.context
        if view is View.FORUMS:
            screen = self._retained(view, None, ForumsScreen)
        elif view is View.TOPICS:
            screen = self._retained(view, context.id, lambda: TopicsScreen(context))
        elif view is View.POSTS:
            screen = self._retained(view, context.id, lambda: PostsScreen(context))
        elif view is View.SETTINGS:
            screen = self._retained(view, None, lambda: SettingsScreen(session.role))
        elif view is View.ADMIN:
            screen = self._retained(view, None, AdminScreen)
        elif view is View.USER_MANAGEMENT:
            screen = self._retained(view, None, UserManagementScreen)
        elif view is View.FORUM_MANAGEMENT:
            screen = self._retained(view, None, ForumManagementScreen)
        elif view is View.FORM:
            screen = build_form(msg.form, context, origin=session.active)
        else:
            logger.error(f"Unsupported navigation target {view}")
            return
        session.stack.append(screen)
        self._load(screen)

    ###########################################################################
    # Message handling
    ###########################################################################

    def apply(self, effects: List[Any]) -> None:
        for effect in effects:
            if isinstance(effect, Command):
                self.spawn(effect)
            else:
                self.update(effect)

    def update(self, msg: Message) -> None:
        session = self.session
        if self.done:
            return

        if isinstance(msg, KeyPressed):
            self.apply(session.active.handle_key(msg.key, session))

        elif isinstance(msg, WindowResized):
            session.width = msg.width
            session.height = msg.height

        elif isinstance(msg, DataLoaded):
            target = msg.target
            if any(s is target for s in session.stack) and msg.seq == target.load_seq:
                target.loaded(msg.items)
            else:
                logger.debug(f"Discarding stale load result for {target.label!r}")

        elif isinstance(msg, OperationFailed):
            if msg.origin is not None:
                msg.origin.failed()
            self.set_status(msg.cause, 'error')

        elif isinstance(msg, OperationSucceeded):
            self.set_status(msg.text, 'ok', msg.timeout)
            origin = msg.origin
            if origin is not None:
                self._close_form_over(origin)
                if session.active is origin:
                    if msg.reload:
                        self._load(origin)
                else:
                    logger.debug(f"Not returning to inactive screen {origin.label!r}")

        elif isinstance(msg, TopicCreated):
            topics = self._find(lambda s: isinstance(s, TopicsScreen) and s.forum.id == msg.forum.id)
            self.update(OperationSucceeded(f"Topic '{msg.title}' created.", origin=topics, reload=True))

        elif isinstance(msg, PostCreated):
            posts = self._find(lambda s: isinstance(s, PostsScreen) and s.topic.id == msg.topic.id)
            self.update(OperationSucceeded('Post created.', origin=posts, reload=True))

        elif isinstance(msg, PasswordChanged):
            settings = self._find(lambda s: isinstance(s, SettingsScreen))
            self.update(OperationSucceeded('Password changed successfully.', origin=settings,
                                           timeout=session.password_status_timeout))

        elif isinstance(msg, StatusExpired):
            if session.banner is not None and session.banner.token == msg.token:
                session.banner = None

        elif isinstance(msg, NavigateBack):
            if len(session.stack) > 1:
                session.stack.pop()

        elif isinstance(msg, Navigate):
            self.open(msg)

        elif isinstance(msg, Quit):
            logger.debug(f"{session.username} quit")
            self.done = True
