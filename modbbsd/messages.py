"""Messages consumed by the navigation controller.

Everything that can change a session's state arrives as one of these
immutable values: keystrokes and terminal resizes from the channel, results
of store commands from the executor, and navigation requests emitted by the
screens themselves.
"""

import enum
from dataclasses import dataclass
from typing import Any, Callable, Optional, Tuple

from .database import Forum, Topic


class View(enum.Enum):
    """The fixed set of screen kinds."""

    MAIN_MENU = 'main_menu'
    FORUMS = 'forums'
    TOPICS = 'topics'
    POSTS = 'posts'
    FORM = 'form'
    SETTINGS = 'settings'
    ADMIN = 'admin'
    USER_MANAGEMENT = 'user_management'
    FORUM_MANAGEMENT = 'forum_management'


class FormKind(enum.Enum):
    NEW_TOPIC = 'new_topic'
    NEW_POST = 'new_post'
    CHANGE_PASSWORD = 'change_password'
    NEW_USER = 'new_user'
    NEW_FORUM = 'new_forum'
    EDIT_FORUM = 'edit_forum'


class Message:
    """Base class for everything the controller consumes."""


@dataclass(frozen=True)
class KeyPressed(Message):
    key: str


@dataclass(frozen=True)
class WindowResized(Message):
    width: int
    height: int


@dataclass(frozen=True)
class DataLoaded(Message):
    # Screen instance that issued the load, and the load sequence number it
    # had at the time. Used to drop results for superseded loads.
    target: Any
    seq: int
    items: Tuple[Any, ...]


@dataclass(frozen=True)
class OperationFailed(Message):
    cause: str
    # Screen whose command failed, so its in-progress state can be reset.
    origin: Any = None


@dataclass(frozen=True)
class OperationSucceeded(Message):
    text: str
    # Screen the operation was issued from, and whether it should reload its
    # list. Only applied while that screen is active, or directly under the
    # form that submitted the operation.
    origin: Any = None
    reload: bool = False
    timeout: Optional[float] = None


@dataclass(frozen=True)
class TopicCreated(Message):
    forum: Forum
    title: str


@dataclass(frozen=True)
class PostCreated(Message):
    topic: Topic


@dataclass(frozen=True)
class PasswordChanged(Message):
    pass


@dataclass(frozen=True)
class NavigateBack(Message):
    pass


@dataclass(frozen=True)
class Navigate(Message):
    """Forward navigation requested by the active screen."""

    view: View
    context: Any = None
    form: Optional[FormKind] = None


@dataclass(frozen=True)
class StatusExpired(Message):
    token: int


@dataclass(frozen=True)
class Quit(Message):
    pass


@dataclass(frozen=True)
class Command:
    """Store work to run off the session loop.

    ``run`` executes in the thread pool and returns the message to deliver.
    If it raises, an OperationFailed carrying ``error_prefix`` and the
    exception text is delivered instead.
    """

    run: Callable[[], Message]
    error_prefix: str = ''
    origin: Any = None
