"""SQLite content store: users, forums, topics and posts.

Every public method is its own transaction. The connection is shared by the
executor threads that run session commands, so access is serialized with a
lock. Deletes that span several tables run inside a single transaction and
either remove everything or nothing.
"""

import logging
import sqlite3
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional

import bcrypt

logger = logging.getLogger(__name__)

ROLES = ('user', 'moderator', 'admin')

# Accounts created by seed_demo_accounts(): (username, password, role)
DEMO_ACCOUNTS = (
    ('admin', 'adminpass', 'admin'),
    ('mod', 'modpass', 'moderator'),
    ('user', 'userpass', 'user'),
)


class StoreError(Exception):
    """A store operation was rejected (bad input, missing row, conflict)."""


@dataclass(frozen=True)
class User:
    id: int
    username: str
    role: str
    created_at: str = ''


@dataclass(frozen=True)
class Forum:
    id: int
    name: str
    description: str = ''
    created_at: str = ''


@dataclass(frozen=True)
class Topic:
    id: int
    forum_id: int
    user_id: int
    author: str
    title: str
    created_at: str = ''


@dataclass(frozen=True)
class Post:
    id: int
    topic_id: int
    user_id: int
    author: str
    content: str
    created_at: str = ''


###############################################################################
# Password hashing helpers
###############################################################################

def hash_password(password: str, rounds: int = 12) -> str:
    """Hash a password with bcrypt."""
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(password.encode('utf-8'), salt).decode('utf-8')


def verify_password(password: str, hashed: str) -> bool:
    """Verify a password against a stored bcrypt hash."""
    try:
        return bcrypt.checkpw(password.encode('utf-8'), hashed.encode('utf-8'))
    except ValueError:
        # Malformed hash in the database
        return False


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec='microseconds')


###############################################################################
# Database
###############################################################################

class Database:
    """Wrapper around SQLite implementing the BBS content store."""

    def __init__(self, db_path: str, bcrypt_rounds: int = 12) -> None:
        self.db_path = db_path
        self.bcrypt_rounds = bcrypt_rounds
        self.lock = threading.RLock()
        self.conn = sqlite3.connect(db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute('PRAGMA foreign_keys = ON')
        self._create_tables()
        # Verifying unknown users against this hash keeps the response time
        # the same as for a wrong password.
        self._dummy_hash = hash_password('not-a-real-password', bcrypt_rounds)

    def _create_tables(self) -> None:
        with self.lock, self.conn:
            self.conn.executescript('''
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    username TEXT NOT NULL UNIQUE,
                    password_hash TEXT NOT NULL,
                    role TEXT NOT NULL DEFAULT 'user',
                    created_at TEXT NOT NULL
                );
                CREATE TABLE IF NOT EXISTS forums (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL UNIQUE,
                    description TEXT,
                    created_at TEXT NOT NULL
                );
                CREATE TABLE IF NOT EXISTS topics (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    forum_id INTEGER NOT NULL,
                    user_id INTEGER NOT NULL,
                    title TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    FOREIGN KEY(forum_id) REFERENCES forums(id),
                    FOREIGN KEY(user_id) REFERENCES users(id)
                );
                CREATE TABLE IF NOT EXISTS posts (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    topic_id INTEGER NOT NULL,
                    user_id INTEGER NOT NULL,
                    content TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    FOREIGN KEY(topic_id) REFERENCES topics(id),
                    FOREIGN KEY(user_id) REFERENCES users(id)
                );
            ''')

    def close(self) -> None:
        with self.lock:
            self.conn.close()

    def seed_demo_accounts(self) -> None:
        """Create the demo accounts that do not exist yet."""
        for username, password, role in DEMO_ACCOUNTS:
            if self.get_user(username) is None:
                self.create_user(username, password, role)
                logger.info(f"Created demo account '{username}' ({role})")

    # ------------------------------------------------------------------
    # Users
    #
    def get_user(self, username: str) -> Optional[User]:
        """Return the user with this name, or None if there is none."""
        with self.lock:
            row = self.conn.execute(
                'SELECT id, username, role, created_at FROM users WHERE username = ?',
                (username,)).fetchone()
        if row is None:
            return None
        return User(row['id'], row['username'], row['role'], row['created_at'])

    def verify_credential(self, username: str, password: str) -> bool:
        """Check a login. Unknown users and wrong passwords look the same."""
        with self.lock:
            row = self.conn.execute(
                'SELECT password_hash FROM users WHERE username = ?', (username,)).fetchone()
        if row is None:
            verify_password(password, self._dummy_hash)
            return False
        return verify_password(password, row['password_hash'])

    def list_users(self) -> List[User]:
        with self.lock:
            rows = self.conn.execute(
                'SELECT id, username, role, created_at FROM users ORDER BY username').fetchall()
        return [User(r['id'], r['username'], r['role'], r['created_at']) for r in rows]

    def create_user(self, username: str, password: str, role: str = 'user') -> User:
        if not username or not password:
            raise StoreError('Username and password are required.')
        if role not in ROLES:
            raise StoreError(f"Invalid role '{role}'. Use user, moderator or admin.")
        hashed = hash_password(password, self.bcrypt_rounds)
        created = now_iso()
        try:
            with self.lock, self.conn:
                cur = self.conn.execute(
                    'INSERT INTO users (username, password_hash, role, created_at) VALUES (?, ?, ?, ?)',
                    (username, hashed, role, created))
        except sqlite3.IntegrityError:
            raise StoreError(f"User '{username}' already exists.")
        return User(cur.lastrowid, username, role, created)

    def delete_user(self, username: str) -> None:
        try:
            with self.lock, self.conn:
                cur = self.conn.execute('DELETE FROM users WHERE username = ?', (username,))
        except sqlite3.IntegrityError:
            raise StoreError(f"User '{username}' still has topics or posts.")
        if cur.rowcount == 0:
            raise StoreError(f"User '{username}' not found.")

    def set_role(self, username: str, role: str) -> None:
        if role not in ROLES:
            raise StoreError(f"Invalid role '{role}'. Use user, moderator or admin.")
        with self.lock, self.conn:
            cur = self.conn.execute('UPDATE users SET role = ? WHERE username = ?', (role, username))
        if cur.rowcount == 0:
            raise StoreError(f"User '{username}' not found.")

    def reset_password(self, username: str, new_password: str) -> None:
        """Set a new password without checking the old one."""
        if not new_password:
            raise StoreError('Password cannot be empty.')
        hashed = hash_password(new_password, self.bcrypt_rounds)
        with self.lock, self.conn:
            cur = self.conn.execute(
                'UPDATE users SET password_hash = ? WHERE username = ?', (hashed, username))
        if cur.rowcount == 0:
            raise StoreError(f"User '{username}' not found.")

    def change_password(self, username: str, current_password: str, new_password: str) -> None:
        """Set a new password after checking the current one."""
        with self.lock:
            row = self.conn.execute(
                'SELECT password_hash FROM users WHERE username = ?', (username,)).fetchone()
        if row is None:
            raise StoreError(f"User '{username}' not found.")
        if not verify_password(current_password, row['password_hash']):
            raise StoreError('Current password is incorrect.')
        self.reset_password(username, new_password)

    # ------------------------------------------------------------------
    # Forums
    #
    def list_forums(self) -> List[Forum]:
        with self.lock:
            rows = self.conn.execute(
                'SELECT id, name, description, created_at FROM forums ORDER BY name').fetchall()
        return [Forum(r['id'], r['name'], r['description'] or '', r['created_at']) for r in rows]

    def create_forum(self, name: str, description: str = '') -> Forum:
        if not name:
            raise StoreError('Forum name is required.')
        created = now_iso()
        try:
            with self.lock, self.conn:
                cur = self.conn.execute(
                    'INSERT INTO forums (name, description, created_at) VALUES (?, ?, ?)',
                    (name, description, created))
        except sqlite3.IntegrityError:
            raise StoreError(f"Forum '{name}' already exists.")
        return Forum(cur.lastrowid, name, description, created)

    def update_forum(self, forum_id: int, name: str, description: str = '') -> None:
        if not name:
            raise StoreError('Forum name is required.')
        try:
            with self.lock, self.conn:
                cur = self.conn.execute(
                    'UPDATE forums SET name = ?, description = ? WHERE id = ?',
                    (name, description, forum_id))
        except sqlite3.IntegrityError:
            raise StoreError(f"Forum '{name}' already exists.")
        if cur.rowcount == 0:
            raise StoreError(f'Forum {forum_id} not found.')

    def delete_forum(self, forum_id: int) -> None:
        """Delete a forum together with its topics and their posts."""
        with self.lock, self.conn:
            self.conn.execute(
                'DELETE FROM posts WHERE topic_id IN (SELECT id FROM topics WHERE forum_id = ?)',
                (forum_id,))
            self.conn.execute('DELETE FROM topics WHERE forum_id = ?', (forum_id,))
            self.conn.execute('DELETE FROM forums WHERE id = ?', (forum_id,))

    # ------------------------------------------------------------------
    # Topics and posts
    #
    def list_topics(self, forum_id: int) -> List[Topic]:
        """Topics of a forum, newest first."""
        with self.lock:
            rows = self.conn.execute('''
                SELECT t.id, t.forum_id, t.user_id, u.username AS author, t.title, t.created_at
                FROM topics t JOIN users u ON u.id = t.user_id
                WHERE t.forum_id = ?
                ORDER BY t.created_at DESC, t.id DESC
            ''', (forum_id,)).fetchall()
        return [Topic(r['id'], r['forum_id'], r['user_id'], r['author'], r['title'], r['created_at'])
                for r in rows]

    def create_topic(self, forum_id: int, username: str, title: str) -> Topic:
        if not title:
            raise StoreError('Title cannot be empty.')
        user = self.get_user(username)
        if user is None:
            raise StoreError(f"User '{username}' not found.")
        created = now_iso()
        try:
            with self.lock, self.conn:
                cur = self.conn.execute(
                    'INSERT INTO topics (forum_id, user_id, title, created_at) VALUES (?, ?, ?, ?)',
                    (forum_id, user.id, title, created))
        except sqlite3.IntegrityError:
            raise StoreError('Forum no longer exists.')
        return Topic(cur.lastrowid, forum_id, user.id, user.username, title, created)

    def delete_topic(self, topic_id: int) -> None:
        """Delete a topic together with its posts."""
        with self.lock, self.conn:
            self.conn.execute('DELETE FROM posts WHERE topic_id = ?', (topic_id,))
            self.conn.execute('DELETE FROM topics WHERE id = ?', (topic_id,))

    def list_posts(self, topic_id: int) -> List[Post]:
        """Posts of a topic, oldest first."""
        with self.lock:
            rows = self.conn.execute('''
                SELECT p.id, p.topic_id, p.user_id, u.username AS author, p.content, p.created_at
                FROM posts p JOIN users u ON u.id = p.user_id
                WHERE p.topic_id = ?
                ORDER BY p.created_at ASC, p.id ASC
            ''', (topic_id,)).fetchall()
        return [Post(r['id'], r['topic_id'], r['user_id'], r['author'], r['content'], r['created_at'])
                for r in rows]

    def create_post(self, topic_id: int, username: str, content: str) -> Post:
        if not content:
            raise StoreError('Content cannot be empty.')
        user = self.get_user(username)
        if user is None:
            raise StoreError(f"User '{username}' not found.")
        created = now_iso()
        try:
            with self.lock, self.conn:
                cur = self.conn.execute(
                    'INSERT INTO posts (topic_id, user_id, content, created_at) VALUES (?, ?, ?, ?)',
                    (topic_id, user.id, content, created))
        except sqlite3.IntegrityError:
            raise StoreError('Topic no longer exists.')
        return Post(cur.lastrowid, topic_id, user.id, user.username, content, created)

    def delete_post(self, post_id: int) -> None:
        with self.lock, self.conn:
            self.conn.execute('DELETE FROM posts WHERE id = ?', (post_id,))
