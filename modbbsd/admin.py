"""Offline administration tool.

Runs directly against the database file, so it works while the server is
stopped. Every command prompts for its values on the terminal.
"""

import argparse
import getpass
import sys
from typing import Callable, List, Optional

from .config import get_int, load_config, setup_logging
from .database import Database, StoreError

Prompt = Callable[[str], str]


class AdminError(Exception):
    """Bad input given to an admin command."""


def ask_id(ask: Prompt, what: str) -> int:
    raw = ask(f"{what} ID: ").strip()
    try:
        value = int(raw)
    except ValueError:
        raise AdminError(f"Invalid {what.lower()} ID: {raw!r}")
    if value <= 0:
        raise AdminError(f"Invalid {what.lower()} ID: {raw!r}")
    return value


def ask_password(ask_secret: Prompt) -> str:
    password = ask_secret('Password: ')
    if not password:
        raise AdminError('Password cannot be empty.')
    if ask_secret('Confirm password: ') != password:
        raise AdminError('Passwords do not match.')
    return password


###############################################################################
# Commands
###############################################################################

def cmd_adduser(db: Database, ask: Prompt, ask_secret: Prompt) -> str:
    username = ask('Username: ').strip()
    password = ask_password(ask_secret)
    role = ask('Role [user]: ').strip().lower() or 'user'
    db.create_user(username, password, role)
    return f"User '{username}' created with role {role}."


def cmd_addforum(db: Database, ask: Prompt, ask_secret: Prompt) -> str:
    name = ask('Forum name: ').strip()
    description = ask('Description (optional): ').strip()
    forum = db.create_forum(name, description)
    return f"Forum '{forum.name}' (ID: {forum.id}) created."


def cmd_setrole(db: Database, ask: Prompt, ask_secret: Prompt) -> str:
    username = ask('Username: ').strip()
    role = ask('New role (user, moderator, admin): ').strip().lower()
    db.set_role(username, role)
    return f"Role of '{username}' set to {role}."


def cmd_deleteuser(db: Database, ask: Prompt, ask_secret: Prompt) -> str:
    username = ask('Username to delete: ').strip()
    db.delete_user(username)
    return f"User '{username}' deleted."


def cmd_resetpassword(db: Database, ask: Prompt, ask_secret: Prompt) -> str:
    username = ask('Username: ').strip()
    password = ask_password(ask_secret)
    db.reset_password(username, password)
    return f"Password of '{username}' reset."


def cmd_editforum(db: Database, ask: Prompt, ask_secret: Prompt) -> str:
    forum_id = ask_id(ask, 'Forum')
    name = ask('New name: ').strip()
    description = ask('New description (optional): ').strip()
    db.update_forum(forum_id, name, description)
    return f"Forum {forum_id} updated."


def cmd_deleteforum(db: Database, ask: Prompt, ask_secret: Prompt) -> str:
    forum_id = ask_id(ask, 'Forum')
    db.delete_forum(forum_id)
    return f"Forum {forum_id} and all of its topics and posts deleted."


def cmd_deletetopic(db: Database, ask: Prompt, ask_secret: Prompt) -> str:
    topic_id = ask_id(ask, 'Topic')
    db.delete_topic(topic_id)
    return f"Topic {topic_id} and all of its posts deleted."


def cmd_deletepost(db: Database, ask: Prompt, ask_secret: Prompt) -> str:
    post_id = ask_id(ask, 'Post')
    db.delete_post(post_id)
    return f"Post {post_id} deleted."


COMMANDS = {
    'adduser': (cmd_adduser, 'Add a new user'),
    'addforum': (cmd_addforum, 'Add a new forum'),
    'setrole': (cmd_setrole, 'Set the role of a user (user, moderator, admin)'),
    'deleteuser': (cmd_deleteuser, 'Delete a user'),
    'resetpassword': (cmd_resetpassword, 'Reset the password of a user'),
    'editforum': (cmd_editforum, 'Edit an existing forum'),
    'deleteforum': (cmd_deleteforum, 'Delete a forum with its topics and posts'),
    'deletetopic': (cmd_deletetopic, 'Delete a topic with its posts'),
    'deletepost': (cmd_deletepost, 'Delete a post'),
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='modbbsd-admin', description='Administer a modbbsd database.')
    parser.add_argument('-c', '--config', help='configuration file (default: modbbsd.ini)')
    parser.add_argument('--db', help='database file, overriding the configuration')
    sub = parser.add_subparsers(dest='command', metavar='command')
    sub.required = True
    for name, (_, help_text) in COMMANDS.items():
        sub.add_parser(name, help=help_text)
    return parser


def run_command(db: Database, command: str, ask: Prompt = input,
                ask_secret: Prompt = getpass.getpass) -> str:
    handler, _ = COMMANDS[command]
    return handler(db, ask, ask_secret)


def main(argv: Optional[List[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    cfg = load_config(args.config)
    setup_logging(cfg)
    db_path = args.db or cfg.get('general', 'db_path', fallback='bbs.db')
    db = Database(db_path, get_int(cfg, 'security', 'bcrypt_rounds', 12))
    try:
        print(run_command(db, args.command))
    except (AdminError, StoreError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except (EOFError, KeyboardInterrupt):
        print('\nAborted.', file=sys.stderr)
        sys.exit(1)
    finally:
        db.close()


if __name__ == '__main__':
    main()
