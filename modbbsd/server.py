"""SSH front end: authentication, channel sessions and process entry point."""

import asyncio
import logging
import sqlite3
import sys
from typing import List, Optional

import asyncssh

from . import __version__
from .config import get_int, load_config, setup_logging
from .controller import Controller, Session
from .database import Database
from .hostkey import load_or_create_host_key
from .keys import KeyDecoder
from .messages import KeyPressed, WindowResized

logger = logging.getLogger(__name__)

# How long a trailing ESC waits for the rest of an escape sequence.
ESC_DELAY = 0.05


class BBS:
    """Main server object: owns the store and the SSH listener."""

    def __init__(self, cfg) -> None:
        self.cfg = cfg
        self.host = cfg.get('general', 'host', fallback='0.0.0.0')
        self.port = get_int(cfg, 'general', 'port', 7778)
        self.host_key_path = cfg.get('general', 'host_key', fallback='host_key')
        self.db_path = cfg.get('general', 'db_path', fallback='bbs.db')
        self.seed_demo = cfg.getboolean('general', 'seed_demo_accounts', fallback=True)
        self.bcrypt_rounds = get_int(cfg, 'security', 'bcrypt_rounds', 12)
        self.reset_password = cfg.get('security', 'reset_password', fallback='password') or 'password'
        self.status_timeout = float(get_int(cfg, 'ui', 'status_timeout', 5))
        self.password_status_timeout = float(get_int(cfg, 'ui', 'password_status_timeout', 3))
        self.db: Optional[Database] = None
        self.server = None

    def open_store(self) -> None:
        self.db = Database(self.db_path, self.bcrypt_rounds)
        if self.seed_demo:
            self.db.seed_demo_accounts()
        logger.info(f"Using database {self.db_path}")

    def new_session(self, username: str, role: str, width: int, height: int) -> Session:
        return Session(username, role, self.db, width, height,
                       reset_password=self.reset_password,
                       status_timeout=self.status_timeout,
                       password_status_timeout=self.password_status_timeout)

    async def start(self) -> None:
        host_key = load_or_create_host_key(self.host_key_path)
        self.server = await asyncssh.create_server(
            lambda: BBSServer(self), self.host, self.port,
            server_host_keys=[host_key],
            line_editor=False,
            server_version=f"modbbsd_{__version__}")
        logger.info(f"SSH server listening on {self.host}:{self.port}")

    async def serve_forever(self) -> None:
        await self.start()
        try:
            await self.server.wait_closed()
        finally:
            self.close()

    def close(self) -> None:
        if self.server is not None:
            self.server.close()
            self.server = None
        if self.db is not None:
            self.db.close()
            self.db = None


###############################################################################
# SSH connection and channel handlers
###############################################################################

class BBSServer(asyncssh.SSHServer):
    """Per-connection handler: password authentication and channel policy."""

    def __init__(self, bbs: BBS) -> None:
        self.bbs = bbs
        self.peer = 'unknown'

    def connection_made(self, conn: asyncssh.SSHServerConnection) -> None:
        peername = conn.get_extra_info('peername')
        if peername:
            self.peer = f"{peername[0]}:{peername[1]}"
        logger.info(f"Connection from {self.peer}")

    def connection_lost(self, exc: Optional[Exception]) -> None:
        if exc:
            logger.info(f"Connection from {self.peer} lost: {exc}")
        else:
            logger.debug(f"Connection from {self.peer} closed")

    def begin_auth(self, username: str) -> bool:
        return True

    def password_auth_supported(self) -> bool:
        return True

    async def validate_password(self, username: str, password: str) -> bool:
        loop = asyncio.get_running_loop()
        try:
            ok = await loop.run_in_executor(None, self.bbs.db.verify_credential, username, password)
        except Exception as e:
            logger.error(f"Password check for {username!r} from {self.peer} failed: {e}")
            return False
        if ok:
            logger.info(f"User {username} authenticated from {self.peer}")
        else:
            logger.warning(f"Failed login for {username!r} from {self.peer}")
        return ok

    def session_requested(self) -> 'ChannelSession':
        return ChannelSession(self.bbs)

    def connection_requested(self, dest_host, dest_port, orig_host, orig_port):
        raise asyncssh.ChannelOpenError(asyncssh.OPEN_UNKNOWN_CHANNEL_TYPE,
                                        'Only interactive sessions are supported')

    def unix_connection_requested(self, dest_path):
        raise asyncssh.ChannelOpenError(asyncssh.OPEN_UNKNOWN_CHANNEL_TYPE,
                                        'Only interactive sessions are supported')

    def server_requested(self, listen_host, listen_port):
        return False


class ChannelSession(asyncssh.SSHServerSession):
    """One interactive shell channel driving one BBS session."""

    def __init__(self, bbs: BBS) -> None:
        self.bbs = bbs
        self._chan: Optional[asyncssh.SSHServerChannel] = None
        self.controller: Optional[Controller] = None
        self.task: Optional[asyncio.Task] = None
        self.width = 80
        self.height = 24
        self.decoder = KeyDecoder()
        self._flush_timer: Optional[asyncio.TimerHandle] = None
        # Keys typed before the controller exists.
        self.early_keys: List[str] = []

    def connection_made(self, chan: asyncssh.SSHServerChannel) -> None:
        self._chan = chan
        logger.debug(f"Channel opened for {chan.get_extra_info('username')}")

    def pty_requested(self, term_type, term_size, term_modes) -> bool:
        cols, rows = term_size[0], term_size[1]
        if cols > 0:
            self.width = cols
        if rows > 0:
            self.height = rows
        return True

    def shell_requested(self) -> bool:
        return True

    def exec_requested(self, command: str) -> bool:
        return False

    def subsystem_requested(self, subsystem: str) -> bool:
        return False

    def session_started(self) -> None:
        self.task = asyncio.ensure_future(self.run())

    async def run(self) -> None:
        chan = self._chan
        username = chan.get_extra_info('username')
        loop = asyncio.get_running_loop()
        try:
            user = await loop.run_in_executor(None, self.bbs.db.get_user, username)
            if user is None:
                chan.write('Your account no longer exists.\r\n')
                return
            session = self.bbs.new_session(user.username, user.role, self.width, self.height)
            self.controller = Controller(session, self.write)
            for key in self.early_keys:
                self.controller.post(KeyPressed(key))
            self.early_keys = []
            logger.info(f"Session started for {user.username} ({user.role})")
            await self.controller.run()
            logger.info(f"Session ended for {user.username}")
        except Exception as e:
            logger.error(f"Session for {username} failed: {e}", exc_info=True)
        finally:
            self.close()

    def write(self, data: str) -> None:
        if self._chan is not None:
            try:
                self._chan.write(data)
            except (BrokenPipeError, asyncssh.Error) as e:
                logger.debug(f"Write failed: {e}")

    def _dispatch(self, keys: List[str]) -> None:
        if self.controller is None:
            self.early_keys.extend(keys)
            return
        for key in keys:
            self.controller.post(KeyPressed(key))

    def _flush_keys(self) -> None:
        self._flush_timer = None
        self._dispatch(self.decoder.flush())

    def data_received(self, data: str, datatype) -> None:
        if self._flush_timer is not None:
            self._flush_timer.cancel()
            self._flush_timer = None
        self._dispatch(self.decoder.feed(data))
        if self.decoder.pending:
            loop = asyncio.get_running_loop()
            self._flush_timer = loop.call_later(ESC_DELAY, self._flush_keys)

    def terminal_size_changed(self, width: int, height: int, pixwidth: int, pixheight: int) -> None:
        self.width, self.height = width, height
        if self.controller is not None:
            self.controller.post(WindowResized(width, height))

    def eof_received(self) -> bool:
        if self.controller is not None:
            self.controller.stop()
        return False

    def connection_lost(self, exc: Optional[Exception]) -> None:
        if exc:
            logger.info(f"Channel closed with error: {exc}")
        else:
            logger.debug("Channel closed")
        if self._flush_timer is not None:
            self._flush_timer.cancel()
            self._flush_timer = None
        if self.controller is not None:
            self.controller.stop()
        self._chan = None

    def close(self) -> None:
        if self._chan is not None:
            self.write('\x1b[H\x1b[2JGoodbye!\r\n')
            self._chan.exit(0)
            self._chan = None


###############################################################################
# Entry point
###############################################################################

def main() -> None:
    cfg = load_config()
    setup_logging(cfg)
    bbs = BBS(cfg)
    try:
        bbs.open_store()
        asyncio.run(bbs.serve_forever())
    except KeyboardInterrupt:
        logger.info('Server shutting down.')
    except (OSError, ValueError, sqlite3.Error, asyncssh.Error) as e:
        logger.critical(f"Failed to start server: {e}")
        sys.exit(1)
    finally:
        bbs.close()


if __name__ == '__main__':
    main()
