"""Configuration file handling.

The service is configured through a small INI file. When the file does not
exist a commented default is written on first run so the SysOp has something
to edit. A handful of environment variables override the file for container
deployments.
"""

import configparser
import logging
import os
from typing import Optional

# Path to the configuration file. Created with defaults if missing.
CONFIG_PATH = os.environ.get('MODBBSD_CONFIG', 'modbbsd.ini')

DEFAULT_CONFIG = """\
[general]
# Address and port the SSH listener binds to.
host = 0.0.0.0
port = 7778
# Private host key. Generated on first run if the file does not exist.
host_key = host_key
# SQLite database file.
db_path = bbs.db
# Create the admin/mod/user demo accounts when they are missing.
seed_demo_accounts = true

[security]
# bcrypt cost factor for new password hashes (4-31).
bcrypt_rounds = 12
# Password assigned by the "reset password" action in user management.
reset_password = password

[ui]
# Seconds a status message stays on screen.
status_timeout = 5
# Seconds the password change confirmation stays on screen.
password_status_timeout = 3

[logging]
# debug, info, warning or error. Logs go to stderr unless a file is given.
level = info
file =
"""

# Environment variables that take precedence over the file, as
# (variable, section, option).
ENV_OVERRIDES = (
    ('MODBBSD_DB', 'general', 'db_path'),
    ('MODBBSD_PORT', 'general', 'port'),
    ('MODBBSD_HOST_KEY', 'general', 'host_key'),
)


def load_config(path: Optional[str] = None) -> configparser.ConfigParser:
    """Load the configuration from the given INI file.

    If the file does not exist the default configuration is written there
    first. Missing options in an existing file fall back to the defaults.
    """
    path = path or CONFIG_PATH
    cfg = configparser.ConfigParser()
    cfg.read_string(DEFAULT_CONFIG)
    if os.path.exists(path):
        cfg.read(path)
    else:
        with open(path, 'w') as f:
            f.write(DEFAULT_CONFIG)
    for var, section, option in ENV_OVERRIDES:
        value = os.environ.get(var)
        if value:
            cfg.set(section, option, value)
    return cfg


def get_int(cfg: configparser.ConfigParser, section: str, option: str, default: int) -> int:
    """Read an integer option, falling back to ``default`` on bad values."""
    try:
        return cfg.getint(section, option, fallback=default)
    except ValueError:
        logging.getLogger(__name__).warning(
            f"Invalid integer for [{section}] {option}; using {default}")
        return default


def setup_logging(cfg: configparser.ConfigParser) -> None:
    """Configure the root logger from the [logging] section."""
    level_map = {
        'debug': logging.DEBUG,
        'info': logging.INFO,
        'warning': logging.WARNING,
        'error': logging.ERROR,
    }
    level = level_map.get(cfg.get('logging', 'level', fallback='info').lower(), logging.INFO)
    log_file = cfg.get('logging', 'file', fallback='')
    log_format = '%(asctime)s %(levelname)s %(name)s: %(message)s'
    if log_file:
        logging.basicConfig(level=level, format=log_format, filename=log_file)
    else:
        logging.basicConfig(level=level, format=log_format)
