"""SSH host key persistence."""

import logging
import os

import asyncssh

logger = logging.getLogger(__name__)

HOST_KEY_ALGORITHM = 'ssh-rsa'
HOST_KEY_BITS = 2048


def load_or_create_host_key(path: str) -> asyncssh.SSHKey:
    """Load the server's private host key, generating it on first run.

    A new key is written with owner-only permissions. An existing file that
    cannot be parsed raises :class:`asyncssh.KeyImportError` instead of being
    replaced, so clients never see the host identity change silently.
    """
    if os.path.exists(path):
        key = asyncssh.read_private_key(path)
        logger.info(f"Loaded host key from {path}")
        return key

    key = asyncssh.generate_private_key(HOST_KEY_ALGORITHM, key_size=HOST_KEY_BITS)
    data = key.export_private_key('pkcs1-pem')
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    with os.fdopen(fd, 'wb') as f:
        f.write(data)
    logger.info(f"Generated new {HOST_KEY_ALGORITHM} host key at {path}")
    return key
