"""
modbbsd - a forum BBS served over SSH.

Users connect with any SSH client, log in with their password and browse
forums, topics and posts through a keyboard driven text interface. Moderators
and administrators get extra screens for managing users and forums.

## Quick start for new SysOps

1. **Run the server:** Execute `modbbsd` (or `python3 -m modbbsd.server`). On
   first run it creates `modbbsd.ini`, an RSA host key (`host_key`) and the
   SQLite database (`bbs.db`) in the current directory.

2. **Log in:** Connect with `ssh -p 7778 admin@localhost`. Unless
   `seed_demo_accounts` is turned off, the accounts admin/adminpass,
   mod/modpass and user/userpass exist. Change their passwords from the
   Settings screen right away.

3. **Create forums:** Use Administration > Forum Management, or run
   `modbbsd-admin addforum` while the server is stopped.

4. **Edit the configuration:** `modbbsd.ini` holds the listen address, file
   locations, the bcrypt cost, the password used by "reset password" and the
   logging setup. `MODBBSD_DB`, `MODBBSD_PORT` and `MODBBSD_HOST_KEY`
   override the file.
"""

__version__ = "0.1.0"
