"""Shared pytest fixtures for create_users tests."""

import logging
import os
import sys
from pathlib import Path
from types import SimpleNamespace

import pytest

# Add repo root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

import create_users  # noqa: E402


class FakeAdministrator:
    """In-memory stand-in for AccountAdministrator.

    Mirrors what shadow-utils would do closely enough for the provisioning
    flow: useradd refuses unknown groups, `id -nG` includes the primary group,
    and a home directory is created under ``home_base`` when asked for.
    """

    def __init__(self, groups=None, users=None, home_base=None):
        self.groups = set(groups or [])
        self.users = {}
        for name, primary in (users or {}).items():
            self.users[name] = {'primary': primary, 'groups': set()}
        self.home_base = home_base
        self.passwords = {}
        self.password_history = []
        self.expired = []
        self.owners = {}
        self.calls = []
        self.fail = set()      # {('create_group', 'devs'), ('set_password', 'bob'), ...}
        self.explode = set()   # usernames for which user_exists raises

    def _failing(self, op, key):
        self.calls.append((op, key))
        return (op, key) in self.fail

    def group_exists(self, name):
        return name in self.groups

    def user_exists(self, user):
        if user in self.explode:
            raise RuntimeError(f'nss lookup exploded for {user}')
        return user in self.users

    def primary_group(self, user):
        u = self.users.get(user)
        return u['primary'] if u else None

    def user_groups(self, user):
        u = self.users.get(user)
        if not u:
            return set()
        return {u['primary']} | u['groups']

    def create_group(self, name):
        if self._failing('create_group', name):
            return False, f'groupadd: cannot create {name}'
        self.groups.add(name)
        return True, ''

    def create_user(self, user, shell, primary, groups):
        if self._failing('create_user', user):
            return False, 'useradd: boom'
        missing = [g for g in [primary] + list(groups) if g not in self.groups]
        if missing:
            return False, f"useradd: group '{missing[0]}' does not exist"
        self.users[user] = {'primary': primary, 'groups': set(groups), 'shell': shell}
        if self.home_base:
            os.makedirs(os.path.join(self.home_base, user), exist_ok=True)
        return True, ''

    def set_primary_group(self, user, group):
        if self._failing('set_primary_group', user):
            return False, 'usermod: boom'
        self.users[user]['primary'] = group
        return True, ''

    def add_to_group(self, user, group):
        if self._failing('add_to_group', group):
            return False, f'usermod: group {group} does not exist'
        self.users[user]['groups'].add(group)
        return True, ''

    def set_password(self, user, password):
        if self._failing('set_password', user):
            return False, 'chpasswd: PAM failure'
        self.passwords[user] = password
        self.password_history.append((user, password))
        return True, ''

    def expire_password(self, user):
        if self._failing('expire_password', user):
            return False, 'chage: boom'
        self.expired.append(user)
        return True, ''

    def set_owner(self, path, user, group):
        if self._failing('set_owner', path):
            return False, 'chown: boom'
        self.owners[path] = (user, group)
        return True, ''

    def set_mode(self, path, mode):
        if self._failing('set_mode', path):
            return False, 'chmod: boom'
        os.chmod(path, mode)
        return True, ''

    def count(self, op):
        return sum(1 for c in self.calls if c[0] == op)


@pytest.fixture(autouse=True)
def _isolate_process_state(caplog):
    """Keep umask and our logger's handlers from leaking between tests."""
    old_umask = os.umask(0o022)
    os.umask(old_umask)
    caplog.set_level(logging.INFO, logger='create_users')
    yield
    create_users.fncReleaseLock()
    create_users.fncCloseLogging()
    os.umask(old_umask)


@pytest.fixture
def paths(tmp_path, monkeypatch):
    """Point every on-disk location at tmp_path and own files as ourselves."""
    ns = SimpleNamespace(
        root=tmp_path,
        log_file=tmp_path / 'log' / 'user_management.log',
        secure_dir=tmp_path / 'secure',
        password_file=tmp_path / 'secure' / 'user_passwords.csv',
        home_base=tmp_path / 'home',
        logrotate=tmp_path / 'logrotate-user_management',
    )
    ns.home_base.mkdir()
    monkeypatch.setattr(create_users, 'LOG_FILE', str(ns.log_file))
    monkeypatch.setattr(create_users, 'SECURE_DIR', str(ns.secure_dir))
    monkeypatch.setattr(create_users, 'PASSWORD_FILE', str(ns.password_file))
    monkeypatch.setattr(create_users, 'HOME_BASE', str(ns.home_base))
    monkeypatch.setattr(create_users, 'LOGROTATE_PATH', str(ns.logrotate))
    monkeypatch.setattr(create_users, 'ADMIN_UID', os.getuid())
    monkeypatch.setattr(create_users, 'ADMIN_GID', os.getgid())
    return ns


@pytest.fixture
def store(paths):
    """Secure dir + credentials CSV ready for appends."""
    create_users.fncPrepareSecureDir()
    create_users.fncPrepareCredentialsFile()
    return paths


@pytest.fixture
def as_root(monkeypatch):
    monkeypatch.setattr(create_users.os, 'geteuid', lambda: 0)


@pytest.fixture
def admin(paths):
    return FakeAdministrator(home_base=str(paths.home_base))


def read_rows(path):
    """Credential CSV as a list of [user, password] rows, header included."""
    import csv
    with open(path, newline='', encoding='utf-8') as f:
        return list(csv.reader(f))
