#!/usr/bin/env python3
# Script: create_users.py
# Usage : sudo python3 create_users.py users.txt
#
# What this does (for my future self):
# - Read a manifest where each line is "username; group1,group2"
# - Create a personal group per user (same name) + any supplementary groups
# - Create users that don't exist yet (home dir, bash, primary = personal group)
# - Lock down /home/<user> to user:user 0700
# - Generate a random password per user, set it, and store it in a 0600 CSV
# - Logs to /var/log/user_management.log, passwords to /var/secure/user_passwords.csv

# ==============================
# Imports
# ==============================

# Standard library
import base64
import csv
import fcntl
import logging
import os
import random
import re
import secrets
import stat
import string
import subprocess
import sys
from dataclasses import dataclass, field
from datetime import datetime

# Third-party
from colorama import Fore, Style

#=================#
# Global Settings #
#=================#

MIN_PYTHON_VERSION = (3, 10)
ADMIN_REQUIRED = True   # Script requires root

# Owner applied to the log file, secure dir and password CSV
ADMIN_UID = 0
ADMIN_GID = 0

#-----------------------------#
# Defaults (env-overridable)  #
#-----------------------------#
LOG_FILE = "/var/log/user_management.log"
SECURE_DIR = "/var/secure"
PASSWORD_FILE = os.path.join(SECURE_DIR, "user_passwords.csv")
LOCK_NAME = ".create_users.lock"
HOME_BASE = "/home"
DEFAULT_SHELL = "/bin/bash"

ROTATE_EXISTING_PASSWORDS = True    # New password + CSV row for users that already existed
FORCE_PASSWORD_CHANGE = False       # chage -d 0 after setting the password

PASSWORD_BYTES = 12                 # Random bytes fed to base64 (same as openssl rand -base64 12)
FALLBACK_PASSWORD_LENGTH = 16
FALLBACK_ALPHABET = string.ascii_letters + string.digits + "!@#$%&*()_+-="
# Last resort only; logged loudly whenever it is handed out.
WEAK_FALLBACK_PASSWORD = "ChangeMe123!"

INSTALL_LOGROTATE = True
LOGROTATE_PATH = "/etc/logrotate.d/user_management"

USERNAME_RE = re.compile(r"^[a-z_][a-z0-9_-]*$")
CSV_HEADER = ["username", "password"]

#------------------------------#
# Exit codes                   #
#------------------------------#
EXIT_OK = 0
EXIT_NOT_ROOT = 1
EXIT_USAGE = 2
EXIT_NO_MANIFEST = 3
EXIT_LOG_FILE = 4
EXIT_SECURE_DIR = 5
EXIT_LOCKED = 6
EXIT_UNEXPECTED = 70
EXIT_INTERRUPTED = 130

#------------------------------#
# Pinned binaries for exec     #
#------------------------------#
BIN = {
  "useradd":  "/usr/sbin/useradd",
  "usermod":  "/usr/sbin/usermod",
  "groupadd": "/usr/sbin/groupadd",
  "chpasswd": "/usr/sbin/chpasswd",
  "chage":    "/usr/bin/chage",
  "chown":    "/usr/bin/chown",
  "getent":   "/usr/bin/getent",
  "id":       "/usr/bin/id",
}

log = logging.getLogger("create_users")

# Set once the log file handler is attached; before that errors go to stderr only
_LOGGING_READY = False

# Lockfile so two runs don't interleave CSV rows
_LOCK_FH = None

#=========#
# Errors  #
#=========#

class ProvisionError(Exception):
    """Fatal setup failure; aborts the run with ``exit_code``."""
    exit_code = EXIT_UNEXPECTED


class PrivilegeError(ProvisionError):
    exit_code = EXIT_NOT_ROOT


class UsageError(ProvisionError):
    exit_code = EXIT_USAGE


class ManifestNotFoundError(ProvisionError):
    exit_code = EXIT_NO_MANIFEST


class LogSetupError(ProvisionError):
    exit_code = EXIT_LOG_FILE


class SecureStoreError(ProvisionError):
    exit_code = EXIT_SECURE_DIR


class LockError(ProvisionError):
    exit_code = EXIT_LOCKED

#==============#
# Record types #
#==============#

@dataclass
class ManifestRecord:
    username: str
    groups: list[str] = field(default_factory=list)


@dataclass
class RecordOutcome:
    """What happened to one manifest record.

    status is one of "invalid", "failed" or "provisioned". ``reason`` is only
    filled for the first two.
    """
    username: str
    status: str
    reason: str = ""
    created: bool = False
    password_stored: bool = False

    @property
    def ok(self) -> bool:
        return self.status == "provisioned"

#===========================#
# Environment Overlay Utils #
#===========================#

# Function: _env_bool
# Purpose : Read boolean-like env vars with a default.
# Notes   : Accepts 1/true/yes/y/on (case-insensitive).
def _env_bool(name: str, default: bool) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return v.strip().lower() in ("1", "true", "yes", "y", "on")

# Function: _env_str
# Purpose : Return stripped string from env with default fallback.
# Notes   : Blank values fall back to the default as well.
def _env_str(name: str, default: str) -> str:
    v = os.getenv(name)
    return (v.strip() or default) if v is not None else default

# Function: _env_int
# Purpose : Parse an integer from env, never going below `minimum`.
def _env_int(name: str, default: int, minimum: int = 0) -> int:
    v = os.getenv(name, "").strip()
    if not v:
        return default
    try:
        return max(int(v), minimum)
    except ValueError:
        logging.error("Bad integer in %s: %r (using %d)", name, v, default)
        return default

def _assert_regular_or_missing(p: str | os.PathLike):
    try:
        st = os.lstat(p)
        if not stat.S_ISREG(st.st_mode):
            raise RuntimeError(f"{p} is not a regular file")
    except FileNotFoundError:
        return

def _own_by_admin(path: str):
    os.chown(path, ADMIN_UID, ADMIN_GID)

#===========================#
# Apply Environment Overrides
#===========================#

LOG_FILE       = _env_str("LOG_FILE", LOG_FILE)
SECURE_DIR     = _env_str("SECURE_DIR", SECURE_DIR)
PASSWORD_FILE  = _env_str("PASSWORD_FILE", os.path.join(SECURE_DIR, "user_passwords.csv"))
HOME_BASE      = _env_str("HOME_BASE", HOME_BASE)
DEFAULT_SHELL  = _env_str("DEFAULT_SHELL", DEFAULT_SHELL)

ROTATE_EXISTING_PASSWORDS = _env_bool("ROTATE_EXISTING_PASSWORDS", ROTATE_EXISTING_PASSWORDS)
FORCE_PASSWORD_CHANGE     = _env_bool("FORCE_PASSWORD_CHANGE", FORCE_PASSWORD_CHANGE)

PASSWORD_BYTES           = _env_int("PASSWORD_BYTES", PASSWORD_BYTES, minimum=12)
FALLBACK_PASSWORD_LENGTH = _env_int("FALLBACK_PASSWORD_LENGTH", FALLBACK_PASSWORD_LENGTH, minimum=16)

INSTALL_LOGROTATE = _env_bool("INSTALL_LOGROTATE", INSTALL_LOGROTATE)
LOGROTATE_PATH    = _env_str("LOGROTATE_PATH", LOGROTATE_PATH)

#===================#
# Utility / Logging #
#===================#

class _IsoFormatter(logging.Formatter):
    """Timestamps like `date --iso-8601=seconds` (local time with offset)."""

    def formatTime(self, record, datefmt=None):
        return datetime.fromtimestamp(record.created).astimezone().isoformat(timespec="seconds")


class _BelowError(logging.Filter):
    def filter(self, record):
        return record.levelno < logging.ERROR

# Function: fncEnsureLogFile
# Purpose : Create the log file (and its directory) owned by root, mode 0644.
# Notes   : Any OSError here is fatal (exit 4). A parent dir we create gets 0755
#           so the 0644 log stays readable under umask 077.
def fncEnsureLogFile():
    log_dir = os.path.dirname(LOG_FILE) or "."
    try:
        if not os.path.isdir(log_dir):
            os.makedirs(log_dir)
            os.chmod(log_dir, 0o755)
        with open(LOG_FILE, "a", encoding="utf-8"):
            pass
        _own_by_admin(LOG_FILE)
        os.chmod(LOG_FILE, 0o644)
    except OSError as e:
        raise LogSetupError(f"Cannot write to {LOG_FILE}: {e}") from e

# Function: fncEnsureLogrotate
# Purpose : Drop a logrotate file so the log doesn't grow forever.
# Notes   : Creates once; ignores errors (warns only).
def fncEnsureLogrotate():
    if not INSTALL_LOGROTATE:
        return
    content = f"""{LOG_FILE} {{
  weekly
  rotate 8
  compress
  missingok
  notifempty
  create 0644 root root
}}
"""
    try:
        if not os.path.exists(LOGROTATE_PATH):
            with open(LOGROTATE_PATH, "w") as f:
                f.write(content)
            os.chmod(LOGROTATE_PATH, 0o644)
    except OSError as e:
        log.warning("Couldn't write logrotate file (%s): %s", LOGROTATE_PATH, e)

# Function: fncSetupLogging
# Purpose : Configure logging to the log file and the console.
# Notes   : INFO/WARNING echo to stdout, ERROR to stderr (like `tee` / `>&2`).
def fncSetupLogging():
    global _LOGGING_READY
    fncEnsureLogFile()

    fmt = _IsoFormatter("%(asctime)s %(levelname)s: %(message)s")
    try:
        file_handler = logging.FileHandler(LOG_FILE, encoding="utf-8")
    except OSError as e:
        raise LogSetupError(f"Cannot write to {LOG_FILE}: {e}") from e
    out_handler = logging.StreamHandler(sys.stdout)
    out_handler.addFilter(_BelowError())
    err_handler = logging.StreamHandler(sys.stderr)
    err_handler.setLevel(logging.ERROR)

    fncCloseLogging()
    for h in (file_handler, out_handler, err_handler):
        h.setFormatter(fmt)
        log.addHandler(h)
    log.setLevel(logging.INFO)
    _LOGGING_READY = True
    fncEnsureLogrotate()

# Function: fncCloseLogging
# Purpose : Detach and close our handlers (end of run / between tests).
def fncCloseLogging():
    global _LOGGING_READY
    for h in list(log.handlers):
        log.removeHandler(h)
        h.close()
    _LOGGING_READY = False

# Function: fncPrintMessage
# Purpose : Human-friendly colored console messages.
# Notes   : Used for important user-facing prints (not logs). Errors go to stderr.
def fncPrintMessage(message, msg_type="info", stream=None):
    if stream is None:
        stream = sys.stderr if msg_type in ("error", "warning") else sys.stdout
    styles = {
        "info":    Fore.CYAN  + "{~} ",
        "warning": Fore.RED   + "{!} ",
        "success": Fore.GREEN + "{=]} ",
        "error":   Fore.RED   + "{!} ",
    }
    try:
        colour = stream.isatty() and not os.environ.get("NO_COLOR")
    except (AttributeError, ValueError):
        colour = False
    if colour:
        print(f"{styles.get(msg_type, Fore.WHITE)}{message}{Style.RESET_ALL}", file=stream)
    else:
        print(message, file=stream)

# Function: fncCheckPyVersion
# Purpose : Fail fast on unsupported Python versions.
def fncCheckPyVersion():
    if sys.version_info < MIN_PYTHON_VERSION:
        fncPrintMessage("This script requires Python 3.10 or higher. Please upgrade.", "error")
        sys.exit(EXIT_UNEXPECTED)

#=========================#
# Preflight / Setup phase #
#=========================#

# Function: fncAdminCheck
# Purpose : Ensure the process runs as root when ADMIN_REQUIRED is True.
def fncAdminCheck():
    if ADMIN_REQUIRED and os.geteuid() != 0:
        raise PrivilegeError("This script must be run as root. Use sudo.")

# Function: fncCheckArgs
# Purpose : Exactly one argument (the manifest) which must be a regular file.
# Notes   : Returns the manifest path.
def fncCheckArgs(argv: list[str]) -> str:
    if len(argv) != 1:
        raise UsageError("Usage: create_users <users_file>")
    manifest = argv[0]
    if not os.path.isfile(manifest):
        raise ManifestNotFoundError(f"Input file not found: {manifest}")
    return manifest

# Function: fncPrepareSecureDir
# Purpose : Make sure SECURE_DIR exists as root:root 0700.
# Notes   : Mode is re-applied on every run, not only when created.
def fncPrepareSecureDir():
    try:
        os.makedirs(SECURE_DIR, exist_ok=True)
        _own_by_admin(SECURE_DIR)
        os.chmod(SECURE_DIR, 0o700)
    except OSError as e:
        raise SecureStoreError(f"Failed to create {SECURE_DIR}: {e}") from e

# Function: fncPrepareCredentialsFile
# Purpose : Create the password CSV with its header if missing; force 0600.
# Notes   : Call with the run lock held so the header write can't race another run.
def fncPrepareCredentialsFile():
    try:
        _assert_regular_or_missing(PASSWORD_FILE)
        if not os.path.exists(PASSWORD_FILE):
            with open(PASSWORD_FILE, "w", newline="", encoding="utf-8") as f:
                csv.writer(f, lineterminator="\n").writerow(CSV_HEADER)
            log.info("Initialised credentials file: %s", PASSWORD_FILE)
        _own_by_admin(PASSWORD_FILE)
        os.chmod(PASSWORD_FILE, 0o600)
    except (OSError, RuntimeError) as e:
        raise SecureStoreError(f"Failed to prepare {PASSWORD_FILE}: {e}") from e

# Function: fncAcquireLock
# Purpose : Acquire an exclusive lock to prevent concurrent runs.
# Notes   : Lock lives inside SECURE_DIR so it inherits the 0700 directory.
def fncAcquireLock():
    global _LOCK_FH
    lock_path = os.path.join(SECURE_DIR, LOCK_NAME)
    try:
        fh = open(lock_path, "w")
    except OSError as e:
        raise LockError(f"Failed to open lock file ({lock_path}): {e}") from e
    try:
        fcntl.lockf(fh, fcntl.LOCK_EX | fcntl.LOCK_NB)
    except OSError as e:
        fh.close()
        raise LockError("Another instance of create_users is already running.") from e
    _LOCK_FH = fh
    log.debug("Acquired lock: %s", lock_path)

def fncReleaseLock():
    global _LOCK_FH
    if _LOCK_FH is not None:
        _LOCK_FH.close()
        _LOCK_FH = None

# Function: fncCheckBinaries
# Purpose : Warn about pinned binaries that are missing on this host.
# Notes   : Not fatal; the affected steps will fail (and log) per record.
def fncCheckBinaries() -> list[str]:
    missing = [key for key, path in BIN.items() if not os.path.exists(path)]
    for key in missing:
        log.warning("Missing required binary: %s -> %s", key, BIN[key])
    return missing

#=====================#
# Account management  #
#=====================#

# Function: fncRun
# Purpose : Execute a pinned binary by logical key; capture rc/stdout/stderr.
# Notes   : Returns (returncode, stdout, stderr). Uses BIN map for safety.
def fncRun(cmdkey: str, args: list[str] | None = None, input: str | None = None) -> tuple[int, str, str]:
    exe = BIN.get(cmdkey)
    if not exe or not os.path.exists(exe):
        return 127, "", f"binary not found: {cmdkey} -> {exe}"
    try:
        p = subprocess.run([exe] + (args or []), input=input, capture_output=True, text=True, check=False)
        return p.returncode, p.stdout.strip(), p.stderr.strip()
    except OSError as e:
        return 127, "", str(e)


class AccountAdministrator:
    """Group/account operations backed by the shadow-utils binaries.

    Queries return plain values. Mutations return ``(ok, error_text)`` and
    never raise, so callers decide whether a failure ends the record.
    """

    def __init__(self, run=None):
        self._run = run or fncRun

    def _mutate(self, cmdkey: str, args: list[str], input: str | None = None) -> tuple[bool, str]:
        rc, _, err = self._run(cmdkey, args, input=input)
        return rc == 0, err or (f"{cmdkey} exited {rc}" if rc else "")

    # -- queries --

    def group_exists(self, name: str) -> bool:
        rc, _, _ = self._run("getent", ["group", name])
        return rc == 0

    def user_exists(self, user: str) -> bool:
        rc, _, _ = self._run("id", ["-u", user])
        return rc == 0

    def primary_group(self, user: str) -> str | None:
        rc, out, _ = self._run("id", ["-gn", user])
        if rc != 0 or not out:
            return None
        return out

    def user_groups(self, user: str) -> set[str]:
        rc, out, _ = self._run("id", ["-nG", user])
        if rc != 0 or not out:
            return set()
        return set(out.split())

    # -- mutations --

    def create_group(self, name: str) -> tuple[bool, str]:
        return self._mutate("groupadd", [name])

    def create_user(self, user: str, shell: str, primary: str, groups: list[str]) -> tuple[bool, str]:
        args = ["-m", "-s", shell, "-g", primary]
        if groups:
            args += ["-G", ",".join(groups)]
        return self._mutate("useradd", args + [user])

    def set_primary_group(self, user: str, group: str) -> tuple[bool, str]:
        return self._mutate("usermod", ["-g", group, user])

    def add_to_group(self, user: str, group: str) -> tuple[bool, str]:
        return self._mutate("usermod", ["-aG", group, user])

    def set_password(self, user: str, password: str) -> tuple[bool, str]:
        return self._mutate("chpasswd", [], input=f"{user}:{password}\n")

    def expire_password(self, user: str) -> tuple[bool, str]:
        return self._mutate("chage", ["-d", "0", user])

    def set_owner(self, path: str, user: str, group: str) -> tuple[bool, str]:
        return self._mutate("chown", [f"{user}:{group}", path])

    def set_mode(self, path: str, mode: int) -> tuple[bool, str]:
        try:
            os.chmod(path, mode)
        except OSError as e:
            return False, str(e)
        return True, ""

#===========#
# Passwords #
#===========#

def _strong_password(nbytes: int) -> str:
    return base64.b64encode(secrets.token_bytes(nbytes)).decode("ascii")

def _fallback_password(length: int) -> str:
    # random.Random seeds itself from time/pid when the OS source is gone
    rng = random.Random()
    return "".join(rng.choice(FALLBACK_ALPHABET) for _ in range(length))

# Function: fncGeneratePassword
# Purpose : Random password: base64(os random bytes), else PRNG chars, else a constant.
# Notes   : The constant is a known weak fallback and is logged as such.
def fncGeneratePassword() -> str:
    try:
        return _strong_password(PASSWORD_BYTES)
    except (NotImplementedError, OSError) as e:
        log.warning("Strong random source unavailable (%s); using fallback generator", e)
    try:
        pwd_plain = _fallback_password(FALLBACK_PASSWORD_LENGTH)
        if pwd_plain:
            return pwd_plain
    except Exception as e:
        log.warning("Fallback password generator failed: %s", e)
    log.warning("All random sources failed; using fixed fallback password")
    return WEAK_FALLBACK_PASSWORD

# Function: fncStoreCredential
# Purpose : Append username,password to the CSV and re-apply 0600.
# Notes   : Returns False (after logging) on any write/chmod failure.
def fncStoreCredential(user: str, password: str) -> bool:
    try:
        _assert_regular_or_missing(PASSWORD_FILE)
        with open(PASSWORD_FILE, "a", newline="", encoding="utf-8") as f:
            csv.writer(f, lineterminator="\n").writerow([user, password])
            f.flush()
        os.chmod(PASSWORD_FILE, 0o600)
    except (OSError, RuntimeError) as e:
        log.error("Failed to write credentials for %s to %s: %s", user, PASSWORD_FILE, e)
        return False
    log.info("Stored credentials for %s in %s", user, PASSWORD_FILE)
    return True

#==========#
# Manifest #
#==========#

# Function: fncParseLine
# Purpose : Turn one manifest line into a ManifestRecord.
# Notes   : Returns None for blank/comment lines. Does not validate the username.
def fncParseLine(raw: str) -> ManifestRecord | None:
    line = raw.strip()
    if not line or line.startswith("#"):
        return None
    username, _, groups_raw = line.partition(";")
    groups_raw = re.sub(r"\s+", "", groups_raw)
    groups = [g for g in groups_raw.split(",") if g]
    return ManifestRecord(username=username.strip(), groups=groups)

def fncValidUsername(username: str) -> bool:
    return bool(USERNAME_RE.fullmatch(username))

#===============#
# Provisioning  #
#===============#

def _ensure_group(admin: AccountAdministrator, name: str) -> bool:
    if admin.group_exists(name):
        return True
    ok, err = admin.create_group(name)
    if ok:
        log.info("Created group: %s", name)
    else:
        log.error("Failed to create group: %s (%s)", name, err)
    return ok

# Function: fncHardenHome
# Purpose : chown user:user + chmod 0700 on HOME_BASE/<user>.
# Notes   : A missing home is logged but doesn't stop the record.
def fncHardenHome(admin: AccountAdministrator, user: str):
    home = os.path.join(HOME_BASE, user)
    if not os.path.isdir(home):
        log.error("Home directory missing for %s: %s", user, home)
        return
    owned, err = admin.set_owner(home, user, user)
    if not owned:
        log.error("Failed chown on %s: %s", home, err)
    moded, err = admin.set_mode(home, 0o700)
    if not moded:
        log.error("Failed chmod on %s: %s", home, err)
    if owned and moded:
        log.info("Set ownership and permissions for %s", home)

# Function: fncSyncMemberships
# Purpose : Add the user to every listed group they're not in yet.
def fncSyncMemberships(admin: AccountAdministrator, user: str, groups: list[str]):
    if not groups:
        return
    current = admin.user_groups(user)
    for g in groups:
        if g in current:
            log.info("User %s already member of %s", user, g)
            continue
        ok, err = admin.add_to_group(user, g)
        if ok:
            log.info("Added %s to group %s", user, g)
            current.add(g)
        else:
            log.error("Failed to add %s to group %s: %s", user, g, err)

# Function: fncProcessRecord
# Purpose : Reconcile one manifest record against the system.
# Notes   : Never raises for expected failures; returns a RecordOutcome instead.
def fncProcessRecord(admin: AccountAdministrator, record: ManifestRecord) -> RecordOutcome:
    user = record.username
    if not fncValidUsername(user):
        log.error(
            "Skipping invalid username: '%s' (must start with a-z or _, "
            "and contain only lowercase, digits, - or _)", user
        )
        return RecordOutcome(user, "invalid", "invalid username")

    # Personal group
    if admin.group_exists(user):
        log.info("Personal group already exists: %s", user)
    else:
        ok, err = admin.create_group(user)
        if not ok:
            log.error("Failed to create personal group: %s (%s)", user, err)
            return RecordOutcome(user, "failed", "personal group")
        log.info("Created personal group: %s", user)

    # User
    existed = admin.user_exists(user)
    if existed:
        log.info("User already exists: %s", user)
        if admin.primary_group(user) != user:
            ok, err = admin.set_primary_group(user, user)
            if ok:
                log.info("Updated primary group for %s to %s", user, user)
            else:
                log.error("Failed to set primary group for %s: %s", user, err)
    else:
        for g in record.groups:
            _ensure_group(admin, g)
        ok, err = admin.create_user(user, DEFAULT_SHELL, user, record.groups)
        if not ok:
            log.error("Failed to create user: %s (%s)", user, err)
            return RecordOutcome(user, "failed", "create user")
        if record.groups:
            log.info("Created user: %s (supplementary groups: %s)", user, ",".join(record.groups))
        else:
            log.info("Created user: %s (no supplementary groups)", user)

    fncHardenHome(admin, user)
    fncSyncMemberships(admin, user, record.groups)

    if existed and not ROTATE_EXISTING_PASSWORDS:
        log.info("Keeping existing password for %s (rotation disabled)", user)
        return RecordOutcome(user, "provisioned", created=False)

    pwd_plain = fncGeneratePassword()
    ok, err = admin.set_password(user, pwd_plain)
    if not ok:
        log.error("Failed to set password for %s: %s", user, err)
        return RecordOutcome(user, "failed", "set password", created=not existed)
    log.info("Password set for %s", user)

    if FORCE_PASSWORD_CHANGE:
        ok, err = admin.expire_password(user)
        if not ok:
            log.error("Failed to force password change for %s: %s", user, err)

    stored = fncStoreCredential(user, pwd_plain)
    return RecordOutcome(user, "provisioned", created=not existed, password_stored=stored)

# Function: fncProvision
# Purpose : Main loop. One record at a time, in file order.
# Notes   : An unexpected exception only costs the record it happened on.
#           Undecodable bytes become U+FFFD, so such names just fail validation.
def fncProvision(manifest: str, admin: AccountAdministrator) -> list[RecordOutcome]:
    outcomes: list[RecordOutcome] = []
    with open(manifest, "r", encoding="utf-8", errors="replace") as fh:
        for lineno, raw in enumerate(fh, 1):
            record = fncParseLine(raw)
            if record is None:
                continue
            try:
                outcomes.append(fncProcessRecord(admin, record))
            except Exception as e:
                log.exception("Unexpected error on line %d (%s): %s", lineno, record.username, e)
                outcomes.append(RecordOutcome(record.username, "failed", str(e)))
    log.info("Processing completed for input file: %s", manifest)
    return outcomes

def fncPrintSummary(outcomes: list[RecordOutcome]):
    done = sum(1 for o in outcomes if o.ok)
    failed = sum(1 for o in outcomes if o.status == "failed")
    invalid = sum(1 for o in outcomes if o.status == "invalid")
    fncPrintMessage(f"Provisioned: {done}  Failed: {failed}  Invalid: {invalid}",
                    "success" if not (failed or invalid) else "warning", stream=sys.stdout)

#=================#
# Script harness  #
#=================#

# Function: fncMain
# Purpose : Program entrypoint; preflight checks, logging, locking, provisioning.
# Notes   : Uses umask(077) to protect any new files. Returns the exit code.
def fncMain(argv: list[str] | None = None, admin: AccountAdministrator | None = None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    try:
        os.umask(0o077)
        fncAdminCheck()
        manifest = fncCheckArgs(argv)
        fncSetupLogging()
        fncPrepareSecureDir()
        fncAcquireLock()
        fncPrepareCredentialsFile()
        fncCheckBinaries()
        outcomes = fncProvision(manifest, admin or AccountAdministrator())
        fncPrintSummary(outcomes)
        return EXIT_OK
    except ProvisionError as e:
        if _LOGGING_READY:
            log.error("%s", e)
        else:
            fncPrintMessage(str(e), "error")
        return e.exit_code
    except KeyboardInterrupt:
        fncPrintMessage("Bye then...", "error")
        return EXIT_INTERRUPTED
    except Exception as e:
        if _LOGGING_READY:
            log.exception("Unhandled exception: %s", e)
        else:
            fncPrintMessage(f"Unhandled exception: {e}", "error")
        return EXIT_UNEXPECTED
    finally:
        fncReleaseLock()
        fncCloseLogging()

def main():
    fncCheckPyVersion()
    sys.exit(fncMain())

if __name__ == "__main__":
    main()
