from __future__ import annotations

import hashlib
import hmac
import threading
import time
from typing import Callable, Dict, Mapping, Optional, Tuple

from .catalog.db import DirectoryDatabase
from .config import SiteAccessSettings, load_site_access
from .domain.constants import ROLE_ADMIN
from .logging import get_logger
from .paths import find_project_root

LOG = get_logger("access")

MAX_FAILED_ATTEMPTS = 5
LOCKOUT_SECONDS = 15 * 60
MAX_PASSWORD_LENGTH = 100


class AccessDenied(Exception):
    def __init__(self, message: str, *, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


def client_ip(headers: Mapping[str, str]) -> str:
    """First x-forwarded-for hop, then cf-connecting-ip, else "unknown"."""
    forwarded = (headers.get("x-forwarded-for") or "").split(",")[0].strip()
    return forwarded or headers.get("cf-connecting-ip") or "unknown"


def _signature(timestamp: str, secret: str) -> str:
    return hashlib.sha256(f"{timestamp}:verified{secret}".encode("utf-8")).hexdigest()[:32]


def issue_access_token(secret: str, now: Optional[float] = None) -> str:
    timestamp = str(int((time.time() if now is None else now) * 1000))
    return f"{timestamp}:{_signature(timestamp, secret)}"


def verify_token(token: Optional[str], secret: str, max_age: Optional[float] = None, now: Optional[float] = None) -> bool:
    """Check a site-access token's signature and, with max_age (seconds), its age."""
    if not token or ":" not in token:
        return False
    timestamp, _, signature = token.partition(":")
    if not timestamp.isdigit():
        return False
    if not hmac.compare_digest(signature, _signature(timestamp, secret)):
        return False
    if max_age is not None:
        current = time.time() if now is None else now
        if current - int(timestamp) / 1000.0 > max_age:
            return False
    return True


class SiteAccessVerifier:
    """Shared-password gate with per-IP lockout after repeated failures."""

    def __init__(
        self,
        password: Optional[str],
        secret: str = "secret",
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.password = password
        self.secret = secret
        self.clock = clock
        # ip -> (failure count, last failure time)
        self._failures: Dict[str, Tuple[int, float]] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_env(cls, root_dir: Optional[str] = None) -> "SiteAccessVerifier":
        settings: SiteAccessSettings = load_site_access(find_project_root(root_dir))
        return cls(settings.password, settings.secret)

    def _prune(self, now: float) -> None:
        stale = [ip for ip, (_, last) in self._failures.items() if now - last > LOCKOUT_SECONDS]
        for ip in stale:
            del self._failures[ip]

    def is_locked_out(self, ip: str) -> bool:
        with self._lock:
            self._prune(self.clock())
            count, _ = self._failures.get(ip, (0, 0.0))
            return count >= MAX_FAILED_ATTEMPTS

    def _record_failure(self, ip: str) -> None:
        with self._lock:
            now = self.clock()
            self._prune(now)
            count, _ = self._failures.get(ip, (0, now))
            self._failures[ip] = (count + 1, now)

    def _clear(self, ip: str) -> None:
        with self._lock:
            self._failures.pop(ip, None)

    def check_lockout(self, ip: str) -> None:
        if self.is_locked_out(ip):
            LOG.info("Rate limited IP: %s", ip)
            raise AccessDenied("Too many failed attempts. Please try again later.", status_code=429)

    def verify(self, password: object, ip: str = "unknown") -> str:
        """Return a signed access token or raise AccessDenied."""
        self.check_lockout(ip)
        if not password or not isinstance(password, str):
            raise AccessDenied("Password is required", status_code=400)
        if len(password) > MAX_PASSWORD_LENGTH:
            raise AccessDenied("Invalid password", status_code=400)

        expected = self.password or ""
        if expected and hmac.compare_digest(password.encode("utf-8"), expected.encode("utf-8")):
            self._clear(ip)
            LOG.info("Site access granted")
            return issue_access_token(self.secret, self.clock())

        self._record_failure(ip)
        LOG.info("Site access denied - invalid password (IP: %s)", ip)
        raise AccessDenied("Invalid credentials", status_code=401)


class AdminAuthorizer:
    """Resolve a Bearer token to a user and require the admin role."""

    def __init__(self, db: DirectoryDatabase) -> None:
        self.db = db

    def user_for_header(self, authorization: Optional[str]) -> str:
        if not authorization or not authorization.startswith("Bearer "):
            LOG.info("Missing or invalid Authorization header")
            raise AccessDenied("Unauthorized", status_code=401)
        user_id = self.db.user_for_token(authorization[len("Bearer "):].strip())
        if not user_id:
            LOG.info("Invalid token or no user")
            raise AccessDenied("Unauthorized", status_code=401)
        return user_id

    def require_admin(self, authorization: Optional[str]) -> str:
        user_id = self.user_for_header(authorization)
        if not self.db.user_has_role(user_id, ROLE_ADMIN):
            LOG.info("User is not an admin: %s", user_id)
            raise AccessDenied("Forbidden - Admin access required", status_code=403)
        LOG.info("Admin access verified for user: %s", user_id)
        return user_id
