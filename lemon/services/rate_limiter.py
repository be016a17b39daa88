from __future__ import annotations

import math
import os
import threading
import time
from dataclasses import dataclass
from typing import Callable

from ..config import parse_int


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_at: float

    def retry_after(self, now: float) -> int:
        return max(1, math.ceil(self.reset_at - now))


@dataclass(frozen=True)
class RateLimitRule:
    name: str
    limit: int
    window_seconds: int

    def key(self, *parts: str) -> str:
        return ":".join([self.name, *(str(part) for part in parts)])


def _rule(name: str, env_var: str, default_limit: int, window_seconds: int) -> RateLimitRule:
    return RateLimitRule(
        name, parse_int(os.environ.get(env_var), default_limit, minimum=1), window_seconds
    )


UPLOAD_PER_IP = _rule("upload-ip", "LEMON_RATE_LIMIT_UPLOAD_IP", 15, 60)
UPLOAD_PER_USER = _rule("upload-user", "LEMON_RATE_LIMIT_UPLOAD_USER", 20, 60)
LOGIN = _rule("login", "LEMON_RATE_LIMIT_LOGIN", 10, 15 * 60)
REGISTER = _rule("register", "LEMON_RATE_LIMIT_REGISTER", 5, 60 * 60)
UPLOAD_KEY_ROTATION = _rule("upload-key", "LEMON_RATE_LIMIT_UPLOAD_KEY", 5, 15 * 60)
UPDATE_MEDIA = _rule("update-media", "LEMON_RATE_LIMIT_UPDATE_MEDIA", 30, 60)
DELETE_MEDIA = _rule("delete-media", "LEMON_RATE_LIMIT_DELETE_MEDIA", 20, 60)
USERNAME_CHANGE = _rule("username-change", "LEMON_RATE_LIMIT_USERNAME", 5, 15 * 60)
PASSWORD_CHANGE = _rule("password-change", "LEMON_RATE_LIMIT_PASSWORD", 5, 15 * 60)
ADMIN_INVITE = _rule("admin-invite", "LEMON_RATE_LIMIT_ADMIN_INVITE", 10, 60 * 60)


class RateLimiter:
    """
    Fixed-window counters keyed by an opaque string, e.g.
    ``"upload-ip:203.0.113.9"`` or ``"delete-media:<user>:<ip>"``.

    State is per process. Expired windows are swept at most once per
    ``sweep_interval`` seconds; a swept key behaves exactly like a key that
    was never seen.
    """

    def __init__(self, clock: Callable[[], float] = time.time, sweep_interval: float = 60.0) -> None:
        self._clock = clock
        self._sweep_interval = sweep_interval
        self._lock = threading.Lock()
        self._entries: dict[str, list[float]] = {}
        self._last_sweep_at = 0.0

    def now(self) -> float:
        return self._clock()

    def check(self, key: str, window_seconds: float, limit: int) -> RateLimitResult:
        now = self._clock()
        with self._lock:
            self._maybe_sweep(now)
            entry = self._entries.get(key)
            if entry is None or entry[1] <= now:
                reset_at = now + window_seconds
                self._entries[key] = [1, reset_at]
                return RateLimitResult(True, max(0, limit - 1), reset_at)

            count, reset_at = entry
            if count >= limit:
                return RateLimitResult(False, 0, reset_at)

            entry[0] = count + 1
            return RateLimitResult(True, max(0, limit - entry[0]), reset_at)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _maybe_sweep(self, now: float) -> None:
        if now - self._last_sweep_at < self._sweep_interval:
            return
        expired = [key for key, (_, reset_at) in self._entries.items() if reset_at <= now]
        for key in expired:
            del self._entries[key]
        self._last_sweep_at = now

    def hit(self, rule: RateLimitRule, *parts: str) -> RateLimitResult:
        return self.check(rule.key(*parts), rule.window_seconds, rule.limit)
