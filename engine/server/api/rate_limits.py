"""In-memory rate limiters keyed by arbitrary strings (IP, user id).

State lives in process memory only and is lost on restart; these are soft
throttles. Instances are created at server start and owned by
``RateLimitService``; there is no module-level singleton.

Locking: a registry lock guards the key -> window map, and each window has
its own lock. Operations on one key never wait on another key.
"""
from __future__ import annotations

import logging
import threading
import time
from collections import deque
from datetime import datetime, timezone
from typing import Any, Callable, Generic, TypeVar


class RateLimitExceeded(Exception):
    """Raised when a key has used up its allowance for the current window."""

    def __init__(
        self,
        scope: str,
        key: str,
        current_count: int,
        max_limit: int,
        reset_at: float,
    ) -> None:
        self.scope = scope
        self.key = key
        self.current_count = current_count
        self.max_limit = max_limit
        self.reset_at = reset_at
        super().__init__(
            f"Rate limit exceeded for {scope}. {current_count} actions in the current window; "
            f"maximum allowed is {max_limit}. Try again after {self.reset_time}."
        )

    @property
    def reset_time(self) -> str:
        """Reset moment as HH:MM:SS (UTC)."""
        return datetime.fromtimestamp(self.reset_at, tz=timezone.utc).strftime("%H:%M:%S")

    @property
    def retry_after_seconds(self) -> int:
        return max(int(self.reset_at - time.time() + 0.999), 0)

    def to_payload(self) -> dict[str, Any]:
        return {
            "error": "Rate limit exceeded",
            "scope": self.scope,
            "current_count": self.current_count,
            "max_limit": self.max_limit,
            "reset_at": self.reset_at,
            "reset_time": self.reset_time,
        }


class _SlidingWindow:
    __slots__ = ("lock", "events", "retired")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.events: deque[float] = deque()
        self.retired = False


class _FixedWindow:
    __slots__ = ("lock", "window_start", "count", "retired")

    def __init__(self, window_start: float) -> None:
        self.lock = threading.Lock()
        self.window_start = window_start
        self.count = 0
        self.retired = False


W = TypeVar("W", _SlidingWindow, _FixedWindow)


class _KeyedWindows(Generic[W]):
    """Lazily created per-key windows with safe removal.

    Idle windows are dropped by ``maybe_sweep`` at most once per
    ``sweep_interval`` seconds, piggybacking on regular limiter calls, so keys
    that are never seen again do not stay in memory.
    """

    def __init__(self, factory: Callable[[], W], sweep_interval: float, started_at: float) -> None:
        self._factory = factory
        self._lock = threading.Lock()
        self._windows: dict[str, W] = {}
        self._sweep_interval = sweep_interval
        self._sweep_guard = threading.Lock()
        self._last_sweep = started_at

    def get(self, key: str) -> W | None:
        with self._lock:
            return self._windows.get(key)

    def get_or_create(self, key: str) -> W:
        with self._lock:
            window = self._windows.get(key)
            if window is None:
                window = self._factory()
                self._windows[key] = window
            return window

    def remove(self, key: str) -> None:
        with self._lock:
            window = self._windows.pop(key, None)
        if window is not None:
            with window.lock:
                window.retired = True

    def clear(self) -> None:
        with self._lock:
            windows = list(self._windows.values())
            self._windows.clear()
        for window in windows:
            with window.lock:
                window.retired = True

    def sweep(self, is_idle: Callable[[W], bool]) -> int:
        """Drop idle windows; windows busy in another thread are left alone."""
        removed = 0
        with self._lock:
            for key, window in list(self._windows.items()):
                if not window.lock.acquire(blocking=False):
                    continue
                try:
                    if is_idle(window):
                        window.retired = True
                        del self._windows[key]
                        removed += 1
                finally:
                    window.lock.release()
        return removed

    def maybe_sweep(self, now: float, is_idle: Callable[[W], bool]) -> int:
        """Sweep when the interval has passed; one thread sweeps at a time.

        Callers must not hold any window lock.
        """
        if now - self._last_sweep < self._sweep_interval:
            return 0
        if not self._sweep_guard.acquire(blocking=False):
            return 0
        try:
            if now - self._last_sweep < self._sweep_interval:
                return 0
            self._last_sweep = now
            return self.sweep(is_idle)
        finally:
            self._sweep_guard.release()

    def __len__(self) -> int:
        with self._lock:
            return len(self._windows)


class SlidingWindowRateLimiter:
    """Rolling window: at most ``max_actions`` timestamps within the window.

    A timestamp ages out once it is strictly older than ``window_seconds``.
    """

    def __init__(
        self,
        max_actions: int,
        window_seconds: float,
        scope: str = "sliding",
        now_fn: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the instance."""
        self.max_actions = int(max_actions)
        self.window_seconds = float(window_seconds)
        self.scope = scope
        self._now_fn = now_fn
        self._windows: _KeyedWindows[_SlidingWindow] = _KeyedWindows(
            _SlidingWindow, self.window_seconds, now_fn()
        )

    def _prune(self, window: _SlidingWindow, now: float) -> None:
        cutoff = now - self.window_seconds
        while window.events and window.events[0] < cutoff:
            window.events.popleft()

    def _is_idle(self, window: _SlidingWindow, now: float) -> bool:
        self._prune(window, now)
        return not window.events

    def _locked_window(self, key: str) -> _SlidingWindow:
        """Return the live window for key with its lock held."""
        now = self._now_fn()
        self._windows.maybe_sweep(now, lambda window: self._is_idle(window, now))
        while True:
            window = self._windows.get_or_create(key)
            window.lock.acquire()
            if not window.retired:
                return window
            window.lock.release()

    def try_acquire(self, key: str) -> bool:
        """Admit and record one action when the key is under its limit."""
        window = self._locked_window(key)
        try:
            now = self._now_fn()
            self._prune(window, now)
            if len(window.events) >= self.max_actions:
                logging.info(
                    "[rate-limit] rejected scope=%s count=%d max=%d",
                    self.scope,
                    len(window.events),
                    self.max_actions,
                )
                return False
            window.events.append(now)
            return True
        finally:
            window.lock.release()

    def check(self, key: str) -> None:
        """Raise RateLimitExceeded when the key is at its limit; records nothing."""
        window = self._locked_window(key)
        try:
            now = self._now_fn()
            self._prune(window, now)
            count = len(window.events)
            if count >= self.max_actions:
                reset_at = window.events[0] + self.window_seconds
                logging.info(
                    "[rate-limit] rejected scope=%s count=%d max=%d",
                    self.scope,
                    count,
                    self.max_actions,
                )
                raise RateLimitExceeded(self.scope, key, count, self.max_actions, reset_at)
        finally:
            window.lock.release()

    def record(self, key: str) -> None:
        """Register one completed action."""
        window = self._locked_window(key)
        try:
            now = self._now_fn()
            self._prune(window, now)
            window.events.append(now)
        finally:
            window.lock.release()

    def current_count(self, key: str) -> int:
        window = self._windows.get(key)
        if window is None:
            return 0
        with window.lock:
            self._prune(window, self._now_fn())
            return len(window.events)

    def remaining(self, key: str) -> int:
        return max(0, self.max_actions - self.current_count(key))

    def reset(self, key: str) -> None:
        self._windows.remove(key)

    def clear(self) -> None:
        self._windows.clear()

    def sweep(self) -> int:
        """Forget keys whose every action has aged out."""
        now = self._now_fn()
        return self._windows.sweep(lambda window: self._is_idle(window, now))

    def tracked_keys(self) -> int:
        return len(self._windows)


class FixedWindowRateLimiter:
    """Fixed window: a counter reset wholesale once the window has elapsed."""

    def __init__(
        self,
        max_attempts: int,
        window_seconds: float,
        scope: str = "fixed",
        now_fn: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the instance."""
        self.max_attempts = int(max_attempts)
        self.window_seconds = float(window_seconds)
        self.scope = scope
        self._now_fn = now_fn
        self._windows: _KeyedWindows[_FixedWindow] = _KeyedWindows(
            lambda: _FixedWindow(self._now_fn()), self.window_seconds, now_fn()
        )

    def _roll(self, window: _FixedWindow, now: float) -> None:
        if now - window.window_start >= self.window_seconds:
            window.window_start = now
            window.count = 0

    def _is_idle(self, window: _FixedWindow, now: float) -> bool:
        return now - window.window_start >= self.window_seconds

    def _locked_window(self, key: str) -> _FixedWindow:
        now = self._now_fn()
        self._windows.maybe_sweep(now, lambda window: self._is_idle(window, now))
        while True:
            window = self._windows.get_or_create(key)
            window.lock.acquire()
            if not window.retired:
                return window
            window.lock.release()

    def try_acquire(self, key: str) -> bool:
        """Count one attempt and admit it while the window total stays within max."""
        window = self._locked_window(key)
        try:
            self._roll(window, self._now_fn())
            window.count += 1
            allowed = window.count <= self.max_attempts
            if not allowed:
                logging.info(
                    "[rate-limit] rejected scope=%s count=%d max=%d",
                    self.scope,
                    window.count,
                    self.max_attempts,
                )
            return allowed
        finally:
            window.lock.release()

    def check(self, key: str) -> None:
        """Raise RateLimitExceeded when the window is used up; counts nothing."""
        window = self._locked_window(key)
        try:
            self._roll(window, self._now_fn())
            if window.count >= self.max_attempts:
                raise RateLimitExceeded(
                    self.scope,
                    key,
                    window.count,
                    self.max_attempts,
                    window.window_start + self.window_seconds,
                )
        finally:
            window.lock.release()

    def record(self, key: str) -> None:
        """Count one attempt without an admission decision."""
        window = self._locked_window(key)
        try:
            self._roll(window, self._now_fn())
            window.count += 1
        finally:
            window.lock.release()

    def current_count(self, key: str) -> int:
        window = self._windows.get(key)
        if window is None:
            return 0
        with window.lock:
            self._roll(window, self._now_fn())
            return window.count

    def remaining(self, key: str) -> int:
        return max(0, self.max_attempts - self.current_count(key))

    def reset(self, key: str) -> None:
        self._windows.remove(key)

    def clear(self) -> None:
        self._windows.clear()

    def sweep(self) -> int:
        now = self._now_fn()
        return self._windows.sweep(lambda window: self._is_idle(window, now))

    def tracked_keys(self) -> int:
        return len(self._windows)


class RateLimitService:
    """Login-attempt and comment throttles used by the account/comment side."""

    def __init__(
        self,
        login_max_attempts: int,
        login_window_seconds: float,
        comment_max_actions: int,
        comment_window_seconds: float,
        now_fn: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the instance."""
        self.login = FixedWindowRateLimiter(
            login_max_attempts, login_window_seconds, scope="login", now_fn=now_fn
        )
        self.comments = SlidingWindowRateLimiter(
            comment_max_actions, comment_window_seconds, scope="comments", now_fn=now_fn
        )

    def limiter(self, scope: str) -> FixedWindowRateLimiter | SlidingWindowRateLimiter:
        """Return the limiter for ``login`` or ``comments``."""
        if scope == "login":
            return self.login
        if scope == "comments":
            return self.comments
        raise ValueError(f"Unknown rate limit scope: {scope}")

    def is_login_allowed(self, ip_address: str) -> bool:
        return self.login.try_acquire(ip_address)

    def reset_login_attempts(self, ip_address: str) -> None:
        self.login.reset(ip_address)

    def check_comment_rate_limit(self, user_id: str) -> None:
        self.comments.check(user_id)

    def record_comment(self, user_id: str) -> None:
        self.comments.record(user_id)

    def remaining_comments(self, user_id: str) -> int:
        return self.comments.remaining(user_id)

    def clear_all(self) -> None:
        """Drop every tracked key (tests and admin resets)."""
        self.login.clear()
        self.comments.clear()
