"""Failover controller: rotate credentials and models on rate limits and permission errors.

One instance per process, shared by all turns. Credential state is scoped to the
selected model: every model switch starts from credential #1 with a clean pool.

Rate limit escalation: the first 429 on a credential blocks it for the short
window (per-minute quota). A 429 after that block has expired confirms a daily
quota and blocks it for the long window.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence

from chatstream.core.errors import NoCredentialsError

logger = logging.getLogger(__name__)

SHORT_BLOCK_SECONDS = 120.0
LONG_BLOCK_SECONDS = 86_400.0
PERMISSION_DENIED_BLOCK_SECONDS = 7 * 86_400.0


def mask_secret(secret: str) -> str:
    if len(secret) <= 12:
        return "***"
    return f"{secret[:8]}...{secret[-4:]}"


@dataclass
class CredentialSlot:
    index: int
    secret: str
    blocked_until: Optional[float] = None
    failure_count: int = 0
    long_block: bool = False

    def is_blocked(self, now: float) -> bool:
        return self.blocked_until is not None and now < self.blocked_until

    @property
    def masked(self) -> str:
        return mask_secret(self.secret)


@dataclass
class ModelSlot:
    name: str
    priority: int
    blocked_until: Optional[float] = None

    def is_blocked(self, now: float) -> bool:
        return self.blocked_until is not None and now < self.blocked_until


@dataclass(frozen=True)
class Selection:
    """What current() hands to the orchestrator for one attempt."""

    credential: str
    model: str
    credential_index: int
    model_index: int


class FailoverController:
    """Credential pool x prioritized model list, with block windows and lazy recovery."""

    def __init__(
        self,
        credentials: Sequence[str],
        models: Sequence[str],
        *,
        short_block_seconds: float = SHORT_BLOCK_SECONDS,
        long_block_seconds: float = LONG_BLOCK_SECONDS,
        permission_denied_seconds: float = PERMISSION_DENIED_BLOCK_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        secrets = list(dict.fromkeys(c for c in credentials if c))
        if not secrets:
            raise NoCredentialsError("at least one credential is required")
        if not models:
            raise NoCredentialsError("at least one model is required")
        self._secrets = secrets
        self._short = short_block_seconds
        self._long = long_block_seconds
        self._permission = permission_denied_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._models = [ModelSlot(name=m, priority=i) for i, m in enumerate(models)]
        self._model_index = 0
        self._credential_index = 0
        self._credentials = self._fresh_pool()
        logger.info(
            "failover pool ready",
            extra={"credentials": len(secrets), "models": [m.name for m in self._models]},
        )

    def _fresh_pool(self) -> list[CredentialSlot]:
        return [CredentialSlot(index=i, secret=s) for i, s in enumerate(self._secrets)]

    def _switch_model(self, index: int) -> None:
        self._model_index = index
        self._credential_index = 0
        self._credentials = self._fresh_pool()

    def _unblock_expired(self, now: float) -> None:
        for slot in self._credentials:
            if slot.blocked_until is not None and now >= slot.blocked_until:
                slot.blocked_until = None
                logger.debug("credential #%d unblocked", slot.index + 1)
        snapped = False
        for i, model in enumerate(self._models):
            if model.blocked_until is None or now < model.blocked_until:
                continue
            model.blocked_until = None
            logger.info("model %s available again", model.name)
            if not snapped and i < self._model_index:
                self._switch_model(i)
                snapped = True
                logger.info("switched back to model %s", model.name)

    @property
    def current_model(self) -> str:
        return self._models[self._model_index].name

    @property
    def current_credential_index(self) -> int:
        return self._credential_index

    @property
    def total_credentials(self) -> int:
        return len(self._secrets)

    def current(self) -> Selection:
        """Current (credential, model) after clearing expired blocks."""
        with self._lock:
            self._unblock_expired(self._clock())
            return Selection(
                credential=self._credentials[self._credential_index].secret,
                model=self._models[self._model_index].name,
                credential_index=self._credential_index,
                model_index=self._model_index,
            )

    def on_rate_limited(self) -> bool:
        """Block current credential (short, or long on repeat) and rotate. True if rotated."""
        with self._lock:
            now = self._clock()
            slot = self._credentials[self._credential_index]
            if not slot.is_blocked(now):
                slot.failure_count += 1
                slot.long_block = slot.failure_count > 1
                window = self._long if slot.long_block else self._short
                slot.blocked_until = now + window
            logger.warning(
                "credential #%d rate limited (%s)",
                slot.index + 1,
                "daily limit confirmed" if slot.long_block else "short block",
                extra={"model": self.current_model, "failures": slot.failure_count},
            )
            if self._rotate_credential(now):
                return True
            model = self._models[self._model_index]
            daily = any(c.long_block for c in self._credentials)
            model.blocked_until = now + (self._long if daily else self._short)
            logger.warning(
                "all %d credentials rate limited, blocking model %s",
                len(self._credentials),
                model.name,
                extra={"daily": daily},
            )
            return self._rotate_model(now)

    def on_permission_denied(self) -> bool:
        """Block current credential for the permission window; rotate credentials only."""
        with self._lock:
            now = self._clock()
            slot = self._credentials[self._credential_index]
            slot.blocked_until = now + self._permission
            logger.warning(
                "credential #%d permission denied (%s)", slot.index + 1, slot.masked
            )
            return self._rotate_credential(now)

    def reset(self) -> None:
        with self._lock:
            for model in self._models:
                model.blocked_until = None
            self._switch_model(0)
            logger.info("failover state reset")

    def _rotate_credential(self, now: float) -> bool:
        total = len(self._credentials)
        for step in range(1, total):
            index = (self._credential_index + step) % total
            slot = self._credentials[index]
            if not slot.is_blocked(now):
                slot.blocked_until = None
                self._credential_index = index
                logger.info(
                    "rotated to credential #%d/%d",
                    index + 1,
                    total,
                    extra={"model": self.current_model},
                )
                return True
        return False

    def _rotate_model(self, now: float) -> bool:
        # priority order, skipping the model that was just blocked
        for model_index, model in enumerate(self._models):
            if model_index == self._model_index or model.is_blocked(now):
                continue
            self._switch_model(model_index)
            logger.info("rotated to model %s", model.name)
            return True
        logger.error("all models blocked")
        return False

    def status(self) -> list[dict[str, Any]]:
        """Credential pool of the current model, secrets masked."""
        with self._lock:
            now = self._clock()
            return [
                {
                    "index": slot.index + 1,
                    "masked": slot.masked,
                    "available": not slot.is_blocked(now),
                    "blocked_for": max(0.0, slot.blocked_until - now)
                    if slot.is_blocked(now)
                    else None,
                    "failure_count": slot.failure_count,
                    "current": slot.index == self._credential_index,
                }
                for slot in self._credentials
            ]

    def model_status(self) -> list[dict[str, Any]]:
        with self._lock:
            now = self._clock()
            return [
                {
                    "model": model.name,
                    "priority": model.priority,
                    "available": not model.is_blocked(now),
                    "blocked_for": max(0.0, model.blocked_until - now)
                    if model.is_blocked(now)
                    else None,
                    "current": i == self._model_index,
                }
                for i, model in enumerate(self._models)
            ]
