from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from app.contexts.payments.domain.transfer import WebhookConfig
from app.contexts.payments.infrastructure.repositories.webhook_config_repository import WebhookConfigRepository


class WebhookConfigProvider:
    """Loads the webhook configuration singleton, optionally caching it for a short time."""

    def __init__(
        self,
        repository: WebhookConfigRepository | None = None,
        *,
        ttl_seconds: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._repository = repository or WebhookConfigRepository()
        self._ttl_seconds = max(0.0, float(ttl_seconds or 0.0))
        self._clock = clock
        self._lock = threading.Lock()
        self._cached: WebhookConfig | None = None
        self._loaded_at: float | None = None
        self._logger = logging.getLogger("app")

    def load(self, db) -> WebhookConfig | None:
        if self._ttl_seconds <= 0:
            return self._repository.get(db)

        with self._lock:
            now = self._clock()
            if self._loaded_at is not None and now - self._loaded_at < self._ttl_seconds:
                return self._cached
            config = self._repository.get(db)
            self._cached = config
            self._loaded_at = now
            return config

    def save(self, db, config: WebhookConfig) -> WebhookConfig:
        with db.transaction():
            self._repository.save(db, config)
        self.invalidate()
        self._logger.info(
            "webhook_config_saved",
            extra={
                "enabled": config.enabled,
                "validate_pix_key": config.validate_pix_key,
                "max_auto_approve_amount": str(config.max_auto_approve_amount),
                "has_auth_token": bool(config.auth_token),
            },
        )
        return config

    def invalidate(self) -> None:
        with self._lock:
            self._cached = None
            self._loaded_at = None
