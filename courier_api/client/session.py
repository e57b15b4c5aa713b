import logging
from typing import MutableMapping

import requests

from courier_api.core.errors import DeliveryError

logger = logging.getLogger(__name__)

TOKEN_KEY = "courier.access_token"
OWNED_PREFIXES: tuple[str, ...] = ("courier.", "auth.", "sb-")
# Owned by prefix but must survive sign-out.
PRESERVED_KEYS = frozenset({"courier.onboarding_completed"})


class SessionLifecycle:
    """
    Owns the auth/session keys in a persistent key-value store.

    Only keys matching `owned_prefixes` are ever touched, and `preserved_keys`
    is the explicit list of owned keys that survive teardown.
    """

    def __init__(
        self,
        client,
        storage: MutableMapping[str, str],
        *,
        presence=None,
        owned_prefixes: tuple[str, ...] = OWNED_PREFIXES,
        preserved_keys: frozenset[str] = PRESERVED_KEYS,
    ) -> None:
        self.client = client
        self.storage = storage
        self.presence = presence
        self.owned_prefixes = owned_prefixes
        self.preserved_keys = preserved_keys

    def init(self) -> bool:
        """Restore a stored token; returns True if a session was found."""
        token = self.storage.get(TOKEN_KEY)
        self.client.token = token or None
        return bool(token)

    def store_token(self, token: str) -> None:
        self.storage[TOKEN_KEY] = token
        self.client.token = token

    def owned_keys(self) -> list[str]:
        return [k for k in list(self.storage) if k.startswith(self.owned_prefixes) and k not in self.preserved_keys]

    def teardown(self) -> list[str]:
        """Sign out. Safe to call any number of times; returns the keys removed."""
        if self.client.token:
            self._go_offline()
        removed = self.owned_keys()
        for key in removed:
            self.storage.pop(key, None)
        self.client.token = None
        if removed:
            logger.info("session cleared keys=%s", len(removed))
        return removed

    def _go_offline(self) -> None:
        try:
            if self.presence is not None:
                self.presence.go_offline()
            else:
                self.client.set_online(False)
        except (DeliveryError, requests.RequestException) as e:
            # Customers have no rider row; an unreachable API must not block sign-out.
            logger.info("offline on sign-out skipped: %s", e)
