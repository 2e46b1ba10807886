from __future__ import annotations

import json
import logging
import threading
from datetime import datetime, timedelta
from pathlib import Path

from quotabar.core.config.settings import get_settings
from quotabar.core.fetch.context import Interaction, get_interaction
from quotabar.core.utils.time import from_epoch_seconds, utcnow

logger = logging.getLogger(__name__)

CLAUDE_OAUTH_KEYCHAIN = "claude.oauth.keychain"


class CooldownStore:
    """Small JSON key-value file holding ``denied_until`` epochs per credential domain."""

    def __init__(self, path: Path | None) -> None:
        self._path = path
        self._lock = threading.Lock()

    def load(self, domain: str) -> datetime | None:
        with self._lock:
            value = self._read().get(_key(domain))
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return from_epoch_seconds(value)
        return None

    def save(self, domain: str, denied_until: datetime | None) -> None:
        if self._path is None:
            return
        with self._lock:
            data = self._read()
            if denied_until is None:
                data.pop(_key(domain), None)
            else:
                data[_key(domain)] = denied_until.timestamp()
            try:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                self._path.write_text(json.dumps(data, indent=2, sort_keys=True), encoding="utf-8")
            except OSError:
                logger.warning("Cooldown state not persisted path=%s", self._path, exc_info=True)

    def _read(self) -> dict[str, object]:
        if self._path is None:
            return {}
        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError:
            logger.warning("Cooldown state unreadable path=%s", self._path, exc_info=True)
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Cooldown state invalid JSON path=%s", self._path)
            return {}
        return data if isinstance(data, dict) else {}


class CredentialAccessGate:
    """Suppresses repeated OS credential-store prompts for one credential domain.

    After a denied or interaction-required probe the domain cools down for
    ``cooldown``; background refreshes skip the prompting read until then.
    User-initiated refreshes can reset the cooldown with ``clear_denied``.
    """

    def __init__(
        self,
        domain: str,
        *,
        cooldown: timedelta | None = None,
        store: CooldownStore | None = None,
    ) -> None:
        settings = get_settings()
        self.domain = domain
        self.cooldown = cooldown or timedelta(hours=settings.keychain_cooldown_hours)
        self._store = store if store is not None else CooldownStore(settings.state_file)
        self._lock = threading.Lock()
        self._loaded = False
        self._denied_until: datetime | None = None

    @property
    def denied_until(self) -> datetime | None:
        with self._lock:
            self._load_if_needed()
            return self._denied_until

    def should_allow_prompt(self, now: datetime | None = None) -> bool:
        if get_interaction() is Interaction.BACKGROUND and get_settings().keychain_access_disabled:
            return False
        current = now or utcnow()
        with self._lock:
            self._load_if_needed()
            if self._denied_until is None:
                return True
            if self._denied_until > current:
                return False
            self._denied_until = None
            self._store.save(self.domain, None)
            return True

    def record_denied(self, now: datetime | None = None) -> datetime:
        denied_until = (now or utcnow()) + self.cooldown
        with self._lock:
            self._load_if_needed()
            self._denied_until = denied_until
            self._store.save(self.domain, denied_until)
        logger.info("Credential prompt cooldown started domain=%s until=%s", self.domain, denied_until.isoformat())
        return denied_until

    def clear_denied(self, now: datetime | None = None) -> bool:
        current = now or utcnow()
        with self._lock:
            self._load_if_needed()
            active = self._denied_until is not None and self._denied_until > current
            self._denied_until = None
            self._store.save(self.domain, None)
        if active:
            logger.info("Credential prompt cooldown cleared domain=%s", self.domain)
        return active

    def _load_if_needed(self) -> None:
        if self._loaded:
            return
        self._loaded = True
        self._denied_until = self._store.load(self.domain)


def _key(domain: str) -> str:
    return f"cooldown.{domain}.denied_until"


_gates: dict[str, CredentialAccessGate] = {}
_gates_lock = threading.Lock()


def get_credential_gate(domain: str) -> CredentialAccessGate:
    with _gates_lock:
        gate = _gates.get(domain)
        if gate is None:
            gate = CredentialAccessGate(domain)
            _gates[domain] = gate
        return gate


def clear_credential_gates() -> None:
    with _gates_lock:
        _gates.clear()
