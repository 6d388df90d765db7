"""The guard -- wires state, policy, audit, hardening and auto-revert together.

A mode change flows through :meth:`StateStore.set_mode`, which calls the
reactions registered here in a fixed order:

1. audit log entry
2. uploads hardening
3. auto-revert scheduling
4. external listeners registered with :meth:`DevModeGuard.on_state_change`

Each reaction is isolated, so a failing hardener never costs the audit line.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from devmode.config import Settings, load_settings
from devmode.errors import ValidationError
from devmode.policy.engine import PolicyEngine
from devmode.scheduler.auto_revert import AutoRevertScheduler
from devmode.security.audit_log import AuditLogger
from devmode.security.hardener import UploadsHardener
from devmode.security.requester import SYSTEM, Requester
from devmode.state.models import CONFIG_KEYS, Configuration, HostCapabilities, Mode
from devmode.state.store import StateStore

logger = logging.getLogger(__name__)


@dataclass
class ToggleResult:
    """What the toggle action reports back to the UI."""

    new_mode: Mode
    message: str


class DevModeGuard:
    """Owns the components for one installation."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings or load_settings()
        self.store = StateStore(self.settings.state_file)
        self.audit = AuditLogger(self.settings.log_file, clock=clock)
        self.hardener = UploadsHardener(self.settings.uploads_dir, self.settings.server_software)
        self.scheduler = AutoRevertScheduler(self.settings.schedule_file, clock=clock)
        self.engine = PolicyEngine(self.store, self.audit)

        self.scheduler.set_callback(self.auto_revert_to_protected)
        self.store.subscribe(self._log_transition)
        self.store.subscribe(self._harden_on_transition)
        self.store.subscribe(self._schedule_on_transition)

    # ------------------------------------------------------------------
    # Transition reactions
    # ------------------------------------------------------------------

    def _log_transition(self, new: Mode, old: Mode, requester: Requester) -> None:
        self.audit.record_state_change(new, old, requester)

    def _harden_on_transition(self, new: Mode, old: Mode, requester: Requester) -> None:
        if new is Mode.protected and self.store.get_config().block_uploads_php:
            if not self.hardener.apply_protection():
                logger.warning("Entered Protected mode without uploads hardening")

    def _schedule_on_transition(self, new: Mode, old: Mode, requester: Requester) -> None:
        if new is Mode.active:
            self.scheduler.schedule(self.store.get_config().auto_revert_hours)
        else:
            self.scheduler.cancel()

    def on_state_change(self, listener: Callable[[Mode, Mode], None]) -> None:
        """Call ``listener(new_mode, old_mode)`` once per actual transition."""
        self.store.subscribe(lambda new, old, requester: listener(new, old))

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def mode(self) -> Mode:
        return self.store.get_mode()

    @property
    def config(self) -> Configuration:
        return self.store.get_config()

    def is_protected(self) -> bool:
        return self.mode is Mode.protected

    def set_mode(self, target: Mode, requester: Requester = SYSTEM) -> bool:
        return self.store.set_mode(Mode(target), requester)

    def toggle(self, requester: Requester = SYSTEM) -> ToggleResult:
        """Flip the mode. Raises PersistenceError if it cannot be saved."""
        new_mode = self.mode.toggled()
        self.store.set_mode(new_mode, requester)
        return ToggleResult(
            new_mode=new_mode,
            message=f"Dev.Mode state changed to {new_mode.label}.",
        )

    def update_config(self, data: dict) -> Configuration:
        """Save validated options and bring hardening/scheduling in line.

        Raises ValidationError for option names it does not know.
        """
        unknown = sorted(set(data) - set(CONFIG_KEYS))
        if unknown:
            raise ValidationError(
                f"Unknown option '{unknown[0]}'. Choose from: {', '.join(CONFIG_KEYS)}"
            )
        old = self.store.get_config()
        new = self.store.update_config(data)
        mode = self.store.get_mode()

        if old.block_uploads_php and not new.block_uploads_php:
            self.hardener.remove_protection()
        elif new.block_uploads_php and not old.block_uploads_php and mode is Mode.protected:
            self.hardener.apply_protection()

        if mode is Mode.active and new.auto_revert_hours != old.auto_revert_hours:
            self.scheduler.schedule(new.auto_revert_hours)
        return new

    def capabilities(self) -> HostCapabilities:
        return HostCapabilities.for_mode(self.mode, self.config)

    # ------------------------------------------------------------------
    # Auto-revert
    # ------------------------------------------------------------------

    def auto_revert_to_protected(self) -> bool:
        """Scheduled callback: return to Protected if still Active."""
        if self.mode is not Mode.active:
            return False
        self.store.set_mode(Mode.protected, SYSTEM)
        self.store.raise_notice()
        logger.info("Auto-reverted to Protected mode")
        return True

    def run_due(self) -> bool:
        return self.scheduler.run_due()

    def hours_until_revert(self) -> Optional[float]:
        return self.scheduler.hours_until_revert()

    def consume_notice(self) -> bool:
        return self.store.consume_notice()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def bootstrap(self) -> HostCapabilities:
        """Per-process startup: enforce hardening and a pending revert."""
        mode, config = self.mode, self.config
        if mode is Mode.protected and config.block_uploads_php:
            self.hardener.apply_protection()
        if (
            mode is Mode.active
            and config.auto_revert_hours > 0
            and self.scheduler.next_scheduled() is None
        ):
            self.scheduler.schedule(config.auto_revert_hours)
        return HostCapabilities.for_mode(mode, config)

    def activate(self) -> None:
        """Install: seed Protected defaults and clear any stale revert."""
        self.store.seed_defaults()
        self.scheduler.cancel()

    def deactivate(self) -> None:
        self.scheduler.cancel()
        self.hardener.remove_protection()

    def uninstall(self) -> None:
        self.deactivate()
        self.store.delete()
