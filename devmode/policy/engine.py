"""Protection policy -- the allow/deny rules for guarded operations.

:func:`decide` is pure: the same category, context, mode and configuration
always produce the same :class:`Decision`. :class:`PolicyEngine` wraps it
with the current persisted state and writes an audit entry for every
denial.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional

from devmode.errors import PersistenceError
from devmode.policy.models import (
    BLOCKED_ADMIN_PAGES,
    BLOCKED_CAPABILITIES,
    BLOCKED_PLUGINS_API_ACTIONS,
    CONTEXT_TYPES,
    DANGEROUS_EXTENSIONS,
    Decision,
    GuardCategory,
    UploadContext,
)
from devmode.security.audit_log import AuditCategory, AuditLogger
from devmode.security.requester import Requester
from devmode.state.models import Configuration, Mode
from devmode.state.store import StateStore

logger = logging.getLogger(__name__)

FORBIDDEN = 403


@dataclass(frozen=True)
class PolicyRule:
    """How one guarded category is decided while Protected."""

    audit_category: AuditCategory
    message: str
    status: Optional[int] = None
    # Which configuration flag switches the rule on; None means always on.
    gate: Optional[Callable[[Configuration], bool]] = None
    # Returns True when the context describes something to refuse.
    matches: Callable[[Any], bool] = lambda ctx: True
    # Field that must be non-empty for the context to be usable.
    required: Optional[str] = None

    def enabled(self, config: Configuration) -> bool:
        return self.gate is None or self.gate(config)


def _user_gate(config: Configuration) -> bool:
    return config.block_user_creation


def _uploads_gate(config: Configuration) -> bool:
    return config.block_uploads_php


RULES: dict[GuardCategory, PolicyRule] = {
    GuardCategory.file_modification: PolicyRule(
        audit_category=AuditCategory.BLOCKED_FILE_MODIFICATION,
        message="File modifications are blocked while Dev.Mode is in Protected state.",
    ),
    GuardCategory.plugins_api: PolicyRule(
        audit_category=AuditCategory.BLOCKED_PLUGINS_API,
        message="Plugin installations and updates are blocked while Dev.Mode is in Protected state.",
        matches=lambda ctx: ctx.action in BLOCKED_PLUGINS_API_ACTIONS,
        required="action",
    ),
    GuardCategory.upgrader_download: PolicyRule(
        audit_category=AuditCategory.BLOCKED_UPGRADER_DOWNLOAD,
        message="Downloads are blocked while Dev.Mode is in Protected state.",
    ),
    GuardCategory.upgrader_install: PolicyRule(
        audit_category=AuditCategory.BLOCKED_UPGRADER_INSTALL,
        message="Installations are blocked while Dev.Mode is in Protected state.",
    ),
    GuardCategory.dangerous_file_upload: PolicyRule(
        audit_category=AuditCategory.BLOCKED_DANGEROUS_FILE_UPLOAD,
        message="File upload blocked: .{extension} files are not allowed while Dev.Mode is in Protected state.",
        gate=_uploads_gate,
        matches=lambda ctx: ctx.extension in DANGEROUS_EXTENSIONS,
        required="filename",
    ),
    GuardCategory.user_capability: PolicyRule(
        audit_category=AuditCategory.BLOCKED_USER_CAPABILITY,
        message="User management is blocked while Dev.Mode is in Protected state.",
        gate=_user_gate,
        matches=lambda ctx: ctx.capability in BLOCKED_CAPABILITIES,
        required="capability",
    ),
    GuardCategory.user_registration: PolicyRule(
        audit_category=AuditCategory.BLOCKED_USER_REGISTRATION,
        message="User creation is blocked while Dev.Mode is in Protected state.",
        status=FORBIDDEN,
        gate=_user_gate,
    ),
    GuardCategory.rest_user_creation: PolicyRule(
        audit_category=AuditCategory.BLOCKED_REST_USER_CREATION,
        message="User creation via REST API is blocked while Dev.Mode is in Protected state.",
        status=FORBIDDEN,
        gate=_user_gate,
    ),
    GuardCategory.admin_file_editing: PolicyRule(
        audit_category=AuditCategory.BLOCKED_ADMIN_FILE_EDITING,
        message="File editing is blocked while Dev.Mode is in Protected state.",
        status=FORBIDDEN,
        matches=lambda ctx: ctx.page_name in BLOCKED_ADMIN_PAGES,
        required="page",
    ),
}


def _usable(category: GuardCategory, rule: PolicyRule, context: Any) -> bool:
    if not isinstance(context, CONTEXT_TYPES[category]):
        return False
    if rule.required is not None and not getattr(context, rule.required, None):
        return False
    return True


def decide(
    category: GuardCategory,
    context: Any,
    mode: Mode,
    config: Configuration,
) -> Decision:
    """Decide whether a guarded operation may proceed.

    Denies only while Protected and only for enabled categories. Once a
    denial is possible, a missing or malformed context is denied too. A
    missing configuration falls back to the protective defaults.
    """
    category = GuardCategory(category)
    rule = RULES[category]
    try:
        mode = Mode(mode)
    except ValueError:
        mode = Mode.protected
    if isinstance(config, Mapping):
        config = Configuration.from_input(config)
    elif not isinstance(config, Configuration):
        config = Configuration()

    if mode is Mode.active:
        return Decision.allow(category)
    if not rule.enabled(config):
        return Decision.allow(category)

    if not _usable(category, rule, context):
        return Decision.deny(
            category,
            rule.message.format(extension="unknown"),
            status=rule.status,
            reason="missing or malformed context",
        )

    if not rule.matches(context):
        return Decision.allow(category)

    extension = context.extension if isinstance(context, UploadContext) else ""
    return Decision.deny(category, rule.message.format(extension=extension), status=rule.status)


def filter_mimes(mimes: Mapping[str, str]) -> dict[str, str]:
    """Drop every executable/script extension from an accepted-type map.

    Keys may list several extensions separated by ``|`` (``"jpg|jpeg"``);
    a key is dropped if any of them is dangerous. Applies in every mode.
    """
    return {
        key: value
        for key, value in mimes.items()
        if not any(ext.strip().lower() in DANGEROUS_EXTENSIONS for ext in key.split("|"))
    }


class PolicyEngine:
    """Evaluates guarded operations against the persisted mode and config."""

    def __init__(self, store: StateStore, audit: AuditLogger) -> None:
        self._store = store
        self._audit = audit

    def _snapshot(self) -> tuple[Mode, Configuration]:
        try:
            return self._store.get_mode(), self._store.get_config()
        except PersistenceError:
            logger.exception("State unreadable, evaluating as Protected with defaults")
            return Mode.protected, Configuration()

    def evaluate(
        self, category: GuardCategory, context: Any, requester: Requester
    ) -> Decision:
        """Decide, and record an audit entry if the answer is a denial."""
        mode, config = self._snapshot()
        decision = decide(category, context, mode, config)
        if decision.denied:
            self._record(decision, context, requester)
        return decision

    def _record(self, decision: Decision, context: Any, requester: Requester) -> None:
        rule = RULES[decision.category]
        try:
            if decision.reason or not hasattr(context, "details"):
                details = {"reason": decision.reason or "missing or malformed context"}
            else:
                details = context.details()
            self._audit.record_blocked(rule.audit_category, requester, details)
        except Exception:
            logger.exception("Could not record denial for %s", decision.category.value)

