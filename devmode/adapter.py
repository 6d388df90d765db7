"""Thin adapter between host hook callbacks and the policy engine.

The host registers the callables from :meth:`HookAdapter.hooks` against its
own events. Every callable takes the arguments the host passes plus the
requester, and returns the value in the shape the host expects: the
unchanged input when allowed, a :class:`DenialError` (returned, not raised)
for filters that accept error values, or a raised :class:`DenialError` where
the host aborts the request.
"""

from __future__ import annotations

from typing import Any, Callable, Mapping, Optional, Sequence

from devmode.core import DevModeGuard
from devmode.errors import DenialError
from devmode.policy.engine import PolicyEngine, filter_mimes
from devmode.policy.models import (
    UNSATISFIABLE_CAPABILITY,
    AdminPageContext,
    CapabilityContext,
    FileModificationContext,
    GuardCategory,
    PluginsApiContext,
    RestUserContext,
    UpgraderDownloadContext,
    UpgraderInstallContext,
    UploadContext,
    UserRegistrationContext,
)
from devmode.security.requester import Requester
from devmode.state.models import Mode

ANONYMOUS = Requester()

# Host hook name -> guarded category it is decided under.
HOOK_CATEGORIES: dict[str, Optional[GuardCategory]] = {
    "file_mod_allowed": GuardCategory.file_modification,
    "plugins_api": GuardCategory.plugins_api,
    "upgrader_pre_download": GuardCategory.upgrader_download,
    "upgrader_pre_install": GuardCategory.upgrader_install,
    "upload_mimes": None,
    "handle_upload_prefilter": GuardCategory.dangerous_file_upload,
    "map_meta_cap": GuardCategory.user_capability,
    "user_register": GuardCategory.user_registration,
    "rest_pre_insert_user": GuardCategory.rest_user_creation,
    "admin_init": GuardCategory.admin_file_editing,
}

_USER_HOOKS = ("map_meta_cap", "user_register", "rest_pre_insert_user")


class HookAdapter:
    """Translates host hook calls into engine evaluations."""

    def __init__(self, guard: DevModeGuard) -> None:
        self._guard = guard
        self._engine: PolicyEngine = guard.engine

    def hooks(self) -> dict[str, Callable[..., Any]]:
        """Every hook this adapter can serve."""
        return {name: getattr(self, name) for name in HOOK_CATEGORIES}

    def active_hooks(self) -> dict[str, Callable[..., Any]]:
        """The hooks to register for the current mode and configuration.

        The MIME filter is always on. Everything else is only needed while
        Protected, and the user hooks only when user creation is blocked.
        """
        hooks = {"upload_mimes": self.upload_mimes}
        if self._guard.mode is not Mode.protected:
            return hooks
        block_users = self._guard.config.block_user_creation
        for name, fn in self.hooks().items():
            if name in _USER_HOOKS and not block_users:
                continue
            hooks[name] = fn
        return hooks

    # ------------------------------------------------------------------
    # File modification and updates
    # ------------------------------------------------------------------

    def file_mod_allowed(
        self,
        allow: bool,
        context: str = "",
        requester: Requester = ANONYMOUS,
    ) -> bool:
        decision = self._engine.evaluate(
            GuardCategory.file_modification,
            FileModificationContext(
                context=context,
                request_uri=requester.request_uri,
                referer=requester.referer,
            ),
            requester,
        )
        return False if decision.denied else allow

    def plugins_api(
        self,
        result: Any,
        action: str,
        args: Optional[Mapping[str, Any]] = None,
        requester: Requester = ANONYMOUS,
    ) -> Any:
        decision = self._engine.evaluate(
            GuardCategory.plugins_api,
            PluginsApiContext(
                action=action,
                args=dict(args or {}),
                user_agent=requester.user_agent or "Unknown",
            ),
            requester,
        )
        return decision.to_error() if decision.denied else result

    def upgrader_pre_download(
        self,
        reply: Any,
        package: str,
        upgrader: Any = None,
        requester: Requester = ANONYMOUS,
    ) -> Any:
        upgrader_class = type(upgrader).__name__ if upgrader is not None else ""
        decision = self._engine.evaluate(
            GuardCategory.upgrader_download,
            UpgraderDownloadContext(
                package=package,
                upgrader_class=upgrader_class,
                request_uri=requester.request_uri,
            ),
            requester,
        )
        return decision.to_error() if decision.denied else reply

    def upgrader_pre_install(
        self,
        response: Any,
        hook_extra: Optional[Mapping[str, Any]] = None,
        requester: Requester = ANONYMOUS,
    ) -> Any:
        decision = self._engine.evaluate(
            GuardCategory.upgrader_install,
            UpgraderInstallContext(hook_extra=dict(hook_extra or {})),
            requester,
        )
        return decision.to_error() if decision.denied else response

    # ------------------------------------------------------------------
    # Uploads
    # ------------------------------------------------------------------

    def upload_mimes(self, mimes: Mapping[str, str]) -> dict[str, str]:
        return filter_mimes(mimes)

    def handle_upload_prefilter(
        self, file: Mapping[str, Any], requester: Requester = ANONYMOUS
    ) -> dict[str, Any]:
        """Return the upload record, with ``error`` set when refused."""
        try:
            size = int(file.get("size", 0) or 0)
        except (TypeError, ValueError):
            size = 0
        context = UploadContext(
            filename=str(file.get("name", "") or ""),
            size=size,
            type=str(file.get("type", "unknown") or "unknown"),
            upload_path=requester.request_uri,
        )
        decision = self._engine.evaluate(GuardCategory.dangerous_file_upload, context, requester)
        result = dict(file)
        if decision.denied:
            result["error"] = decision.message
        return result

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def map_meta_cap(
        self,
        caps: Sequence[str],
        cap: str,
        user_id: int = 0,
        args: Sequence[Any] = (),
        requester: Requester = ANONYMOUS,
    ) -> list[str]:
        """Append an unsatisfiable capability instead of raising."""
        target = args[0] if args else None
        decision = self._engine.evaluate(
            GuardCategory.user_capability,
            CapabilityContext(capability=cap, requesting_user_id=user_id, target_user_id=target),
            requester,
        )
        result = list(caps)
        if decision.denied:
            result.append(UNSATISFIABLE_CAPABILITY)
        return result

    def user_register(self, user_id: int, requester: Requester = ANONYMOUS) -> None:
        """Log a registration; abort the request when it came from admin."""
        decision = self._engine.evaluate(
            GuardCategory.user_registration,
            UserRegistrationContext(attempted_user_id=user_id),
            requester,
        )
        if decision.denied and requester.is_admin:
            raise decision.to_error()

    def rest_pre_insert_user(
        self,
        prepared_user: Mapping[str, Any],
        request_method: str = "POST",
        requester: Requester = ANONYMOUS,
    ) -> Any:
        decision = self._engine.evaluate(
            GuardCategory.rest_user_creation,
            RestUserContext(
                username=str(prepared_user.get("username") or "unknown"),
                email=str(prepared_user.get("email") or "unknown"),
                request_method=request_method,
                user_agent=requester.user_agent,
            ),
            requester,
        )
        return decision.to_error() if decision.denied else prepared_user

    # ------------------------------------------------------------------
    # Admin pages
    # ------------------------------------------------------------------

    def admin_init(
        self,
        page: str,
        query_params: Optional[Mapping[str, str]] = None,
        requester: Requester = ANONYMOUS,
    ) -> None:
        """Abort with 403 on the plugin and theme file editors."""
        decision = self._engine.evaluate(
            GuardCategory.admin_file_editing,
            AdminPageContext(page=page, query_params=dict(query_params or {})),
            requester,
        )
        if decision.denied:
            raise decision.to_error()


def is_denial(value: Any) -> bool:
    return isinstance(value, DenialError)
