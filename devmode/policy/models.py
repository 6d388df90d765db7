"""Guarded-operation categories, their context payloads and decisions.

Each category has its own frozen context dataclass. The context carries
exactly the fields that category logs, and renders them through
``details()`` for the audit log.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional

from devmode.errors import DenialError

DANGEROUS_EXTENSIONS = frozenset({
    "php", "php3", "php4", "php5", "php7", "php8", "phtml", "pht", "phps",
    "asp", "aspx", "jsp", "cgi", "pl", "py", "rb", "sh", "exe", "bat",
    "com", "scr", "vbs", "ws", "wsf",
})

BLOCKED_CAPABILITIES = frozenset({"create_users", "promote_users", "delete_users", "edit_users"})

BLOCKED_PLUGINS_API_ACTIONS = frozenset({"plugin_information", "query_plugins"})

BLOCKED_ADMIN_PAGES = frozenset({"plugin-editor", "theme-editor"})

# Appended to a required-capability list so no user can satisfy it.
UNSATISFIABLE_CAPABILITY = "do_not_allow"


class GuardCategory(str, Enum):
    """Kinds of operation the engine can be asked about."""

    file_modification = "file_modification"
    plugins_api = "plugins_api"
    upgrader_download = "upgrader_download"
    upgrader_install = "upgrader_install"
    dangerous_file_upload = "dangerous_file_upload"
    user_capability = "user_capability"
    user_registration = "user_registration"
    rest_user_creation = "rest_user_creation"
    admin_file_editing = "admin_file_editing"


def file_extension(filename: str) -> str:
    """Lower-cased text after the last dot, or ``""``."""
    name = filename.replace("\\", "/").rsplit("/", 1)[-1]
    if "." not in name:
        return ""
    return name.rsplit(".", 1)[-1].lower()


def is_dangerous_filename(filename: str) -> bool:
    return file_extension(filename) in DANGEROUS_EXTENSIONS


# ---------------------------------------------------------------------------
# Contexts
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FileModificationContext:
    context: str = ""
    request_uri: str = ""
    referer: str = ""

    def details(self) -> dict[str, Any]:
        return {"context": self.context, "request_uri": self.request_uri, "referer": self.referer}


@dataclass(frozen=True)
class PluginsApiContext:
    action: str
    args: Mapping[str, Any] = field(default_factory=dict)
    user_agent: str = "Unknown"

    def details(self) -> dict[str, Any]:
        return {"action": self.action, "args": dict(self.args), "user_agent": self.user_agent}


@dataclass(frozen=True)
class UpgraderDownloadContext:
    package: str
    upgrader_class: str = ""
    request_uri: str = ""

    def details(self) -> dict[str, Any]:
        return {
            "package": self.package,
            "upgrader_class": self.upgrader_class,
            "request_uri": self.request_uri,
        }


@dataclass(frozen=True)
class UpgraderInstallContext:
    hook_extra: Mapping[str, Any] = field(default_factory=dict)

    @property
    def type(self) -> str:
        return str(self.hook_extra.get("type", "unknown"))

    def details(self) -> dict[str, Any]:
        return {"hook_extra": dict(self.hook_extra), "type": self.type}


@dataclass(frozen=True)
class UploadContext:
    filename: str
    size: int = 0
    type: str = "unknown"
    upload_path: str = ""

    @property
    def extension(self) -> str:
        return file_extension(self.filename)

    def details(self) -> dict[str, Any]:
        return {
            "filename": self.filename,
            "extension": self.extension,
            "size": self.size,
            "type": self.type,
            "upload_path": self.upload_path,
        }


@dataclass(frozen=True)
class CapabilityContext:
    capability: str
    requesting_user_id: int = 0
    target_user_id: Optional[int] = None

    def details(self) -> dict[str, Any]:
        return {
            "capability": self.capability,
            "target_user_id": self.target_user_id,
            "requesting_user_id": self.requesting_user_id,
        }


@dataclass(frozen=True)
class UserRegistrationContext:
    attempted_user_id: int
    registration_method: str = "admin_panel"

    def details(self) -> dict[str, Any]:
        return {
            "attempted_user_id": self.attempted_user_id,
            "registration_method": self.registration_method,
        }


@dataclass(frozen=True)
class RestUserContext:
    username: str = "unknown"
    email: str = "unknown"
    request_method: str = "POST"
    user_agent: str = ""

    def details(self) -> dict[str, Any]:
        return {
            "user_data": {"username": self.username, "email": self.email},
            "request_method": self.request_method,
            "user_agent": self.user_agent,
        }


@dataclass(frozen=True)
class AdminPageContext:
    page: str
    query_params: Mapping[str, str] = field(default_factory=dict)

    @property
    def page_name(self) -> str:
        page = self.page.rsplit("/", 1)[-1]
        return page[:-4] if page.endswith(".php") else page

    def details(self) -> dict[str, Any]:
        return {"page": self.page, "query_params": dict(self.query_params)}


CONTEXT_TYPES: dict[GuardCategory, type] = {
    GuardCategory.file_modification: FileModificationContext,
    GuardCategory.plugins_api: PluginsApiContext,
    GuardCategory.upgrader_download: UpgraderDownloadContext,
    GuardCategory.upgrader_install: UpgraderInstallContext,
    GuardCategory.dangerous_file_upload: UploadContext,
    GuardCategory.user_capability: CapabilityContext,
    GuardCategory.user_registration: UserRegistrationContext,
    GuardCategory.rest_user_creation: RestUserContext,
    GuardCategory.admin_file_editing: AdminPageContext,
}


# ---------------------------------------------------------------------------
# Decision
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Decision:
    """Outcome of asking whether a guarded operation may proceed."""

    category: GuardCategory
    allowed: bool
    message: str = ""
    status: Optional[int] = None
    reason: str = ""

    @classmethod
    def allow(cls, category: GuardCategory) -> Decision:
        return cls(category=category, allowed=True)

    @classmethod
    def deny(
        cls,
        category: GuardCategory,
        message: str,
        status: Optional[int] = None,
        reason: str = "",
    ) -> Decision:
        return cls(category=category, allowed=False, message=message, status=status, reason=reason)

    @property
    def denied(self) -> bool:
        return not self.allowed

    def to_error(self) -> DenialError:
        return DenialError(self.message, status=self.status, category=self.category.value)
