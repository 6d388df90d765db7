"""Tests for the protection policy."""

import tempfile
from pathlib import Path

from devmode.policy.engine import PolicyEngine, decide, filter_mimes
from devmode.policy.models import (
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
    file_extension,
)
from devmode.security.audit_log import AuditCategory, AuditLogger, line_category
from devmode.security.requester import Requester
from devmode.state.models import Configuration, Mode
from devmode.state.store import StateStore

DEFAULTS = Configuration()
VISITOR = Requester(client_ip="198.51.100.7", user_agent="curl/8.0")


def _engine(tmpdir):
    store = StateStore(Path(tmpdir) / "state.json")
    audit = AuditLogger(Path(tmpdir) / "devmode.log")
    return store, audit, PolicyEngine(store, audit)


# --- decide ---


def test_active_mode_allows_everything():
    cases = [
        (GuardCategory.file_modification, FileModificationContext()),
        (GuardCategory.plugins_api, PluginsApiContext(action="query_plugins")),
        (GuardCategory.dangerous_file_upload, UploadContext(filename="shell.php")),
        (GuardCategory.user_capability, CapabilityContext(capability="create_users")),
        (GuardCategory.admin_file_editing, AdminPageContext(page="plugin-editor.php")),
        (GuardCategory.rest_user_creation, None),
    ]
    for category, context in cases:
        assert decide(category, context, Mode.active, DEFAULTS).allowed


def test_decide_is_deterministic():
    ctx = UploadContext(filename="x.phtml")
    first = decide(GuardCategory.dangerous_file_upload, ctx, Mode.protected, DEFAULTS)
    second = decide(GuardCategory.dangerous_file_upload, ctx, Mode.protected, DEFAULTS)
    assert first == second
    assert first.denied


def test_unconditional_categories_deny_while_protected():
    assert decide(GuardCategory.file_modification, FileModificationContext(), Mode.protected, DEFAULTS).denied
    assert decide(
        GuardCategory.upgrader_download, UpgraderDownloadContext(package="a.zip"), Mode.protected, DEFAULTS
    ).denied
    assert decide(
        GuardCategory.upgrader_install, UpgraderInstallContext({"type": "plugin"}), Mode.protected, DEFAULTS
    ).denied


def test_plugins_api_only_blocks_listed_actions():
    blocked = decide(GuardCategory.plugins_api, PluginsApiContext(action="plugin_information"), Mode.protected, DEFAULTS)
    assert blocked.denied
    other = decide(GuardCategory.plugins_api, PluginsApiContext(action="hot_tags"), Mode.protected, DEFAULTS)
    assert other.allowed


def test_upload_extension_matching():
    def upload(name, config=DEFAULTS):
        return decide(GuardCategory.dangerous_file_upload, UploadContext(filename=name), Mode.protected, config)

    denied = upload("shell.PHP5")
    assert denied.denied
    assert ".php5 files are not allowed" in denied.message
    assert upload("shell.phpx").allowed
    assert upload("photo.jpg").allowed
    assert upload("archive.tar.sh").denied
    assert upload("shell.php", Configuration(block_uploads_php=False)).allowed


def test_user_categories_follow_block_user_creation():
    relaxed = Configuration(block_user_creation=False)
    cap = CapabilityContext(capability="promote_users")
    assert decide(GuardCategory.user_capability, cap, Mode.protected, DEFAULTS).denied
    assert decide(GuardCategory.user_capability, cap, Mode.protected, relaxed).allowed
    assert decide(
        GuardCategory.user_capability, CapabilityContext(capability="edit_posts"), Mode.protected, DEFAULTS
    ).allowed

    reg = UserRegistrationContext(attempted_user_id=5)
    denied = decide(GuardCategory.user_registration, reg, Mode.protected, DEFAULTS)
    assert denied.denied and denied.status == 403
    assert decide(GuardCategory.user_registration, reg, Mode.protected, relaxed).allowed


def test_admin_page_matching():
    for page in ("plugin-editor.php", "/wp-admin/theme-editor.php", "theme-editor"):
        decision = decide(GuardCategory.admin_file_editing, AdminPageContext(page=page), Mode.protected, DEFAULTS)
        assert decision.denied, page
        assert decision.status == 403
    assert decide(
        GuardCategory.admin_file_editing, AdminPageContext(page="options-general.php"), Mode.protected, DEFAULTS
    ).allowed


def test_malformed_context_is_denied_while_protected():
    wrong_type = decide(GuardCategory.plugins_api, UploadContext(filename="a.txt"), Mode.protected, DEFAULTS)
    assert wrong_type.denied
    assert wrong_type.reason == "missing or malformed context"

    assert decide(GuardCategory.dangerous_file_upload, UploadContext(filename=""), Mode.protected, DEFAULTS).denied
    assert decide(GuardCategory.user_capability, None, Mode.protected, DEFAULTS).denied


def test_unknown_mode_is_treated_as_protected():
    assert decide(GuardCategory.file_modification, FileModificationContext(), "maintenance", DEFAULTS).denied


def test_missing_config_falls_back_to_defaults():
    cap = CapabilityContext(capability="create_users")
    assert decide(GuardCategory.user_capability, cap, Mode.protected, None).denied
    assert decide(GuardCategory.dangerous_file_upload, UploadContext(filename="shell.php"), Mode.protected, "yes").denied
    assert decide(
        GuardCategory.user_capability, cap, Mode.protected, {"block_user_creation": False}
    ).allowed
    assert decide(GuardCategory.user_capability, cap, Mode.active, None).allowed


def test_file_extension():
    assert file_extension("a/b/c.PHP") == "php"
    assert file_extension("README") == ""
    assert file_extension("dir.d\\noext") == ""


# --- filter_mimes ---


def test_filter_mimes_removes_dangerous_keys():
    mimes = {
        "jpg|jpeg|jpe": "image/jpeg",
        "php|phtml": "application/x-php",
        "txt|sh": "text/plain",
        "exe": "application/x-msdownload",
        "pdf": "application/pdf",
    }
    assert filter_mimes(mimes) == {"jpg|jpeg|jpe": "image/jpeg", "pdf": "application/pdf"}


# --- PolicyEngine ---


def test_engine_records_denials_only():
    with tempfile.TemporaryDirectory() as tmpdir:
        store, audit, engine = _engine(tmpdir)

        engine.evaluate(GuardCategory.plugins_api, PluginsApiContext(action="hot_tags"), VISITOR)
        assert audit.recent() == []

        engine.evaluate(GuardCategory.plugins_api, PluginsApiContext(action="query_plugins"), VISITOR)
        lines = audit.recent()
        assert len(lines) == 1
        assert line_category(lines[0]) is AuditCategory.BLOCKED_PLUGINS_API
        assert "action=query_plugins" in lines[0]
        assert "IP: 198.51.100.7" in lines[0]

        store.set_mode(Mode.active)
        engine.evaluate(GuardCategory.plugins_api, PluginsApiContext(action="query_plugins"), VISITOR)
        assert len([l for l in audit.recent() if "BLOCKED" in l]) == 1


def test_rest_user_creation_denied_and_logged():
    with tempfile.TemporaryDirectory() as tmpdir:
        _, audit, engine = _engine(tmpdir)
        decision = engine.evaluate(
            GuardCategory.rest_user_creation,
            RestUserContext(username="eve", email="eve@example.com"),
            VISITOR,
        )
        assert decision.denied
        error = decision.to_error()
        assert error.status == 403
        assert error.to_dict()["code"] == "devmode_protected"

        line = audit.recent()[0]
        category = line_category(line)
        assert category is AuditCategory.BLOCKED_REST_USER_CREATION
        assert category.family is AuditCategory.BLOCKED_USER_CREATION
        assert '"username": "eve"' in line


def test_malformed_context_denial_logs_reason():
    with tempfile.TemporaryDirectory() as tmpdir:
        _, audit, engine = _engine(tmpdir)
        engine.evaluate(GuardCategory.admin_file_editing, None, VISITOR)
        assert "reason=missing or malformed context" in audit.recent()[0]


def test_audit_failure_does_not_change_decision(monkeypatch):
    with tempfile.TemporaryDirectory() as tmpdir:
        _, audit, engine = _engine(tmpdir)

        def broken(*args, **kwargs):
            raise RuntimeError("log unavailable")

        monkeypatch.setattr(audit, "record_blocked", broken)
        decision = engine.evaluate(GuardCategory.file_modification, FileModificationContext(), VISITOR)
        assert decision.denied
