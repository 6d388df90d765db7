"""Tests for the host hook adapter."""

import tempfile
from pathlib import Path

import pytest

from devmode.adapter import HOOK_CATEGORIES, HookAdapter, is_denial
from devmode.config import Settings
from devmode.core import DevModeGuard
from devmode.errors import DenialError
from devmode.policy.models import UNSATISFIABLE_CAPABILITY
from devmode.security.audit_log import AuditCategory, line_category
from devmode.security.requester import Requester
from devmode.state.models import Mode

ADMIN = Requester(
    user_id=1,
    user_name="admin",
    client_ip="203.0.113.9",
    request_uri="/wp-admin/plugin-editor.php",
    is_admin=True,
)
VISITOR = Requester(client_ip="198.51.100.7", user_agent="curl/8.0")


def _adapter(tmpdir):
    settings = Settings(data_dir=Path(tmpdir) / "data", uploads_dir=Path(tmpdir) / "uploads")
    guard = DevModeGuard(settings, clock=lambda: 1700000000.0)
    return guard, HookAdapter(guard)


def test_hooks_cover_every_category():
    with tempfile.TemporaryDirectory() as tmpdir:
        _, adapter = _adapter(tmpdir)
        assert set(adapter.hooks()) == set(HOOK_CATEGORIES)


def test_active_hooks_depend_on_mode_and_config():
    with tempfile.TemporaryDirectory() as tmpdir:
        guard, adapter = _adapter(tmpdir)
        assert set(adapter.active_hooks()) == set(HOOK_CATEGORIES)

        guard.update_config({"block_user_creation": False})
        hooks = adapter.active_hooks()
        assert "map_meta_cap" not in hooks
        assert "rest_pre_insert_user" not in hooks
        assert "admin_init" in hooks

        guard.set_mode(Mode.active, ADMIN)
        assert set(adapter.active_hooks()) == {"upload_mimes"}


def test_file_mod_allowed():
    with tempfile.TemporaryDirectory() as tmpdir:
        guard, adapter = _adapter(tmpdir)
        assert adapter.file_mod_allowed(True, "capability_edit_themes", ADMIN) is False
        guard.set_mode(Mode.active, ADMIN)
        assert adapter.file_mod_allowed(True, "capability_edit_themes", ADMIN) is True
        assert adapter.file_mod_allowed(False, "capability_edit_themes", ADMIN) is False


def test_plugins_api_returns_denial_value():
    with tempfile.TemporaryDirectory() as tmpdir:
        _, adapter = _adapter(tmpdir)
        result = adapter.plugins_api(False, "query_plugins", {"search": "seo"}, VISITOR)
        assert is_denial(result)
        assert adapter.plugins_api("passthrough", "hot_tags", {}, VISITOR) == "passthrough"


def test_upgrader_hooks_return_denial_value():
    with tempfile.TemporaryDirectory() as tmpdir:
        guard, adapter = _adapter(tmpdir)
        assert is_denial(adapter.upgrader_pre_download(False, "https://example.com/p.zip", object(), ADMIN))
        assert is_denial(adapter.upgrader_pre_install(True, {"type": "theme"}, ADMIN))

        lines = guard.audit.recent()
        assert line_category(lines[0]) is AuditCategory.BLOCKED_UPGRADER_INSTALL
        assert '"type": "theme"' in lines[0]
        assert "upgrader_class=object" in lines[1]


def test_upload_prefilter_sets_error():
    with tempfile.TemporaryDirectory() as tmpdir:
        _, adapter = _adapter(tmpdir)
        upload = {"name": "shell.php", "size": "120", "type": "application/x-php"}
        result = adapter.handle_upload_prefilter(upload, VISITOR)
        assert result["error"].startswith("File upload blocked: .php files")
        assert "error" not in upload

        ok = adapter.handle_upload_prefilter({"name": "cat.png", "size": 10}, VISITOR)
        assert "error" not in ok


def test_upload_mimes_filtered_in_any_mode():
    with tempfile.TemporaryDirectory() as tmpdir:
        guard, adapter = _adapter(tmpdir)
        guard.set_mode(Mode.active, ADMIN)
        assert adapter.upload_mimes({"php": "text/x-php", "gif": "image/gif"}) == {"gif": "image/gif"}


def test_map_meta_cap_appends_marker():
    with tempfile.TemporaryDirectory() as tmpdir:
        _, adapter = _adapter(tmpdir)
        caps = adapter.map_meta_cap(["create_users"], "create_users", 1, (), ADMIN)
        assert caps == ["create_users", UNSATISFIABLE_CAPABILITY]
        assert adapter.map_meta_cap(["edit_posts"], "edit_posts", 1, (), ADMIN) == ["edit_posts"]


def test_user_register_aborts_only_admin_requests():
    with tempfile.TemporaryDirectory() as tmpdir:
        guard, adapter = _adapter(tmpdir)
        adapter.user_register(42, VISITOR)
        with pytest.raises(DenialError) as exc_info:
            adapter.user_register(43, ADMIN)
        assert exc_info.value.status == 403
        assert len(guard.audit.recent()) == 2


def test_rest_pre_insert_user():
    with tempfile.TemporaryDirectory() as tmpdir:
        guard, adapter = _adapter(tmpdir)
        result = adapter.rest_pre_insert_user({"username": "eve", "email": "eve@example.com"}, "POST", VISITOR)
        assert is_denial(result)
        assert result.to_dict() == {
            "code": "devmode_protected",
            "message": "User creation via REST API is blocked while Dev.Mode is in Protected state.",
            "data": {"status": 403},
        }

        guard.update_config({"block_user_creation": False})
        user = {"username": "bob"}
        assert adapter.rest_pre_insert_user(user, "POST", VISITOR) is user


def test_admin_init_blocks_file_editors():
    with tempfile.TemporaryDirectory() as tmpdir:
        guard, adapter = _adapter(tmpdir)
        with pytest.raises(DenialError) as exc_info:
            adapter.admin_init("plugin-editor.php", {"file": "akismet/akismet.php"}, ADMIN)
        assert exc_info.value.status == 403

        adapter.admin_init("plugins.php", {}, ADMIN)

        line = guard.audit.recent()[0]
        assert line_category(line) is AuditCategory.BLOCKED_ADMIN_FILE_EDITING
        assert "page=plugin-editor.php" in line
        assert "User: admin (ID: 1)" in line
