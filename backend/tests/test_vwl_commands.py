"""
`vwl` command dispatcher: permissions, verbs and rendered messages.

Scope:
    - Base and admin permission checks.
    - add/del/list outcomes and the search input policy.
    - enable/disable/reload/debug toggles through the runtime.
    - Tab-completion suggestions (async for store-backed lookups).
"""
from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from proxy_gate.commands import ADMIN_PERMISSION, BASE_PERMISSION, CommandDispatcher
from proxy_gate.runtime import WhitelistRuntime
from storage.config import DEFAULT_CONFIG
from storage.errors import ConnectError


class _Source:
    def __init__(self, *permissions: str):
        self.permissions = set(permissions)
        self.messages: list[tuple[str, str]] = []

    def has_permission(self, permission: str) -> bool:
        return permission in self.permissions

    def send_message(self, text: str, *, tone: str = "info") -> None:
        self.messages.append((tone, text))

    @property
    def texts(self) -> list[str]:
        return [t for _, t in self.messages]


@pytest.fixture
def dispatcher(started_runtime):
    return CommandDispatcher(started_runtime)


@pytest.fixture
def admin():
    return _Source(BASE_PERMISSION, ADMIN_PERMISSION)


@pytest.fixture
def operator():
    return _Source(BASE_PERMISSION)


def test_missing_base_permission_is_refused(dispatcher):
    source = _Source()
    dispatcher.execute(source, ["add", "Steve"])
    assert source.messages == [("error", DEFAULT_CONFIG["messages"]["insufficientPermission"])]


@pytest.mark.parametrize("args", [["enable"], ["disable"], ["reload"], ["debug", "on"]])
def test_admin_verbs_require_admin_permission(dispatcher, operator, started_runtime, args):
    dispatcher.execute(operator, args)
    assert operator.texts == [DEFAULT_CONFIG["messages"]["insufficientPermission"]]
    assert started_runtime.config.enabled is True
    assert started_runtime.config.debug is False


def test_no_arguments_prints_general_usage(dispatcher, operator):
    dispatcher.execute(operator, [])
    assert operator.texts[0].startswith("Usage: /vwl add/del")


@pytest.mark.parametrize("args", [["add"], ["del"], ["list"], ["add", "a", "b"], ["bogus"]])
def test_wrong_arity_prints_usage(dispatcher, operator, args):
    dispatcher.execute(operator, args)
    assert len(operator.messages) == 1
    assert operator.messages[0][0] == "error"
    assert operator.texts[0].startswith("Usage: ")


def test_add_and_del_flow(dispatcher, operator, memory_store):
    dispatcher.execute(operator, ["add", "Steve"])
    dispatcher.execute(operator, ["add", "Steve"])
    dispatcher.execute(operator, ["del", "Steve"])
    dispatcher.execute(operator, ["del", "Steve"])
    assert operator.messages == [
        ("success", "Steve is now whitelisted."),
        ("error", "Steve is already whitelisted."),
        ("info", "Steve is no longer whitelisted."),
        ("error", "Steve is not whitelisted."),
    ]
    assert len(memory_store) == 0


def test_verbs_are_case_insensitive(dispatcher, operator):
    dispatcher.execute(operator, ["ADD", "Steve"])
    assert operator.texts == ["Steve is now whitelisted."]


def test_store_outage_reports_failure(dispatcher, operator, memory_store):
    memory_store.fail()
    dispatcher.execute(operator, ["add", "Steve"])
    dispatcher.execute(operator, ["del", "Steve"])
    dispatcher.execute(operator, ["list", "st"])
    assert operator.texts == [
        "Failed to add Steve to the whitelist.",
        "Failed to remove Steve from the whitelist.",
        "Failed to search the whitelist. Check the console for details.",
    ]


def test_list_matches(dispatcher, operator):
    for name in ("Steve", "Stella", "Bob"):
        dispatcher.execute(operator, ["add", name])
    operator.messages.clear()
    dispatcher.execute(operator, ["list", "st"])
    tone, text = operator.messages[-1]
    assert tone == "success"
    assert text.startswith("Whitelisted players matching 'st': ")
    assert set(text.split(": ", 1)[1].split(", ")) == {"Steve", "Stella"}


def test_list_without_matches(dispatcher, operator):
    dispatcher.execute(operator, ["list", "zz"])
    assert operator.texts == ["No whitelisted players found matching 'zz'."]


def test_list_warns_about_stripped_characters(dispatcher, operator):
    dispatcher.execute(operator, ["add", "Steve"])
    operator.messages.clear()
    dispatcher.execute(operator, ["list", "st%"])
    assert operator.messages[0][0] == "warning"
    assert "%" in operator.messages[0][1]
    assert operator.messages[1][1].startswith("Whitelisted players matching")


@pytest.mark.parametrize(
    "search, expected",
    [
        ("s", "Search string must be at least 2 characters long."),
        ("!!", "No usable characters found."),
        ("s!", "Not enough usable characters."),
    ],
)
def test_list_rejects_unusable_search(dispatcher, operator, search, expected):
    dispatcher.execute(operator, ["list", search])
    assert operator.texts[-1] == expected
    assert operator.messages[-1][0] == "error"


def test_enable_disable_toggle(dispatcher, admin, started_runtime):
    dispatcher.execute(admin, ["disable"])
    assert started_runtime.config.enabled is False
    dispatcher.execute(admin, ["enable"])
    assert started_runtime.config.enabled is True
    assert admin.texts == ["Whitelist disabled", "Whitelist enabled"]


def test_debug_toggle(dispatcher, admin, started_runtime):
    dispatcher.execute(admin, ["debug", "ON"])
    assert started_runtime.config.debug is True
    dispatcher.execute(admin, ["debug", "off"])
    assert started_runtime.config.debug is False
    dispatcher.execute(admin, ["debug", "maybe"])
    assert admin.texts == [
        "Debug mode is now enabled",
        "Debug mode is now disabled",
        "Usage: /vwl debug <on/off>",
    ]


def test_reload_success_and_failure(dispatcher, admin, started_runtime, tmp_path: Path):
    dispatcher.execute(admin, ["reload"])
    path = tmp_path / "config.yml"
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    data["database"]["table"] = "not a table"
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    dispatcher.execute(admin, ["reload"])
    assert admin.messages == [
        ("success", "Configuration reloaded successfully."),
        ("error", "Error while reloading configuration. Check the console for details."),
    ]


def test_unavailable_storage_message(tmp_path: Path, operator):
    def refuse(cfg):
        raise ConnectError("refused")

    runtime = WhitelistRuntime(tmp_path / "config.yml", connector=refuse)
    runtime.start()
    try:
        CommandDispatcher(runtime).execute(operator, ["add", "Steve"])
    finally:
        runtime.close()
    assert operator.texts == ["Whitelist storage is unavailable. Check the console for details."]


def test_action_suggestions_depend_on_permissions(dispatcher, operator, admin):
    assert dispatcher.suggest_action(operator) == ["add", "del", "list"]
    assert set(dispatcher.suggest_action(admin)) >= {"enable", "disable", "reload", "debug"}


def test_del_suggestions_come_from_the_store(dispatcher, operator):
    dispatcher.execute(operator, ["add", "Steve"])
    dispatcher.execute(operator, ["add", "Bob"])
    future = dispatcher.suggest_target(operator, "vwl del St")
    assert future.result(timeout=5) == ["Steve"]


def test_debug_suggestions_only_for_admins(dispatcher, operator, admin):
    assert dispatcher.suggest_target(admin, "vwl debug o").result() == ["on", "off"]
    assert dispatcher.suggest_target(admin, "vwl debug of").result() == ["off"]
    assert dispatcher.suggest_target(operator, "vwl debug o").result() == []
    assert dispatcher.suggest_target(operator, "vwl").result() == []


def test_add_rejects_overlong_name(dispatcher, operator, memory_store):
    name = "x" * 101
    dispatcher.execute(operator, ["add", name])
    assert operator.messages == [("error", f"{name} is not a valid player name.")]
    assert len(memory_store) == 0


def test_reload_with_invalid_connection_option_reports_error(dispatcher, admin, started_runtime, tmp_path: Path):
    path = tmp_path / "config.yml"
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    data["database"]["params"] = "?sslmod=disable"
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    service = started_runtime.service

    dispatcher.execute(admin, ["reload"])
    assert admin.messages == [
        ("error", "Error while reloading configuration. Check the console for details."),
    ]
    assert started_runtime.service is service
