"""
`vwl` command dispatcher.

Why:
    Operators manage the whitelist from the proxy console or in game. This
    adapter maps the command verbs onto the runtime and the whitelist service,
    enforces the admin permission for configuration verbs, and renders the
    outcomes as short messages.

Verbs:
    add <name> | del <name> | list <search> | enable | disable | reload | debug <on|off>

Permissions:
    `vwl.command` for the command itself; `vwl.admin` additionally for
    enable, disable, reload and debug.
"""
from __future__ import annotations

import logging
from concurrent.futures import Future
from typing import Protocol, Sequence

from identity_access.domain import AddOutcome, RemoveOutcome, SearchQueryError
from identity_access.service import LIST_LIMIT, SUGGESTION_LIMIT
from proxy_gate.runtime import WhitelistRuntime

_log = logging.getLogger("whitelist.gate")

COMMAND_ALIAS = "vwl"
BASE_PERMISSION = "vwl.command"
ADMIN_PERMISSION = "vwl.admin"

ADMIN_ACTIONS = frozenset({"enable", "disable", "reload", "debug"})

USAGE = {
    "all": "/vwl add/del <player> | list <search> | enable/disable | reload | debug <on/off>",
    "add": "/vwl add <player>",
    "del": "/vwl del <player>",
    "list": "/vwl list <search>",
    "enable": "/vwl enable",
    "disable": "/vwl disable",
    "reload": "/vwl reload",
    "debug": "/vwl debug <on/off>",
}


class CommandSource(Protocol):
    def has_permission(self, permission: str) -> bool: ...

    def send_message(self, text: str, *, tone: str = "info") -> None: ...


def _done(value: list[str]) -> "Future[list[str]]":
    fut: Future[list[str]] = Future()
    fut.set_result(value)
    return fut


class CommandDispatcher:
    def __init__(self, runtime: WhitelistRuntime) -> None:
        self._runtime = runtime

    # --- Entry points ------------------------------------------------------------
    def execute(self, source: CommandSource, args: Sequence[str]) -> None:
        if not source.has_permission(BASE_PERMISSION):
            self._deny(source)
            return
        if not args:
            self.send_usage(source, "all")
            return
        action = args[0].lower()
        if action in ADMIN_ACTIONS and not source.has_permission(ADMIN_PERMISSION):
            self._deny(source)
            return
        if len(args) == 1:
            self._handle_action(source, action)
        elif len(args) == 2:
            self._handle_action_with_target(source, action, args[1])
        else:
            self.send_usage(source, action)

    def send_usage(self, source: CommandSource, subcommand: str) -> None:
        _log.debug("sending usage message for %s", subcommand)
        usage = USAGE.get(subcommand.lower(), USAGE["all"])
        source.send_message(f"Usage: {usage}", tone="error")

    def suggest_action(self, source: CommandSource) -> list[str]:
        suggestions = ["add", "del", "list"]
        if source.has_permission(ADMIN_PERMISSION):
            suggestions += ["debug", "enable", "disable", "reload"]
        return suggestions

    def suggest_target(self, source: CommandSource, input_line: str) -> "Future[list[str]]":
        """Suggest the second argument; store-backed lookups complete asynchronously."""
        parts = input_line.split(" ")
        if len(parts) < 2:
            return _done([])
        action = parts[1].strip().lower()
        remaining = parts[2] if len(parts) > 2 else ""
        if action == "del" and len(parts) <= 3:
            service = self._runtime.service
            if service is None:
                return _done([])
            return service.suggest(remaining, SUGGESTION_LIMIT)
        if action == "debug" and source.has_permission(ADMIN_PERMISSION):
            return _done([v for v in ("on", "off") if v.startswith(remaining.lower())])
        return _done([])

    # --- Handlers ----------------------------------------------------------------
    def _deny(self, source: CommandSource) -> None:
        source.send_message(self._runtime.config.messages_for().insufficient_permission, tone="error")

    def _handle_action(self, source: CommandSource, action: str) -> None:
        if action == "enable":
            self._runtime.set_enabled(True)
            source.send_message("Whitelist enabled", tone="success")
        elif action == "disable":
            self._runtime.set_enabled(False)
            source.send_message("Whitelist disabled", tone="info")
        elif action == "reload":
            if self._runtime.reload():
                source.send_message("Configuration reloaded successfully.", tone="success")
            else:
                source.send_message("Error while reloading configuration. Check the console for details.", tone="error")
        else:
            self.send_usage(source, action)

    def _handle_action_with_target(self, source: CommandSource, action: str, target: str) -> None:
        if action == "debug":
            if target.lower() == "on":
                self._set_debug(source, True)
            elif target.lower() == "off":
                self._set_debug(source, False)
            else:
                self.send_usage(source, "debug")
            return
        if action not in {"add", "del", "list"}:
            self.send_usage(source, action)
            return
        service = self._runtime.service
        if service is None:
            source.send_message("Whitelist storage is unavailable. Check the console for details.", tone="error")
            return
        if action == "add":
            outcome = service.add(target)
            if outcome is AddOutcome.ADDED:
                source.send_message(f"{target} is now whitelisted.", tone="success")
            elif outcome is AddOutcome.ALREADY_PRESENT:
                source.send_message(f"{target} is already whitelisted.", tone="error")
            elif outcome is AddOutcome.INVALID_NAME:
                source.send_message(f"{target} is not a valid player name.", tone="error")
            else:
                source.send_message(f"Failed to add {target} to the whitelist.", tone="error")
        elif action == "del":
            outcome = service.remove(target)
            if outcome is RemoveOutcome.REMOVED:
                source.send_message(f"{target} is no longer whitelisted.", tone="info")
            elif outcome is RemoveOutcome.NOT_PRESENT:
                source.send_message(f"{target} is not whitelisted.", tone="error")
            else:
                source.send_message(f"Failed to remove {target} from the whitelist.", tone="error")
        else:
            self._list(source, service, target)

    def _list(self, source: CommandSource, service, search: str) -> None:
        try:
            result = service.search(search, LIST_LIMIT)
        except SearchQueryError as exc:
            if exc.warning:
                source.send_message(exc.warning, tone="warning")
            source.send_message(exc.message, tone="error")
            return
        if result.warning:
            source.send_message(result.warning, tone="warning")
        if result.failed:
            source.send_message("Failed to search the whitelist. Check the console for details.", tone="error")
        elif not result.names:
            source.send_message(f"No whitelisted players found matching '{search}'.", tone="error")
        else:
            source.send_message(f"Whitelisted players matching '{search}': {', '.join(result.names)}", tone="success")

    def _set_debug(self, source: CommandSource, enabled: bool) -> None:
        self._runtime.set_debug(enabled)
        source.send_message(
            f"Debug mode is now {'enabled' if enabled else 'disabled'}",
            tone="success" if enabled else "info",
        )


__all__ = [
    "ADMIN_PERMISSION",
    "BASE_PERMISSION",
    "COMMAND_ALIAS",
    "CommandDispatcher",
    "CommandSource",
    "USAGE",
]
