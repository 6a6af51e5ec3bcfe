"""
Login gate: the proxy-facing decision point for incoming connections.

Why:
    The proxy asks one question per connection attempt and needs a yes/no plus
    the text to show when the answer is no. Uncertainty is never a yes: the gate
    fails closed with its own message so players can tell "not whitelisted"
    from "try again later". An allowed login refreshes the stored display
    name (best-effort).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from identity_access.domain import Decision
from proxy_gate.runtime import WhitelistRuntime

_log = logging.getLogger("whitelist.gate")


@dataclass(frozen=True)
class GateResult:
    allowed: bool
    decision: Optional[Decision] = None
    message: Optional[str] = None


class LoginGate:
    def __init__(self, runtime: WhitelistRuntime) -> None:
        self._runtime = runtime

    def check(self, account_name: Optional[str], *, locale: Optional[str] = None) -> GateResult:
        config = self._runtime.config
        messages = config.messages_for(locale)
        if not account_name:
            _log.error("login check triggered without an account name")
            return GateResult(allowed=False, decision=Decision.INDETERMINATE, message=messages.failed_to_check_whitelist)

        _log.debug("player login: %s", account_name)
        if not config.enabled:
            return GateResult(allowed=True)

        service = self._runtime.service
        decision = service.is_authorized(account_name) if service else Decision.INDETERMINATE
        if decision is Decision.ALLOW:
            service.refresh_display_name(account_name)
            return GateResult(allowed=True, decision=decision)
        if decision is Decision.DENY:
            return GateResult(allowed=False, decision=decision, message=messages.kicked)
        return GateResult(allowed=False, decision=decision, message=messages.failed_to_check_whitelist)


__all__ = ["GateResult", "LoginGate"]
