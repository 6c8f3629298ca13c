"""Audit log of privileged admin requests and authentication failures.

Complements the per-flag history: history records *what* changed on a flag,
this log records *who called what* on the admin surface, including rejected
calls that never reached the store.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import asdict, dataclass, field


@dataclass
class AuditEvent:
    timestamp: float = field(default_factory=time.time)
    action: str = ""
    actor: str = ""
    client_ip: str = ""
    request_id: str = ""
    flag_id: str = ""
    status_code: int = 0
    details: dict = field(default_factory=dict)


class AuditLogger:
    def __init__(self, name: str = "tenantflags.audit") -> None:
        self._logger = logging.getLogger(name)
        if not self._logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(
                logging.Formatter('{"level":"%(levelname)s","audit":true,"event":%(message)s}')
            )
            self._logger.addHandler(handler)
            self._logger.setLevel(logging.INFO)
            self._logger.propagate = False

    def log(self, event: AuditEvent) -> None:
        self._logger.info(json.dumps(asdict(event), default=str, sort_keys=True))

    def log_admin_action(
        self,
        action: str,
        actor: str,
        flag_id: str,
        *,
        client_ip: str = "",
        request_id: str = "",
        status: int = 200,
        details: dict | None = None,
    ) -> None:
        self.log(
            AuditEvent(
                action=action,
                actor=actor,
                flag_id=flag_id,
                client_ip=client_ip,
                request_id=request_id,
                status_code=status,
                details=details or {},
            )
        )

    def log_auth_failure(self, client_ip: str, request_id: str, reason: str) -> None:
        self.log(
            AuditEvent(
                action="auth_failure",
                client_ip=client_ip,
                request_id=request_id,
                status_code=401,
                details={"reason": reason},
            )
        )

    def log_rate_limit(self, client_ip: str, request_id: str) -> None:
        self.log(
            AuditEvent(
                action="rate_limit_exceeded",
                client_ip=client_ip,
                request_id=request_id,
                status_code=429,
            )
        )
