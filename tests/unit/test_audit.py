from __future__ import annotations

import json
import logging
from unittest.mock import MagicMock

from tenantflags.observability.audit import AuditEvent, AuditLogger


class TestAuditEvent:
    def test_default_values(self):
        event = AuditEvent()
        assert event.action == ""
        assert event.actor == ""
        assert event.client_ip == ""
        assert event.request_id == ""
        assert event.flag_id == ""
        assert event.status_code == 0
        assert event.details == {}
        assert isinstance(event.timestamp, float)


class TestAuditLogger:
    def _make_logger_with_mock(self):
        audit_logger = AuditLogger()
        mock_internal = MagicMock(spec=logging.Logger)
        audit_logger._logger = mock_internal
        return audit_logger, mock_internal

    def _logged(self, mock_internal) -> dict:
        mock_internal.info.assert_called_once()
        return json.loads(mock_internal.info.call_args[0][0])

    def test_log_admin_action(self):
        audit_logger, mock_internal = self._make_logger_with_mock()
        audit_logger.log_admin_action(
            "kill_flag",
            "alice",
            "flag-1",
            client_ip="10.0.0.1",
            request_id="req-1",
            details={"reason": "incident"},
        )
        event = self._logged(mock_internal)
        assert event["action"] == "kill_flag"
        assert event["actor"] == "alice"
        assert event["flag_id"] == "flag-1"
        assert event["status_code"] == 200
        assert event["details"] == {"reason": "incident"}

    def test_log_auth_failure(self):
        audit_logger, mock_internal = self._make_logger_with_mock()
        audit_logger.log_auth_failure(client_ip="10.0.0.3", request_id="req-3", reason="invalid_key")
        event = self._logged(mock_internal)
        assert event["action"] == "auth_failure"
        assert event["status_code"] == 401
        assert event["details"] == {"reason": "invalid_key"}

    def test_log_rate_limit(self):
        audit_logger, mock_internal = self._make_logger_with_mock()
        audit_logger.log_rate_limit(client_ip="10.0.0.4", request_id="req-4")
        event = self._logged(mock_internal)
        assert event["action"] == "rate_limit_exceeded"
        assert event["status_code"] == 429

    def test_multiple_log_calls_are_independent(self):
        audit_logger, mock_internal = self._make_logger_with_mock()
        audit_logger.log(AuditEvent(action="a"))
        audit_logger.log(AuditEvent(action="b"))
        assert mock_internal.info.call_count == 2

    def test_does_not_propagate_to_root(self):
        audit_logger = AuditLogger(name="tenantflags.audit.test")
        assert audit_logger._logger.propagate is False
        assert audit_logger._logger.handlers
