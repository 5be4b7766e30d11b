"""Unit tests: domain models (versions, endpoints, tokens, commands)."""
from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from core.domain.commands import (
    CommandResponse,
    CommandResponseType,
    CommandResult,
    CommandType,
    PendingCommand,
    ReserveNowCommand,
    StopSessionCommand,
    UnlockConnectorCommand,
)
from core.domain.models import InterfaceRole, ModuleId, VersionDetail, version_sort_key

pytestmark = pytest.mark.unit


class TestVersionSortKey:
    def test_numeric_parts_compare_as_integers(self):
        assert version_sort_key("2.10") > version_sort_key("2.2")

    def test_longer_version_wins_on_equal_prefix(self):
        assert version_sort_key("2.1.1") > version_sort_key("2.1")

    def test_highest_of_advertised(self):
        assert max(["2.1.1", "2.2", "2.2.1", "2.0"], key=version_sort_key) == "2.2.1"

    def test_non_numeric_part_sorts_after_numeric(self):
        assert version_sort_key("3.beta") > version_sort_key("3.0")


class TestVersionDetail:
    def test_endpoint_url_by_module_and_role(self):
        detail = VersionDetail.model_validate(
            {
                "version": "2.2",
                "endpoints": [
                    {"identifier": "commands", "role": "RECEIVER", "url": "https://x/commands"},
                    {"identifier": "tokens", "role": "RECEIVER", "url": "https://x/tokens"},
                ],
            }
        )
        assert detail.endpoint_url(ModuleId.COMMANDS, InterfaceRole.RECEIVER) == "https://x/commands"
        assert detail.endpoint_url("tokens", InterfaceRole.RECEIVER) == "https://x/tokens"
        assert detail.endpoint_url(ModuleId.COMMANDS, InterfaceRole.SENDER) is None

    def test_unknown_module_identifier_is_kept(self):
        detail = VersionDetail.model_validate(
            {"version": "2.2", "endpoints": [{"identifier": "custom", "role": "SENDER", "url": "u"}]}
        )
        assert detail.endpoint_url("custom", InterfaceRole.SENDER) == "u"

    def test_duplicate_module_role_is_rejected(self):
        with pytest.raises(ValidationError):
            VersionDetail.model_validate(
                {
                    "version": "2.2",
                    "endpoints": [
                        {"identifier": "commands", "role": "RECEIVER", "url": "a"},
                        {"identifier": "commands", "role": "RECEIVER", "url": "b"},
                    ],
                }
            )

    def test_same_module_both_roles_is_allowed(self):
        detail = VersionDetail.model_validate(
            {
                "version": "2.2",
                "endpoints": [
                    {"identifier": "tokens", "role": "SENDER", "url": "a"},
                    {"identifier": "tokens", "role": "RECEIVER", "url": "b"},
                ],
            }
        )
        assert len(detail.endpoints) == 2

    def test_invalid_role_is_rejected(self):
        with pytest.raises(ValidationError):
            VersionDetail.model_validate(
                {"version": "2.2", "endpoints": [{"identifier": "cdrs", "role": "BOTH", "url": "a"}]}
            )


class TestCommands:
    def test_reserve_now_json_fields(self, token):
        command = ReserveNowCommand(
            response_url="https://emsp/2.2/emsp/RESERVE_NOWabc",
            token=token,
            expiry_date=datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
            reservation_id="R1",
            location_id="LOC1",
        )
        body = command.to_json()
        assert body["response_url"] == "https://emsp/2.2/emsp/RESERVE_NOWabc"
        assert body["token"]["uid"] == token.uid
        assert body["reservation_id"] == "R1"
        assert body["location_id"] == "LOC1"
        assert "evse_uid" not in body
        assert "command_type" not in body

        parsed = ReserveNowCommand.model_validate(body)
        assert parsed == command
        assert parsed.token == token
        assert parsed.expiry_date == command.expiry_date

    def test_command_type_is_class_level(self):
        assert StopSessionCommand.command_type is CommandType.STOP_SESSION
        assert UnlockConnectorCommand.command_type is CommandType.UNLOCK_CONNECTOR

    def test_command_response_rejects_negative_timeout(self):
        with pytest.raises(ValidationError):
            CommandResponse.model_validate({"result": "ACCEPTED", "timeout": -1})

    def test_command_response_message(self):
        response = CommandResponse.model_validate(
            {"result": "REJECTED", "timeout": 0, "message": [{"language": "en", "text": "busy"}]}
        )
        assert response.result is CommandResponseType.REJECTED
        assert response.message[0].text == "busy"


class TestPendingCommand:
    def test_merge_keeps_async_result_and_event(self):
        placeholder = PendingCommand(command_id="c1", created_at=1.0)
        placeholder.async_result = CommandResult(result="ACCEPTED")
        placeholder.result_ready.set()
        command = StopSessionCommand(response_url="u", session_id="S1")

        merged = placeholder.merged_with(command, request_id="r", correlation_id="k")

        assert merged.command is command
        assert merged.command_type is CommandType.STOP_SESSION
        assert merged.async_result is placeholder.async_result
        assert merged.created_at == 1.0
        assert merged.result_ready is placeholder.result_ready
        assert merged.result_ready.is_set()
