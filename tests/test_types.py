"""Tests for shared data types."""

from copilot_sdk.types import (
    ChatResult,
    ChunkKind,
    CredentialRecord,
    DeviceSession,
    StreamChunk,
    ToolCall,
)


class TestCredentialRecord:
    def test_round_trip_uses_camel_case_keys(self):
        rec = CredentialRecord(
            identity_token="gho_abc",
            access_token="tid=xyz",
            access_token_expiry=1_700_000_000,
            refresh_interval_hint=1500,
            created_at="2025-01-01T00:00:00.000Z",
            principal="octocat",
        )
        data = rec.to_dict()
        assert data == {
            "githubToken": "gho_abc",
            "copilotToken": "tid=xyz",
            "copilotTokenExpiry": 1_700_000_000,
            "refreshIn": 1500,
            "createdAt": "2025-01-01T00:00:00.000Z",
            "user": "octocat",
        }
        assert CredentialRecord.from_dict(data) == rec

    def test_principal_omitted_when_unknown(self):
        data = CredentialRecord(identity_token="gho_abc").to_dict()
        assert "user" not in data

    def test_access_token_without_expiry_is_cleared(self):
        rec = CredentialRecord(identity_token="gho", access_token="tid", access_token_expiry=None)
        assert rec.access_token is None
        assert not rec.has_access_token

    def test_pre_exchange_state_from_file(self):
        rec = CredentialRecord.from_dict({"githubToken": "gho", "copilotToken": "", "copilotTokenExpiry": 0})
        assert rec.identity_token == "gho"
        assert rec.access_token is None
        assert rec.access_token_expiry is None

    def test_apply_exchange_keeps_identity(self):
        rec = CredentialRecord(identity_token="gho", principal="octocat", created_at="t0")
        rec.apply_exchange("tid=new", 2000, 300)
        assert rec.access_token == "tid=new"
        assert rec.access_token_expiry == 2000
        assert rec.refresh_interval_hint == 300
        assert rec.identity_token == "gho"
        assert rec.principal == "octocat"
        assert rec.created_at == "t0"

    def test_repr_hides_tokens(self):
        rec = CredentialRecord(identity_token="gho_secret", access_token="tid_secret", access_token_expiry=1)
        text = repr(rec)
        assert "gho_secret" not in text
        assert "tid_secret" not in text


class TestDeviceSession:
    def test_deadline(self):
        session = DeviceSession("dc", "ABCD-1234", "https://github.com/login/device",
                                expires_in_seconds=900, started_at=100.0)
        assert session.deadline == 1000.0

    def test_deadline_unknown_until_started(self):
        session = DeviceSession("dc", "ABCD-1234", "https://x")
        assert session.started_at is None
        assert session.deadline is None

    def test_repr_hides_device_code(self):
        session = DeviceSession("secret-device-code", "ABCD-1234", "https://x")
        assert "secret-device-code" not in repr(session)


class TestStreamChunk:
    def test_content_chunk(self):
        chunk = StreamChunk.from_payload(
            {"model": "gpt-4o", "choices": [{"index": 0, "delta": {"content": "Hi"}}]},
        )
        assert chunk.kind is ChunkKind.CONTENT
        assert chunk.content == "Hi"
        assert chunk.model == "gpt-4o"

    def test_tool_call_chunk(self):
        chunk = StreamChunk.from_payload({"choices": [{"delta": {"tool_calls": [
            {"index": 0, "id": "call_1", "function": {"name": "f", "arguments": ""}},
        ]}}]})
        assert chunk.kind is ChunkKind.TOOL_CALL
        assert chunk.tool_calls[0]["id"] == "call_1"

    def test_finish_chunk(self):
        chunk = StreamChunk.from_payload({
            "choices": [{"delta": {}, "finish_reason": "stop"}],
            "usage": {"total_tokens": 5},
        })
        assert chunk.kind is ChunkKind.FINISH
        assert chunk.finish_reason == "stop"
        assert chunk.usage == {"total_tokens": 5}

    def test_unknown_chunk_keeps_data(self):
        chunk = StreamChunk.from_payload({"choices": [], "prompt_filter_results": []})
        assert chunk.kind is ChunkKind.UNKNOWN
        assert chunk.content == ""
        assert chunk.tool_calls == []
        assert chunk.data["prompt_filter_results"] == []


class TestChatResult:
    def test_has_tool_calls(self):
        assert not ChatResult().has_tool_calls
        result = ChatResult(tool_calls=[ToolCall(id="1", name="f", arguments={})])
        assert result.has_tool_calls
