"""
Tests for the ImmortalBard orchestrator.

The Kernel client is a MagicMock and the Anthropic adapter's HTTP call is
patched, so no network is touched.
"""

import logging
from unittest.mock import MagicMock, patch

import pytest

from immortal_bard import bard as bard_module
from immortal_bard.adapters import AnthropicAdapter
from immortal_bard.bard import BardState, ImmortalBard
from immortal_bard.code_generator import CodeGenerator
from immortal_bard.config import BardSettings
from immortal_bard.errors import (
    ConfigurationError,
    ExecutionClientError,
    PreconditionError,
    SceneNotSetError,
    SessionConflictError,
    TeardownError,
)
from immortal_bard.kernel_client import BrowserSession, ExecutionOutcome
from immortal_bard.logger import RunLogger
from immortal_bard.snapshot import AccessibilitySnapshot, DomSnapshot
from immortal_bard.types import BeseechResult, ContextCaptureOptions, SceneConfig


GENERATED = "```javascript\nawait page.goto('https://example.com');\n```"
CODE = "await page.goto('https://example.com');"
SUCCESS_PAYLOAD = {"navigated": True, "title": "Example Domain"}

ARIA_PAYLOAD = {
    "url": "https://example.com/",
    "title": "Example Domain",
    "snapshot": '- heading "Example Domain" [level=1]',
}

DOM_PAYLOAD = {
    "url": "https://example.com/",
    "title": "Example Domain",
    "body": {"tag": "body", "children": [{"tag": "h1", "text": "Example Domain"}]},
}


def _is_capture(code: str) -> bool:
    return code == AccessibilitySnapshot.CODE or code.startswith("// Extract simplified DOM")


def _remote(session_id, code, timeout_sec=None):
    """Stand-in for KernelClient.execute."""
    if code == AccessibilitySnapshot.CODE:
        return ExecutionOutcome(success=True, result=ARIA_PAYLOAD)
    if _is_capture(code):
        return ExecutionOutcome(success=True, result=DOM_PAYLOAD)
    return ExecutionOutcome(success=True, result=SUCCESS_PAYLOAD)


def _generated_calls(kernel):
    """Kernel execute calls that ran generated code (not captures)."""
    return [c for c in kernel.execute.call_args_list if not _is_capture(c.args[1])]


@pytest.fixture
def kernel():
    kernel = MagicMock()
    kernel.launch_session.return_value = BrowserSession(session_id="sess-1")
    kernel.execute.side_effect = _remote
    return kernel


@pytest.fixture
def llm():
    with patch.object(AnthropicAdapter, "chat_completion", return_value=GENERATED) as mock_chat:
        yield mock_chat


@pytest.fixture
def bard(kernel, llm):
    settings = BardSettings(openai_api_key=None, anthropic_api_key="test-key", google_api_key=None)
    return ImmortalBard(
        code_generator=CodeGenerator(settings=settings),
        kernel_client=kernel,
        cleanup_on_exit=False,
    )


@pytest.fixture
def performing(bard):
    bard.scene({"provider": "anthropic"})
    bard.to_be()
    return bard


class TestScene:
    """Tests for scene() configuration."""

    def test_initial_state(self, bard):
        assert bard.state == BardState.UNINITIALIZED
        assert not bard.is_performing()

    def test_scene_sets_state(self, bard):
        bard.scene({"provider": "anthropic"})

        assert bard.state == BardState.SCENE_SET
        assert bard.code_generator.model == "claude-sonnet-4-5"

    def test_scene_accepts_config_object(self, bard):
        bard.scene(SceneConfig(provider="anthropic", model="claude-opus-4-1"))

        assert bard.code_generator.model == "claude-opus-4-1"

    def test_missing_credential_names_provider(self, bard):
        with pytest.raises(ConfigurationError, match="OpenAI") as exc_info:
            bard.scene({"provider": "openai"})

        assert "Failed to set the scene" in str(exc_info.value)
        assert bard.state == BardState.UNINITIALIZED

    def test_unknown_provider(self, bard):
        with pytest.raises(ConfigurationError, match="Unknown provider"):
            bard.scene({"provider": "mistral"})

    def test_missing_provider(self, bard):
        with pytest.raises(ConfigurationError, match="requires a provider"):
            bard.scene({})

    def test_capture_options_merged(self, bard):
        bard.scene({"provider": "anthropic", "context_capture": {"max_tokens": 500}})
        bard.scene({"provider": "anthropic", "context_capture": {"strategy": "dom", "max_depth": 3}})

        assert bard.capture_options == ContextCaptureOptions(
            enabled=True, strategy="dom", max_tokens=500, max_depth=3
        )

    def test_bad_capture_options(self, bard):
        with pytest.raises(ConfigurationError, match="max_tokenz"):
            bard.scene({"provider": "anthropic", "context_capture": {"max_tokenz": 10}})
        with pytest.raises(ConfigurationError, match="strategy"):
            bard.scene({"provider": "anthropic", "context_capture": {"strategy": "html"}})


class TestToBe:
    """Tests for opening the session."""

    def test_requires_scene(self, bard, kernel):
        with pytest.raises(SceneNotSetError, match="Scene not set"):
            bard.to_be()

        kernel.launch_session.assert_not_called()

    def test_scene_not_set_is_both_kinds(self):
        assert issubclass(SceneNotSetError, ConfigurationError)
        assert issubclass(SceneNotSetError, PreconditionError)

    def test_opens_session(self, bard, kernel):
        bard.scene({"provider": "anthropic"})
        session = bard.to_be()

        assert session.session_id == "sess-1"
        assert bard.is_performing()
        assert bard.state == BardState.PERFORMING

    def test_twice_is_a_conflict(self, performing, kernel):
        with pytest.raises(SessionConflictError, match="already active"):
            performing.to_be()

        assert kernel.launch_session.call_count == 1
        assert performing.session.session_id == "sess-1"
        assert performing.is_performing()

    def test_launch_failure(self, bard, kernel):
        kernel.launch_session.side_effect = ExecutionClientError("Kernel API error: HTTP 503")
        bard.scene({"provider": "anthropic"})

        with pytest.raises(ExecutionClientError, match="Failed to enter the stage: Kernel API error"):
            bard.to_be()

        assert not bard.is_performing()


class TestBeseech:
    """Tests for running instructions."""

    def test_without_session(self, bard):
        result = bard.beseech("Navigate to https://example.com")

        assert result.code == ""
        assert result.result is None
        assert "No active session" in result.error

    def test_anthropic_scenario(self, performing, kernel):
        result = performing.beseech("Navigate to https://example.com")

        assert result.error is None
        assert result.code == CODE
        assert result.result == SUCCESS_PAYLOAD
        assert result.to_dict() == {"code": CODE, "result": SUCCESS_PAYLOAD, "error": None}

    def test_capture_then_generate_then_execute(self, performing, kernel, llm):
        performing.beseech("Click the heading")

        calls = kernel.execute.call_args_list
        assert len(calls) == 2
        assert calls[0].args == ("sess-1", AccessibilitySnapshot.CODE)
        assert calls[1].args == ("sess-1", CODE, 60)

        user_message = llm.call_args.args[0][-1].content
        assert user_message.startswith("Click the heading\n\nAvailable execution time: 60 seconds")
        assert "<current_page_ai_snapshot>\nURL: https://example.com/" in user_message

    def test_dom_strategy_context(self, bard, llm):
        bard.scene({"provider": "anthropic", "context_capture": {"strategy": "dom"}})
        bard.to_be()
        bard.beseech("Click the heading")

        user_message = llm.call_args.args[0][-1].content
        assert "<current_page_dom>" in user_message
        assert '"tag": "h1"' in user_message

    def test_capture_failure_degrades(self, performing, kernel, llm, caplog):
        def flaky(session_id, code, timeout_sec=None):
            if _is_capture(code):
                raise ExecutionClientError("Kernel API error: snapshot unsupported")
            return _remote(session_id, code, timeout_sec)

        kernel.execute.side_effect = flaky
        caplog.set_level(logging.WARNING, logger="immortal_bard.bard")

        result = performing.beseech("Navigate to https://example.com")

        assert result.error is None
        assert result.result == SUCCESS_PAYLOAD
        assert "<current_page_ai_snapshot>" not in llm.call_args.args[0][-1].content
        assert "Page context capture failed" in caplog.text
        assert "snapshot unsupported" in caplog.text

    def test_capture_disabled_by_scene(self, bard, kernel):
        bard.scene({"provider": "anthropic", "context_capture": {"enabled": False}})
        bard.to_be()
        bard.beseech("Navigate to https://example.com")

        assert kernel.execute.call_count == 1

    def test_capture_disabled_per_call(self, performing, kernel):
        performing.beseech("Navigate to https://example.com", capture_context=False)

        assert kernel.execute.call_count == 1

    def test_capture_enabled_per_call(self, bard, kernel):
        bard.scene({"provider": "anthropic", "context_capture": {"enabled": False}})
        bard.to_be()
        bard.beseech("Navigate to https://example.com", capture_context=True)

        assert kernel.execute.call_count == 2

    @pytest.mark.parametrize("requested, expected", [
        (0, 1),
        (-5, 1),
        (1000, 300),
        (120, 120),
        (None, 60),
        (float("inf"), 300),
        (-float("inf"), 1),
    ])
    def test_timeout_clamping(self, performing, kernel, llm, requested, expected):
        performing.beseech("Wait for the page", timeout=requested)

        assert _generated_calls(kernel)[-1].args[2] == expected
        assert f"Available execution time: {expected} seconds" in llm.call_args.args[0][-1].content

    @pytest.mark.parametrize("timeout", ["soon", float("nan"), [30]])
    def test_invalid_timeout(self, performing, kernel, timeout):
        result = performing.beseech("Wait", timeout=timeout)

        assert result.code == ""
        assert "Invalid timeout" in result.error
        assert _generated_calls(kernel) == []

    def test_generation_error(self, performing, kernel, llm):
        llm.side_effect = RuntimeError("overloaded_error")

        result = performing.beseech("Navigate to https://example.com")

        assert result == BeseechResult(code="", result=None, error="Code generation error: overloaded_error")
        assert _generated_calls(kernel) == []

    def test_execution_error_keeps_code(self, performing, kernel):
        def broken(session_id, code, timeout_sec=None):
            if _is_capture(code):
                return _remote(session_id, code, timeout_sec)
            raise ExecutionClientError("Kernel API error: connection reset")

        kernel.execute.side_effect = broken

        result = performing.beseech("Navigate to https://example.com")

        assert result.code == CODE
        assert result.result is None
        assert result.error == "Execution error: Kernel API error: connection reset"

    def test_remote_reported_error(self, performing, kernel):
        def failing(session_id, code, timeout_sec=None):
            if _is_capture(code):
                return _remote(session_id, code, timeout_sec)
            return ExecutionOutcome(success=False, result={"partial": 1}, error="TimeoutError: waiting for #go")

        kernel.execute.side_effect = failing

        result = performing.beseech("Click go")

        assert result.code == CODE
        assert result.result == {"partial": 1}
        assert result.error == "TimeoutError: waiting for #go"

    def test_remote_failure_without_message(self, performing, kernel):
        def failing(session_id, code, timeout_sec=None):
            if _is_capture(code):
                return _remote(session_id, code, timeout_sec)
            return ExecutionOutcome(success=False)

        kernel.execute.side_effect = failing

        assert performing.beseech("Click go").error == "Execution failed"

    def test_never_raises(self, performing, kernel, llm):
        kernel.execute.side_effect = RuntimeError("anything at all")
        llm.side_effect = ValueError("bad response")

        result = performing.beseech("Do a thing")

        assert set(result.to_dict()) == {"code", "result", "error"}
        assert result.error.startswith("Code generation error")

    def test_conversation_memory(self, performing):
        performing.beseech("Navigate to https://example.com")
        performing.beseech("Return the title")

        assert len(performing.code_generator.conversation) == 5

        performing.reset_context()
        assert len(performing.code_generator.conversation) == 1


class TestNotToBe:
    """Tests for closing the session."""

    def test_without_session_is_noop(self, bard, kernel):
        bard.not_to_be()

        assert not bard.is_performing()
        kernel.close_session.assert_not_called()

    def test_closes_session(self, performing, kernel):
        performing.not_to_be()

        kernel.close_session.assert_called_once_with("sess-1")
        assert not performing.is_performing()
        assert performing.state == BardState.SCENE_SET

    def test_can_perform_again(self, performing, kernel):
        performing.not_to_be()
        performing.to_be()

        assert kernel.launch_session.call_count == 2
        assert performing.is_performing()

    def test_failure_keeps_session_for_retry(self, performing, kernel):
        kernel.close_session.side_effect = [ExecutionClientError("Kernel API error: HTTP 502"), None]

        with pytest.raises(TeardownError, match="Failed to exit the stage"):
            performing.not_to_be()

        assert performing.is_performing()

        performing.not_to_be()
        assert not performing.is_performing()
        assert kernel.close_session.call_count == 2

    def test_beseech_after_close(self, performing):
        performing.not_to_be()

        assert "No active session" in performing.beseech("Anything").error


class TestScopedCleanup:
    """Tests for performance(), the context manager and exit cleanup."""

    def test_performance_closes_session(self, bard, kernel):
        bard.scene({"provider": "anthropic"})

        with bard.performance() as performing:
            assert performing.is_performing()
            performing.beseech("Navigate to https://example.com")

        assert not bard.is_performing()
        kernel.close_session.assert_called_once_with("sess-1")

    def test_performance_closes_on_error(self, bard, kernel):
        bard.scene({"provider": "anthropic"})

        with pytest.raises(KeyError):
            with bard.performance():
                raise KeyError("caller bug")

        assert not bard.is_performing()

    def test_context_manager_closes_everything(self, bard, kernel):
        with bard:
            bard.scene({"provider": "anthropic"})
            bard.to_be()

        kernel.close_session.assert_called_once_with("sess-1")
        kernel.close.assert_called_once()

    def test_exit_cleanup(self, bard, kernel):
        bard.cleanup_on_exit = True
        bard.scene({"provider": "anthropic"})
        bard.to_be()
        assert bard in bard_module._performing_bards

        bard_module._cleanup_all_bards()

        kernel.close_session.assert_called_once_with("sess-1")
        assert not bard.is_performing()
        assert bard not in bard_module._performing_bards

    def test_exit_cleanup_tolerates_teardown_failure(self, bard, kernel):
        bard.cleanup_on_exit = True
        bard.scene({"provider": "anthropic"})
        bard.to_be()
        kernel.close_session.side_effect = ExecutionClientError("Kernel API error: gone")

        bard_module._cleanup_all_bards()

        assert bard_module._performing_bards == []

    def test_exit_cleanup_continues_past_failing_bard(self, bard, kernel):
        other_kernel = MagicMock()
        other_kernel.launch_session.return_value = BrowserSession(session_id="sess-2")
        other = ImmortalBard(
            code_generator=CodeGenerator(settings=BardSettings(anthropic_api_key="test-key")),
            kernel_client=other_kernel,
        )
        bard.cleanup_on_exit = True
        for each in (bard, other):
            each.scene({"provider": "anthropic"})
            each.to_be()
        kernel.close_session.side_effect = RuntimeError("Cannot send a request, as the client has been closed.")

        bard_module._cleanup_all_bards()

        other_kernel.close_session.assert_called_once_with("sess-2")
        assert not other.is_performing()
        assert bard_module._performing_bards == []

    def test_close_drops_bard_when_teardown_fails(self, bard, kernel):
        bard.cleanup_on_exit = True
        bard.scene({"provider": "anthropic"})
        bard.to_be()
        kernel.close_session.side_effect = ExecutionClientError("Kernel API error: HTTP 500")

        with pytest.raises(TeardownError):
            bard.close()

        kernel.close.assert_called_once()
        assert bard not in bard_module._performing_bards


class TestRunLogging:
    """Tests for the optional run logger."""

    def test_each_beseech_is_logged(self, bard, tmp_path):
        bard.run_logger = RunLogger("example run", enable_console=False, runs_dir=tmp_path)
        bard.beseech("Before the session")
        bard.scene({"provider": "anthropic"})
        bard.to_be()
        bard.beseech("Navigate to https://example.com", timeout=90)

        lines = bard.run_logger.read_lines()
        assert len(lines) == 1
        assert lines[0]["instruction"] == "Navigate to https://example.com"
        assert lines[0]["code"] == CODE
        assert lines[0]["result"] == SUCCESS_PAYLOAD
        assert lines[0]["error"] is None
        assert lines[0]["used_context"] is True
        assert lines[0]["timeout"] == 90
