"""
Tests for the resilience gateway: retry, circuit breaking, fallbacks and
maintenance mode.
"""

import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from sitespeak_suggest.cache import SuggestionCache
from sitespeak_suggest.config import FallbackType, GatewayConfig, RetryConfig
from sitespeak_suggest.exceptions import (
    CircuitOpenError,
    OperationTimeoutError,
    PermissionDeniedError,
    ServiceUnavailableError,
)
from sitespeak_suggest.models import CommandSuggestion, IntentCategory
from sitespeak_suggest.resilience import CircuitState, ResilienceGateway

SERVICE = "suggestion_engine"


def make_gateway(clock, cache=None, max_retries=3, **overrides):
    config = GatewayConfig(retry=RetryConfig(max_retries=max_retries), **overrides)
    return ResilienceGateway(config, cache, clock=clock, sleep=AsyncMock())


def suggestion(command="Add this to my cart", confidence=0.9):
    return CommandSuggestion(
        id="s1",
        command=command,
        intent=IntentCategory.ADD_TO_CART,
        confidence=confidence,
    )


class TestExecuteWithRetry:

    @pytest.mark.asyncio
    async def test_success_records_breaker_success(self, clock):
        gateway = make_gateway(clock)
        operation = AsyncMock(return_value="ok")

        assert await gateway.execute_with_retry(operation, SERVICE) == "ok"
        assert gateway.breaker_status(SERVICE)["request_count"] == 1

    @pytest.mark.asyncio
    async def test_sync_operation(self, clock):
        gateway = make_gateway(clock)
        assert await gateway.execute_with_retry(lambda: 42, SERVICE) == 42

    @pytest.mark.asyncio
    async def test_retry_then_success(self, clock):
        gateway = make_gateway(clock)
        operation = AsyncMock(side_effect=[ServiceUnavailableError("down"), "ok"])

        assert await gateway.execute_with_retry(operation, SERVICE) == "ok"
        assert operation.await_count == 2
        gateway.retry_policy._sleep.assert_awaited_once_with(1.0)

    @pytest.mark.asyncio
    async def test_exhaustion_reraises_and_records_one_failure(self, clock):
        gateway = make_gateway(clock)
        error = ServiceUnavailableError("down")
        operation = AsyncMock(side_effect=error)

        with pytest.raises(ServiceUnavailableError) as excinfo:
            await gateway.execute_with_retry(operation, SERVICE)

        assert excinfo.value is error
        assert operation.await_count == 4
        delays = [c.args[0] for c in gateway.retry_policy._sleep.await_args_list]
        assert delays == [1.0, 2.0, 4.0]
        assert gateway.breaker(SERVICE).failure_count == 1
        assert gateway.error_stats()["total_errors"] == 1

    @pytest.mark.asyncio
    async def test_non_retryable_error_fails_fast(self, clock):
        gateway = make_gateway(clock)
        operation = AsyncMock(side_effect=PermissionDeniedError("nope"))

        with pytest.raises(PermissionDeniedError):
            await gateway.execute_with_retry(operation, SERVICE)

        assert operation.await_count == 1
        gateway.retry_policy._sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_timeout_is_classified(self, clock):
        gateway = make_gateway(clock, max_retries=0, operation_timeout_seconds=0.01)

        async def slow():
            await asyncio.sleep(1)

        with pytest.raises(OperationTimeoutError):
            await gateway.execute_with_retry(slow, SERVICE)

        assert gateway.error_stats()["errors_by_code"] == {"TIMEOUT": 1}

    @pytest.mark.asyncio
    async def test_open_breaker_refuses_without_calling(self, clock):
        gateway = make_gateway(clock)
        gateway.breaker(SERVICE).force_open()
        operation = AsyncMock()

        with pytest.raises(CircuitOpenError) as excinfo:
            await gateway.execute_with_retry(operation, SERVICE)

        assert excinfo.value.reason == "CIRCUIT_OPEN"
        operation.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_service_gets_its_own_breaker(self, clock):
        gateway = make_gateway(clock)
        await gateway.execute_with_retry(AsyncMock(return_value=1), "custom_service")

        assert "custom_service" in gateway.breaker_status()


class TestGenerateSuggestions:

    @pytest.mark.asyncio
    async def test_success_builds_response(self, clock, context):
        gateway = make_gateway(clock)
        generator = AsyncMock(return_value=[suggestion(confidence=0.9), suggestion(confidence=0.7)])

        response = await gateway.generate_suggestions(generator, context)

        assert not response.fallback_used
        assert response.confidence == pytest.approx(0.8)
        assert len(response.suggestions) == 2

    @pytest.mark.asyncio
    async def test_repeated_failures_open_the_circuit(self, clock, context):
        gateway = make_gateway(clock, max_retries=0)
        generator = AsyncMock(side_effect=ServiceUnavailableError("down"))

        responses = [await gateway.generate_suggestions(generator, context) for _ in range(6)]

        assert generator.await_count == 5
        assert gateway.breaker(SERVICE).state == CircuitState.OPEN
        assert all(r.fallback_used and r.strategy == "template" for r in responses)
        assert responses[0].error == "AI_SERVICE_UNAVAILABLE: down"
        assert "OPEN" in responses[-1].error

    @pytest.mark.asyncio
    async def test_half_open_recovery(self, clock, context):
        gateway = make_gateway(clock)
        gateway.breaker(SERVICE).force_open()
        clock.advance(30)
        generator = AsyncMock(return_value=[suggestion()])

        for _ in range(3):
            response = await gateway.generate_suggestions(generator, context)
            assert not response.fallback_used

        assert gateway.breaker(SERVICE).state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_success_is_cached_and_served_on_failure(self, clock, context):
        cache = SuggestionCache(clock=clock)
        gateway = make_gateway(clock, cache=cache)
        key = "suggestions:*:product"

        await gateway.generate_suggestions(AsyncMock(return_value=[suggestion()]), context, cache_key=key)
        assert cache.get(key, context).value[0].command == "Add this to my cart"

        failing = AsyncMock(side_effect=PermissionDeniedError("nope"))
        response = await gateway.generate_suggestions(failing, context, cache_key=key)

        assert response.fallback_used
        assert response.strategy == "cache"
        assert response.cache_hit
        assert response.confidence == pytest.approx(0.9)

    @pytest.mark.asyncio
    async def test_cache_fallback_uses_latest_in_context_for_same_user(self, clock, context):
        cache = SuggestionCache(clock=clock)
        cache.set("suggestions:u1:product", [suggestion()], context, "u1")
        gateway = make_gateway(clock, cache=cache)

        response = await gateway.generate_suggestions(
            AsyncMock(side_effect=PermissionDeniedError("nope")), context,
            cache_key="other-key", user_id="u1",
        )

        assert response.strategy == "cache"
        assert [s.command for s in response.suggestions] == ["Add this to my cart"]

    @pytest.mark.asyncio
    async def test_cache_fallback_never_serves_another_users_entries(self, clock, context):
        cache = SuggestionCache(clock=clock)
        cache.set("suggestions:u1:product", [suggestion("Reorder my usual")], context, "u1")
        gateway = make_gateway(clock, cache=cache)
        failing = AsyncMock(side_effect=PermissionDeniedError("nope"))

        other_user = await gateway.generate_suggestions(
            failing, context, cache_key="suggestions:u2:product", user_id="u2"
        )
        anonymous = await gateway.generate_suggestions(
            failing, context, cache_key="suggestions:*:product"
        )

        for response in (other_user, anonymous):
            assert response.strategy == "template"
            assert "Reorder my usual" not in [s.command for s in response.suggestions]

    @pytest.mark.asyncio
    async def test_cache_fallback_shares_anonymous_entries(self, clock, context):
        cache = SuggestionCache(clock=clock)
        cache.set("suggestions:*:product", [suggestion()], context)
        gateway = make_gateway(clock, cache=cache)

        response = await gateway.generate_suggestions(
            AsyncMock(side_effect=PermissionDeniedError("nope")), context,
            cache_key="suggestions:u2:product", user_id="u2",
        )

        assert response.strategy == "cache"

    @pytest.mark.asyncio
    async def test_cache_fallback_does_not_count_as_a_request(self, clock, context):
        cache = SuggestionCache(clock=clock)
        gateway = make_gateway(clock, cache=cache, max_retries=0)

        await gateway.generate_suggestions(
            AsyncMock(side_effect=ServiceUnavailableError("down")), context,
            cache_key="suggestions:*:product",
        )

        assert cache.stats()["total_requests"] == 0

    @pytest.mark.asyncio
    async def test_failing_template_falls_through_to_minimal(self, clock, context):
        gateway = make_gateway(clock, max_retries=0)
        gateway.fallbacks.replace_handler(FallbackType.TEMPLATE, Mock(side_effect=RuntimeError("broken")))

        response = await gateway.generate_suggestions(
            AsyncMock(side_effect=ServiceUnavailableError("down")), context
        )

        assert response.strategy == "minimal"
        assert response.confidence == 0.5
        assert response.error == "Service unavailable: down"
        assert [s.command for s in response.suggestions] == ["Help me with this page"]

    @pytest.mark.asyncio
    async def test_all_fallbacks_failing_returns_empty_response(self, clock, context):
        gateway = make_gateway(clock, max_retries=0)
        for fallback_type in FallbackType:
            gateway.fallbacks.replace_handler(fallback_type, Mock(side_effect=RuntimeError("broken")))

        response = await gateway.generate_suggestions(
            AsyncMock(side_effect=ServiceUnavailableError("down")), context
        )

        assert response.suggestions == []
        assert response.fallback_used
        assert response.error.startswith("All fallback strategies failed")

    @pytest.mark.asyncio
    async def test_disabled_fallback_is_skipped(self, clock, context):
        gateway = make_gateway(clock, max_retries=0)
        gateway.set_fallback_enabled("template", False)

        response = await gateway.generate_suggestions(
            AsyncMock(side_effect=ServiceUnavailableError("down")), context
        )

        assert response.strategy == "minimal"


class TestMaintenanceMode:

    @pytest.mark.asyncio
    async def test_maintenance_refuses_calls(self, clock, context):
        gateway = make_gateway(clock)
        gateway.enter_maintenance_mode(1000)
        operation = AsyncMock()

        with pytest.raises(CircuitOpenError) as excinfo:
            await gateway.execute_with_retry(operation, SERVICE)
        response = await gateway.generate_suggestions(operation, context)

        assert excinfo.value.reason == "MAINTENANCE_MODE"
        operation.assert_not_called()
        assert response.strategy == "template"
        assert "maintenance" in response.error
        assert not gateway.is_service_available(SERVICE)

    def test_maintenance_expires_and_resets_breakers(self, clock):
        gateway = make_gateway(clock)
        gateway.breaker(SERVICE).force_open()
        gateway.enter_maintenance_mode(1000)

        clock.advance(0.5)
        assert gateway.in_maintenance

        clock.advance(0.5)
        assert not gateway.in_maintenance
        assert gateway.tick()[SERVICE] == "closed"
        assert gateway.is_service_available(SERVICE)

    def test_manual_exit(self, clock):
        gateway = make_gateway(clock)
        gateway.enter_maintenance_mode()
        gateway.exit_maintenance_mode()
        assert not gateway.in_maintenance


class TestHandleError:

    def test_repeated_errors_open_the_breaker(self, clock, context):
        gateway = make_gateway(clock)
        listener = Mock()
        gateway.on_state_change(listener)

        for _ in range(5):
            response = gateway.handle_error(RuntimeError("service exploded"), context)
            assert response.fallback_used

        listener.assert_called_once_with(SERVICE, CircuitState.CLOSED, CircuitState.OPEN)

        response = gateway.handle_error(RuntimeError("service exploded"), context)
        assert "OPEN" in response.error
        assert gateway.error_stats()["total_errors"] == 6

    def test_recent_errors_are_bounded(self, clock, context):
        gateway = make_gateway(clock, recent_error_limit=3)
        for i in range(5):
            gateway.handle_error(RuntimeError(f"failure {i}"), context, "context_discovery")

        stats = gateway.error_stats()
        assert stats["total_errors"] == 5
        assert [e["message"] for e in stats["recent_errors"]] == ["failure 2", "failure 3", "failure 4"]
        assert stats["errors_by_service"] == {"context_discovery": 5}

        gateway.clear_error_stats()
        assert gateway.error_stats()["total_errors"] == 0

    def test_completion_outage_returns_basic_completions(self, clock):
        gateway = make_gateway(clock)

        result = gateway.handle_completion_error(OperationTimeoutError("slow"), "help")

        assert [m.text for m in result.matches] == ["Help me with this page"]
        assert result.fallback_used
        assert gateway.error_stats()["errors_by_service"] == {"auto_completion": 1}

    def test_completion_error_without_outage_is_empty(self, clock):
        gateway = make_gateway(clock)

        result = gateway.handle_completion_error(PermissionDeniedError("nope"), "help")

        assert result.matches == []
        assert result.confidence == 0.0
