"""Tests for the resolution retry decorator."""

from __future__ import annotations

import pytest

from helpdesk.domain.errors import ThreadResolutionError
from helpdesk.resilience.retry import resilient_resolution


class TestResilientResolution:
    def test_succeeds_after_transient_failures(self) -> None:
        calls: list[int] = []

        @resilient_resolution("test", max_attempts=3, wait_initial=0)
        def flaky() -> str:
            calls.append(1)
            if len(calls) < 3:
                raise ThreadResolutionError("<a@x>", "database is locked")
            return "T1"

        assert flaky() == "T1"
        assert len(calls) == 3

    def test_reraises_last_error(self) -> None:
        calls: list[int] = []

        @resilient_resolution("test", max_attempts=2, wait_initial=0)
        def always_fails() -> str:
            calls.append(1)
            raise ThreadResolutionError("<a@x>", f"attempt {len(calls)}")

        with pytest.raises(ThreadResolutionError, match="attempt 2"):
            always_fails()
        assert len(calls) == 2

    def test_other_exceptions_are_not_retried(self) -> None:
        calls: list[int] = []

        @resilient_resolution("test", max_attempts=3, wait_initial=0)
        def broken() -> str:
            calls.append(1)
            raise ValueError("bug")

        with pytest.raises(ValueError):
            broken()
        assert len(calls) == 1

    @pytest.mark.anyio()
    async def test_async_functions(self) -> None:
        calls: list[int] = []

        @resilient_resolution("test", max_attempts=2, wait_initial=0)
        async def flaky() -> str:
            calls.append(1)
            if len(calls) < 2:
                raise ThreadResolutionError(None, "database is locked")
            return "T1"

        assert await flaky() == "T1"
        assert len(calls) == 2
