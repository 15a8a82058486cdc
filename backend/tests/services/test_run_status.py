"""Tests for effective status derivation and the run status state machine."""

import pytest

from app.models.effectiveness_run import RUN_STATUS_ORDER, RunStatus
from app.services.run_status import (
    EffectiveStatus,
    derive_effective_status,
    insights_available,
    should_continue_polling,
)


class TestDeriveEffectiveStatus:
    """Raw status plus client score count -> displayed status."""

    @pytest.mark.parametrize(
        "raw",
        [s.value for s in RunStatus if not s.is_terminal],
    )
    def test_in_progress_statuses_are_running(self, raw: str) -> None:
        assert derive_effective_status(raw, 0) is EffectiveStatus.RUNNING
        assert derive_effective_status(raw, 12) is EffectiveStatus.RUNNING

    def test_legacy_analyzing_alias_is_running(self) -> None:
        assert derive_effective_status("analyzing", 3) is EffectiveStatus.RUNNING

    def test_completed(self) -> None:
        assert derive_effective_status("completed", 8) is EffectiveStatus.COMPLETED

    def test_failed_with_scores_is_partial(self) -> None:
        assert derive_effective_status("failed", 1) is EffectiveStatus.PARTIAL

    def test_failed_without_scores_is_failed(self) -> None:
        assert derive_effective_status("failed", 0) is EffectiveStatus.FAILED

    def test_unknown_status_is_running(self) -> None:
        assert derive_effective_status("queued_somewhere_else", 0) is EffectiveStatus.RUNNING

    def test_accepts_enum_members(self) -> None:
        assert derive_effective_status(RunStatus.FAILED, 2) is EffectiveStatus.PARTIAL


class TestPollingAndInsights:
    """Helpers built on the effective status."""

    def test_polling_continues_only_while_running(self) -> None:
        assert should_continue_polling("tier2_analyzing", 4) is True
        assert should_continue_polling("completed", 8) is False
        assert should_continue_polling("failed", 0) is False

    def test_insights_for_completed_and_partial_only(self) -> None:
        assert insights_available("completed", 8) is True
        assert insights_available("failed", 3) is True
        assert insights_available("failed", 0) is False
        assert insights_available("scraping", 0) is False


class TestRunStatusTransitions:
    """Forward-only transitions; failed reachable from any live status."""

    def test_forward_moves_allowed(self) -> None:
        for earlier, later in zip(RUN_STATUS_ORDER, RUN_STATUS_ORDER[1:]):
            assert earlier.can_transition_to(later) is True

    def test_skipping_ahead_allowed(self) -> None:
        assert RunStatus.PENDING.can_transition_to(RunStatus.TIER3_ANALYZING) is True

    def test_regression_rejected(self) -> None:
        assert RunStatus.TIER2_ANALYZING.can_transition_to(RunStatus.SCRAPING) is False
        assert RunStatus.SCRAPING.can_transition_to(RunStatus.SCRAPING) is False

    def test_failed_reachable_from_live_statuses(self) -> None:
        for status in RunStatus:
            if not status.is_terminal:
                assert status.can_transition_to(RunStatus.FAILED) is True

    def test_terminal_statuses_are_final(self) -> None:
        for terminal in (RunStatus.COMPLETED, RunStatus.FAILED):
            assert terminal.is_terminal is True
            for status in RunStatus:
                assert terminal.can_transition_to(status) is False
