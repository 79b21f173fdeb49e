"""Tests for admission control."""
from unittest.mock import Mock

from ucx_sync.governor import GovernorAction, ResourceGovernor

MB = 1024 * 1024


class TestAdmission:
    def test_global_ceiling(self):
        governor = ResourceGovernor(max_active=28)
        assert governor.can_admit_more(27) is True
        assert governor.can_admit_more(28) is False

    def test_refuses_when_estimate_plus_margin_exceeds_free(self):
        governor = ResourceGovernor(
            max_active=2, safety_margin=100 * MB, free_space=lambda path: 150 * MB,
        )
        assert governor.can_start("/dest", 60 * MB) is False
        assert governor.can_start("/dest", 50 * MB) is True

    def test_margin_alone_gates_unknown_size(self):
        governor = ResourceGovernor(
            max_active=2, safety_margin=100 * MB, free_space=lambda path: 99 * MB,
        )
        assert governor.can_start("/dest") is False

    def test_unknown_free_space_admits(self):
        governor = ResourceGovernor(max_active=2, free_space=lambda path: None)
        assert governor.can_start("/dest", 10 ** 15) is True

    def test_space_check_receives_destination(self):
        free_space = Mock(return_value=10 ** 12)
        ResourceGovernor(max_active=1, free_space=free_space).can_start("/data/Test1", 1)
        free_space.assert_called_once_with("/data/Test1")


class TestDuringTransfer:
    def test_aborts_below_floor(self):
        governor = ResourceGovernor(
            max_active=1, min_free=50 * MB, free_space=lambda path: 49 * MB,
        )
        assert governor.check_during_transfer("/dest") is GovernorAction.ABORT_LOW_SPACE

    def test_continues_at_floor(self):
        governor = ResourceGovernor(
            max_active=1, min_free=50 * MB, free_space=lambda path: 50 * MB,
        )
        assert governor.check_during_transfer("/dest") is GovernorAction.CONTINUE

    def test_unknown_free_space_continues(self):
        governor = ResourceGovernor(max_active=1, free_space=lambda path: None)
        assert governor.check_during_transfer("/dest") is GovernorAction.CONTINUE
