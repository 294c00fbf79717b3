"""Tests for the per-user sliding-window rate limiter."""
import pytest
from fastapi import HTTPException

from utils.rate_limiter import RATE_LIMITS, check_user_rate_limit, clear_rate_limits


@pytest.fixture(autouse=True)
def _reset():
    clear_rate_limits()
    yield
    clear_rate_limits()


class TestCheckUserRateLimit:

    def test_allows_up_to_limit(self):
        for _ in range(RATE_LIMITS["payslip_generate"]["limit"]):
            check_user_rate_limit(1, "payslip_generate")

    def test_rejects_over_limit_with_retry_after(self):
        for _ in range(RATE_LIMITS["payslip_generate"]["limit"]):
            check_user_rate_limit(1, "payslip_generate")

        with pytest.raises(HTTPException) as exc_info:
            check_user_rate_limit(1, "payslip_generate")

        assert exc_info.value.status_code == 429
        assert "Retry-After" in exc_info.value.headers

    def test_limits_are_per_user_and_operation(self):
        for _ in range(RATE_LIMITS["payslip_generate"]["limit"]):
            check_user_rate_limit(1, "payslip_generate")

        check_user_rate_limit(2, "payslip_generate")
        check_user_rate_limit(1, "verify_batch")
