"""
Unit tests for Verification Code Issuer.

Tests code generation, two-tier rate limiting and SMS failure handling.
"""

import re
from dataclasses import replace
from unittest.mock import patch

import pytest

from phone_accounts.services import VerificationCodeIssuer, generate_code
from phone_accounts.errors import InternalError, NotFoundError, RateLimitError, ValidationError


@pytest.fixture
def issuer(services_context) -> VerificationCodeIssuer:
    return services_context.issuer


def _issue_times(issuer, clock, account, times):
    """Issue `times` codes, each just after the short wait."""
    for _ in range(times):
        issuer.issue(account.account_id)
        clock.advance(seconds=61)


class TestGenerateCode:
    """Tests for code generation."""

    @pytest.mark.unit
    def test_default_length(self):
        assert re.fullmatch(r"[1-9]{4}", generate_code())

    @pytest.mark.unit
    def test_custom_length_never_contains_zero(self):
        for _ in range(50):
            code = generate_code(8)
            assert len(code) == 8
            assert "0" not in code


class TestIssue:
    """Tests for issuing codes."""

    @pytest.mark.unit
    def test_issue_stores_and_sends(self, issuer, account_store, sample_account, sms_sender, clock, test_config):
        """Test that a new code is stored and sent to the account phone."""
        issuer.issue(sample_account.account_id)

        pending = account_store.get_by_id(sample_account.account_id).verification
        assert sms_sender.sent == [(test_config["test_phone"], pending.code)]
        assert re.fullmatch(r"[1-9]{4}", pending.code)
        assert pending.target_phone == test_config["test_phone"]
        assert pending.retry_count == 1
        assert pending.last_issued_at == clock.now

    @pytest.mark.unit
    def test_issue_to_explicit_phone(self, issuer, account_store, sample_account, sms_sender, test_config):
        issuer.issue(sample_account.account_id, test_config["other_phone"])

        assert sms_sender.sent[0][0] == test_config["other_phone"]
        assert account_store.get_by_id(sample_account.account_id).verification.target_phone == test_config["other_phone"]

    @pytest.mark.unit
    def test_code_length_from_config(self, services_context, account_store, sample_account, sms_sender, clock):
        config = replace(services_context.config.accounts, verification_code_length=6)
        issuer = VerificationCodeIssuer(account_store, sms_sender, config, clock=clock)

        issuer.issue(sample_account.account_id)

        assert re.fullmatch(r"[1-9]{6}", sms_sender.last_code)

    @pytest.mark.unit
    def test_unknown_account(self, issuer):
        with pytest.raises(NotFoundError):
            issuer.issue("missing-account")

    @pytest.mark.unit
    def test_no_phone_available(self, issuer, account_store):
        """Test that an account without phone and no explicit phone fails."""
        account = account_store.insert(account_store.new_account(""))

        with pytest.raises(ValidationError, match="No such phone"):
            issuer.issue(account.account_id)

    @pytest.mark.unit
    def test_new_code_replaces_old(self, issuer, account_store, sample_account, sms_sender, clock):
        issuer.issue(sample_account.account_id)
        first = sms_sender.last_code
        clock.advance(seconds=61)

        issuer.issue(sample_account.account_id)

        pending = account_store.get_by_id(sample_account.account_id).verification
        assert pending.code == sms_sender.last_code
        assert pending.retry_count == 2
        assert len(sms_sender.sent) == 2
        assert sms_sender.sent[0][1] == first


class TestRateLimit:
    """Tests for the two-tier rate limit."""

    @pytest.mark.unit
    def test_short_wait(self, issuer, account_store, sample_account, sms_sender):
        """Test that a second request inside the wait time is refused."""
        issuer.issue(sample_account.account_id)
        first = account_store.get_by_id(sample_account.account_id).verification

        with pytest.raises(RateLimitError, match="try again in 60 seconds") as exc_info:
            issuer.issue(sample_account.account_id)

        assert exc_info.value.unit == "seconds"
        assert exc_info.value.wait == 60
        assert exc_info.value.retry_after == 60
        # The first code is untouched and was the only one sent
        assert account_store.get_by_id(sample_account.account_id).verification == first
        assert len(sms_sender.sent) == 1

    @pytest.mark.unit
    def test_remaining_seconds_round_up(self, issuer, sample_account, clock):
        issuer.issue(sample_account.account_id)
        clock.advance(seconds=59.5)

        with pytest.raises(RateLimitError) as exc_info:
            issuer.issue(sample_account.account_id)

        assert exc_info.value.wait == 1

    @pytest.mark.unit
    def test_allowed_exactly_at_wait_time(self, issuer, sample_account, clock, sms_sender):
        issuer.issue(sample_account.account_id)
        clock.advance(seconds=60)

        issuer.issue(sample_account.account_id)

        assert len(sms_sender.sent) == 2

    @pytest.mark.unit
    def test_long_cooldown_after_max_retries(self, issuer, sample_account, clock):
        """Test that more than max_retries issuances trigger the long wait."""
        _issue_times(issuer, clock, sample_account, 4)  # retry_count is now 4 > 3

        with pytest.raises(RateLimitError, match="Too many retries, try again in 59 minutes") as exc_info:
            issuer.issue(sample_account.account_id)

        assert exc_info.value.unit == "minutes"
        assert exc_info.value.wait == 59
        assert exc_info.value.retry_after == 59 * 60

    @pytest.mark.unit
    def test_max_retries_not_yet_exceeded(self, issuer, sample_account, clock, sms_sender):
        _issue_times(issuer, clock, sample_account, 3)  # retry_count == max, not above

        issuer.issue(sample_account.account_id)

        assert len(sms_sender.sent) == 4

    @pytest.mark.unit
    def test_retry_count_never_resets_by_default(self, issuer, account_store, sample_account, clock):
        """Test that once crossed, the long wait applies to every later request."""
        _issue_times(issuer, clock, sample_account, 4)
        clock.advance(minutes=60)

        issuer.issue(sample_account.account_id)
        assert account_store.get_by_id(sample_account.account_id).verification.retry_count == 5

        clock.advance(seconds=61)
        with pytest.raises(RateLimitError) as exc_info:
            issuer.issue(sample_account.account_id)
        assert exc_info.value.unit == "minutes"

    @pytest.mark.unit
    def test_retry_count_resets_when_configured(self, services_context, account_store, sample_account, sms_sender, clock):
        config = replace(services_context.config.accounts, reset_retries_after_cooldown=True)
        issuer = VerificationCodeIssuer(account_store, sms_sender, config, clock=clock)
        _issue_times(issuer, clock, sample_account, 4)
        clock.advance(minutes=60)

        issuer.issue(sample_account.account_id)

        assert account_store.get_by_id(sample_account.account_id).verification.retry_count == 1
        clock.advance(seconds=61)
        issuer.issue(sample_account.account_id)
        assert account_store.get_by_id(sample_account.account_id).verification.retry_count == 2

    @pytest.mark.unit
    def test_concurrent_issue_loses_race(self, issuer, account_store, sample_account):
        """Test that an issuance based on a stale read is refused."""
        stale = account_store.get_by_id(sample_account.account_id)
        issuer.issue(sample_account.account_id)
        winner = account_store.get_by_id(sample_account.account_id).verification

        with patch.object(account_store, "get_by_id", return_value=stale):
            with pytest.raises(RateLimitError):
                issuer.issue(sample_account.account_id)

        assert account_store.get_by_id(sample_account.account_id).verification == winner


class TestSmsFailure:
    """Tests for delivery failures."""

    @pytest.mark.unit
    def test_failed_delivery_keeps_code(self, issuer, account_store, sample_account, sms_sender):
        """Test that a refused SMS raises but does not roll back the code."""
        sms_sender.fail = True

        with pytest.raises(InternalError, match="Delivery refused"):
            issuer.issue(sample_account.account_id)

        pending = account_store.get_by_id(sample_account.account_id).verification
        assert pending is not None
        assert pending.retry_count == 1

        # Rate limit accounting still applies
        sms_sender.fail = False
        with pytest.raises(RateLimitError):
            issuer.issue(sample_account.account_id)

    @pytest.mark.unit
    def test_sender_exception(self, issuer, account_store, sample_account, sms_sender):
        sms_sender.raise_error = True

        with pytest.raises(InternalError, match="unreachable"):
            issuer.issue(sample_account.account_id)

        assert account_store.get_by_id(sample_account.account_id).verification is not None
