"""
Tests for smart-account address prediction.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from vaultflow.core.quotes.errors import AccountUnavailable, ErrorCategory
from vaultflow.providers.onebalance import OneBalanceApiError
from vaultflow.services.account import PredictedAccountResolver

SIGNER = "0x1111111111111111111111111111111111111111"
PREDICTED = "0x2222222222222222222222222222222222222222"


def _provider(result=PREDICTED, error=None):
    provider = MagicMock()
    provider.predict_address = AsyncMock(return_value=result, side_effect=error)
    return provider


@pytest.mark.asyncio
async def test_account_uses_signer_as_session_and_admin():
    resolver = PredictedAccountResolver(_provider(), SIGNER)

    account = await resolver.get_account()

    assert account.account_address == PREDICTED
    assert account.session_address == SIGNER
    assert account.admin_address == SIGNER
    assert resolver.predicted_address == PREDICTED


@pytest.mark.asyncio
async def test_prediction_is_cached():
    provider = _provider()
    resolver = PredictedAccountResolver(provider, SIGNER)

    await asyncio.gather(resolver.get_account(), resolver.get_account())
    await resolver.get_account()

    provider.predict_address.assert_awaited_once_with(SIGNER, SIGNER)


@pytest.mark.asyncio
async def test_clear_forces_new_prediction():
    provider = _provider()
    resolver = PredictedAccountResolver(provider, SIGNER)

    await resolver.get_account()
    resolver.clear()
    await resolver.get_account()

    assert provider.predict_address.await_count == 2


@pytest.mark.asyncio
async def test_prediction_failure_is_account_unavailable():
    resolver = PredictedAccountResolver(_provider(error=OneBalanceApiError("down", 503)), SIGNER)

    with pytest.raises(AccountUnavailable) as exc_info:
        await resolver.get_account()

    assert exc_info.value.category == ErrorCategory.INPUT
    assert resolver.predicted_address is None


@pytest.mark.asyncio
async def test_empty_prediction_is_account_unavailable():
    with pytest.raises(AccountUnavailable, match="Failed to get account address"):
        await PredictedAccountResolver(_provider(result=None), SIGNER).get_account()
