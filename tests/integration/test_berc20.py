"""Integration tests for BErc20 — the full wrapper → avatar → market path."""
from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from bprotocol.addresses import ZERO_ADDRESS
from bprotocol.errors import (
    AssetTransferError,
    AuthorizationError,
    BProtocolError,
    IdentityInvariantError,
    InvalidAmountError,
    MarketOperationFailed,
    SelfTransferError,
)
from bprotocol.market import MarketError
from bprotocol.services import BProtocol, BProtocolEngine
from bprotocol.tokens import BErc20

E18 = 10**18
ZRX_SHARES = 5 * 10**12  # 1000 ZRX at the initial rate


@pytest.fixture()
def bzrx(bprotocol: BProtocol) -> BErc20:
    return bprotocol.btokens["cZRX"]


@pytest.fixture()
def bbat(bprotocol: BProtocol) -> BErc20:
    return bprotocol.btokens["cBAT"]


async def _mint(btoken: BErc20, user: str, amount: int) -> int:
    btoken.underlying.approve(user, btoken.address, amount)
    return await btoken.mint(user, amount)


async def _bat_market(bzrx: BErc20, bbat: BErc20, user1: str, user2: str) -> None:
    """user1 supplies 1000 ZRX as collateral, user2 supplies 1000 BAT."""
    await _mint(bzrx, user1, 1000 * E18)
    await _mint(bbat, user2, 1000 * E18)


async def _state(bprotocol: BProtocol, *users: str) -> dict:
    """Every balance, share count and debt the given users can observe."""
    state: dict = {"avatars": len(bprotocol.registry)}
    for symbol, btoken in bprotocol.btokens.items():
        state[symbol] = (
            await btoken.total_supply(),
            await btoken.market.get_cash(),
            [await btoken.balance_of(user) for user in users],
            [await btoken.borrow_balance_current(user) for user in users],
        )
    for asset, token in bprotocol.compound.tokens.items():
        state[asset] = [token.balance_of(user) for user in users]
    state["ETH"] = [bprotocol.compound.native.balance_of(user) for user in users]
    return state


class TestMint:
    @pytest.mark.asyncio
    async def test_mint_creates_avatar(
        self, funded: BProtocolEngine, bzrx: BErc20, user1: str
    ) -> None:
        minted = await _mint(bzrx, user1, 1000 * E18)
        registry = funded.bprotocol.registry
        avatar = registry.avatar_of(user1)

        assert minted == ZRX_SHARES
        assert avatar != ZERO_ADDRESS
        assert await bzrx.balance_of(user1) == ZRX_SHARES
        assert await bzrx.market.balance_of(avatar) == ZRX_SHARES
        assert await bzrx.balance_of_underlying(user1) == 1000 * E18
        assert await bzrx.total_supply() == ZRX_SHARES
        assert bzrx.underlying.balance_of(user1) == 0

    @pytest.mark.asyncio
    async def test_mint_without_allowance(
        self, funded: BProtocolEngine, bzrx: BErc20, user1: str
    ) -> None:
        with pytest.raises(AssetTransferError):
            await bzrx.mint(user1, E18)
        # The avatar created for the failed call is rolled back with it.
        assert funded.bprotocol.registry.avatar_of(user1) == ZERO_ADDRESS
        assert bzrx.underlying.balance_of(user1) == 1000 * E18

    @pytest.mark.asyncio
    async def test_market_failure_refunds(
        self, funded: BProtocolEngine, bzrx: BErc20, user1: str
    ) -> None:
        with patch.object(bzrx.market, "mint", AsyncMock(return_value=MarketError.MATH_ERROR)):
            with pytest.raises(MarketOperationFailed, match="BToken: mint-failed") as exc:
                await _mint(bzrx, user1, 10 * E18)

        assert exc.value.code == MarketError.MATH_ERROR
        assert bzrx.underlying.balance_of(user1) == 1000 * E18
        assert funded.bprotocol.registry.avatar_of(user1) == ZERO_ADDRESS

    @pytest.mark.asyncio
    async def test_concurrent_first_mints_share_one_avatar(
        self, funded: BProtocolEngine, bzrx: BErc20, user1: str
    ) -> None:
        bzrx.underlying.approve(user1, bzrx.address, 1000 * E18)
        await asyncio.gather(bzrx.mint(user1, 400 * E18), bzrx.mint(user1, 600 * E18))

        assert len(funded.bprotocol.registry) == 1
        assert await bzrx.balance_of(user1) == ZRX_SHARES


    @pytest.mark.asyncio
    async def test_failed_mint_keeps_avatar_delegated_meanwhile(
        self, funded: BProtocolEngine, bzrx: BErc20, user1: str, user4: str, other: str
    ) -> None:
        registry = funded.bprotocol.registry

        async def slow_rejection(minter: str, amount: int) -> int:
            await asyncio.sleep(0.01)
            return MarketError.COMPTROLLER_REJECTION

        async def delegate_meanwhile() -> str:
            await asyncio.sleep(0)
            return registry.delegate_avatar(user4, other)

        with patch.object(bzrx.market, "mint", slow_rejection):
            failed, avatar4 = await asyncio.gather(
                _mint(bzrx, user1, E18), delegate_meanwhile(), return_exceptions=True
            )

        assert isinstance(failed, MarketOperationFailed)
        assert registry.avatar_of(user1) == ZERO_ADDRESS
        assert registry.avatar_of(user4) == avatar4
        assert registry.delegate_of(avatar4) == other
        assert bzrx.underlying.balance_of(user1) == 1000 * E18


class TestRedeem:
    @pytest.mark.asyncio
    async def test_round_trip_conserves_asset(
        self, funded: BProtocolEngine, bzrx: BErc20, user1: str
    ) -> None:
        await _mint(bzrx, user1, 1000 * E18)
        received = await bzrx.redeem(user1, ZRX_SHARES)

        assert received == 1000 * E18
        assert bzrx.underlying.balance_of(user1) == 1000 * E18
        assert await bzrx.balance_of(user1) == 0
        assert await bzrx.total_supply() == 0

    @pytest.mark.asyncio
    async def test_redeem_underlying(
        self, funded: BProtocolEngine, bzrx: BErc20, user1: str
    ) -> None:
        await _mint(bzrx, user1, 1000 * E18)
        received = await bzrx.redeem_underlying(user1, 400 * E18)

        assert received == 400 * E18
        assert bzrx.underlying.balance_of(user1) == 400 * E18
        assert await bzrx.balance_of(user1) == 3 * 10**12

    @pytest.mark.asyncio
    async def test_redeem_more_than_balance(
        self, funded: BProtocolEngine, bzrx: BErc20, user1: str
    ) -> None:
        await _mint(bzrx, user1, 1000 * E18)
        with pytest.raises(MarketOperationFailed, match="BToken: redeem-failed"):
            await bzrx.redeem(user1, ZRX_SHARES + 1)
        assert await bzrx.balance_of(user1) == ZRX_SHARES

    @pytest.mark.asyncio
    async def test_redeem_underlying_failure_message(
        self, funded: BProtocolEngine, bzrx: BErc20, user1: str
    ) -> None:
        await _mint(bzrx, user1, E18)
        with pytest.raises(MarketOperationFailed, match="BToken: redeemUnderlying-failed"):
            await bzrx.redeem_underlying(user1, 2000 * E18)


    @pytest.mark.asyncio
    async def test_negative_redeem_creates_no_shares(
        self, funded: BProtocolEngine, bzrx: BErc20, user1: str
    ) -> None:
        await _mint(bzrx, user1, 1000 * E18)
        with pytest.raises(InvalidAmountError):
            await bzrx.redeem(user1, -10**8)
        with pytest.raises(InvalidAmountError):
            await bzrx.redeem_underlying(user1, -E18)

        assert await bzrx.balance_of(user1) == ZRX_SHARES
        assert await bzrx.total_supply() == ZRX_SHARES
        assert bzrx.underlying.balance_of(user1) == 0


class TestBorrowRepay:
    @pytest.mark.asyncio
    async def test_bat_scenario(
        self, funded: BProtocolEngine, bzrx: BErc20, bbat: BErc20, user1: str, user2: str
    ) -> None:
        await _bat_market(bzrx, bbat, user1, user2)
        bat = bbat.underlying
        cash_before = await bbat.market.get_cash()

        assert await bbat.borrow(user1, 100 * E18) == 100 * E18
        assert bat.balance_of(user1) == 100 * E18
        assert await bbat.borrow_balance_current(user1) == 100 * E18
        assert await bbat.market.get_cash() == cash_before - 100 * E18

        bat.approve(user1, bbat.address, E18)
        assert await bbat.repay_borrow(user1, E18) == E18

        assert await bbat.borrow_balance_current(user1) == 99 * E18
        assert bat.balance_of(user1) == 99 * E18
        assert await bbat.market.get_cash() == cash_before - 99 * E18
        assert await bbat.exchange_rate_current() == 2 * 10**26

    @pytest.mark.asyncio
    async def test_full_repay_zeroes_debt(
        self, funded: BProtocolEngine, bzrx: BErc20, bbat: BErc20, user1: str, user2: str
    ) -> None:
        await _bat_market(bzrx, bbat, user1, user2)
        await bbat.borrow(user1, 100 * E18)
        bbat.underlying.approve(user1, bbat.address, 100 * E18)
        await bbat.repay_borrow(user1, 100 * E18)

        assert await bbat.borrow_balance_current(user1) == 0
        assert await bbat.market.get_cash() == 1000 * E18

    @pytest.mark.asyncio
    async def test_overpayment_is_capped(
        self, funded: BProtocolEngine, bzrx: BErc20, bbat: BErc20, user1: str, user2: str
    ) -> None:
        await _bat_market(bzrx, bbat, user1, user2)
        await bbat.borrow(user1, 100 * E18)
        funded.fund(user1, "BAT", 50 * E18)
        bbat.underlying.approve(user1, bbat.address, 150 * E18)

        repaid = await bbat.repay_borrow(user1, 150 * E18)

        assert repaid == 100 * E18
        assert await bbat.borrow_balance_current(user1) == 0
        assert bbat.underlying.balance_of(user1) == 50 * E18
        avatar = funded.bprotocol.registry.avatar_of(user1)
        assert bbat.underlying.balance_of(avatar) == 0

    @pytest.mark.asyncio
    async def test_borrow_beyond_collateral(
        self, funded: BProtocolEngine, bzrx: BErc20, bbat: BErc20, user1: str, user2: str
    ) -> None:
        await _bat_market(bzrx, bbat, user1, user2)
        with pytest.raises(MarketOperationFailed, match="BToken: borrow-failed") as exc:
            await bbat.borrow(user1, 600 * E18)

        assert exc.value.code == MarketError.COMPTROLLER_REJECTION
        assert await bbat.borrow_balance_current(user1) == 0
        assert bbat.underlying.balance_of(user1) == 0

    @pytest.mark.asyncio
    async def test_borrow_without_collateral_rolls_back_avatar(
        self, funded: BProtocolEngine, bzrx: BErc20, bbat: BErc20,
        user1: str, user2: str, user4: str,
    ) -> None:
        await _bat_market(bzrx, bbat, user1, user2)
        with pytest.raises(MarketOperationFailed):
            await bbat.borrow(user4, E18)
        assert funded.bprotocol.registry.avatar_of(user4) == ZERO_ADDRESS

    @pytest.mark.asyncio
    async def test_repay_without_avatar_debt(
        self, funded: BProtocolEngine, bbat: BErc20, user2: str
    ) -> None:
        bbat.underlying.approve(user2, bbat.address, E18)
        assert await bbat.repay_borrow(user2, E18) == 0
        assert bbat.underlying.balance_of(user2) == 1000 * E18

    @pytest.mark.asyncio
    async def test_queries_without_avatar(self, bbat: BErc20, other: str) -> None:
        assert await bbat.balance_of(other) == 0
        assert await bbat.balance_of_underlying(other) == 0
        assert await bbat.borrow_balance_current(other) == 0


class TestDelegation:
    @pytest.mark.asyncio
    async def test_delegatee_borrows_on_avatar(
        self, funded: BProtocolEngine, bzrx: BErc20, bbat: BErc20,
        user1: str, user2: str, user4: str,
    ) -> None:
        await _bat_market(bzrx, bbat, user1, user2)
        avatar = funded.bprotocol.registry.delegate_avatar(user1, user4)

        await bbat.borrow_on_avatar(user4, avatar, 10 * E18)

        # Proceeds go to the delegatee; the debt stays on the delegator's avatar.
        assert bbat.underlying.balance_of(user4) == 10 * E18
        assert await bbat.borrow_balance_current(user1) == 10 * E18
        assert funded.bprotocol.registry.avatar_of(user4) == ZERO_ADDRESS

    @pytest.mark.asyncio
    async def test_delegatee_mints_from_own_funds(
        self, funded: BProtocolEngine, bzrx: BErc20, user1: str, user4: str
    ) -> None:
        avatar = funded.bprotocol.registry.delegate_avatar(user1, user4)
        funded.fund(user4, "ZRX", 100 * E18)
        bzrx.underlying.approve(user4, bzrx.address, 100 * E18)

        await bzrx.mint_on_avatar(user4, avatar, 100 * E18)

        assert bzrx.underlying.balance_of(user4) == 0
        assert bzrx.underlying.balance_of(user1) == 1000 * E18
        assert await bzrx.balance_of(user1) == 5 * 10**11

    @pytest.mark.asyncio
    async def test_delegatee_repays_and_redeems(
        self, funded: BProtocolEngine, bzrx: BErc20, bbat: BErc20,
        user1: str, user2: str, user4: str,
    ) -> None:
        await _bat_market(bzrx, bbat, user1, user2)
        avatar = funded.bprotocol.registry.delegate_avatar(user1, user4)
        await bbat.borrow(user1, 10 * E18)
        funded.fund(user4, "BAT", 10 * E18)
        bbat.underlying.approve(user4, bbat.address, 10 * E18)

        await bbat.repay_borrow_on_avatar(user4, avatar, 10 * E18)
        received = await bzrx.redeem_underlying_on_avatar(user4, avatar, 100 * E18)
        await bzrx.redeem_on_avatar(user4, avatar, 10**12)

        assert await bbat.borrow_balance_current(user1) == 0
        assert received == 100 * E18
        assert bzrx.underlying.balance_of(user4) == 300 * E18
        assert await bzrx.balance_of(user1) == ZRX_SHARES - 15 * 10**11

    @pytest.mark.asyncio
    async def test_non_delegatee_rejected_without_side_effects(
        self, funded: BProtocolEngine, bzrx: BErc20, bbat: BErc20,
        user1: str, user2: str, other: str,
    ) -> None:
        await _bat_market(bzrx, bbat, user1, user2)
        avatar = funded.bprotocol.registry.avatar_of(user1)

        for call in (
            bbat.borrow_on_avatar(other, avatar, E18),
            bzrx.redeem_on_avatar(other, avatar, 1),
            bzrx.redeem_underlying_on_avatar(other, avatar, 1),
            bzrx.mint_on_avatar(other, avatar, 1),
            bbat.repay_borrow_on_avatar(other, avatar, 1),
            bzrx.transfer_on_avatar(other, avatar, user2, 1),
            bzrx.approve_on_avatar(other, avatar, other, 1),
            bzrx.transfer_from_on_avatar(other, avatar, user2, other, 1),
        ):
            with pytest.raises(AuthorizationError, match="BToken: delegatee-not-authorized"):
                await call

        assert await bzrx.balance_of(user1) == ZRX_SHARES
        assert await bbat.borrow_balance_current(user1) == 0
        assert funded.bprotocol.registry.avatar_of(other) == ZERO_ADDRESS

    @pytest.mark.asyncio
    async def test_replaced_delegate_loses_access(
        self, funded: BProtocolEngine, bzrx: BErc20, user1: str, user2: str, user4: str
    ) -> None:
        await _mint(bzrx, user1, 1000 * E18)
        registry = funded.bprotocol.registry
        avatar = registry.delegate_avatar(user1, user4)
        registry.delegate_avatar(user1, user2)

        with pytest.raises(AuthorizationError):
            await bzrx.redeem_on_avatar(user4, avatar, 1)
        assert await bzrx.redeem_on_avatar(user2, avatar, 10**12) == 200 * E18

    @pytest.mark.asyncio
    async def test_owner_may_use_on_avatar_path(
        self, funded: BProtocolEngine, bzrx: BErc20, user1: str
    ) -> None:
        await _mint(bzrx, user1, 1000 * E18)
        avatar = funded.bprotocol.registry.avatar_of(user1)
        assert await bzrx.redeem_on_avatar(user1, avatar, ZRX_SHARES) == 1000 * E18


class TestTransfers:
    @pytest.mark.asyncio
    async def test_transfer_creates_destination_avatar(
        self, funded: BProtocolEngine, bzrx: BErc20, user1: str, user2: str
    ) -> None:
        await _mint(bzrx, user1, 1000 * E18)
        assert await bzrx.transfer(user1, user2, 10**12) is True

        assert funded.bprotocol.registry.avatar_of(user2) != ZERO_ADDRESS
        assert await bzrx.balance_of(user2) == 10**12
        assert await bzrx.balance_of(user1) == ZRX_SHARES - 10**12

    @pytest.mark.asyncio
    async def test_transfer_to_avatar_rejected(
        self, funded: BProtocolEngine, bzrx: BErc20, user1: str, user2: str
    ) -> None:
        await _mint(bzrx, user1, 1000 * E18)
        avatar2 = funded.bprotocol.registry.new_avatar(user2)
        with pytest.raises(IdentityInvariantError):
            await bzrx.transfer(user1, avatar2, 1)
        assert await bzrx.balance_of(user1) == ZRX_SHARES

    @pytest.mark.asyncio
    async def test_avatar_cannot_act_as_caller(
        self, funded: BProtocolEngine, bzrx: BErc20, user1: str, user2: str
    ) -> None:
        await _mint(bzrx, user1, 1000 * E18)
        avatar1 = funded.bprotocol.registry.avatar_of(user1)
        with pytest.raises(IdentityInvariantError):
            await bzrx.transfer(avatar1, user2, 1)

    @pytest.mark.asyncio
    async def test_self_transfer_rejected(
        self, funded: BProtocolEngine, bzrx: BErc20, user1: str
    ) -> None:
        await _mint(bzrx, user1, 1000 * E18)
        with pytest.raises(SelfTransferError, match="BToken: transfer-failed"):
            await bzrx.transfer(user1, user1, 1)

    @pytest.mark.asyncio
    async def test_transfer_more_than_balance(
        self, funded: BProtocolEngine, bzrx: BErc20, user1: str, user2: str
    ) -> None:
        await _mint(bzrx, user1, 1000 * E18)
        with pytest.raises(MarketOperationFailed, match="BToken: transfer-failed"):
            await bzrx.transfer(user1, user2, ZRX_SHARES + 1)
        assert funded.bprotocol.registry.avatar_of(user2) == ZERO_ADDRESS

    @pytest.mark.asyncio
    async def test_approve_and_transfer_from(
        self, funded: BProtocolEngine, bzrx: BErc20, user1: str, user2: str, user3: str
    ) -> None:
        await _mint(bzrx, user1, 1000 * E18)
        assert await bzrx.approve(user1, user2, 2 * 10**12) is True
        assert await bzrx.allowance(user1, user2) == 2 * 10**12

        assert await bzrx.transfer_from(user2, user1, user3, 10**12) is True

        assert await bzrx.allowance(user1, user2) == 10**12
        assert await bzrx.balance_of(user3) == 10**12
        assert await bzrx.balance_of(user2) == 0

    @pytest.mark.asyncio
    async def test_transfer_from_over_allowance(
        self, funded: BProtocolEngine, bzrx: BErc20, user1: str, user2: str
    ) -> None:
        await _mint(bzrx, user1, 1000 * E18)
        await bzrx.approve(user1, user2, 10)
        with pytest.raises(MarketOperationFailed, match="BToken: transferFrom-failed") as exc:
            await bzrx.transfer_from(user2, user1, user2, 11)
        assert exc.value.code == MarketError.TOKEN_INSUFFICIENT_ALLOWANCE
        assert await bzrx.allowance(user1, user2) == 10

    @pytest.mark.asyncio
    async def test_transfer_from_same_src_and_dst(
        self, funded: BProtocolEngine, bzrx: BErc20, user1: str, user2: str
    ) -> None:
        await _mint(bzrx, user1, 1000 * E18)
        await bzrx.approve(user1, user2, 10)
        with pytest.raises(SelfTransferError, match="BToken: transferFrom-failed"):
            await bzrx.transfer_from(user2, user1, user1, 1)

    @pytest.mark.asyncio
    async def test_transfer_from_avatar_source_rejected(
        self, funded: BProtocolEngine, bzrx: BErc20, user1: str, user2: str
    ) -> None:
        await _mint(bzrx, user1, 1000 * E18)
        avatar1 = funded.bprotocol.registry.avatar_of(user1)
        with pytest.raises(IdentityInvariantError):
            await bzrx.transfer_from(user2, avatar1, user2, 1)
        with pytest.raises(IdentityInvariantError):
            await bzrx.transfer_from(user2, user1, avatar1, 1)

    @pytest.mark.asyncio
    async def test_self_approve_rejected(
        self, funded: BProtocolEngine, bzrx: BErc20, user1: str
    ) -> None:
        await _mint(bzrx, user1, 1000 * E18)
        with pytest.raises(SelfTransferError, match="BToken: approve-failed"):
            await bzrx.approve(user1, user1, 1)

    @pytest.mark.asyncio
    async def test_approve_avatar_rejected(
        self, funded: BProtocolEngine, bzrx: BErc20, user1: str, user2: str
    ) -> None:
        await _mint(bzrx, user1, 1000 * E18)
        avatar2 = funded.bprotocol.registry.new_avatar(user2)
        with pytest.raises(IdentityInvariantError):
            await bzrx.approve(user1, avatar2, 1)

    @pytest.mark.asyncio
    async def test_allowance_without_avatars(self, bzrx: BErc20, user1: str, user2: str) -> None:
        assert await bzrx.allowance(user1, user2) == 0

    @pytest.mark.asyncio
    async def test_delegatee_spends_delegators_allowance(
        self, funded: BProtocolEngine, bzrx: BErc20, user1: str, user2: str, user4: str
    ) -> None:
        await _mint(bzrx, user1, 1000 * E18)
        await bzrx.approve(user1, user2, 10**12)
        avatar2 = funded.bprotocol.registry.delegate_avatar(user2, user4)

        await bzrx.transfer_from_on_avatar(user4, avatar2, user1, user4, 10**12)

        assert await bzrx.balance_of(user4) == 10**12
        assert await bzrx.allowance(user1, user2) == 0

    @pytest.mark.asyncio
    async def test_negative_transfer_cannot_take_shares(
        self, funded: BProtocolEngine, bzrx: BErc20, user1: str, other: str
    ) -> None:
        await _mint(bzrx, user1, 1000 * E18)
        with pytest.raises(InvalidAmountError):
            await bzrx.transfer(other, user1, -ZRX_SHARES)

        assert await bzrx.balance_of(user1) == ZRX_SHARES
        assert await bzrx.balance_of(other) == 0
        assert funded.bprotocol.registry.avatar_of(other) == ZERO_ADDRESS

    @pytest.mark.asyncio
    async def test_negative_transfer_from_and_approve(
        self, funded: BProtocolEngine, bzrx: BErc20, user1: str, user2: str
    ) -> None:
        await _mint(bzrx, user1, 1000 * E18)
        await bzrx.approve(user1, user2, 10)
        with pytest.raises(InvalidAmountError):
            await bzrx.transfer_from(user2, user1, user2, -ZRX_SHARES)
        with pytest.raises(InvalidAmountError):
            await bzrx.approve(user1, user2, -1)

        assert await bzrx.allowance(user1, user2) == 10
        assert await bzrx.balance_of(user1) == ZRX_SHARES
        assert await bzrx.balance_of(user2) == 0


# (btoken, owner, delegatee, owner's avatar, counterparty, amount) -> wrapper call
INVALID_CALLS = {
    "mint": lambda t, o, d, a, p, n: t.mint(o, n),
    "mint_on_avatar": lambda t, o, d, a, p, n: t.mint_on_avatar(d, a, n),
    "redeem": lambda t, o, d, a, p, n: t.redeem(o, n),
    "redeem_on_avatar": lambda t, o, d, a, p, n: t.redeem_on_avatar(d, a, n),
    "redeem_underlying": lambda t, o, d, a, p, n: t.redeem_underlying(o, n),
    "redeem_underlying_on_avatar": (
        lambda t, o, d, a, p, n: t.redeem_underlying_on_avatar(d, a, n)
    ),
    "borrow": lambda t, o, d, a, p, n: t.borrow(o, n),
    "borrow_on_avatar": lambda t, o, d, a, p, n: t.borrow_on_avatar(d, a, n),
    "repay_borrow": lambda t, o, d, a, p, n: t.repay_borrow(o, n),
    "repay_borrow_on_avatar": lambda t, o, d, a, p, n: t.repay_borrow_on_avatar(d, a, n),
    "transfer": lambda t, o, d, a, p, n: t.transfer(o, p, n),
    "transfer_on_avatar": lambda t, o, d, a, p, n: t.transfer_on_avatar(d, a, p, n),
    "transfer_from": lambda t, o, d, a, p, n: t.transfer_from(o, p, o, n),
    "transfer_from_on_avatar": (
        lambda t, o, d, a, p, n: t.transfer_from_on_avatar(d, a, p, o, n)
    ),
    "approve": lambda t, o, d, a, p, n: t.approve(o, p, n),
    "approve_on_avatar": lambda t, o, d, a, p, n: t.approve_on_avatar(d, a, p, n),
}


class TestInvalidAmounts:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("operation", sorted(INVALID_CALLS))
    async def test_negative_amount_changes_nothing(
        self,
        funded: BProtocolEngine,
        bzrx: BErc20,
        bbat: BErc20,
        user1: str,
        user2: str,
        user4: str,
        operation: str,
    ) -> None:
        # user1 has ZRX collateral and BAT debt; user2 holds the BAT shares.
        await _bat_market(bzrx, bbat, user1, user2)
        await bbat.borrow(user1, 100 * E18)
        await bbat.approve(user2, user1, 10**12)
        avatar = funded.bprotocol.registry.delegate_avatar(user1, user4)
        before = await _state(funded.bprotocol, user1, user2, user4)

        call = INVALID_CALLS[operation]
        with pytest.raises(InvalidAmountError, match="BToken: invalid-amount"):
            await call(bbat, user1, user4, avatar, user2, -10**12)

        assert await _state(funded.bprotocol, user1, user2, user4) == before
        assert await bbat.allowance(user2, user1) == 10**12

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", [1.5, "10", None, True])
    async def test_non_integer_amount_rejected(
        self, funded: BProtocolEngine, bzrx: BErc20, user1: str, amount
    ) -> None:
        with pytest.raises(InvalidAmountError):
            await bzrx.mint(user1, amount)
        assert funded.bprotocol.registry.avatar_of(user1) == ZERO_ADDRESS
        assert bzrx.underlying.balance_of(user1) == 1000 * E18

    @pytest.mark.asyncio
    async def test_zero_amount_is_valid(
        self, funded: BProtocolEngine, bzrx: BErc20, user1: str
    ) -> None:
        assert await bzrx.mint(user1, 0) == 0
        assert await bzrx.balance_of(user1) == 0

    @pytest.mark.asyncio
    async def test_error_belongs_to_package_taxonomy(
        self, funded: BProtocolEngine, bzrx: BErc20, user1: str
    ) -> None:
        with pytest.raises(BProtocolError):
            await bzrx.borrow(user1, -1)
        with pytest.raises(ValueError):
            await bzrx.borrow(user1, -1)


class TestLedgerFailures:
    @pytest.mark.asyncio
    async def test_mint_beyond_balance_keeps_position(
        self, funded: BProtocolEngine, bzrx: BErc20, user1: str
    ) -> None:
        await _mint(bzrx, user1, 500 * E18)
        before = await _state(funded.bprotocol, user1)

        bzrx.underlying.approve(user1, bzrx.address, 1000 * E18)
        with pytest.raises(AssetTransferError, match="exceeds balance"):
            await bzrx.mint(user1, 1000 * E18)

        assert await _state(funded.bprotocol, user1) == before

    @pytest.mark.asyncio
    async def test_delegatee_mint_without_funds_keeps_position(
        self, funded: BProtocolEngine, bzrx: BErc20, user1: str, user4: str
    ) -> None:
        await _mint(bzrx, user1, 1000 * E18)
        avatar = funded.bprotocol.registry.delegate_avatar(user1, user4)
        before = await _state(funded.bprotocol, user1, user4)

        bzrx.underlying.approve(user4, bzrx.address, E18)
        with pytest.raises(AssetTransferError):
            await bzrx.mint_on_avatar(user4, avatar, E18)

        assert await _state(funded.bprotocol, user1, user4) == before

    @pytest.mark.asyncio
    async def test_repay_beyond_balance_keeps_debt(
        self, funded: BProtocolEngine, bzrx: BErc20, bbat: BErc20,
        user1: str, user2: str, other: str,
    ) -> None:
        await _bat_market(bzrx, bbat, user1, user2)
        await bbat.borrow(user1, 100 * E18)
        bbat.underlying.transfer(user1, other, 60 * E18)
        before = await _state(funded.bprotocol, user1, user2, other)

        bbat.underlying.approve(user1, bbat.address, 100 * E18)
        with pytest.raises(AssetTransferError):
            await bbat.repay_borrow(user1, 100 * E18)

        assert await _state(funded.bprotocol, user1, user2, other) == before
        assert await bbat.borrow_balance_current(user1) == 100 * E18

    @pytest.mark.asyncio
    async def test_market_ledger_error_during_mint_refunds(
        self, funded: BProtocolEngine, bzrx: BErc20, user1: str
    ) -> None:
        await _mint(bzrx, user1, 500 * E18)
        before = await _state(funded.bprotocol, user1)
        refused = AsyncMock(side_effect=AssetTransferError("ZRX: refused"))

        with patch.object(bzrx.market, "mint", refused):
            with pytest.raises(AssetTransferError, match="ZRX: refused"):
                await _mint(bzrx, user1, 100 * E18)

        assert await _state(funded.bprotocol, user1) == before
        avatar = funded.bprotocol.registry.avatar_of(user1)
        assert bzrx.underlying.balance_of(avatar) == 0
        assert bzrx.underlying.allowance(avatar, bzrx.market.address) == 0

    @pytest.mark.asyncio
    async def test_market_ledger_error_during_repay_refunds(
        self, funded: BProtocolEngine, bzrx: BErc20, bbat: BErc20, user1: str, user2: str
    ) -> None:
        await _bat_market(bzrx, bbat, user1, user2)
        await bbat.borrow(user1, 100 * E18)
        before = await _state(funded.bprotocol, user1, user2)
        refused = AsyncMock(side_effect=AssetTransferError("BAT: refused"))

        bbat.underlying.approve(user1, bbat.address, 40 * E18)
        with patch.object(bbat.market, "repay_borrow", refused):
            with pytest.raises(AssetTransferError, match="BAT: refused"):
                await bbat.repay_borrow(user1, 40 * E18)

        assert await _state(funded.bprotocol, user1, user2) == before
        assert bbat.underlying.balance_of(funded.bprotocol.registry.avatar_of(user1)) == 0

    @pytest.mark.asyncio
    async def test_ledger_error_rolls_back_new_avatar(
        self, funded: BProtocolEngine, bzrx: BErc20, user1: str, other: str
    ) -> None:
        before = await _state(funded.bprotocol, user1, other)
        refused = AsyncMock(side_effect=AssetTransferError("ZRX: refused"))

        with patch.object(bzrx.market, "mint", refused):
            with pytest.raises(AssetTransferError):
                await _mint(bzrx, user1, 100 * E18)

        assert await _state(funded.bprotocol, user1, other) == before
        assert funded.bprotocol.registry.avatar_of(user1) == ZERO_ADDRESS
