"""Fake two-chain bridge shared by the orchestration tests."""

import pytest

from token_bridge.adapter import BridgeContext
from token_bridge.models import ChainAddress, TokenId
from token_bridge.testing import DESTINATION_CHAIN, SOURCE_CHAIN, FakeChainAdapter, create_fake_context, fake_address


@pytest.fixture()
def fake_bridge() -> tuple[BridgeContext, dict[str, FakeChainAdapter]]:
    return create_fake_context([SOURCE_CHAIN, DESTINATION_CHAIN])


@pytest.fixture()
def context(fake_bridge) -> BridgeContext:
    return fake_bridge[0]


@pytest.fixture()
def chains(fake_bridge) -> dict[str, FakeChainAdapter]:
    return fake_bridge[1]


@pytest.fixture()
def token(chains) -> TokenId:
    """8 decimal token native to the source chain, already wrapped on the destination."""
    token = chains[SOURCE_CHAIN].register_token(fake_address("token"), decimals=8)
    chains[DESTINATION_CHAIN].register_wrapped(token, decimals=8)
    return token


@pytest.fixture()
def sender() -> ChainAddress:
    return ChainAddress(SOURCE_CHAIN, fake_address("sender"))


@pytest.fixture()
def recipient() -> ChainAddress:
    return ChainAddress(DESTINATION_CHAIN, fake_address("recipient"))
