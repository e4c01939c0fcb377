"""Tests for token and chain resolution."""

from conftest import (
    ARB_ARB,
    ETH_ARB,
    USDC_ARB,
    USDC_BASE,
    WETH_ARB,
    WETH_BASE,
    WSTETH_ETH,
)

from defi_agent.chains import chain_name, explorer_tx_url, find_chain_id, resolve_rpc_url
from defi_agent.tokens import (
    ResolutionStatus,
    TokenInfo,
    build_token_map,
    find_token,
    infer_common_chain,
    resolve_token_pair,
)


class TestFindToken:
    """Single-symbol resolution."""

    def test_single_candidate_resolves_without_chain(self, token_map):
        """A symbol listed on one chain needs no chain argument."""
        resolution = find_token(token_map, "eth")
        assert resolution.found
        assert resolution.token == ETH_ARB

    def test_multiple_candidates_ask_for_chain(self, token_map):
        """Ambiguity lists every chain in id order and asks for input."""
        resolution = find_token(token_map, "USDC")
        assert resolution.status is ResolutionStatus.AMBIGUOUS
        assert resolution.needs_input
        assert resolution.message.splitlines() == [
            "Multiple chains supported for USDC:",
            "1. Base",
            "2. Arbitrum",
            "Please specify the 'chain'.",
        ]

    def test_direction_names_the_missing_field(self, token_map):
        """Swap legs ask for fromChain / toChain instead of chain."""
        resolution = find_token(token_map, "USDC", direction="to")
        assert resolution.message.endswith("Please specify the 'toChain'.")

    def test_chain_alias_pins_candidate(self, token_map):
        """Chain names are matched case-insensitively."""
        assert find_token(token_map, "usdc", "BASE").token == USDC_BASE
        assert find_token(token_map, "usdc", "42161").token == USDC_ARB

    def test_unknown_symbol(self, token_map):
        resolution = find_token(token_map, "FOO")
        assert resolution.status is ResolutionStatus.NOT_FOUND
        assert resolution.message == "Token FOO not supported."
        assert not resolution.needs_input

    def test_unknown_chain(self, token_map):
        resolution = find_token(token_map, "USDC", "solana")
        assert resolution.status is ResolutionStatus.CHAIN_NOT_SUPPORTED
        assert resolution.message == "Chain 'solana' is not supported."

    def test_token_not_on_requested_chain(self, token_map):
        resolution = find_token(token_map, "ARB", "base")
        assert resolution.status is ResolutionStatus.NOT_ON_CHAIN
        assert resolution.message == "Token ARB is not supported on Base."


class TestResolveTokenPair:
    """Pair resolution with chain inference."""

    def test_infers_shared_chain(self, token_map):
        """USDC lives on two chains but ETH only on Arbitrum."""
        pair = resolve_token_pair(token_map, "USDC", "ETH")
        assert pair.found
        assert pair.from_token == USDC_ARB
        assert pair.to_token == ETH_ARB

    def test_prefers_default_chain_among_shared(self, token_map):
        pair = resolve_token_pair(token_map, "USDC", "WETH", default_chain_id="42161")
        assert pair.from_token == USDC_ARB
        assert pair.to_token == WETH_ARB

    def test_falls_back_to_lowest_shared_chain(self, token_map):
        """When the default is not shared the lowest chain id wins."""
        pair = resolve_token_pair(token_map, "USDC", "WETH", default_chain_id="1")
        assert pair.from_token == USDC_BASE
        assert pair.to_token == WETH_BASE

    def test_explicit_chain_applies_to_other_leg(self, token_map):
        pair = resolve_token_pair(token_map, "USDC", "WETH", from_chain="base")
        assert pair.from_token == USDC_BASE
        assert pair.to_token == WETH_BASE

    def test_explicit_chain_not_forced_on_single_chain_leg(self, token_map):
        """ETH only exists on Arbitrum so it stays there for a cross-chain route."""
        pair = resolve_token_pair(token_map, "USDC", "ETH", from_chain="base")
        assert pair.from_token == USDC_BASE
        assert pair.to_token == ETH_ARB

    def test_no_shared_chain_requires_input(self, token_map):
        pair = resolve_token_pair(token_map, "WSTETH", "ARB")
        assert not pair.found
        assert pair.failure.needs_input
        lines = pair.failure.message.splitlines()
        assert lines[0] == "No single chain supports both WSTETH and ARB."
        assert lines[-1] == "Please specify the 'fromChain' and 'toChain'."

    def test_unknown_leg_reports_that_token(self, token_map):
        pair = resolve_token_pair(token_map, "USDC", "DOGE")
        assert pair.failure.message == "Token DOGE not supported."

    def test_explicit_chain_missing_on_pinned_leg(self, token_map):
        pair = resolve_token_pair(token_map, "ARB", "USDC", from_chain="base")
        assert pair.failure.status is ResolutionStatus.NOT_ON_CHAIN


def test_infer_common_chain_without_overlap():
    assert infer_common_chain([WSTETH_ETH], [ARB_ARB]) is None


def test_build_token_map_groups_by_upper_symbol():
    """Duplicate chain entries for one symbol are dropped."""
    lower = TokenInfo("42161", "0xdead", 6, "usdc", "Dupe")
    token_map = build_token_map([USDC_ARB, lower, USDC_BASE])
    assert list(token_map) == ["USDC"]
    assert token_map["USDC"] == [USDC_ARB, USDC_BASE]


class TestChains:
    def test_aliases(self):
        assert find_chain_id("mainnet") == "1"
        assert find_chain_id("Matic") == "137"
        assert find_chain_id("unknown") is None

    def test_chain_name_for_unknown_id(self):
        assert chain_name("999") == "Chain 999"

    def test_explorer_url(self):
        assert explorer_tx_url("42161", "0xabc") == "https://arbiscan.io/tx/0xabc"

    def test_explicit_rpc_url_wins(self):
        assert (
            resolve_rpc_url("8453", {"8453": "http://localhost:8545"}, "sub", "key")
            == "http://localhost:8545"
        )
