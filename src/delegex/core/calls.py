"""Call builders: turn a high-level action into an ordered ``DelegatedCallBatch``.

Builders are pure and deterministic, so the same parameters always give a
byte-identical batch.  Anything time-dependent (a swap deadline, say) is a
parameter, never read from the clock here.

Builders register themselves by action name so the server can build a batch
from an action name and keyword parameters::

    batch = build_calls("transfer", token=USDC, recipient=bob, amount=10**6)
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from decimal import ROUND_DOWN, Decimal, InvalidOperation
from typing import Any

from eth_abi import encode
from eth_utils import function_signature_to_4byte_selector

from delegex.protocol.address import validate_address
from delegex.protocol.types import Call, DelegatedCallBatch

MAX_UINT256 = 2**256 - 1

ERC20_TRANSFER = "transfer(address,uint256)"
ERC20_APPROVE = "approve(address,uint256)"
ERC20_MINT = "mint(address,uint256)"
ERC20_MINT_ONCE = "mintOnce()"
UNISWAP_V2_SWAP = "swapExactTokensForTokens(uint256,uint256,address[],address,uint256)"

BuilderFn = Callable[..., DelegatedCallBatch]

_BUILDERS: dict[str, BuilderFn] = {}


def encode_call(signature: str, arg_types: Sequence[str] = (), args: Sequence[Any] = ()) -> str:
    """ABI-encode a function call: 4-byte selector followed by the arguments."""
    selector = function_signature_to_4byte_selector(signature)
    body = encode(list(arg_types), list(args)) if arg_types else b""
    return "0x" + (selector + body).hex()


def parse_units(amount: str | int | Decimal, decimals: int) -> int:
    """Convert a human amount (``"1.5"``) into base units, truncating extra precision."""
    try:
        value = Decimal(str(amount))
    except InvalidOperation:
        raise ValueError(f"Invalid token amount: {amount!r}") from None
    if value < 0:
        raise ValueError(f"Token amount must be non-negative, got {amount!r}")
    scaled = (value * (Decimal(10) ** decimals)).quantize(Decimal(1), rounding=ROUND_DOWN)
    return int(scaled)


def min_amount_out(expected_out: int, slippage_percent: float | Decimal = Decimal("0.5")) -> int:
    """Minimum acceptable output after applying *slippage_percent*, in basis-point precision."""
    bps = int((Decimal(100) - Decimal(str(slippage_percent))) * 100)
    if not 0 <= bps <= 10000:
        raise ValueError(f"Slippage must be between 0 and 100 percent, got {slippage_percent}")
    return expected_out * bps // 10000


def _check_amount(name: str, amount: int) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValueError(f"{name} must be an integer amount of base units, got {amount!r}")
    if not 0 <= amount <= MAX_UINT256:
        raise ValueError(f"{name} out of uint256 range: {amount}")
    return amount


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


def register_builder(action: str) -> Callable[[BuilderFn], BuilderFn]:
    """Decorator registering a builder under *action*."""

    def decorator(fn: BuilderFn) -> BuilderFn:
        if action in _BUILDERS:
            raise ValueError(f"Builder already registered for action {action!r}")
        _BUILDERS[action] = fn
        return fn

    return decorator


def available_actions() -> list[str]:
    return sorted(_BUILDERS)


def build_calls(action: str, **params: Any) -> DelegatedCallBatch:
    """Dispatch to the builder registered for *action*."""
    builder = _BUILDERS.get(action)
    if builder is None:
        raise ValueError(f"Unknown action {action!r}; expected one of {available_actions()}")
    try:
        return builder(**params)
    except TypeError as exc:
        raise ValueError(f"Invalid parameters for {action}: {exc}") from exc


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


@register_builder("transfer")
def build_transfer(recipient: str, amount: int, token: str | None = None) -> DelegatedCallBatch:
    """ERC20 ``transfer`` on *token*, or a plain native-value call when *token* is None."""
    recipient = validate_address(recipient)
    _check_amount("amount", amount)
    if token is None:
        return DelegatedCallBatch.of(Call(target=recipient, value=amount))
    data = encode_call(ERC20_TRANSFER, ["address", "uint256"], [recipient, amount])
    return DelegatedCallBatch.of(Call(target=validate_address(token), calldata=data))


@register_builder("approve_and_transfer")
def build_approve_and_transfer(
    token: str, spender: str, amount: int, recipient: str | None = None
) -> DelegatedCallBatch:
    """``approve(spender, amount)`` then ``transfer(recipient, amount)`` on the same token.

    Without *recipient* the spender receives the tokens.
    """
    token = validate_address(token)
    spender = validate_address(spender)
    recipient = validate_address(recipient) if recipient else spender
    _check_amount("amount", amount)
    return DelegatedCallBatch.of(
        Call(target=token, calldata=encode_call(ERC20_APPROVE, ["address", "uint256"], [spender, amount])),
        Call(target=token, calldata=encode_call(ERC20_TRANSFER, ["address", "uint256"], [recipient, amount])),
    )


@register_builder("approve_and_swap")
def build_approve_and_swap(
    token_in: str,
    token_out: str,
    router: str,
    amount_in: int,
    amount_out_min: int,
    recipient: str,
    deadline: int,
    approve_amount: int | None = None,
) -> DelegatedCallBatch:
    """Approve the router for *token_in*, then swap along ``[token_in, token_out]``.

    *approve_amount* defaults to *amount_in*; a larger allowance lets later
    swaps skip the approve step on-chain, but the batch still includes it.
    """
    token_in = validate_address(token_in)
    token_out = validate_address(token_out)
    router = validate_address(router)
    recipient = validate_address(recipient)
    _check_amount("amount_in", amount_in)
    _check_amount("amount_out_min", amount_out_min)
    allowance = _check_amount("approve_amount", amount_in if approve_amount is None else approve_amount)
    if allowance < amount_in:
        raise ValueError("approve_amount must cover amount_in")
    if deadline <= 0:
        raise ValueError(f"deadline must be a positive unix timestamp, got {deadline}")

    approve = encode_call(ERC20_APPROVE, ["address", "uint256"], [router, allowance])
    swap = encode_call(
        UNISWAP_V2_SWAP,
        ["uint256", "uint256", "address[]", "address", "uint256"],
        [amount_in, amount_out_min, [token_in, token_out], recipient, deadline],
    )
    return DelegatedCallBatch.of(
        Call(target=token_in, calldata=approve),
        Call(target=router, calldata=swap),
    )


@register_builder("mint")
def build_mint(token: str, recipient: str | None = None, amount: int | None = None) -> DelegatedCallBatch:
    """``mintOnce()`` faucet call, or ``mint(recipient, amount)`` when *amount* is given."""
    token = validate_address(token)
    if amount is None:
        return DelegatedCallBatch.of(Call(target=token, calldata=encode_call(ERC20_MINT_ONCE)))
    if recipient is None:
        raise ValueError("mint with an amount needs a recipient")
    recipient = validate_address(recipient)
    _check_amount("amount", amount)
    data = encode_call(ERC20_MINT, ["address", "uint256"], [recipient, amount])
    return DelegatedCallBatch.of(Call(target=token, calldata=data))


@register_builder("raw")
def build_raw(calls: Sequence[dict[str, Any]]) -> DelegatedCallBatch:
    """Batch from already-encoded ``{"target", "calldata", "value"}`` entries."""
    if isinstance(calls, (str, bytes)) or not isinstance(calls, Sequence):
        raise ValueError("raw calls must be a list of call objects")
    built = []
    for index, entry in enumerate(calls):
        if not isinstance(entry, dict) or not entry.get("target"):
            raise ValueError(f"raw call {index} must be an object with a target")
        calldata = entry.get("calldata", "0x")
        if not isinstance(calldata, str):
            raise ValueError(f"raw call {index}: calldata must be a hex string")
        value = entry.get("value", 0)
        if isinstance(value, bool) or not isinstance(value, (int, str)):
            raise ValueError(f"raw call {index}: value must be an integer")
        built.append(
            Call(
                target=validate_address(entry["target"]),
                calldata=calldata,
                value=int(value, 0) if isinstance(value, str) else value,
            )
        )
    return DelegatedCallBatch(calls=tuple(built))
