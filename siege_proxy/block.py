"""
Decoding of the raw block carried by ``test_importRawBlock``.

The parameter is a hex string holding an RLP block::

    [header, transactions, uncles, withdrawals?]

Only the header is interpreted. Transactions, uncles and withdrawals are
decoded field by field as well, so an intentionally broken test block is
recognised as such and skipped.
"""

from __future__ import annotations

import re
from typing import Any, Dict, List, Sequence

import rlp
from eth_utils import keccak
from rlp.exceptions import RLPException
from rlp.sedes import Binary, CountableList, big_endian_int

from .errors import BlockDecodeError
from .models import DecodedBlock, RpcEnvelope

IMPORT_RAW_BLOCK_METHOD = "test_importRawBlock"

UINT64_MAX = 2**64 - 1
UINT256_MAX = 2**256 - 1
_HEX_DIGITS = re.compile(r"[0-9a-fA-F]*")

hash32 = Binary.fixed_length(32)
address = Binary.fixed_length(20)
optional_address = Binary.fixed_length(20, allow_empty=True)
bloom = Binary.fixed_length(256)
nonce8 = Binary.fixed_length(8)
binary = Binary()

# a tuple of fields in place of a sedes means a list of records with those fields
ACCESS_LIST_FIELDS = (
    ("address", address, None),
    ("storage_keys", CountableList(hash32), None),
)
AUTHORIZATION_FIELDS = (
    ("chain_id", big_endian_int, UINT256_MAX),
    ("address", address, None),
    ("nonce", big_endian_int, UINT64_MAX),
    ("y_parity", big_endian_int, 255),
    ("r", big_endian_int, UINT256_MAX),
    ("s", big_endian_int, UINT256_MAX),
)

# (name, sedes, max value) in header order; everything after MIN_HEADER_FIELDS is optional
HEADER_FIELDS = (
    ("parent_hash", hash32, None),
    ("uncle_hash", hash32, None),
    ("coinbase", address, None),
    ("state_root", hash32, None),
    ("tx_root", hash32, None),
    ("receipt_root", hash32, None),
    ("bloom", bloom, None),
    ("difficulty", big_endian_int, None),
    ("number", big_endian_int, UINT64_MAX),
    ("gas_limit", big_endian_int, UINT64_MAX),
    ("gas_used", big_endian_int, UINT64_MAX),
    ("timestamp", big_endian_int, UINT64_MAX),
    ("extra_data", binary, None),
    ("mix_digest", hash32, None),
    ("nonce", nonce8, None),
    ("base_fee", big_endian_int, None),
    ("withdrawals_root", hash32, None),
    ("blob_gas_used", big_endian_int, UINT64_MAX),
    ("excess_blob_gas", big_endian_int, UINT64_MAX),
    ("parent_beacon_root", hash32, None),
    ("requests_hash", hash32, None),
)
MIN_HEADER_FIELDS = 15

WITHDRAWAL_FIELDS = (
    ("index", big_endian_int, UINT64_MAX),
    ("validator_index", big_endian_int, UINT64_MAX),
    ("address", address, None),
    ("amount", big_endian_int, UINT64_MAX),
)

LEGACY_TX_FIELDS = (
    ("nonce", big_endian_int, UINT64_MAX),
    ("gas_price", big_endian_int, None),
    ("gas", big_endian_int, UINT64_MAX),
    ("to", optional_address, None),
    ("value", big_endian_int, None),
    ("data", binary, None),
    ("v", big_endian_int, None),
    ("r", big_endian_int, None),
    ("s", big_endian_int, None),
)

_SIGNATURE = (
    ("y_parity", big_endian_int, UINT256_MAX),
    ("r", big_endian_int, UINT256_MAX),
    ("s", big_endian_int, UINT256_MAX),
)

_FEE_MARKET_HEAD = (
    ("chain_id", big_endian_int, UINT256_MAX),
    ("nonce", big_endian_int, UINT64_MAX),
    ("max_priority_fee", big_endian_int, UINT256_MAX),
    ("max_fee", big_endian_int, UINT256_MAX),
    ("gas", big_endian_int, UINT64_MAX),
)

# EIP-2718 transaction type byte -> payload fields
TYPED_TX_FIELDS: Dict[int, tuple] = {
    0x01: (
        ("chain_id", big_endian_int, None),
        ("nonce", big_endian_int, UINT64_MAX),
        ("gas_price", big_endian_int, None),
        ("gas", big_endian_int, UINT64_MAX),
        ("to", optional_address, None),
        ("value", big_endian_int, None),
        ("data", binary, None),
        ("access_list", ACCESS_LIST_FIELDS, None),
    )
    + _SIGNATURE,
    0x02: _FEE_MARKET_HEAD
    + (
        ("to", optional_address, None),
        ("value", big_endian_int, UINT256_MAX),
        ("data", binary, None),
        ("access_list", ACCESS_LIST_FIELDS, None),
    )
    + _SIGNATURE,
    0x03: _FEE_MARKET_HEAD
    + (
        ("to", address, None),
        ("value", big_endian_int, UINT256_MAX),
        ("data", binary, None),
        ("access_list", ACCESS_LIST_FIELDS, None),
        ("max_fee_per_blob_gas", big_endian_int, UINT256_MAX),
        ("blob_hashes", CountableList(hash32), None),
    )
    + _SIGNATURE,
    0x04: _FEE_MARKET_HEAD
    + (
        ("to", address, None),
        ("value", big_endian_int, UINT256_MAX),
        ("data", binary, None),
        ("access_list", ACCESS_LIST_FIELDS, None),
        ("authorization_list", AUTHORIZATION_FIELDS, None),
    )
    + _SIGNATURE,
}


def _is_list(item: Any) -> bool:
    return isinstance(item, (list, tuple))


def hex_to_bytes(value: str) -> bytes:
    """
    Decode a hex string with an optional ``0x`` prefix.
    """
    digits = value[2:] if value.startswith(("0x", "0X")) else value
    if len(digits) % 2:
        raise BlockDecodeError(f"odd length hex string ({len(digits)} digits)")
    if not _HEX_DIGITS.fullmatch(digits):
        raise BlockDecodeError("invalid hex string")
    return bytes.fromhex(digits)


def _deserialize_fields(
    kind: str, items: Sequence[Any], fields: Sequence[tuple]
) -> List[Any]:
    values = []
    for item, (name, sedes, limit) in zip(items, fields):
        if isinstance(sedes, tuple):
            if not _is_list(item):
                raise BlockDecodeError(f"{kind} field '{name}' is not a list")
            values.append(
                [_check_fields(f"{kind} {name}[{i}]", entry, sedes) for i, entry in enumerate(item)]
            )
            continue
        if _is_list(item) != isinstance(sedes, CountableList):
            shape = "is a list" if _is_list(item) else "is not a list"
            raise BlockDecodeError(f"{kind} field '{name}' {shape}")
        try:
            value = sedes.deserialize(item)
        except RLPException as exc:
            raise BlockDecodeError(f"{kind} field '{name}': {exc}") from exc
        if limit is not None and value > limit:
            raise BlockDecodeError(f"{kind} field '{name}' out of range")
        values.append(value)
    return values


def _check_fields(kind: str, item: Any, fields: Sequence[tuple]) -> List[Any]:
    if not _is_list(item) or len(item) != len(fields):
        raise BlockDecodeError(f"{kind} is malformed, expected a list of {len(fields)} fields")
    return _deserialize_fields(kind, item, fields)


def _check_header(item: Any, kind: str = "header") -> List[Any]:
    if not _is_list(item):
        raise BlockDecodeError(f"{kind} is not a list")
    if len(item) < MIN_HEADER_FIELDS:
        raise BlockDecodeError(f"{kind} has {len(item)} fields, need at least {MIN_HEADER_FIELDS}")
    if len(item) > len(HEADER_FIELDS):
        raise BlockDecodeError(f"{kind} has too many fields ({len(item)})")
    return _deserialize_fields(kind, item, HEADER_FIELDS)


def check_transaction(tx: Any, kind: str = "transaction") -> None:
    """
    Decode one block body transaction.

    Legacy transactions are embedded as a 9 field list. Typed transactions
    are a byte string: a known type byte followed by the RLP payload.
    """
    if _is_list(tx):
        _check_fields(kind, tx, LEGACY_TX_FIELDS)
        return
    if len(tx) <= 1:
        raise BlockDecodeError(f"{kind} is too short for a typed transaction")
    fields = TYPED_TX_FIELDS.get(tx[0])
    if fields is None:
        raise BlockDecodeError(f"{kind} has unsupported type 0x{tx[0]:02x}")
    try:
        payload = rlp.decode(tx[1:], strict=True)
    except RLPException as exc:
        raise BlockDecodeError(f"{kind} payload: {exc}") from exc
    _check_fields(f"{kind} (type 0x{tx[0]:02x})", payload, fields)


def _check_body(items: Sequence[Any]) -> None:
    transactions, uncles = items[1], items[2]
    if not _is_list(transactions):
        raise BlockDecodeError("transactions is not a list")
    for index, tx in enumerate(transactions):
        check_transaction(tx, kind=f"transaction {index}")
    if not _is_list(uncles):
        raise BlockDecodeError("uncles is not a list")
    for index, uncle in enumerate(uncles):
        _check_header(uncle, kind=f"uncle {index}")
    if len(items) > 3:
        withdrawals = items[3]
        if not _is_list(withdrawals):
            raise BlockDecodeError("withdrawals is not a list")
        for index, withdrawal in enumerate(withdrawals):
            _check_fields(f"withdrawal {index}", withdrawal, WITHDRAWAL_FIELDS)


def decode_block(raw: bytes) -> DecodedBlock:
    """
    Decode an RLP encoded block and derive the fields handed to the verifier.
    """
    if not raw:
        raise BlockDecodeError("empty block payload")
    try:
        items = rlp.decode(raw, strict=True)
    except RLPException as exc:
        raise BlockDecodeError(f"invalid RLP: {exc}") from exc

    if not _is_list(items):
        raise BlockDecodeError("block is not a list")
    if len(items) < 3 or len(items) > 4:
        raise BlockDecodeError(f"block has {len(items)} elements, expected 3 or 4")

    header = items[0]
    values = _check_header(header)
    _check_body(items)

    return DecodedBlock(
        number=values[8],
        hash=keccak(rlp.encode(header)),
        state_root=values[3],
        receipt_root=values[5],
    )


def decode_block_param(param: Any) -> DecodedBlock:
    if not isinstance(param, str):
        raise BlockDecodeError(f"block parameter is {type(param).__name__}, not a hex string")
    return decode_block(hex_to_bytes(param))


def is_block_import(envelope: RpcEnvelope) -> bool:
    return envelope.method == IMPORT_RAW_BLOCK_METHOD and bool(envelope.params)
