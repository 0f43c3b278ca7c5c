"""
Bitcoin address validation.

Supports:
- Segwit v0 (bech32): bc1q... / tb1q... / bcrt1q... (P2WPKH and P2WSH)
- Segwit v1+ (bech32m): bc1p... / tb1p... (P2TR and future versions)
- Base58Check: 1.../3... (mainnet), m.../n.../2... (testnet)
"""

import hashlib
from typing import Optional, Tuple

BECH32_CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"

# Final polymod constants (BIP-173 / BIP-350)
BECH32_CONST = 1
BECH32M_CONST = 0x2BC830A3

SEGWIT_HRPS = {
    "bc": "mainnet",
    "tb": "testnet",
    "bcrt": "regtest",
}

# version byte -> (address type, network)
BASE58_VERSIONS = {
    0x00: ("p2pkh", "mainnet"),
    0x05: ("p2sh", "mainnet"),
    0x6F: ("p2pkh", "testnet"),
    0xC4: ("p2sh", "testnet"),
}

BASE58_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"


def bech32_polymod(values: list[int]) -> int:
    """Internal function for Bech32 checksum computation."""
    GEN = [0x3B6A57B2, 0x26508E6D, 0x1EA119FA, 0x3D4233DD, 0x2A1462B3]
    chk = 1
    for v in values:
        b = chk >> 25
        chk = ((chk & 0x1FFFFFF) << 5) ^ v
        for i in range(5):
            chk ^= GEN[i] if ((b >> i) & 1) else 0
    return chk


def bech32_hrp_expand(hrp: str) -> list[int]:
    """Expand HRP for checksum computation."""
    return [ord(x) >> 5 for x in hrp] + [0] + [ord(x) & 31 for x in hrp]


def convert_bits(data: list[int], frombits: int, tobits: int, pad: bool) -> list[int] | None:
    """Convert between bit widths."""
    acc = 0
    bits = 0
    ret = []
    maxv = (1 << tobits) - 1
    max_acc = (1 << (frombits + tobits - 1)) - 1

    for value in data:
        if value < 0 or (value >> frombits):
            return None
        acc = ((acc << frombits) | value) & max_acc
        bits += frombits
        while bits >= tobits:
            bits -= tobits
            ret.append((acc >> bits) & maxv)

    if pad:
        if bits:
            ret.append((acc << (tobits - bits)) & maxv)
    elif bits >= frombits or ((acc << (tobits - bits)) & maxv):
        return None

    return ret


def bech32_decode(address: str) -> Tuple[str, list[int], int] | None:
    """
    Split a Bech32/Bech32m string into its parts.

    Returns:
        (hrp, data, checksum_const) with the 6 checksum symbols removed,
        or None if the string is not well formed
    """
    if len(address) > 90:
        return None
    if any(ord(c) < 33 or ord(c) > 126 for c in address):
        return None
    # Mixed case is invalid
    if address.lower() != address and address.upper() != address:
        return None

    address = address.lower()
    pos = address.rfind("1")
    if pos < 1 or pos + 7 > len(address):
        return None

    hrp = address[:pos]
    data = []
    for c in address[pos + 1:]:
        if c not in BECH32_CHARSET:
            return None
        data.append(BECH32_CHARSET.index(c))

    const = bech32_polymod(bech32_hrp_expand(hrp) + data)
    if const not in (BECH32_CONST, BECH32M_CONST):
        return None

    return (hrp, data[:-6], const)


def decode_segwit_address(address: str) -> Tuple[int, bytes, str] | None:
    """
    Decode a segwit address.

    Returns:
        (witness_version, witness_program, network) or None if invalid
    """
    result = bech32_decode(address)
    if result is None:
        return None

    hrp, data, const = result
    network = SEGWIT_HRPS.get(hrp)
    if network is None or not data:
        return None

    version = data[0]
    if version > 16:
        return None

    # v0 must use bech32, v1+ must use bech32m
    if (version == 0) != (const == BECH32_CONST):
        return None

    program = convert_bits(data[1:], 5, 8, False)
    if program is None or not 2 <= len(program) <= 40:
        return None
    if version == 0 and len(program) not in (20, 32):
        return None

    return (version, bytes(program), network)


def base58_decode(s: str) -> bytes | None:
    """Decode a Base58 string."""
    num = 0
    for c in s:
        if c not in BASE58_ALPHABET:
            return None
        num = num * 58 + BASE58_ALPHABET.index(c)

    result = []
    while num > 0:
        result.append(num & 0xFF)
        num >>= 8
    decoded = bytes(reversed(result))

    pad_size = len(s) - len(s.lstrip("1"))
    return b"\x00" * pad_size + decoded


def base58check_decode(s: str) -> Tuple[int, bytes] | None:
    """
    Decode a Base58Check encoded string.

    Returns:
        (version, payload) or None if invalid
    """
    data = base58_decode(s)
    if data is None or len(data) < 5:
        return None

    checksum = data[-4:]
    payload = data[:-4]

    expected_checksum = hashlib.sha256(hashlib.sha256(payload).digest()).digest()[:4]
    if checksum != expected_checksum:
        return None

    return (payload[0], payload[1:])


def decode_btc_address(address: str) -> Tuple[bytes, str, str] | None:
    """
    Decode a Bitcoin address.

    Returns:
        (program, address_type, network) where address_type is one of
        "p2pkh", "p2sh", "p2wpkh", "p2wsh", "p2tr" or "witness_v<N>",
        or None if the address is not valid
    """
    if not address:
        return None

    lowered = address.lower()
    if lowered.startswith(tuple(f"{hrp}1" for hrp in SEGWIT_HRPS)):
        segwit = decode_segwit_address(address)
        if segwit is None:
            return None

        version, program, network = segwit
        if version == 0:
            address_type = "p2wpkh" if len(program) == 20 else "p2wsh"
        elif version == 1 and len(program) == 32:
            address_type = "p2tr"
        else:
            address_type = f"witness_v{version}"
        return (program, address_type, network)

    result = base58check_decode(address)
    if result is None:
        return None

    version, payload = result
    if version not in BASE58_VERSIONS or len(payload) != 20:
        return None

    address_type, network = BASE58_VERSIONS[version]
    return (payload, address_type, network)


def is_valid_address(address: Optional[str], network: Optional[str] = None) -> bool:
    """
    Check whether a string is a standard Bitcoin address.

    If network is given ("mainnet", "testnet", "regtest") the address must
    also belong to that network.
    """
    if not isinstance(address, str):
        return False

    decoded = decode_btc_address(address)
    if decoded is None:
        return False

    return network is None or decoded[2] == network
