"""
Share Code Decoder for Counter-Strike Match Replays

Decodes Valve share codes (CSGO-xxxxx-xxxxx-xxxxx-xxxxx-xxxxx) into the
match id, outcome id and token needed to build a replay download URL, and
locates the replay server that actually holds the demo.

The 25 code characters, read in reverse, are a base57 number holding 144
bits: match id (u64), outcome id (u64) and token (u16), all big-endian.
"""

import logging
import re
from dataclasses import dataclass

import httpx

logger = logging.getLogger(__name__)

SHARECODE_ALPHABET = "ABCDEFGHJKLMNOPQRSTUVWXYZabcdefhijkmnopqrstuvwxyz23456789"
SHARECODE_BASE = len(SHARECODE_ALPHABET)  # 57
SHARECODE_LENGTH = 25
SHARECODE_BYTES = 18

ALPHABET_MAP = {char: idx for idx, char in enumerate(SHARECODE_ALPHABET)}

# Format checks for what users paste into their settings
SHARECODE_PATTERN = re.compile(r"^CSGO-[A-Za-z0-9]{5}-[A-Za-z0-9]{5}-[A-Za-z0-9]{5}-[A-Za-z0-9]{5}-[A-Za-z0-9]{5}$")
GAME_AUTH_CODE_PATTERN = re.compile(r"^[A-Z0-9]{4}-[A-Z0-9]{5}-[A-Z0-9]{4}$")

REPLAY_SERVERS = range(1, 21)
REPLAY_PROBE_TIMEOUT = 3.0


@dataclass
class ShareCodeInfo:
    """Decoded share code metadata."""

    match_id: int
    outcome_id: int
    token: int
    raw_code: str

    def to_dict(self) -> dict[str, int]:
        return {"match_id": self.match_id, "outcome_id": self.outcome_id, "token": self.token}


def _strip_prefix(code: str) -> str:
    """Remove the CSGO- prefix and dashes, keeping case."""
    return code.strip().replace("CSGO-", "").replace("-", "")


def decode_sharecode(code: str) -> ShareCodeInfo:
    """
    Decode a share code into match metadata.

    Args:
        code: Share code in format CSGO-xxxxx-xxxxx-xxxxx-xxxxx-xxxxx

    Returns:
        ShareCodeInfo containing match_id, outcome_id, and token

    Raises:
        ValueError: If the share code format is invalid
    """
    if not code:
        raise ValueError("Share code is empty")

    stripped = _strip_prefix(code)
    if len(stripped) != SHARECODE_LENGTH:
        raise ValueError(f"Share code must have {SHARECODE_LENGTH} characters, got {len(stripped)}")

    value = 0
    for char in reversed(stripped):
        if char not in ALPHABET_MAP:
            raise ValueError(f"Invalid character in share code: {char}")
        value = value * SHARECODE_BASE + ALPHABET_MAP[char]

    try:
        raw = value.to_bytes(SHARECODE_BYTES, "big")
    except OverflowError as e:
        raise ValueError("Share code value does not fit in 18 bytes") from e

    return ShareCodeInfo(
        match_id=int.from_bytes(raw[0:8], "big"),
        outcome_id=int.from_bytes(raw[8:16], "big"),
        token=int.from_bytes(raw[16:18], "big"),
        raw_code=code,
    )


def encode_sharecode(match_id: int, outcome_id: int, token: int) -> str:
    """
    Encode match metadata into a share code.

    Args:
        match_id: The match ID
        outcome_id: The outcome/reservation ID
        token: The token value

    Returns:
        Share code in format CSGO-xxxxx-xxxxx-xxxxx-xxxxx-xxxxx
    """
    raw = match_id.to_bytes(8, "big") + outcome_id.to_bytes(8, "big") + token.to_bytes(2, "big")
    value = int.from_bytes(raw, "big")

    # Least significant digit first, which is the reversed reading order
    chars = []
    for _ in range(SHARECODE_LENGTH):
        value, digit = divmod(value, SHARECODE_BASE)
        chars.append(SHARECODE_ALPHABET[digit])

    code = "".join(chars)
    return f"CSGO-{code[0:5]}-{code[5:10]}-{code[10:15]}-{code[15:20]}-{code[20:25]}"


def validate_sharecode(code: str) -> bool:
    """Check if a share code decodes."""
    try:
        decode_sharecode(code)
        return True
    except ValueError:
        return False


def is_valid_sharecode_format(code: str) -> bool:
    return bool(SHARECODE_PATTERN.match(code or ""))


def is_valid_game_auth_code(code: str) -> bool:
    return bool(GAME_AUTH_CODE_PATTERN.match(code or ""))


def build_demo_url(info: ShareCodeInfo, server: int = 1) -> str:
    """Replay download URL on the given replay server."""
    return (
        f"https://replay{server}.valve.net/730/"
        f"{info.match_id}_{info.outcome_id}_{info.token}.dem.bz2"
    )


def find_replay_server(info: ShareCodeInfo, client: httpx.Client | None = None) -> int | None:
    """
    Probe replay servers 1-20 and return the first that has the demo.

    Args:
        info: Decoded share code
        client: Optional httpx client (tests pass a mocked one)

    Returns:
        Server number, or None if no server answered 200
    """
    owns_client = client is None
    if client is None:
        client = httpx.Client(timeout=REPLAY_PROBE_TIMEOUT)

    try:
        for server in REPLAY_SERVERS:
            url = build_demo_url(info, server)
            try:
                response = client.head(url, timeout=REPLAY_PROBE_TIMEOUT)
            except httpx.HTTPError as e:
                logger.debug(f"Replay server {server} unreachable: {e}")
                continue
            if response.status_code == 200:
                logger.info(f"Found replay for match {info.match_id} on server {server}")
                return server
    finally:
        if owns_client:
            client.close()

    logger.warning(f"No replay server holds match {info.match_id}")
    return None
