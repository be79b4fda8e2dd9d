"""
GEMMINES - Seed & Hazard Generator

Engine seed + player seed -> hazard layout, reproducible from the two seeds.

Architecture:
    Engine draws engine_seed (32 bytes, CSPRNG) after the player has
    submitted player_seed, and publishes commitment = SHA-256(engine_seed).
    combined = SHA-256(engine_seed || player_seed)
    running  = combined
    repeat:
        running = SHA-256(running)             # re-hashed on every draw
        index   = int(running) mod grid_size
        keep index unless already chosen
    until hazard_count distinct indices are collected.
    Once the game is over engine_seed is disclosed and anyone can re-derive.

Usage:
    from game_engine.hazards import new_engine_seed, commit, derive

    engine_seed = new_engine_seed()
    positions = derive(engine_seed, player_seed, hazard_count=3, grid_size=25)
"""

import hashlib
import hmac
import secrets

ENGINE_SEED_BYTES = 32


def _sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def new_engine_seed() -> bytes:
    """Fresh engine seed from the OS CSPRNG."""
    return secrets.token_bytes(ENGINE_SEED_BYTES)


def new_player_seed() -> bytes:
    """Player seed for callers that do not supply their own."""
    return secrets.token_bytes(16)


def parse_seed(value) -> bytes:
    """Accept bytes or a hex string (with or without 0x) and return bytes."""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, str):
        text = value[2:] if value.lower().startswith("0x") else value
        try:
            return bytes.fromhex(text)
        except ValueError:
            raise ValueError(f"Seed is not valid hex: {value!r}") from None
    raise TypeError(f"Seed must be bytes or hex str, not {type(value).__name__}")


def commit(engine_seed: bytes) -> str:
    """Commitment published at game start: SHA-256(engine_seed) hex."""
    return hashlib.sha256(engine_seed).hexdigest()


def combine(engine_seed: bytes, player_seed: bytes) -> bytes:
    """The combined seed, sole input to hazard placement."""
    return _sha256(engine_seed + player_seed)


def derive_ordered(engine_seed: bytes, player_seed: bytes,
                   hazard_count: int, grid_size: int) -> list:
    """Hazard indices in the order they were drawn."""
    if not 0 <= hazard_count < grid_size:
        raise ValueError(
            f"hazard_count must be in [0, {grid_size}), got {hazard_count}")

    running = combine(engine_seed, player_seed)
    chosen = []
    taken = set()
    while len(chosen) < hazard_count:
        running = _sha256(running)
        index = int.from_bytes(running, "big") % grid_size
        if index in taken:
            continue
        taken.add(index)
        chosen.append(index)
    return chosen


def derive(engine_seed: bytes, player_seed: bytes,
           hazard_count: int, grid_size: int) -> frozenset:
    """Set of `hazard_count` distinct cell indices in [0, grid_size)."""
    return frozenset(derive_ordered(engine_seed, player_seed, hazard_count, grid_size))


# ── Verification ──────────────────────────────────────────

def verify_commitment(engine_seed: bytes, expected_hash: str) -> bool:
    """Check a disclosed engine seed against the commitment shared at start."""
    return hmac.compare_digest(commit(engine_seed), expected_hash.lower())


def verify_layout(engine_seed: bytes, player_seed: bytes, hazard_count: int,
                  grid_size: int, positions) -> bool:
    """Re-derive the layout and compare with the one the engine used."""
    return derive(engine_seed, player_seed, hazard_count, grid_size) == frozenset(positions)


def audit_bundle(engine_seed: bytes, player_seed: bytes,
                 hazard_count: int, grid_size: int) -> dict:
    """Everything a player needs to check a finished game independently."""
    order = derive_ordered(engine_seed, player_seed, hazard_count, grid_size)
    return {
        "engine_seed": engine_seed.hex(),
        "engine_seed_hash": commit(engine_seed),
        "player_seed": player_seed.hex(),
        "combined_seed": combine(engine_seed, player_seed).hex(),
        "hazard_count": hazard_count,
        "grid_size": grid_size,
        "draw_order": order,
        "hazard_positions": sorted(order),
        "verification_steps": [
            "1. Check SHA-256(engine_seed) == engine_seed_hash",
            "2. combined = SHA-256(engine_seed || player_seed)",
            "3. running = combined; repeat: running = SHA-256(running), "
            "index = int(running) mod grid_size, skip duplicates",
            "4. Stop after hazard_count distinct indices",
        ],
    }
