"""
Transaction sources for the hash grid.

The grid only interprets a record's signature; the other fields pass through
to the detail panel. Two sources ship here: a JSONL file (one transaction per
line, native or Solscan-style keys) and a demo source of random base-36
signatures for running without any data.
"""

from __future__ import annotations

import json
import logging
import random
import string
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

log = logging.getLogger("hashgrid.sources")

BASE58_ALPHABET: str = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
MIN_SIGNATURE_LEN: int = 32
MAX_SIGNATURE_LEN: int = 88

BASE36_ALPHABET: str = string.digits + string.ascii_lowercase
DEMO_CHUNKS: int = 4
DEMO_CHUNK_LEN: int = 11
DEMO_ACTIVITIES: list[str] = ["mint", "transfer", "swap", "burn"]

# Amounts arrive in lamport-style base units
AMOUNT_DIVISOR: float = 1_000_000.0

# Accepted key spellings, native first
_KEY_ALIASES: dict[str, tuple[str, ...]] = {
    "signature": ("signature", "trans_id", "hash"),
    "source": ("from", "from_address", "source"),
    "amount": ("amount",),
    "slot": ("slot", "block_id"),
    "block_time": ("blockTime", "block_time"),
    "activity_type": ("activity_type",),
}


class TransactionLookupError(LookupError):
    """A signature was malformed or no transaction carries it."""


@dataclass(frozen=True)
class TransactionRecord:
    signature: str
    source: str = ""
    amount: str = ""
    slot: int = 0
    block_time: int = 0
    activity_type: str = ""

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> TransactionRecord:
        """Build from a decoded JSON object. Raises ValueError without a signature."""
        values: dict[str, Any] = {}
        for name, keys in _KEY_ALIASES.items():
            for key in keys:
                if key in data and data[key] is not None:
                    values[name] = data[key]
                    break
        signature = values.get("signature")
        if not isinstance(signature, str) or not signature:
            raise ValueError("record has no signature")
        return cls(
            signature=signature,
            source=str(values.get("source", "")),
            amount=str(values.get("amount", "")),
            slot=int(values.get("slot", 0)),
            block_time=int(values.get("block_time", 0)),
            activity_type=str(values.get("activity_type", "")),
        )

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)

    def display_amount(self) -> str:
        try:
            return f"{float(self.amount) / AMOUNT_DIVISOR:.4f}"
        except ValueError:
            return self.amount or "-"


def validate_signature(signature: str) -> str:
    """Return the stripped signature, or raise TransactionLookupError."""
    signature = signature.strip()
    if not signature:
        raise TransactionLookupError("empty signature")
    if not MIN_SIGNATURE_LEN <= len(signature) <= MAX_SIGNATURE_LEN:
        raise TransactionLookupError(
            f"signature must be {MIN_SIGNATURE_LEN}-{MAX_SIGNATURE_LEN} "
            f"characters, got {len(signature)}"
        )
    bad = sorted(set(signature) - set(BASE58_ALPHABET))
    if bad:
        raise TransactionLookupError(f"not base58: {''.join(bad)!r}")
    return signature


# ═══════════════════════════════════════════════════════════════════════
#  Sources
# ═══════════════════════════════════════════════════════════════════════

class TransactionSource:
    """Upstream list of recent transactions plus single-signature lookup."""

    def recent(self) -> list[TransactionRecord]:
        raise NotImplementedError

    def validate(self, signature: str) -> str:
        return validate_signature(signature)

    def lookup(self, signature: str) -> TransactionRecord:
        signature = self.validate(signature)
        for record in self.recent():
            if record.signature == signature:
                return record
        raise TransactionLookupError(f"transaction not found: {signature}")


def load_records(path: Path) -> list[TransactionRecord]:
    """Read a JSONL file of transactions. Bad lines are skipped with a warning.

    Repeated signatures keep their first record.
    """
    records: list[TransactionRecord] = []
    seen: set[str] = set()
    with open(path) as fh:
        for lineno, line in enumerate(fh, 1):
            line = line.strip()
            if not line:
                continue
            try:
                record = TransactionRecord.from_json(json.loads(line))
            except (json.JSONDecodeError, ValueError, TypeError, AttributeError) as exc:
                log.warning("skipping %s line %d: %s", path.name, lineno, exc)
                continue
            if record.signature in seen:
                continue
            seen.add(record.signature)
            records.append(record)
    return records


class JsonlTransactionSource(TransactionSource):
    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self._records: list[TransactionRecord] | None = None

    def recent(self) -> list[TransactionRecord]:
        if self._records is None:
            self._records = load_records(self.path)
            log.info("loaded %d transactions from %s", len(self._records), self.path)
        return list(self._records)


def demo_signature(rng: random.Random) -> str:
    return "".join(
        "".join(rng.choice(BASE36_ALPHABET) for _ in range(DEMO_CHUNK_LEN))
        for _ in range(DEMO_CHUNKS)
    )


class DemoTransactionSource(TransactionSource):
    """Random base-36 signatures with placeholder transaction details."""

    def __init__(self, count: int = 100, seed: int | None = None) -> None:
        rng = random.Random(seed)
        self._records = [
            TransactionRecord(
                signature=demo_signature(rng),
                source="".join(rng.choice(BASE58_ALPHABET) for _ in range(44)),
                amount=str(rng.randrange(1, 10_000) * 10_000),
                slot=300_000_000 + i,
                block_time=1_700_000_000 + i * 60,
                activity_type=rng.choice(DEMO_ACTIVITIES),
            )
            for i in range(count)
        ]

    def recent(self) -> list[TransactionRecord]:
        return list(self._records)

    def validate(self, signature: str) -> str:
        # Demo signatures are base-36, so only emptiness is checked
        signature = signature.strip()
        if not signature:
            raise TransactionLookupError("empty signature")
        return signature
