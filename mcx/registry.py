# mcx/registry.py

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Optional, Tuple

from mcx.models.expiry import ActiveContract


@dataclass(frozen=True)
class ContractSnapshot:
    version: int = 0
    contracts: Tuple[ActiveContract, ...] = field(default_factory=tuple)
    published_at: Optional[datetime] = None

    def __len__(self) -> int:
        return len(self.contracts)


class ActiveContractRegistry:
    """
    Holds the list of contracts the per-minute cycle polls.

    Discovery is the only writer. publish() builds a new immutable snapshot
    and swaps it in with a single assignment, so readers always get a whole
    list, old or new, never a mix.
    """

    def __init__(self):
        self._snapshot = ContractSnapshot()

    def snapshot(self) -> ContractSnapshot:
        return self._snapshot

    def publish(self, contracts: Iterable[ActiveContract]) -> ContractSnapshot:
        new = ContractSnapshot(
            version=self._snapshot.version + 1,
            contracts=tuple(contracts),
            published_at=datetime.now(timezone.utc),
        )
        self._snapshot = new
        return new
