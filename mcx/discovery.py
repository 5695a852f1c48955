# mcx/discovery.py

import logging
from typing import Dict, List, Tuple

from mcx.errors import DiscoveryParseError
from mcx.expiry_dates import nearest_expiries
from mcx.models.expiry import SLOT_POSITIONS, ActiveContract
from mcx.registry import ActiveContractRegistry, ContractSnapshot
from mcx.sources.expiries import ExpirySource, group_expiries
from mcx.storage.sqlite import OIDatabase

logger = logging.getLogger(__name__)


def select_active_contracts(
    expiries_by_symbol: Dict[str, List[str]],
) -> Tuple[Dict[str, List[str]], List[ActiveContract]]:
    nearest: Dict[str, List[str]] = {}
    contracts: List[ActiveContract] = []

    for symbol in sorted(expiries_by_symbol):
        dates = nearest_expiries(expiries_by_symbol[symbol], count=len(SLOT_POSITIONS))
        if not dates:
            logger.warning(f"No usable expiry for {symbol}, symbol skipped")
            continue

        nearest[symbol] = dates
        for position, expiry in zip(SLOT_POSITIONS, dates):
            contracts.append(
                ActiveContract(symbol=symbol, expiry_date=expiry, position=position)
            )

    return nearest, contracts


class ContractDiscovery:
    def __init__(
        self,
        source: ExpirySource,
        db: OIDatabase,
        registry: ActiveContractRegistry,
    ):
        self.source = source
        self.db = db
        self.registry = registry

    def run(self) -> ContractSnapshot:
        """
        Fetch the listing, store the nearest expiries and publish the new
        contract list. Any failure before the publish leaves both the stored
        expiries and the published list as they were.
        """
        rows = self.source.fetch_rows()
        nearest, contracts = select_active_contracts(group_expiries(rows))
        if not contracts:
            raise DiscoveryParseError("No symbol had a parsable expiry date")

        self.db.replace_expiries(nearest)
        snapshot = self.registry.publish(contracts)

        logger.info(
            f"Expiry data updated: {len(nearest)} symbols, "
            f"tracking {len(contracts)} nearest contracts (v{snapshot.version})"
        )
        return snapshot
