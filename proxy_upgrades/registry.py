import copy
import threading
import time
from collections import defaultdict
from pathlib import Path
from typing import Dict, Iterator, List, NamedTuple, Optional, Tuple

from eth_typing import ChecksumAddress
from eth_utils import to_checksum_address

from proxy_upgrades.errors import DuplicateNameError, NotFoundError, UnknownContractError
from proxy_upgrades.utils import _load_json, _write_json_atomic

ChainId = int
ContractName = str


class ImplementationEntry(NamedTuple):
    """One implementation a proxy has pointed at."""

    address: ChecksumAddress
    deployed_at: int
    contract_type: Optional[str] = None
    tx_hash: Optional[str] = None
    block_number: Optional[int] = None


class ContractRecord(NamedTuple):
    """
    Read-only snapshot of a logical contract: its proxy and every
    implementation it has been upgraded to, oldest first.
    """

    chain_id: ChainId
    name: ContractName
    proxy_address: ChecksumAddress
    history: Tuple[ImplementationEntry, ...]
    deployer: Optional[ChecksumAddress] = None

    @property
    def implementation(self) -> ChecksumAddress:
        """The current implementation, always the last history entry."""
        return self.history[-1].address

    @property
    def contract_type(self) -> Optional[str]:
        return self.history[-1].contract_type


def _entry_to_dict(entry: ImplementationEntry) -> dict:
    return {
        "address": entry.address,
        "contract_type": entry.contract_type,
        "deployed_at": int(entry.deployed_at),
        "tx_hash": entry.tx_hash,
        "block_number": entry.block_number,
    }


def _record_to_dict(record: ContractRecord) -> dict:
    return {
        "proxy_address": record.proxy_address,
        "implementation": record.implementation,
        "deployer": record.deployer,
        "history": [_entry_to_dict(entry) for entry in record.history],
    }


def _record_from_dict(chain_id: ChainId, name: ContractName, data: dict) -> ContractRecord:
    history = tuple(
        ImplementationEntry(
            address=to_checksum_address(item["address"]),
            deployed_at=int(item["deployed_at"]),
            contract_type=item.get("contract_type"),
            tx_hash=item.get("tx_hash"),
            block_number=item.get("block_number"),
        )
        for item in data["history"]
    )
    if not history:
        raise ValueError(f"Registry entry for {name} on chain {chain_id} has no implementations.")
    if data.get("implementation") and to_checksum_address(data["implementation"]) != history[-1].address:
        raise ValueError(
            f"Registry entry for {name} on chain {chain_id} is inconsistent: "
            "current implementation is not the latest history entry."
        )
    deployer = data.get("deployer")
    return ContractRecord(
        chain_id=chain_id,
        name=name,
        proxy_address=to_checksum_address(data["proxy_address"]),
        history=history,
        deployer=to_checksum_address(deployer) if deployer else None,
    )


def read_registry(filepath: Path) -> List[ContractRecord]:
    """Reads every record, for every chain, from a registry file."""
    data = _load_json(filepath)
    records = list()
    for chain_id, entries in data.items():
        for name, record_data in entries.items():
            records.append(_record_from_dict(int(chain_id), name, record_data))
    return records


class ContractRegistry:
    """
    Durable mapping of logical contract names to their proxy and
    implementation history, for a single chain.

    Every mutation is written to disk (atomic whole-file replace) before
    the in-memory state changes and before the call returns. Records of
    other chains sharing the same file are carried through untouched.
    """

    def __init__(self, filepath: Path, chain_id: ChainId):
        self.filepath = Path(filepath)
        self.chain_id = int(chain_id)
        self._write_lock = threading.Lock()
        self._locks_guard = threading.Lock()
        self._locks: Dict[ContractName, threading.RLock] = dict()
        self._data = defaultdict(dict)
        if self.filepath.exists():
            for chain_id, entries in _load_json(self.filepath).items():
                self._data[str(chain_id)] = dict(entries)
        self._records: Dict[ContractName, ContractRecord] = {
            name: _record_from_dict(self.chain_id, name, record_data)
            for name, record_data in self._data[str(self.chain_id)].items()
        }

    def __contains__(self, name: ContractName) -> bool:
        return name in self._records

    def __iter__(self) -> Iterator[ContractRecord]:
        return iter(self.records())

    def __len__(self) -> int:
        return len(self._records)

    def lock(self, name: ContractName) -> threading.RLock:
        """
        Returns the lock serializing mutations for ``name``. Hold it across
        a whole lookup/deploy/record sequence to keep history linear.
        """
        with self._locks_guard:
            if name not in self._locks:
                self._locks[name] = threading.RLock()
            return self._locks[name]

    def lookup(self, name: ContractName) -> ContractRecord:
        try:
            return self._records[name]
        except KeyError:
            raise NotFoundError(f"No deployment of '{name}' on chain {self.chain_id}.")

    def records(self) -> List[ContractRecord]:
        return sorted(self._records.values(), key=lambda record: record.name)

    def record_deployment(
        self,
        name: ContractName,
        proxy_address: ChecksumAddress,
        implementation_address: ChecksumAddress,
        contract_type: Optional[str] = None,
        deployed_at: Optional[int] = None,
        tx_hash: Optional[str] = None,
        block_number: Optional[int] = None,
        deployer: Optional[ChecksumAddress] = None,
    ) -> ContractRecord:
        """Records the first deployment of ``name``."""
        entry = ImplementationEntry(
            address=to_checksum_address(implementation_address),
            deployed_at=int(time.time()) if deployed_at is None else int(deployed_at),
            contract_type=contract_type,
            tx_hash=tx_hash,
            block_number=block_number,
        )
        with self.lock(name):
            if name in self._records:
                existing = self._records[name]
                raise DuplicateNameError(
                    f"'{name}' is already deployed behind proxy {existing.proxy_address} "
                    f"on chain {self.chain_id}; upgrade it instead."
                )
            record = ContractRecord(
                chain_id=self.chain_id,
                name=name,
                proxy_address=to_checksum_address(proxy_address),
                history=(entry,),
                deployer=to_checksum_address(deployer) if deployer else None,
            )
            self._commit(record)
        return record

    def record_upgrade(
        self,
        name: ContractName,
        new_implementation_address: ChecksumAddress,
        contract_type: Optional[str] = None,
        deployed_at: Optional[int] = None,
        tx_hash: Optional[str] = None,
        block_number: Optional[int] = None,
    ) -> ContractRecord:
        """Appends a new implementation to the history of ``name``."""
        with self.lock(name):
            try:
                current = self._records[name]
            except KeyError:
                raise UnknownContractError(
                    f"Cannot upgrade '{name}': it was never deployed on chain {self.chain_id}."
                )
            entry = ImplementationEntry(
                address=to_checksum_address(new_implementation_address),
                deployed_at=int(time.time()) if deployed_at is None else int(deployed_at),
                contract_type=contract_type,
                tx_hash=tx_hash,
                block_number=block_number,
            )
            record = current._replace(history=current.history + (entry,))
            self._commit(record)
        return record

    def _commit(self, record: ContractRecord) -> None:
        with self._write_lock:
            data = copy.deepcopy(dict(self._data))
            data.setdefault(str(self.chain_id), dict())[record.name] = _record_to_dict(record)
            ordered = {
                chain_id: dict(sorted(data[chain_id].items()))
                for chain_id in sorted(data, key=int)
                if data[chain_id]
            }
            _write_json_atomic(ordered, self.filepath)
            # only after the file is durable
            self._data = defaultdict(dict, data)
            self._records[record.name] = record
