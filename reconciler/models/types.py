from typing import Literal

import eth_utils as eth

# type aliases for clarity
EthereumAddress = str
BigNumber = str
HexBytes32 = str

ZERO_ADDRESS: EthereumAddress = "0x0000000000000000000000000000000000000000"
BURN_ADDRESS: EthereumAddress = "0x000000000000000000000000000000000000dead"

# provenance tags recorded against each resolved balance
Source = Literal["direct", "direct-fallback", "pool-v2", "pool-v3"]


def normalize_address(addr: str) -> EthereumAddress:
    """
    Lower-case hex form used as the key everywhere in the ledger.
    Raises ValueError on anything that is not a 20 byte hex address.
    """
    if not isinstance(addr, str) or not eth.is_address(addr):
        raise ValueError(f"Invalid address: {addr}")
    return addr.lower()
