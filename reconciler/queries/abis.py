"""
Simplified ABIs containing just the fragments we call.
Each probe in the classifier maps to one of these shapes.
"""


def _view(name: str, inputs: list[str], outputs: list[str]) -> dict:
    return {
        "name": name,
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": f"arg{i}", "type": t} for i, t in enumerate(inputs)],
        "outputs": [{"name": f"out{i}", "type": t} for i, t in enumerate(outputs)],
    }


def _transfer(indexed_value: bool, value_name: str) -> dict:
    return {
        "name": "Transfer",
        "type": "event",
        "anonymous": False,
        "inputs": [
            {"name": "from", "type": "address", "indexed": True},
            {"name": "to", "type": "address", "indexed": True},
            {"name": value_name, "type": "uint256", "indexed": indexed_value},
        ],
    }


ERC20_ABI = [
    _view("balanceOf", ["address"], ["uint256"]),
    _view("totalSupply", [], ["uint256"]),
    _transfer(indexed_value=False, value_name="value"),
]

# Aerodrome / Velodrome style pools expose the reserves directly
STABLE_POOL_ABI = [
    _view("token0", [], ["address"]),
    _view("token1", [], ["address"]),
    _view("reserve0", [], ["uint256"]),
    _view("reserve1", [], ["uint256"]),
    _view("totalSupply", [], ["uint256"]),
    _view("balanceOf", ["address"], ["uint256"]),
]

CLASSIC_POOL_ABI = [
    _view("token0", [], ["address"]),
    _view("token1", [], ["address"]),
    _view("getReserves", [], ["uint112", "uint112", "uint32"]),
    _view("totalSupply", [], ["uint256"]),
    _view("balanceOf", ["address"], ["uint256"]),
]

CONCENTRATED_POOL_ABI = [
    _view("token0", [], ["address"]),
    _view("token1", [], ["address"]),
    _view("fee", [], ["uint24"]),
    _view("liquidity", [], ["uint128"]),
    _view(
        "slot0",
        [],
        ["uint160", "int24", "uint16", "uint16", "uint16", "uint8", "bool"],
    ),
]

POSITION_MANAGER_ABI = [
    _view("factory", [], ["address"]),
    _view("WETH9", [], ["address"]),
    _view(
        "positions",
        ["uint256"],
        [
            "uint96",  # nonce
            "address",  # operator
            "address",  # token0
            "address",  # token1
            "uint24",  # fee
            "int24",  # tickLower
            "int24",  # tickUpper
            "uint128",  # liquidity
            "uint256",  # feeGrowthInside0LastX128
            "uint256",  # feeGrowthInside1LastX128
            "uint128",  # tokensOwed0
            "uint128",  # tokensOwed1
        ],
    ),
    _view("ownerOf", ["uint256"], ["address"]),
    _view("balanceOf", ["address"], ["uint256"]),
    _view("tokenOfOwnerByIndex", ["address", "uint256"], ["uint256"]),
    _transfer(indexed_value=True, value_name="tokenId"),
]

FACTORY_ABI = [
    _view("getPool", ["address", "address", "uint24"], ["address"]),
]

DISTRIBUTOR_ABI = [
    _view("getCurrentDistributionInfo", [], ["uint256", "uint256"]),
]
