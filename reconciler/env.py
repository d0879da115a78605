import os
from typing import Optional

from dotenv import load_dotenv
from reconciler.errors import MissingEnvironmentVariableException

load_dotenv()


def env_var(accessor: str) -> str:
    """
    Attempt to fetch an environment variable and throw
    an error if not found
    """
    var = os.environ.get(accessor)
    if not var:
        raise MissingEnvironmentVariableException(accessor)
    return var


def optional_env_var(accessor: str) -> Optional[str]:
    """API keys for holder indexes are optional: a missing key just skips that index"""
    return os.environ.get(accessor) or None


class API_KEYS:
    @staticmethod
    def covalent() -> Optional[str]:
        return optional_env_var("COVALENT_API_KEY")

    @staticmethod
    def moralis() -> Optional[str]:
        return optional_env_var("MORALIS_API_KEY")

    @staticmethod
    def blockscout() -> Optional[str]:
        return optional_env_var("BLOCKSCOUT_API_KEY") or optional_env_var("BASESCAN_API_KEY")


def rpc_url() -> str:
    return env_var("RPC_URL")
