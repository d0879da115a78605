class HolderDiscoveryError(Exception):
    """Raise if no holder index could produce the universe of token holders"""

    pass


class EmptyQueryError(Exception):
    """Raise if a holder index returns an error payload or no results"""

    pass


class TooManyLoopsError(Exception):
    """Raise if a paginated loop runs too many times"""

    pass


class ExcludedAddressError(Exception):
    """Raise if an address from the exclusion set is credited in the ledger"""

    pass


class EmptyDistributionError(Exception):
    """Raise if no ledger entry earns a non-zero reward"""

    pass


class BadConfigException(Exception):
    pass


class MissingEnvironmentVariableException(Exception):
    pass


class MissingRewardRateException(Exception):
    """Raise if the reward rate can neither be read on-chain nor from config"""

    pass
