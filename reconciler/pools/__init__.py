from reconciler.pools.liquidity import *
from reconciler.pools.classifier import *
from reconciler.pools.unwinder import *
