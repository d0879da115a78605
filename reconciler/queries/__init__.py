from reconciler.queries.common import *
from reconciler.queries.chain import *
from reconciler.queries.events import *
from reconciler.queries.holders import *
