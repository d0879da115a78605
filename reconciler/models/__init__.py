"""
Types here are instantiated as subclasses of pydantic's `BaseModel`.
This means we get runtime deserialization and validation for free just by using type declarations
and a couple of pydantic helpers.

Use these in your code as python objects, then serialize to json with `.model_dump(mode="json")`.
The ledger is the exception: it is a plain class guarding a dict of `ResolvedBalance` models.
"""

from reconciler.models.types import *
from reconciler.models.Config import *
from reconciler.models.Pool import *
from reconciler.models.Ledger import *
from reconciler.models.Report import *
from reconciler.models.Reconciliation import *
from reconciler.models.Claim import *
from reconciler.models.Writer import *
