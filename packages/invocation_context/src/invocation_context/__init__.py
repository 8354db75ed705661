from invocation_context.context import IllegalStateError, InvocationContext
from invocation_context.multimap import MultiMap, UniqueMultiMap

__all__ = [
    "IllegalStateError",
    "InvocationContext",
    "MultiMap",
    "UniqueMultiMap",
]
