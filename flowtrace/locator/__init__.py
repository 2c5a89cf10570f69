from flowtrace.locator.cache import LocatorCache
from flowtrace.locator.resolver import LocatorResolver
from flowtrace.locator.tokens import normalize, skeleton, try_parse

__all__ = ["LocatorCache", "LocatorResolver", "normalize", "skeleton", "try_parse"]
