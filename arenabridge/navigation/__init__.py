from arenabridge.navigation.strategy import (
    DEFAULT_PATHS,
    NavigationAttempt,
    NavigationOutcome,
    NavigationPath,
    NavigationResult,
    NavigationStrategySelector,
    parse_paths,
)

__all__ = [
    "DEFAULT_PATHS",
    "NavigationAttempt",
    "NavigationOutcome",
    "NavigationPath",
    "NavigationResult",
    "NavigationStrategySelector",
    "parse_paths",
]
