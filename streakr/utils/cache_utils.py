"""
Cache utilities for Streakr
Provides caching decorators and helper functions for leaderboard and live score reads
"""

import functools

from flask import current_app

from streakr import cache

LEADERBOARD_VERSION_KEY = "leaderboard_version"


def get_leaderboard_version():
    """Current leaderboard cache generation (bumped after every settlement)"""
    version = cache.get(LEADERBOARD_VERSION_KEY)
    if version is None:
        version = 1
        cache.set(LEADERBOARD_VERSION_KEY, version, timeout=0)
    return version


def invalidate_leaderboards():
    """
    Drop every cached leaderboard view.

    Keys embed the generation number, so bumping it orphans all old entries
    without needing pattern deletes (which SimpleCache lacks).
    """
    version = get_leaderboard_version() + 1
    cache.set(LEADERBOARD_VERSION_KEY, version, timeout=0)
    current_app.logger.debug(f"Leaderboard cache generation now {version}")
    return version


def cached_leaderboard(scope_name):
    """
    Decorator for caching leaderboard query results

    Args:
        scope_name: Name of the leaderboard scope for cache key generation
    """

    def decorator(f):
        @functools.wraps(f)
        def wrapped(*args, **kwargs):
            args_str = "_".join(str(arg) for arg in args)
            kwargs_str = "_".join(f"{k}_{v}" for k, v in sorted(kwargs.items()))
            cache_key = (
                f"leaderboard_v{get_leaderboard_version()}_{scope_name}_"
                f"{args_str}_{kwargs_str}"
            )

            result = cache.get(cache_key)
            if result is not None:
                current_app.logger.debug(f"Leaderboard cache hit: {cache_key}")
                return result

            result = f(*args, **kwargs)
            cache.set(
                cache_key,
                result,
                timeout=current_app.config.get("LEADERBOARD_CACHE_TIMEOUT", 60),
            )
            current_app.logger.debug(f"Leaderboard cache set: {cache_key}")

            return result

        return wrapped

    return decorator


class CacheManager:
    """Cache management utilities"""

    @staticmethod
    def get_cache_stats():
        return {
            "type": current_app.config.get("CACHE_TYPE", "Unknown"),
            "timeout": current_app.config.get("CACHE_DEFAULT_TIMEOUT", 300),
            "leaderboardVersion": get_leaderboard_version(),
        }
