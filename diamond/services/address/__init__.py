"""
Address Service - Server Fleet Discovery

Responsibilities:
- Fetch the configuration server list from the bootstrap endpoint
- Refresh it periodically (every 5 minutes by default)
- Persist it locally for cold-start fallback
"""

from .resolver import ServerAddressSubscriber, parse_address_list

__all__ = ["ServerAddressSubscriber", "parse_address_list"]
