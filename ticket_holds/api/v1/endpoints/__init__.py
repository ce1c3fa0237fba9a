"""
API endpoints module
"""

from . import holds, links, purchase_links, health

__all__ = [
    "holds",
    "links",
    "purchase_links",
    "health"
]
