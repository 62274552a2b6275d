"""
Benefit Service

Benefit eligibility and redemption engine for the membership platform.

Resolves which discount offers a member may see through the
member -> association -> business affiliation graph, records
redemptions atomically under per-member and global caps, and keeps
each business's active benefit counter in sync.
"""

__version__ = "1.0.0"
