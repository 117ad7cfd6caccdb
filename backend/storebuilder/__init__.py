"""
Store Builder - WhatsApp Order Catalogs
=======================================

Multi-tenant product: accounts register, build one or more catalog stores,
manage categories and products, and pay for tiered plans that cap how many
stores, products and categories may be active at once.

PLAN ENFORCEMENT RULES:
- Limits are read from the plans collection, never hard-coded per route
- Over-limit resources are suspended/deactivated, never deleted
- Survivors are chosen oldest-created first (created_at, then id)
"""

__version__ = "1.0.0"
__product__ = "StoreBuilder"
