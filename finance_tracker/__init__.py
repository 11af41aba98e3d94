"""
Personal Finance Tracker - Core Package

Multi-tenant tracking of financial entities ("profiles") whose dated
asset snapshots are shared with users through admin-approved links.

DESIGN PRINCIPLES:
1. Every data access goes through the access control engine
2. Roles are resolved from storage on every decision, never trusted from callers
3. Derived totals are always recomputed server side
4. Aggregation never fails on a malformed row
5. Storage layer is swappable and injected
"""

__version__ = "1.0.0"
__author__ = "Personal Finance Tracker Team"
