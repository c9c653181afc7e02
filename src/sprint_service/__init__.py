"""Sprint Board Service.

Task and sprint planning for small teams: keeps task-to-sprint membership
consistent, reorders sprint task lists, derives progress metrics, and
persists everything through a relational or a per-user key-value backend.
"""

__version__ = "0.1.0"
