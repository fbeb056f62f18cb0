"""
Personal Budget - Source Package

The back end of a personal budgeting app: budget items, their storage,
and the recurring-transaction engine that materializes each period's
transactions and notifies their owners.

DESIGN PRINCIPLES:
1. One canonical date algorithm, one injected store
2. A failing item never stops the batch
3. Notifications never change persisted state
4. Every step of a run is auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Personal Budget Team"
