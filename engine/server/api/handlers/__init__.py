"""HTTP handlers for API endpoints.

Modules:
- trending: local trending query with bound checks.
- popular: current top-3 snapshot and the manual ETL trigger.
- views: view tracking with the atomic counter bump.
- rate_limits: internal login/comment throttle endpoints.
"""
