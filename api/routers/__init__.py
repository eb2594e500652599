"""
API Routers - Organized endpoint handlers for the swap API.

- cycles: Swap cycle detection, read models and participant actions
"""
