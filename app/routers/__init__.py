"""
Payroll Engine - Routers Package

FastAPI route handlers.

Routers:
- payroll: calculation, batch runs, formula validation, attendance hygiene
"""

from app.routers import payroll

__all__ = ["payroll"]
