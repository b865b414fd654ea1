"""
Payroll Engine - Services Package

Business logic services.
"""
