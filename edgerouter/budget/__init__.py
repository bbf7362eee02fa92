"""Spend accounting and budget limits."""

from edgerouter.budget.tracker import BudgetAlert, BudgetConfig, BudgetTracker

__all__ = ["BudgetAlert", "BudgetConfig", "BudgetTracker"]
