"""Persistence for installment plans and service usage."""
from .installment_store import InMemoryInstallmentStore, SqliteInstallmentStore
from .quota import DailyQuota, UnlimitedQuota

__all__ = ["InMemoryInstallmentStore", "SqliteInstallmentStore", "DailyQuota", "UnlimitedQuota"]
