"""Employee directory — Company and Employee models, org chart, services."""

from hrdesk.employees.models import Company, Employee

__all__ = ["Company", "Employee"]
