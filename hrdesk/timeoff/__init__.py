"""Time off — request lifecycle, leave ledger, calendar, settings, annual reset."""

from hrdesk.timeoff.models import Holiday, TimeOffPolicy, TimeOffRequest, TimeOffRequestHistory

__all__ = ["Holiday", "TimeOffPolicy", "TimeOffRequest", "TimeOffRequestHistory"]
