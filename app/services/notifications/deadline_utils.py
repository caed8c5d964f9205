from datetime import date


class DeadlineCalculator:
    """Calendar-day deadline arithmetic against an injected ``today``."""

    @staticmethod
    def calculate_days_until(deadline_date: date, today: date) -> int:
        """Days from today until the deadline; negative once it has passed"""
        return (deadline_date - today).days

    @staticmethod
    def calculate_days_overdue(deadline_date: date, today: date) -> int:
        """Days the deadline lies in the past, zero when not overdue"""
        return max(0, (today - deadline_date).days)

    @staticmethod
    def is_overdue(deadline_date: date, today: date) -> bool:
        """A deadline is overdue from the calendar day after it"""
        return deadline_date < today
