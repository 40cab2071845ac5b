"""
dayatlas/labeling: Calendar-day keys and majority place labels.
"""

from .days import DayLabeler, day_key_for, group_by_day, majority_label

__all__ = [
    "DayLabeler",
    "day_key_for",
    "group_by_day",
    "majority_label",
]
