"""Alerting layer - Position notifications and message formatting."""

from smart_money_copytrader.alerter.formatter import PositionAlertFormatter
from smart_money_copytrader.alerter.hooks import NotificationHooks
from smart_money_copytrader.alerter.models import FormattedAlert

__all__ = [
    "FormattedAlert",
    "NotificationHooks",
    "PositionAlertFormatter",
]
