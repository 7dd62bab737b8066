"""Signal detection layer - Wallet convergence, hot wallets and chart patterns."""

from smart_money_copytrader.detector.models import (
    ChartAction,
    ChartClassification,
    ChartPattern,
    Direction,
    Signal,
    SignalKind,
)
from smart_money_copytrader.detector.chart import ChartPatternClassifier, ChartPatternDetector
from smart_money_copytrader.detector.convergence import ConvergenceDetector, convergence_strength
from smart_money_copytrader.detector.hot_wallet import HotWalletDetector
from smart_money_copytrader.detector.scorer import (
    ConfidenceAggregator,
    ConfidenceAssessment,
    ConfidenceWeights,
)

__all__ = [
    "ChartAction",
    "ChartClassification",
    "ChartPattern",
    "ChartPatternClassifier",
    "ChartPatternDetector",
    "ConfidenceAggregator",
    "ConfidenceAssessment",
    "ConfidenceWeights",
    "ConvergenceDetector",
    "Direction",
    "HotWalletDetector",
    "Signal",
    "SignalKind",
    "convergence_strength",
]
