"""Smart-money copy trader.

Scores tracked wallets, fuses their activity with chart and security
evidence into a bounded confidence, sizes positions under hard risk limits
and manages each position until an exit trigger fires.
"""

__version__ = "0.1.0"
