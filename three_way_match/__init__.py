"""
Three-Way Match Engine
"""

__version__ = "1.0.0"
__description__ = "Invoice reconciliation against purchase orders and goods receipts"

from three_way_match.main import run_three_way_match, check_payment_eligibility, process_match_request
from three_way_match.state import MatchState
from three_way_match.schemas.match import MatchRunOutput, PaymentEligibility

__all__ = [
    "run_three_way_match",
    "check_payment_eligibility",
    "process_match_request",
    "MatchState",
    "MatchRunOutput",
    "PaymentEligibility",
]
