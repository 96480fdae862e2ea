"""Engine services: ledger, escrow, reservations, penalties, cooldown, forgiveness, achievements."""

from .achievements import AchievementService, ClaimOutcome
from .cooldown import CooldownLiftOutcome, CooldownService, CooldownStatus
from .escrow import EscrowService, HoldResolution
from .forgiveness import ForgivenessOutcome, ForgivenessService
from .ledger import LedgerService, TransactionResult
from .penalties import NoShowOutcome, PenaltyService, PenaltyStatus
from .referrals import ReferralService
from .reservations import PickupOutcome, ReservationService, TransitionOutcome
from .results import Err, ErrorKind, Ok, Result
from .slots import SlotService

__all__ = [
    "AchievementService",
    "ClaimOutcome",
    "CooldownLiftOutcome",
    "CooldownService",
    "CooldownStatus",
    "Err",
    "ErrorKind",
    "EscrowService",
    "ForgivenessOutcome",
    "ForgivenessService",
    "HoldResolution",
    "LedgerService",
    "NoShowOutcome",
    "Ok",
    "PenaltyService",
    "PenaltyStatus",
    "PickupOutcome",
    "ReferralService",
    "ReservationService",
    "Result",
    "SlotService",
    "TransactionResult",
]
