"""SQLAlchemy models package."""

from .user import User, UserRoleEnum, UserStatusEnum  # noqa: F401
from .partner import Offer, OfferStatus, Partner, PartnerStatus  # noqa: F401
from .points import AccountOwnerType, LedgerReason, LedgerTransaction, PointsAccount  # noqa: F401
from .escrow import EscrowHold, EscrowHoldStatus  # noqa: F401
from .reservation import (  # noqa: F401
    TERMINAL_RESERVATION_STATUSES,
    Reservation,
    ReservationStatus,
)
from .penalty import ForgivenessRequest, ForgivenessStatus, Penalty, PenaltyOffense  # noqa: F401
from .cooldown import CancellationEvent, CooldownLift  # noqa: F401
from .achievement import (  # noqa: F401
    AchievementDefinition,
    AchievementRequirementType,
    AchievementTier,
    UserAchievement,
    UserStats,
)
