import sys
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from uuid import UUID, uuid4

import pytest
import pytest_asyncio


def _configure_path() -> None:
    src_path = Path(__file__).resolve().parents[1] / "src"
    if src_path.exists():
        sys.path.insert(0, str(src_path))


_configure_path()

import smartpick_api.models  # noqa: E402,F401
from smartpick_api.app import create_app  # noqa: E402
from smartpick_api.core.clock import FrozenClock  # noqa: E402
from smartpick_api.db.base import Base  # noqa: E402
from smartpick_api.db.session import build_engine, build_session_factory, get_session, get_session_factory  # noqa: E402
from smartpick_api.models.partner import Offer, OfferStatus, Partner, PartnerStatus  # noqa: E402
from smartpick_api.models.points import AccountOwnerType, LedgerReason  # noqa: E402
from smartpick_api.models.user import User, UserRoleEnum  # noqa: E402
from smartpick_api.observability.engine import get_engine_store  # noqa: E402
from smartpick_api.observability.scheduler import get_scheduler_store  # noqa: E402
from smartpick_api.services.achievements import AchievementService  # noqa: E402
from smartpick_api.services.ledger import LedgerService  # noqa: E402

# 12:00 in Tbilisi (UTC+4). Must stay earlier than the wall clock the HTTP tests write with.
FROZEN_AT = datetime(2025, 3, 14, 8, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def reset_observability_stores():
    get_engine_store().reset()
    get_scheduler_store().reset()
    yield


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(FROZEN_AT)


@pytest_asyncio.fixture
async def session_factory(tmp_path: Path):
    # File-backed so concurrent sessions contend on the real SQLite write lock.
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'smartpick-test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = build_session_factory(engine)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def app_with_db(session_factory):
    app = create_app()

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_session_factory] = lambda: session_factory

    try:
        yield app, session_factory
    finally:
        app.dependency_overrides.clear()


class Seeder:
    """Commit fixture rows through their own short-lived sessions."""

    def __init__(self, session_factory, clock: FrozenClock) -> None:
        self._session_factory = session_factory
        self._clock = clock

    async def user(self, *, role: UserRoleEnum = UserRoleEnum.CUSTOMER, points: int = 0) -> User:
        user = User(
            id=uuid4(),
            email=f"{role.value}-{uuid4().hex[:8]}@smartpick.test",
            display_name=role.value.title(),
            role=role.value,
            max_reservation_quantity=3,
        )
        async with self._session_factory() as session:
            session.add(user)
            await session.commit()
        if points:
            await self.fund(user.id, points)
        return user

    async def customer(self, *, points: int = 0) -> User:
        return await self.user(points=points)

    async def admin(self) -> User:
        return await self.user(role=UserRoleEnum.ADMIN)

    async def partner(self) -> tuple[User, Partner]:
        owner = await self.user(role=UserRoleEnum.PARTNER)
        partner = Partner(
            id=uuid4(),
            user_id=owner.id,
            business_name=f"Bakery {owner.id.hex[:4]}",
            status=PartnerStatus.APPROVED,
        )
        async with self._session_factory() as session:
            session.add(partner)
            await session.commit()
        return owner, partner

    async def offer(
        self,
        partner: Partner,
        *,
        points_cost: int = 5,
        quantity: int = 5,
        category: str = "bakery",
        original_price: str = "10.00",
        smart_price: str = "6.00",
        pickup_end: datetime | None = None,
        status: OfferStatus = OfferStatus.ACTIVE,
    ) -> Offer:
        offer = Offer(
            id=uuid4(),
            partner_id=partner.id,
            title="Evening pastry box",
            category=category,
            original_price=Decimal(original_price),
            smart_price=Decimal(smart_price),
            points_cost=points_cost,
            quantity_total=quantity,
            quantity_available=quantity,
            quantity_claimed=0,
            pickup_start=self._clock.now(),
            pickup_end=pickup_end,
            status=status,
        )
        async with self._session_factory() as session:
            session.add(offer)
            await session.commit()
        return offer

    async def fund(
        self,
        owner_id: UUID,
        points: int,
        *,
        owner_type: AccountOwnerType = AccountOwnerType.CUSTOMER,
    ) -> int:
        async with self._session_factory() as session:
            ledger = LedgerService(session, clock=self._clock)
            account = await ledger.ensure_account(owner_type, owner_id)
            result = await ledger.apply_transaction(account.id, points, LedgerReason.ADMIN_ADJUSTMENT)
            await session.commit()
        return result.value.new_balance

    async def balance(self, owner_id: UUID, *, owner_type: AccountOwnerType = AccountOwnerType.CUSTOMER) -> int:
        async with self._session_factory() as session:
            account = await LedgerService(session, clock=self._clock).get_account(owner_type, owner_id)
        return account.balance if account is not None else 0

    async def catalog(self) -> None:
        async with self._session_factory() as session:
            await AchievementService(session, clock=self._clock).sync_catalog()
            await session.commit()


@pytest.fixture
def seed(session_factory, clock) -> Seeder:
    return Seeder(session_factory, clock)
