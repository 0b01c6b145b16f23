import uuid
from typing import Any

from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel

from app.database import build_engine
from app.models.address import CustomerAddress
from app.models.bank_account import BankAccount
from app.models.order import Order, OrderEvent  # noqa: F401
from app.models.user import User
from app.services.order_status import PENDING
from app.services.pricing import calculate_fees


def make_engine() -> Engine:
    engine = build_engine("sqlite://")
    SQLModel.metadata.create_all(engine)
    return engine


def make_user(session: Session, role: str = "customer", **kw: Any) -> User:
    user_id = kw.pop("id", None) or uuid.uuid4()
    user = User(
        id=user_id,
        email=kw.pop("email", f"{role}-{user_id.hex[:8]}@example.com"),
        name=kw.pop("name", f"{role.title()} {user_id.hex[:4]}"),
        role=role,
        **kw,
    )
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


def make_address(session: Session, customer: User, **kw: Any) -> CustomerAddress:
    fields = {
        "label": "Home",
        "line1": "123 Main St",
        "city": "Austin",
        "state": "TX",
        "postal_code": "78701",
        "latitude": 30.2672,
        "longitude": -97.7431,
    }
    fields.update(kw)
    address = CustomerAddress(customer_id=customer.id, **fields)
    session.add(address)
    session.commit()
    session.refresh(address)
    return address


def make_bank_account(session: Session, customer: User, **kw: Any) -> BankAccount:
    account = BankAccount(
        customer_id=customer.id,
        institution_name=kw.pop("institution_name", "First Test Bank"),
        account_mask=kw.pop("account_mask", "1234"),
        **kw,
    )
    session.add(account)
    session.commit()
    session.refresh(account)
    return account


def make_order(
    session: Session,
    customer: User,
    amount: float = 200,
    status: str = PENDING,
    **kw: Any,
) -> Order:
    """Insert an order directly in any status, bypassing the repository."""
    order = Order(
        customer_id=customer.id,
        **calculate_fees(amount).as_order_fields(),
        customer_address=kw.pop("customer_address", "123 Main St, Austin, TX 78701"),
        status=status,
        **kw,
    )
    session.add(order)
    session.commit()
    session.refresh(order)
    return order


class RecordingDispatcher:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.dispatched: list[uuid.UUID] = []

    def dispatch(self, event_id: uuid.UUID) -> None:
        if self.fail:
            raise RuntimeError("push provider unavailable")
        self.dispatched.append(event_id)


class RecordingScheduler:
    """Stands in for BackgroundTasks.add_task: queue now, run later."""

    def __init__(self):
        self.tasks: list[tuple] = []

    def __call__(self, func, *args) -> None:
        self.tasks.append((func, args))

    def run_all(self) -> None:
        tasks, self.tasks = self.tasks, []
        for func, args in tasks:
            func(*args)
