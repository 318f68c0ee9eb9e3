import pytest
from datetime import timedelta
from decimal import Decimal
from sqlalchemy.orm import sessionmaker
from backoffice.core.database import create_db_engine
from backoffice.models.database import Base, Item, ItemCategory, Role, User, utcnow
from backoffice.services.notifications import NotificationSender


class RecordingNotifier(NotificationSender):
    """Keeps sent notifications in memory"""

    def __init__(self):
        self.sent = []

    def send(self, recipients, subject, body):
        self.sent.append({"recipients": list(recipients), "subject": subject, "body": body})


class FailingNotifier(NotificationSender):
    def send(self, recipients, subject, body):
        raise ConnectionError("mail server unavailable")


@pytest.fixture
def test_engine(tmp_path):
    # File-backed SQLite so separate sessions see each other's commits
    engine = create_db_engine(f"sqlite:///{tmp_path / 'test.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture
def test_db(session_factory):
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def users(test_db):
    """One user per role plus a second waiter"""
    staff = {
        "admin": User(name="Alice Admin", email="admin@example.com", password="x",
                      role=Role.SUPER_ADMIN, email_verified=True),
        "manager": User(name="Mona Manager", email="manager@example.com", password="x",
                        role=Role.MANAGER, email_verified=False),
        "cashier": User(name="Carl Cashier", email="cashier@example.com", password="x",
                        role=Role.CASHIER),
        "waiter": User(name="Walter White", email="walter@example.com", password="x",
                       role=Role.WAITER),
        "waiter2": User(name="Wendy Waits", email="wendy@example.com", password="x",
                        role=Role.WAITER),
    }
    test_db.add_all(staff.values())
    test_db.commit()
    for user in staff.values():
        test_db.refresh(user)
    return staff


@pytest.fixture
def items(test_db):
    """Sample inventory items"""
    today = utcnow().date()
    stock = {
        "burger": Item(name="Burger", price=Decimal("5.00"), category=ItemCategory.FOOD,
                       stock_quantity=10, expiry_date=today + timedelta(days=60)),
        "cola": Item(name="Cola", price=Decimal("2.50"), category=ItemCategory.BEVERAGES,
                     stock_quantity=2),
        "napkins": Item(name="Napkins", price=Decimal("1.00"), category=ItemCategory.OTHERS,
                        stock_quantity=100),
        "old_milk": Item(name="Old Milk", price=Decimal("1.20"), category=ItemCategory.BEVERAGES,
                         stock_quantity=5, expiry_date=today - timedelta(days=1)),
        "sold_out": Item(name="Sold Out Cake", price=Decimal("4.00"), category=ItemCategory.FOOD,
                         stock_quantity=0),
    }
    test_db.add_all(stock.values())
    test_db.commit()
    for item in stock.values():
        test_db.refresh(item)
    return stock


@pytest.fixture
def failing_notifier():
    return FailingNotifier()
