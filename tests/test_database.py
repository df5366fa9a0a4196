import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import SqlStateStore, StoredState, init_db
from store import AppStore


@pytest.fixture
def db():
    engine = create_engine(
        "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool,
    )
    init_db(bind=engine)
    session = sessionmaker(bind=engine)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


def test_missing_key_loads_none(db):
    assert SqlStateStore(db).load("portfolio") is None


def test_save_and_overwrite(db):
    store = SqlStateStore(db)
    store.save("alerts", [{"id": "a1"}])
    assert store.load("alerts") == [{"id": "a1"}]

    store.save("alerts", [])
    assert store.load("alerts") == []
    assert db.query(StoredState).count() == 1


def test_corrupt_payload_is_discarded(db):
    db.add(StoredState(key="profile", payload="{not json"))
    db.commit()
    assert SqlStateStore(db).load("profile") is None


def test_app_store_round_trip_through_sql(db, clock):
    app_store = AppStore(SqlStateStore(db), clock=clock)
    app_store.execute_trade("ethereum", "buy", 2, 1500, symbol="eth")
    app_store.add_alert("ethereum", 2000, "above")

    reloaded = AppStore.load(SqlStateStore(db), clock=clock)
    assert reloaded.portfolio.find_holding("ethereum").quantity == pytest.approx(2)
    assert reloaded.portfolio.transactions[0].timestamp == clock()
    assert reloaded.alerts[0].target_price == 2000
    assert reloaded.profile.find_achievement("alert-setter").is_unlocked
