import asyncio
from datetime import date
from decimal import Decimal

import pytest

import factories as f
from app.core.exceptions import FeeDataError, FeeVersionConflictError
from app.schemas.fees import FeeCycle, FeeVersion
from app.services import fee_version_service as versions
from fakes import raise_error

SCOPE = {"class_group_id": "class-5", "fee_category_id": "cat-tuition"}


def _version(number, start, end=None, active=True, cycle="monthly", amount=1000):
    return FeeVersion(
        fee_cycle=cycle, amount=Decimal(amount), version_number=number,
        effective_from=date.fromisoformat(start),
        effective_to=date.fromisoformat(end) if end else None,
        is_active=active,
    )


def test_select_version_picks_highest_number_covering_date():
    chain = [
        _version(1, "2023-01-01", "2023-12-31", active=False),
        _version(2, "2024-01-01", amount=1200),
    ]

    assert versions.select_version(chain, FeeCycle.monthly, date(2023, 6, 1)).version_number == 1
    assert versions.select_version(chain, FeeCycle.monthly, date(2024, 6, 1)).version_number == 2
    assert versions.select_version(chain, FeeCycle.monthly, date(2022, 6, 1)) is None
    assert versions.select_version(chain, FeeCycle.quarterly, date(2024, 6, 1)) is None


def test_withdrawn_open_ended_version_never_applies():
    withdrawn = _version(1, "2024-01-01", active=False)

    assert withdrawn.covers(date(2024, 6, 1)) is False


def test_resolve_reads_only_matching_scope(fake, db):
    f.class_version(fake, 1000, "2024-01-01")
    f.class_version(fake, 5000, "2024-01-01", class_group_id="class-6")
    f.class_version(fake, 9000, "2024-01-01", school_id="school-2")

    version = asyncio.run(versions.resolve(db, versions.CLASS_FEES, SCOPE, FeeCycle.monthly, date(2024, 3, 1)))

    assert version.amount == Decimal("1000")


def test_resolve_returns_none_when_nothing_covers(fake, db):
    f.class_version(fake, 1000, "2024-06-01")

    version = asyncio.run(versions.resolve(db, versions.CLASS_FEES, SCOPE, FeeCycle.monthly, date(2024, 3, 1)))

    assert version is None


def test_hike_closes_current_version_and_appends_next(fake, db):
    f.class_version(fake, 1000, "2024-01-01")

    created = asyncio.run(versions.hike(
        db, versions.CLASS_FEES, SCOPE, FeeCycle.monthly,
        Decimal("1200"), date(2024, 6, 1), created_by="user-1",
    ))

    assert created.version_number == 2
    assert created.amount == Decimal("1200")

    rows = sorted(fake.rows("class_fee_versions"), key=lambda r: r["version_number"])
    assert rows[0]["effective_to_date"] == "2024-05-31"
    assert rows[0]["is_active"] is False
    assert rows[1]["effective_to_date"] is None
    assert rows[1]["is_active"] is True
    assert rows[1]["school_id"] == f.SCHOOL_ID

    # the closed version still prices the months before the hike
    before = asyncio.run(versions.resolve(db, versions.CLASS_FEES, SCOPE, FeeCycle.monthly, date(2024, 5, 1)))
    after = asyncio.run(versions.resolve(db, versions.CLASS_FEES, SCOPE, FeeCycle.monthly, date(2024, 6, 1)))
    assert before.amount == Decimal("1000")
    assert after.amount == Decimal("1200")


def test_hike_is_audited(fake, db):
    f.class_version(fake, 1000, "2024-01-01")

    asyncio.run(versions.hike(db, versions.CLASS_FEES, SCOPE, FeeCycle.monthly, Decimal("1100"), date(2024, 9, 1)))

    logs = fake.rows("activity_logs")
    assert len(logs) == 1
    assert logs[0]["action"] == "fee.hiked"
    assert logs[0]["metadata"]["version_number"] == 2


def test_hike_must_start_after_current_version(fake, db):
    f.class_version(fake, 1000, "2024-06-01")

    with pytest.raises(FeeVersionConflictError):
        asyncio.run(versions.hike(db, versions.CLASS_FEES, SCOPE, FeeCycle.monthly, Decimal("1200"), date(2024, 6, 1)))

    assert len(fake.rows("class_fee_versions")) == 1


def test_hike_rejects_non_positive_amount(db):
    with pytest.raises(FeeVersionConflictError):
        asyncio.run(versions.hike(db, versions.CLASS_FEES, SCOPE, FeeCycle.monthly, Decimal("0"), date(2024, 6, 1)))


def test_first_hike_creates_version_one(fake, db):
    scope = {"class_group_id": "class-5", "route_name": "North"}

    created = asyncio.run(versions.hike(db, versions.TRANSPORT_FEES, scope, FeeCycle.monthly, Decimal("300"), date(2024, 1, 1)))

    assert created.version_number == 1
    assert fake.rows("transport_fee_versions")[0]["route_name"] == "North"


def test_version_history_is_newest_first(fake, db):
    f.class_version(fake, 1000, "2023-01-01", "2023-12-31", version_number=1, is_active=False)
    f.class_version(fake, 1100, "2024-01-01", version_number=2)

    history = asyncio.run(versions.version_history(db, versions.CLASS_FEES, SCOPE))

    assert [v.version_number for v in history] == [2, 1]


def test_class_fees_skip_transport_categories_and_respect_tuition_cycle(fake, db):
    f.category(fake)
    f.category(fake, id="cat-bus", name="Bus", fee_type="transport")
    f.category(fake, id="cat-lab", name="Lab", fee_type="custom")
    f.class_version(fake, 1000, "2024-01-01")
    f.class_version(fake, 2700, "2024-01-01", fee_cycle="quarterly")
    f.class_version(fake, 300, "2024-01-01", fee_category_id="cat-bus")
    f.class_version(fake, 50, "2024-01-01", fee_category_id="cat-lab")

    categories = asyncio.run(versions.load_categories(db))
    fees = asyncio.run(versions.resolve_class_fees(db, "class-5", date(2024, 4, 1), categories, FeeCycle.quarterly))

    assert sorted((fee.fee_category_id, fee.version.fee_cycle.value) for fee in fees) == [
        ("cat-lab", "monthly"),
        ("cat-tuition", "quarterly"),
    ]


def test_optional_fees_prefer_class_specific_schedule(fake, db):
    f.optional_version(fake, 200, "2024-01-01", "cat-club")
    f.optional_version(fake, 350, "2024-01-01", "cat-club", class_group_id="class-5")

    specific = asyncio.run(versions.resolve_optional_fees(db, "class-5", "cat-club", date(2024, 2, 1)))
    general = asyncio.run(versions.resolve_optional_fees(db, "class-7", "cat-club", date(2024, 2, 1)))

    assert [v.amount for v in specific] == [Decimal("350")]
    assert [v.amount for v in general] == [Decimal("200")]


def test_read_failure_raises_fee_data_error(fake, db):
    fake.on("class_fee_versions", "select", raise_error("connection reset"))

    with pytest.raises(FeeDataError) as exc:
        asyncio.run(versions.resolve(db, versions.CLASS_FEES, SCOPE, FeeCycle.monthly, date(2024, 3, 1)))

    assert exc.value.operation == "resolve:class_fee_versions"
    assert "connection reset" in exc.value.detail


def test_failed_insert_leaves_current_version_in_force(fake, db):
    f.class_version(fake, 1000, "2024-01-01")
    fake.on("class_fee_versions", "insert", raise_error("insert rejected"))

    with pytest.raises(RuntimeError):
        asyncio.run(versions.hike(db, versions.CLASS_FEES, SCOPE, FeeCycle.monthly, Decimal("1200"), date(2024, 6, 1)))

    rows = fake.rows("class_fee_versions")
    assert len(rows) == 1
    assert rows[0]["is_active"] is True
    assert rows[0]["effective_to_date"] is None
    july = asyncio.run(versions.resolve(db, versions.CLASS_FEES, SCOPE, FeeCycle.monthly, date(2024, 7, 1)))
    assert july.amount == Decimal("1000")


def test_failed_close_still_prices_from_the_new_version(fake, db):
    f.class_version(fake, 1000, "2024-01-01")
    fake.on("class_fee_versions", "update", raise_error("update rejected"))

    with pytest.raises(RuntimeError):
        asyncio.run(versions.hike(db, versions.CLASS_FEES, SCOPE, FeeCycle.monthly, Decimal("1200"), date(2024, 6, 1)))

    may = asyncio.run(versions.resolve(db, versions.CLASS_FEES, SCOPE, FeeCycle.monthly, date(2024, 5, 1)))
    july = asyncio.run(versions.resolve(db, versions.CLASS_FEES, SCOPE, FeeCycle.monthly, date(2024, 7, 1)))
    assert may.amount == Decimal("1000")
    assert july.amount == Decimal("1200")
