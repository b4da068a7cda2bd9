from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

import pytest

from app.errors import NotFound, ValidationFailed
from app.extensions import db
from app.models import Activity, Link
from app.models.activity import CLICK, PURCHASE, WITHDRAW, ActivityImmutable
from app.services.activity import (
    record_click,
    record_purchase,
    record_purchase_once,
    recompute_link_totals,
)


def _fresh(link_id):
    db.session.expire_all()
    return db.session.get(Link, link_id)


def test_click_appends_activity_and_bumps_counter(ctx, make_user, make_link):
    link = make_link(make_user())

    activity = record_click(link.id)

    assert activity.type == CLICK
    assert activity.amount is None
    assert activity.platform_fee is None
    assert _fresh(link.id).total_clicks == 1


def test_purchase_credits_seller_net(ctx, make_user, make_link):
    link = make_link(make_user())

    activity = record_purchase(link.id, 1000, 20, "pi_1", "Buyer@Example.com")

    assert activity.type == PURCHASE
    assert activity.amount == 1000
    assert activity.platform_fee == 20
    assert activity.customer_email == "buyer@example.com"

    link = _fresh(link.id)
    assert link.total_sales == 1
    assert link.total_earnings == Decimal("9.00")


def test_purchase_for_missing_link_writes_nothing(ctx):
    with pytest.raises(NotFound):
        record_purchase(9999, 1000, 20, "pi_missing")

    assert Activity.query.count() == 0


@pytest.mark.parametrize("base_cents, fee", [(0, 20), (-100, 20), (1000, 101), (1000, -1)])
def test_purchase_rejects_bad_amounts(ctx, make_user, make_link, base_cents, fee):
    link = make_link(make_user())

    with pytest.raises(ValidationFailed):
        record_purchase(link.id, base_cents, fee, "pi_bad")

    assert Activity.query.count() == 0
    assert _fresh(link.id).total_sales == 0


def test_purchase_once_dedupes_on_payment_ref(ctx, make_user, make_link):
    link = make_link(make_user())

    first, created = record_purchase_once(link.id, 1000, 20, "pi_dup", "a@example.com")
    again, created_again = record_purchase_once(link.id, 1000, 20, "pi_dup", "a@example.com")

    assert created is True
    assert created_again is False
    assert again.id == first.id

    link = _fresh(link.id)
    assert link.total_sales == 1
    assert link.total_earnings == Decimal("9.00")


def test_concurrent_clicks_lose_no_updates(app, make_user, make_link):
    with app.app_context():
        link_id = make_link(make_user()).id

    def click():
        with app.app_context():
            record_click(link_id)

    with ThreadPoolExecutor(max_workers=8) as pool:
        for future in [pool.submit(click) for _ in range(40)]:
            future.result()

    with app.app_context():
        assert db.session.get(Link, link_id).total_clicks == 40
        assert Activity.query.filter_by(link_id=link_id, type=CLICK).count() == 40


def test_recompute_matches_incremental_history(ctx, make_user, make_link):
    link = make_link(make_user())
    for _ in range(3):
        record_click(link.id)
    record_purchase(link.id, 1000, 20, "pi_a")
    record_purchase(link.id, 2550, 15, "pi_b")

    cached = _fresh(link.id)
    expected = (cached.total_clicks, cached.total_sales, cached.total_earnings)

    result = recompute_link_totals(link.id)

    link = _fresh(link.id)
    assert result["drift"] is False
    assert (link.total_clicks, link.total_sales, link.total_earnings) == expected
    # 900 + (2550 - 191)
    assert link.total_earnings == Decimal("32.59")


def test_recompute_repairs_drift_and_counts_withdraws(ctx, make_user, make_link):
    link = make_link(make_user())
    record_purchase(link.id, 1000, 20, "pi_a")

    db.session.add(Activity(link_id=link.id, type=WITHDRAW, amount=500))
    db.session.query(Link).filter(Link.id == link.id).update(
        {Link.total_earnings: Decimal("99.00"), Link.total_clicks: 7},
        synchronize_session=False,
    )
    db.session.commit()

    result = recompute_link_totals(link.id)

    assert result["drift"] is True
    assert result["before"]["earnings"] == Decimal("99.00")
    assert result["after"] == {"clicks": 0, "sales": 1, "earnings": Decimal("4.00")}
    link = _fresh(link.id)
    assert link.total_earnings == Decimal("4.00")
    assert link.total_clicks == 0


def test_fee_snapshot_survives_fee_change(ctx, make_user, make_link):
    seller = make_user(platform_fee=20)
    link = make_link(seller)
    record_purchase(link.id, 1000, seller.fee_percent, "pi_snap")

    seller.platform_fee = 50
    db.session.commit()

    result = recompute_link_totals(link.id)

    assert result["drift"] is False
    assert _fresh(link.id).total_earnings == Decimal("9.00")
    assert Activity.query.filter_by(stripe_payment_ref="pi_snap").one().platform_fee == 20


def test_activities_cannot_be_updated(ctx, make_user, make_link):
    link = make_link(make_user())
    activity = record_purchase(link.id, 1000, 20, "pi_frozen")

    activity.amount = 1
    with pytest.raises(ActivityImmutable):
        db.session.commit()
    db.session.rollback()

    assert db.session.get(Activity, activity.id).amount == 1000


def test_activities_cannot_be_deleted(ctx, make_user, make_link):
    link = make_link(make_user())
    activity = record_click(link.id)

    db.session.delete(activity)
    with pytest.raises(ActivityImmutable):
        db.session.commit()
    db.session.rollback()

    assert Activity.query.count() == 1


def test_reconcile_command_reports_drift(app, make_user, make_link):
    with app.app_context():
        seller = make_user()
        drifted = make_link(seller).id
        make_link(seller)
        record_purchase(drifted, 1000, 20, "pi_cli")
        db.session.query(Link).filter(Link.id == drifted).update(
            {Link.total_sales: 5}, synchronize_session=False,
        )
        db.session.commit()

    result = app.test_cli_runner().invoke(args=["ledger", "reconcile"])

    assert result.exit_code == 0
    assert "Checked 2 link(s), 1 drifted." in result.output
    with app.app_context():
        assert db.session.get(Link, drifted).total_sales == 1
