from decimal import Decimal

from app.extensions import db
from app.services.activity import record_click, record_purchase
from app.services.wallet import available_balance, recent_money_activities, withdrawable_allocations


def test_balance_sums_all_links_including_deleted(ctx, make_user, make_link):
    seller = make_user()
    live = make_link(seller)
    gone = make_link(seller)
    record_purchase(live.id, 1000, 20, "pi_live")
    record_purchase(gone.id, 2000, 0, "pi_gone")

    gone.is_deleted = True
    db.session.commit()

    assert available_balance(seller.id) == Decimal("29.00")


def test_balance_ignores_other_sellers(ctx, make_user, make_link):
    seller = make_user()
    other = make_user()
    record_purchase(make_link(seller).id, 1000, 0, "pi_mine")
    record_purchase(make_link(other).id, 5000, 0, "pi_theirs")

    assert available_balance(seller.id) == Decimal("10.00")
    assert available_balance(other.id) == Decimal("50.00")


def test_balance_is_zero_without_links(ctx, make_user):
    assert available_balance(make_user().id) == Decimal("0.00")


def test_allocations_skip_empty_links(ctx, make_user, make_link):
    seller = make_user()
    paid = make_link(seller)
    make_link(seller)
    record_purchase(paid.id, 3000, 0, "pi_paid")

    assert withdrawable_allocations(seller.id) == {paid.id: 3000}


def test_recent_activities_exclude_clicks(ctx, make_user, make_link):
    seller = make_user()
    link = make_link(seller, slug="my-video")
    record_click(link.id)
    record_purchase(link.id, 1000, 20, "pi_recent")

    items = recent_money_activities(seller.id)

    assert [item["type"] for item in items] == ["purchase"]
    assert items[0]["amount"] == 10.0
    assert items[0]["linkSlug"] == "my-video"
