from decimal import Decimal

from sqlalchemy.orm import Session

from database import init_db, make_engine
from services import CategoryService, UserService


def test_categories_are_scoped_to_user() -> None:
    engine = make_engine("sqlite://")
    init_db(engine)

    with Session(engine) as session:
        alice = UserService(session).get_or_create("alice")
        bob = UserService(session).get_or_create("bob")

        alice_ids = {c.id for c in CategoryService(session).list_for_user(alice.id)}
        bob_ids = {c.id for c in CategoryService(session).list_for_user(bob.id)}

        assert len(alice_ids) == 7
        assert len(bob_ids) == 7
        assert alice_ids.isdisjoint(bob_ids)
        assert CategoryService(session).list_for_user(9999) == []


def test_update_budget_overwrites_single_category() -> None:
    engine = make_engine("sqlite://")
    init_db(engine)

    with Session(engine) as session:
        user = UserService(session).get_or_create("alice")
        categories = CategoryService(session)
        food = next(c for c in categories.list_for_user(user.id) if c.name == "Food")

        categories.update_budget(food.id, Decimal("9500.25"))
        session.expire_all()

        budgets = {c.name: c.budget for c in categories.list_for_user(user.id)}
        assert budgets["Food"] == Decimal("9500.25")
        assert budgets["Rent"] == Decimal("12000")


def test_update_budget_on_unknown_category_is_noop() -> None:
    engine = make_engine("sqlite://")
    init_db(engine)

    with Session(engine) as session:
        user = UserService(session).get_or_create("alice")
        CategoryService(session).update_budget(9999, Decimal("1"))
        session.expire_all()

        budgets = [c.budget for c in CategoryService(session).list_for_user(user.id)]
        assert Decimal("1") not in budgets
