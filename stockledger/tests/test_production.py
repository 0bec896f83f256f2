from decimal import Decimal

import pytest
from sqlalchemy import select

from stockledger.app.db.models.core_types import ReferenceType, TransactionType
from stockledger.app.db.models.models_v1 import LedgerEntry
from stockledger.services.errors import InvalidArgumentError, InvalidStateError
from stockledger.services.inventory import get_balance
from stockledger.services.production import IngredientInput, create_production_transform
from stockledger.services.transfers import post_receipt


def _stock(db, product, loc, qty):
    post_receipt(db, product_id=product.id, location_id=loc.id, quantity=qty,
                 reference_type=ReferenceType.manual, reference_id="init")


def test_transform_consumes_ingredients_and_adds_output(db_session, md):
    """
    GIVEN
    - cuisine : farine 10, sucre 5

    THEN
    - gâteau x2 à partir de farine 3 (en deux lignes) + sucre 1
    - toutes les entrées partagent la référence PRD-...
    """
    kitchen = md.department(is_production=True)
    flour, sugar, cake = md.product(), md.product(), md.product()
    actor = md.actor(kitchen)
    _stock(db_session, flour, kitchen, 10)
    _stock(db_session, sugar, kitchen, 5)

    result = create_production_transform(
        db_session,
        department_id=kitchen.id,
        output_product_id=cake.id,
        output_quantity=2,
        ingredients=[
            IngredientInput(flour.id, Decimal("1.5")),
            IngredientInput(sugar.id, Decimal("1")),
            IngredientInput(flour.id, Decimal("1.5")),
        ],
        actor=actor,
        notes="batch 1",
    )

    assert result.reference_id.startswith("PRD-")
    assert get_balance(db_session, flour.id, kitchen.id) == Decimal("7")
    assert get_balance(db_session, sugar.id, kitchen.id) == Decimal("4")
    assert get_balance(db_session, cake.id, kitchen.id) == Decimal("2")

    entries = db_session.execute(
        select(LedgerEntry).where(LedgerEntry.reference_id == result.reference_id)
    ).scalars().all()
    assert len(entries) == 3
    assert {e.transaction_type for e in entries} == {TransactionType.production}
    assert {e.reference_type for e in entries} == {ReferenceType.production_transform.value}


def test_insufficient_ingredient_stock(db_session, md):
    kitchen = md.department(is_production=True)
    flour, cake = md.product(), md.product()
    _stock(db_session, flour, kitchen, 1)

    with pytest.raises(InvalidStateError):
        create_production_transform(
            db_session,
            department_id=kitchen.id,
            output_product_id=cake.id,
            output_quantity=1,
            ingredients=[IngredientInput(flour.id, 2)],
            actor=md.actor(kitchen),
        )
    assert get_balance(db_session, flour.id, kitchen.id) == Decimal("1")
    assert get_balance(db_session, cake.id, kitchen.id) == Decimal("0")


@pytest.mark.parametrize("output_qty,ingredients", [(0, "ok"), (1, "empty"), (1, "self")])
def test_transform_validation(db_session, md, output_qty, ingredients):
    kitchen = md.department(is_production=True)
    flour, cake = md.product(), md.product()
    lines = {
        "ok": [IngredientInput(flour.id, 1)],
        "empty": [],
        "self": [IngredientInput(cake.id, 1)],
    }[ingredients]

    with pytest.raises(InvalidArgumentError):
        create_production_transform(
            db_session,
            department_id=kitchen.id,
            output_product_id=cake.id,
            output_quantity=output_qty,
            ingredients=lines,
            actor=md.actor(kitchen),
        )
