from datetime import date
from decimal import Decimal
from itertools import count

from milkpick.extensions import db
from milkpick.models import Farm, Order, PaymentMethod, Product, Subscription, User

_seq = count(1)


def make_user(role="customer", **kw) -> User:
    n = next(_seq)
    user = User(
        first_name=kw.pop("first_name", "Test"),
        last_name=kw.pop("last_name", f"{role.title()}{n}"),
        email=kw.pop("email", f"{role}{n}@example.com"),
        phone=kw.pop("phone", f"+1555000{n:04d}"),
        role=role,
        **kw,
    )
    db.session.add(user)
    db.session.commit()
    return user


def make_farm(farmer=None, **kw) -> Farm:
    farmer = farmer or make_user("farmer")
    farm = Farm(farmer_id=farmer.id, name=kw.pop("name", "Sunny Meadow Dairy"), **kw)
    db.session.add(farm)
    db.session.commit()
    return farm


def make_product(farm=None, price="5.00", **kw) -> Product:
    farm = farm or make_farm()
    product = Product(
        farm_id=farm.id,
        name=kw.pop("name", "Raw Milk"),
        unit=kw.pop("unit", "gallon"),
        price=Decimal(price),
        available=kw.pop("available", True),
        **kw,
    )
    db.session.add(product)
    db.session.commit()
    return product


def make_subscription(customer=None, product=None, *, frequency="weekly", quantity=2,
                      start_date=date(2024, 1, 1), **kw) -> Subscription:
    customer = customer or make_user("customer")
    product = product or make_product()
    sub = Subscription(
        customer_id=customer.id,
        farm_id=product.farm_id,
        product_id=product.id,
        frequency=frequency,
        quantity=quantity,
        start_date=start_date,
        active=kw.pop("active", True),
        **kw,
    )
    db.session.add(sub)
    db.session.commit()
    return sub


def make_order(sub=None, *, scheduled_date=date(2024, 1, 1), status="pending", **kw) -> Order:
    sub = sub or make_subscription()
    order = Order(
        subscription_id=sub.id,
        customer_id=sub.customer_id,
        farm_id=sub.farm_id,
        product_id=sub.product_id,
        quantity=sub.quantity,
        total_amount=kw.pop("total_amount", Decimal("10.00")),
        scheduled_date=scheduled_date,
        status=status,
        payment_status=kw.pop("payment_status", "pending"),
        **kw,
    )
    db.session.add(order)
    db.session.commit()
    return order


def add_card(user, pm_id="pm_card_visa", *, is_default=True) -> PaymentMethod:
    method = PaymentMethod(
        user_id=user.id,
        stripe_payment_method_id=pm_id,
        type="card",
        brand="visa",
        last_four="4242",
        is_default=is_default,
    )
    db.session.add(method)
    db.session.commit()
    return method


def auth(user) -> dict:
    return {"Authorization": f"Bearer {user.api_token}"}
