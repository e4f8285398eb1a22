"""
Webhook 对账测试：重复投递、乱序投递、库存不足、订阅续期
"""
from datetime import datetime, timedelta, timezone

from sqlalchemy import select, update

from coffee_shop.core.config import settings
from coffee_shop.models.order import Order
from coffee_shop.models.product import Product
from coffee_shop.models.subscription import Subscription, SubscriptionStatus
from coffee_shop.models.webhook_event import WebhookEvent
from coffee_shop.schemas.order import OrderCreate
from coffee_shop.schemas.webhook import (
    EventOutcome,
    InvoicePaid,
    PaymentPending,
    PaymentSucceeded,
    UnknownEvent,
    parse_event,
)
from coffee_shop.services.order_service import OrderService
from coffee_shop.services.subscription_service import as_utc
from coffee_shop.services.webhook_service import HandlerResult, WebhookReconciler

from conftest import SHIPPING_ADDRESS, checkout_completed, make_event


async def place_order(db, gateway, notifier, lines):
    order, _ = await OrderService(db, gateway, notifier).create_order(OrderCreate(
        items=[{"product_id": pid, "quantity": qty} for pid, qty in lines],
        shipping_address=SHIPPING_ADDRESS,
    ))
    return order.id, order.checkout_session_id, order.order_number


async def stock_of(db, product_id):
    return (await db.execute(select(Product.stock).where(Product.id == product_id))).scalar_one()


async def status_of(db, order_id):
    return (await db.execute(select(Order.status).where(Order.id == order_id))).scalar_one()


async def add_subscription(db, user_id, product_id, next_delivery=None, status="active", stripe_id="sub_test_1"):
    subscription = Subscription(
        user_id=user_id,
        product_id=product_id,
        frequency="weekly",
        quantity=1,
        status=status,
        stripe_subscription_id=stripe_id,
        next_delivery=next_delivery,
    )
    db.add(subscription)
    await db.commit()
    return subscription.id


async def next_delivery_of(db, subscription_id):
    value = (await db.execute(
        select(Subscription.next_delivery).where(Subscription.id == subscription_id)
    )).scalar_one()
    return as_utc(value)


class TestParseEvent:

    def test_paid_checkout_session(self):
        event = parse_event(checkout_completed("cs_1", payment_intent={"id": "pi_9"}))
        assert isinstance(event, PaymentSucceeded)
        assert event.reference == "cs_1"
        assert event.payment_intent_id == "pi_9"

    def test_unpaid_checkout_session_is_pending(self):
        event = parse_event(checkout_completed("cs_1", payment_status="unpaid"))
        assert isinstance(event, PaymentPending)

    def test_invoice_subscription_in_parent_details(self):
        raw = make_event("invoice.payment_succeeded", {
            "id": "in_1",
            "parent": {"subscription_details": {"subscription": "sub_new"}},
        })
        event = parse_event(raw)
        assert isinstance(event, InvoicePaid)
        assert event.subscription_id == "sub_new"

    def test_invoice_paid_duplicate_type_is_ignored(self):
        event = parse_event(make_event("invoice.paid", {"id": "in_1", "subscription": "sub_1"}))
        assert isinstance(event, UnknownEvent)

    def test_unrecognised_type(self):
        event = parse_event(make_event("customer.created", {"id": "cus_1"}))
        assert isinstance(event, UnknownEvent)
        assert event.event_type == "customer.created"


async def test_payment_succeeded_marks_paid_and_decrements_stock(db, products, gateway, notifier):
    order_id, session_id, order_number = await place_order(
        db, gateway, notifier, [(products["a"], 1), (products["b"], 2)]
    )
    notifier.sent.clear()

    ack = await WebhookReconciler(db, notifier).reconcile(checkout_completed(session_id))

    assert ack.outcome == EventOutcome.PROCESSED
    assert await status_of(db, order_id) == "paid"
    assert await stock_of(db, products["a"]) == 4
    assert await stock_of(db, products["b"]) == 3
    assert notifier.subjects() == [f"Order Confirmation - {order_number}"]

    stored = (await db.execute(select(Order).where(Order.id == order_id))).scalar_one()
    assert stored.payment_intent_id == "pi_test_1"
    assert stored.paid_at is not None


async def test_redelivered_event_is_skipped(db, products, gateway, notifier):
    order_id, session_id, _ = await place_order(db, gateway, notifier, [(products["a"], 1)])
    notifier.sent.clear()
    reconciler = WebhookReconciler(db, notifier)

    await reconciler.reconcile(checkout_completed(session_id, event_id="evt_dup"))
    ack = await reconciler.reconcile(checkout_completed(session_id, event_id="evt_dup"))

    assert ack.outcome == EventOutcome.SKIPPED
    assert await stock_of(db, products["a"]) == 4
    assert len(notifier.sent) == 1

    record = (await db.execute(
        select(WebhookEvent).where(WebhookEvent.stripe_event_id == "evt_dup")
    )).scalar_one()
    assert record.outcome == "processed"


async def test_second_success_event_for_same_payment_is_noop(db, products, gateway, notifier):
    order_id, session_id, _ = await place_order(db, gateway, notifier, [(products["a"], 2)])
    notifier.sent.clear()
    reconciler = WebhookReconciler(db, notifier)

    await reconciler.reconcile(checkout_completed(session_id, event_id="evt_1", payment_intent="pi_test_1"))
    # 同一笔支付的另一种事件，事件 ID 不同
    ack = await reconciler.reconcile(make_event(
        "payment_intent.succeeded", {"id": "pi_test_1", "object": "payment_intent"}, "evt_2"
    ))

    assert ack.outcome == EventOutcome.SKIPPED
    assert ack.detail.endswith("当前已支付，不重复处理")
    assert await status_of(db, order_id) == "paid"
    assert await stock_of(db, products["a"]) == 3
    assert len(notifier.sent) == 1


async def test_payment_failed_cancels_pending_order(db, products, gateway, notifier):
    order_id, session_id, _ = await place_order(db, gateway, notifier, [(products["a"], 1)])

    ack = await WebhookReconciler(db, notifier).reconcile(make_event(
        "checkout.session.expired", {"id": session_id}, "evt_expired"
    ))

    assert ack.outcome == EventOutcome.PROCESSED
    assert await status_of(db, order_id) == "cancelled"
    assert await stock_of(db, products["a"]) == 5


async def test_failure_after_success_does_not_regress(db, products, gateway, notifier):
    order_id, session_id, _ = await place_order(db, gateway, notifier, [(products["a"], 1)])
    reconciler = WebhookReconciler(db, notifier)

    await reconciler.reconcile(checkout_completed(session_id, event_id="evt_ok"))
    ack = await reconciler.reconcile(make_event(
        "checkout.session.async_payment_failed", {"id": session_id}, "evt_fail"
    ))

    assert ack.outcome == EventOutcome.SKIPPED
    assert "当前已支付，忽略支付失败" in ack.detail
    assert await status_of(db, order_id) == "paid"


async def test_success_after_cancel_is_not_applied(db, products, gateway, notifier):
    order_id, session_id, _ = await place_order(db, gateway, notifier, [(products["a"], 1)])
    notifier.sent.clear()
    reconciler = WebhookReconciler(db, notifier)

    await reconciler.reconcile(make_event("checkout.session.expired", {"id": session_id}, "evt_exp"))
    ack = await reconciler.reconcile(checkout_completed(session_id, event_id="evt_late"))

    assert ack.outcome == EventOutcome.SKIPPED
    assert await status_of(db, order_id) == "cancelled"
    assert await stock_of(db, products["a"]) == 5
    assert notifier.sent == []


async def test_unpaid_checkout_completion_waits_for_async_result(db, products, gateway, notifier):
    order_id, session_id, _ = await place_order(db, gateway, notifier, [(products["a"], 1)])
    reconciler = WebhookReconciler(db, notifier)

    ack = await reconciler.reconcile(checkout_completed(session_id, event_id="evt_c", payment_status="unpaid"))
    assert ack.outcome == EventOutcome.SKIPPED
    assert await status_of(db, order_id) == "pending"

    ack = await reconciler.reconcile(make_event(
        "checkout.session.async_payment_succeeded",
        {"id": session_id, "payment_intent": "pi_async"},
        "evt_async",
    ))
    assert ack.outcome == EventOutcome.PROCESSED
    assert await status_of(db, order_id) == "paid"


async def test_unmatched_reference_is_skipped(db, products, gateway, notifier):
    order_id, _, _ = await place_order(db, gateway, notifier, [(products["a"], 1)])

    ack = await WebhookReconciler(db, notifier).reconcile(checkout_completed("cs_unknown"))

    assert ack.outcome == EventOutcome.SKIPPED
    assert await status_of(db, order_id) == "pending"


async def test_unknown_event_type_is_ignored(db):
    ack = await WebhookReconciler(db).reconcile(make_event("customer.created", {"id": "cus_1"}, "evt_x"))

    assert ack.outcome == EventOutcome.IGNORED
    record = (await db.execute(
        select(WebhookEvent).where(WebhookEvent.stripe_event_id == "evt_x")
    )).scalar_one()
    assert record.outcome == "ignored"


async def test_shortfall_never_drives_stock_negative(db, products, gateway, notifier, caplog, monkeypatch):
    monkeypatch.setattr(settings, "ADMIN_EMAIL", "ops@example.com")
    order_id, session_id, order_number = await place_order(db, gateway, notifier, [(products["a"], 3)])
    # 下单后库存被其他订单消耗
    await db.execute(update(Product).where(Product.id == products["a"]).values(stock=1))
    await db.commit()

    ack = await WebhookReconciler(db, notifier).reconcile(checkout_completed(session_id))

    assert ack.outcome == EventOutcome.PROCESSED
    assert await status_of(db, order_id) == "paid"
    assert await stock_of(db, products["a"]) == 1
    assert any(r.levelname == "ERROR" and order_number in r.getMessage() for r in caplog.records)
    assert notifier.subjects()[-1] == f"Stock alert - {order_number}"
    assert notifier.sent[-1]["to"] == "ops@example.com"


async def test_malformed_event_is_recorded_as_failed(db):
    # 缺少 data.object.id，事件解析失败
    ack = await WebhookReconciler(db).reconcile(make_event("checkout.session.completed", {"payment_status": "paid"}, "evt_bad"))

    assert ack.outcome == EventOutcome.FAILED
    record = (await db.execute(
        select(WebhookEvent).where(WebhookEvent.stripe_event_id == "evt_bad")
    )).scalar_one()
    assert record.outcome == "failed"


async def test_invoice_paid_advances_next_delivery(db, products, customer):
    sub_id = await add_subscription(db, customer["id"], products["b"])
    before = datetime.now(timezone.utc)

    ack = await WebhookReconciler(db).reconcile(make_event(
        "invoice.payment_succeeded", {"id": "in_1", "subscription": "sub_test_1"}, "evt_inv"
    ))

    assert ack.outcome == EventOutcome.PROCESSED
    next_delivery = await next_delivery_of(db, sub_id)
    assert before + timedelta(days=7) <= next_delivery <= datetime.now(timezone.utc) + timedelta(days=7)


async def test_invoice_paid_never_moves_delivery_backwards(db, products, customer):
    later = datetime.now(timezone.utc) + timedelta(days=30)
    sub_id = await add_subscription(db, customer["id"], products["b"], next_delivery=later)

    ack = await WebhookReconciler(db).reconcile(make_event(
        "invoice.payment_succeeded", {"id": "in_2", "subscription": "sub_test_1"}, "evt_inv2"
    ))

    assert ack.outcome == EventOutcome.SKIPPED
    assert abs(await next_delivery_of(db, sub_id) - later) < timedelta(seconds=1)


async def test_invoice_for_cancelled_subscription_is_skipped(db, products, customer):
    sub_id = await add_subscription(db, customer["id"], products["b"], status="cancelled")

    ack = await WebhookReconciler(db).reconcile(make_event(
        "invoice.payment_succeeded", {"id": "in_3", "subscription": "sub_test_1"}, "evt_inv3"
    ))

    assert ack.outcome == EventOutcome.SKIPPED
    assert await next_delivery_of(db, sub_id) is None


async def test_subscription_deleted_is_idempotent(db, products, customer):
    sub_id = await add_subscription(db, customer["id"], products["b"])
    reconciler = WebhookReconciler(db)

    first = await reconciler.reconcile(make_event(
        "customer.subscription.deleted", {"id": "sub_test_1"}, "evt_del_1"
    ))
    second = await reconciler.reconcile(make_event(
        "customer.subscription.deleted", {"id": "sub_test_1"}, "evt_del_2"
    ))

    assert first.outcome == EventOutcome.PROCESSED
    assert second.outcome == EventOutcome.SKIPPED
    status = (await db.execute(select(Subscription.status).where(Subscription.id == sub_id))).scalar_one()
    assert status == SubscriptionStatus.CANCELLED.value


async def test_billing_cycle_renews_once_for_both_invoice_events(db, products, customer):
    sub_id = await add_subscription(db, customer["id"], products["b"])
    reconciler = WebhookReconciler(db)
    invoice = {"id": "in_cycle", "subscription": "sub_test_1"}

    first = await reconciler.reconcile(make_event("invoice.payment_succeeded", invoice, "evt_cycle_a"))
    renewed = await next_delivery_of(db, sub_id)
    second = await reconciler.reconcile(make_event("invoice.paid", invoice, "evt_cycle_b"))

    assert first.outcome == EventOutcome.PROCESSED
    assert second.outcome == EventOutcome.IGNORED
    assert await next_delivery_of(db, sub_id) == renewed


async def test_settled_record_is_not_downgraded(db, products, gateway, notifier):
    _, session_id, _ = await place_order(db, gateway, notifier, [(products["a"], 1)])
    reconciler = WebhookReconciler(db, notifier)
    await reconciler.reconcile(checkout_completed(session_id, event_id="evt_race"))

    # 并发投递的另一请求在去重检查之后才落记录
    await reconciler._record(
        "evt_race", "checkout.session.completed", HandlerResult(EventOutcome.SKIPPED, "订单已支付")
    )

    record = (await db.execute(
        select(WebhookEvent).where(WebhookEvent.stripe_event_id == "evt_race")
        .execution_options(populate_existing=True)
    )).scalar_one()
    assert record.outcome == "processed"
    assert record.attempts == 2


async def test_failed_record_is_replaced_on_retry(db):
    reconciler = WebhookReconciler(db)
    await reconciler._record("evt_retry", "customer.created", HandlerResult(EventOutcome.FAILED, "boom"))

    await reconciler._record("evt_retry", "customer.created", HandlerResult(EventOutcome.IGNORED, "未处理"))

    record = (await db.execute(
        select(WebhookEvent).where(WebhookEvent.stripe_event_id == "evt_retry")
        .execution_options(populate_existing=True)
    )).scalar_one()
    assert record.outcome == "ignored"
    assert record.attempts == 2
