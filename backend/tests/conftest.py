"""Pytest fixtures for coffee_shop tests."""

import hashlib
import hmac
import json
import os
import time

# 必须在导入 coffee_shop 之前设置，Settings 在导入时读取环境变量
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")
os.environ.setdefault("EMAIL_ENABLED", "false")
os.environ.setdefault("CELERY_TASK_ALWAYS_EAGER", "true")
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret")

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from coffee_shop.api.deps import get_notifier, get_payment_gateway
from coffee_shop.core.database import Base, get_db
from coffee_shop.core.exceptions import GatewayUnavailable
from coffee_shop.main import app
from coffee_shop.models.product import Product
from coffee_shop.models.user import User
from coffee_shop.services.auth_service import AuthService
from coffee_shop.services.notification_service import Notifier
from coffee_shop.services.payment_gateway import CheckoutSession, PaymentGateway, RecurringBilling

WEBHOOK_SECRET = "whsec_test_secret"


class FakeGateway(PaymentGateway):
    """不访问 Stripe 的网关；验签沿用真实实现"""

    def __init__(self):
        super().__init__(
            api_key="sk_test_fake",
            webhook_secret=WEBHOOK_SECRET,
            currency="usd",
            success_url="http://shop.test/checkout/success?session_id={CHECKOUT_SESSION_ID}",
            cancel_url="http://shop.test/checkout/cancel",
        )
        self.sessions = []
        self.subscriptions = []
        self.cancelled = []
        self.fail_checkout = False

    async def create_checkout_session(self, line_items, metadata, customer_email, idempotency_key=None):
        if self.fail_checkout:
            raise GatewayUnavailable()
        session_id = f"cs_test_{len(self.sessions) + 1}"
        self.sessions.append({
            "id": session_id,
            "line_items": self.build_line_items(line_items),
            "metadata": metadata,
            "customer_email": customer_email,
            "idempotency_key": idempotency_key,
        })
        return CheckoutSession(id=session_id, url=f"https://checkout.stripe.test/pay/{session_id}")

    async def create_customer(self, email, name, metadata):
        return f"cus_test_{metadata['user_id']}"

    async def create_subscription(self, customer_id, price_id, metadata):
        sub_id = f"sub_test_{len(self.subscriptions) + 1}"
        self.subscriptions.append({"id": sub_id, "customer": customer_id, "price": price_id, "metadata": metadata})
        return RecurringBilling(id=sub_id, status="incomplete", client_secret=f"pi_secret_{sub_id}")

    async def cancel_subscription(self, subscription_id):
        self.cancelled.append(subscription_id)
        return RecurringBilling(id=subscription_id, status="active")


class FakeNotifier(Notifier):
    """只替换 Celery 提交，send 走真实的线程池 + 超时路径"""

    def __init__(self, submit_timeout=2.0):
        super().__init__(submit_timeout=submit_timeout)
        self.sent = []
        self.enqueue_error = None
        self.enqueue_delay = 0

    def _enqueue(self, recipient, subject, body_html):
        if self.enqueue_delay:
            time.sleep(self.enqueue_delay)
        if self.enqueue_error:
            raise self.enqueue_error
        self.sent.append({"to": recipient, "subject": subject, "html": body_html})

    def subjects(self):
        return [m["subject"] for m in self.sent]


def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int = None) -> str:
    """按 Stripe 规则生成 Stripe-Signature 头"""
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.".encode() + payload
    signature = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def make_event(event_type: str, obj: dict, event_id: str = "evt_1") -> dict:
    return {
        "id": event_id,
        "object": "event",
        "type": event_type,
        "data": {"object": obj},
    }


def checkout_completed(session_id: str, event_id: str = "evt_checkout_1", payment_intent: str = "pi_test_1",
                       payment_status: str = "paid") -> dict:
    return make_event(
        "checkout.session.completed",
        {"id": session_id, "object": "checkout.session", "payment_status": payment_status,
         "payment_intent": payment_intent},
        event_id,
    )


SHIPPING_ADDRESS = {
    "full_name": "Ada Lovelace",
    "email": "ada@example.com",
    "street": "12 Roast Lane",
    "city": "Portland",
    "state": "OR",
    "zip_code": "97201",
}


@pytest.fixture
async def engine(tmp_path):
    """每个测试独立的 SQLite 文件库；NullPool 避免连接跨事件循环复用"""
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", poolclass=NullPool)
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
async def products(session_factory):
    """示例商品：A 1699 美分、B 1899 美分，库存各 5"""
    async with session_factory() as session:
        a = Product(name="Ethiopia Yirgacheffe", description="Floral", price=1699, stock=5, is_active=True)
        b = Product(name="House Espresso", description="Chocolate", price=1899, stock=5, is_active=True,
                    stripe_price_id="price_espresso_monthly")
        c = Product(name="Retired Blend", description="Gone", price=1299, stock=10, is_active=False)
        session.add_all([a, b, c])
        await session.commit()
        return {"a": a.id, "b": b.id, "inactive": c.id}


async def _create_user(session_factory, email, role="user", stripe_customer_id=None, address=None):
    auth = AuthService(None)
    async with session_factory() as session:
        user = User(
            name=email.split("@")[0],
            email=email,
            password_hash=auth.get_password_hash("secret123"),
            role=role,
            stripe_customer_id=stripe_customer_id,
            address=address,
        )
        session.add(user)
        await session.commit()
        token = auth.create_access_token({"sub": email})
        return {"id": user.id, "email": email, "headers": {"Authorization": f"Bearer {token}"}}


@pytest.fixture
async def customer(session_factory):
    return await _create_user(
        session_factory,
        "customer@example.com",
        stripe_customer_id="cus_existing",
        address={"full_name": "Customer", "street": "1 Bean St", "city": "Seattle", "state": "WA", "zip_code": "98101"},
    )


@pytest.fixture
async def other_customer(session_factory):
    return await _create_user(session_factory, "other@example.com")


@pytest.fixture
async def admin(session_factory):
    return await _create_user(session_factory, "admin@example.com", role="admin")


@pytest.fixture
async def client(session_factory, gateway, notifier):
    """绕过 lifespan，直接注入测试库与假网关"""
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    app.dependency_overrides[get_notifier] = lambda: notifier
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


async def post_webhook(client, event: dict, signature: str = None, raw: bytes = None):
    payload = raw if raw is not None else json.dumps(event).encode()
    headers = {"Content-Type": "application/json"}
    if signature is not False:
        headers["Stripe-Signature"] = signature or sign_payload(payload)
    return await client.post("/api/v1/webhooks/stripe", content=payload, headers=headers)
