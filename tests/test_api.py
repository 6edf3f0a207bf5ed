"""HTTP surface: purchase -> commission -> payout end to end."""

import hashlib
import hmac
import json

import pytest
from beanie import PydanticObjectId

from app.core.config import get_settings
from app.models.purchase import Purchase
from app.services import ledger

pytestmark = [pytest.mark.asyncio, pytest.mark.usefixtures("db")]


def _sign(message: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def _signed_callback(order_id: str, payment_id: str) -> dict:
    return {
        "razorpay_order_id": order_id,
        "razorpay_payment_id": payment_id,
        "razorpay_signature": _sign(f"{order_id}|{payment_id}".encode(), get_settings().razorpay_key_secret),
    }


async def _checkout(purchase_id: str, order_id: str = "order_1", payment_id: str = "pay_1") -> dict:
    """Attach a gateway order to the purchase and return the signed checkout callback body."""
    purchase = await Purchase.get(PydanticObjectId(purchase_id))
    await purchase.set({"gateway_order_id": order_id})
    return _signed_callback(order_id, payment_id)


async def test_wallet_requires_session(client):
    r = await client.get("/v1/wallet")
    assert r.status_code == 401
    assert r.json()["error"]["code"] == "UNAUTHORIZED"


async def test_purchase_commission_and_payout_flow(client, as_user, make_user, make_course):
    referrer, buyer = await make_user(), await make_user()
    admin = await make_user(role="admin")
    course = await make_course(price_paise=100000)

    as_user(client, buyer)
    r = await client.post("/v1/purchases", json={"course_id": str(course.id), "referral_code": referrer.referral_code})
    assert r.status_code == 201
    body = r.json()
    assert body["referral"] == {"code": referrer.referral_code, "kind": "general_code", "applied": True}
    purchase_id = body["purchase"]["id"]

    checkout = await _checkout(purchase_id)
    r = await client.post(f"/v1/purchases/{purchase_id}/confirm", json=checkout)
    assert r.status_code == 200
    assert r.json()["commission_granted"] is True
    r = await client.post(f"/v1/purchases/{purchase_id}/confirm", json=checkout)
    assert r.status_code == 200

    as_user(client, referrer)
    r = await client.get("/v1/wallet")
    assert r.json() == {"balance": 50000, "total_earned": 50000, "total_withdrawn": 0, "held": 0, "currency": "INR"}
    r = await client.get("/v1/referrals/stats")
    assert r.json()["total_commission"] == 50000

    r = await client.post("/v1/wallet/payout-methods", json={"method_type": "UPI", "upi_id": "ref@upi"})
    assert r.status_code == 201
    method_id = r.json()["payout_method"]["id"]
    r = await client.post("/v1/wallet/payout-requests", json={"amount_paise": 20000, "payout_method_id": method_id})
    assert r.status_code == 201
    request_id = r.json()["payout_request"]["id"]
    r = await client.post("/v1/wallet/payout-requests", json={"amount_paise": 1000, "payout_method_id": method_id})
    assert r.status_code == 409
    assert r.json()["error"]["code"] == "REQUEST_ALREADY_PENDING"

    as_user(client, admin)
    r = await client.put(f"/v1/admin/payout-requests/{request_id}", json={"status": "approved"})
    assert r.status_code == 200
    assert r.json()["payout_request"]["status"] == "processed"
    r = await client.put(f"/v1/admin/payout-requests/{request_id}", json={"status": "rejected"})
    assert r.status_code == 409
    assert r.json()["error"]["code"] == "NOT_PENDING"
    r = await client.get(f"/v1/admin/wallets/{referrer.id}/audit")
    assert r.status_code == 200
    assert r.json()["problems"] == []

    as_user(client, referrer)
    r = await client.get("/v1/wallet")
    assert r.json()["balance"] == 30000
    assert r.json()["total_withdrawn"] == 20000
    r = await client.get("/v1/wallet/transactions")
    assert r.json()["total"] == 2


async def test_confirm_requires_signed_checkout(client, as_user, make_user, make_course):
    referrer, buyer = await make_user(), await make_user()
    course = await make_course(price_paise=100000)
    as_user(client, buyer)
    r = await client.post("/v1/purchases", json={"course_id": str(course.id), "referral_code": referrer.referral_code})
    purchase_id = r.json()["purchase"]["id"]
    url = f"/v1/purchases/{purchase_id}/confirm"

    r = await client.post(url, json={"razorpay_payment_id": "made_up"})
    assert r.status_code == 422

    checkout = await _checkout(purchase_id)
    r = await client.post(url, json={**checkout, "razorpay_signature": "0" * 64})
    assert r.status_code == 400
    assert r.json()["error"]["message"] == "Invalid payment signature"

    r = await client.post(url, json=_signed_callback("order_other", "pay_1"))
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "PURCHASE_MISMATCH"

    assert (await Purchase.get(PydanticObjectId(purchase_id))).payment_status == "pending"
    assert (await ledger.get_wallet(referrer.id)).balance == 0


async def test_confirm_someone_elses_purchase(client, as_user, make_user, make_course):
    buyer, other = await make_user(), await make_user()
    course = await make_course()
    as_user(client, buyer)
    purchase_id = (await client.post("/v1/purchases", json={"course_id": str(course.id)})).json()["purchase"]["id"]
    checkout = await _checkout(purchase_id)
    as_user(client, other)
    r = await client.post(f"/v1/purchases/{purchase_id}/confirm", json=checkout)
    assert r.status_code == 404
    assert (await Purchase.get(PydanticObjectId(purchase_id))).payment_status == "pending"


async def test_admin_routes_reject_regular_users(client, as_user, make_user):
    as_user(client, await make_user())
    r = await client.get("/v1/admin/payout-requests")
    assert r.status_code == 403
    assert r.json()["error"]["code"] == "FORBIDDEN"


async def test_payout_below_minimum(client, as_user, make_user, make_payout_method):
    user = await make_user()
    method = await make_payout_method(user)
    as_user(client, user)
    r = await client.post("/v1/wallet/payout-requests", json={"amount_paise": 999, "payout_method_id": str(method.id)})
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "BELOW_MINIMUM"


async def test_payout_insufficient_balance(client, as_user, make_user, make_payout_method):
    user = await make_user()
    method = await make_payout_method(user)
    as_user(client, user)
    r = await client.post("/v1/wallet/payout-requests", json={"amount_paise": 5000, "payout_method_id": str(method.id)})
    assert r.status_code == 409
    assert r.json()["error"]["details"] == {"available_paise": 0, "requested_paise": 5000}


async def test_validate_code_endpoint(client, as_user, make_user, make_course):
    referrer, buyer = await make_user(), await make_user()
    course = await make_course()
    as_user(client, buyer)
    r = await client.post("/v1/referrals/validate-code", json={"referral_code": referrer.referral_code, "course_id": str(course.id)})
    assert r.json()["valid"] is True
    r = await client.post("/v1/referrals/validate-code", json={"referral_code": "NOPE2345", "course_id": str(course.id)})
    assert r.json() == {"valid": False, "kind": "none", "message": "Invalid referral code"}


async def test_razorpay_webhook_confirms_purchase(client, make_user, make_course):
    from app.services.purchases import start_purchase

    referrer, buyer = await make_user(), await make_user()
    course = await make_course(price_paise=100000)
    purchase, _ = await start_purchase(buyer.id, course.id, referrer.referral_code)
    await purchase.set({"gateway_order_id": "order_abc"})
    payload = json.dumps(
        {
            "event": "payment.captured",
            "payload": {
                "payment": {
                    "entity": {
                        "id": "pay_xyz",
                        "order_id": "order_abc",
                        "amount": 100000,
                        "notes": {"purchase_id": str(purchase.id), "course_id": str(course.id)},
                    }
                }
            },
        }
    ).encode()
    signature = _sign(payload, get_settings().razorpay_webhook_secret)

    for _ in range(2):
        r = await client.post("/v1/payments/webhook", content=payload, headers={"X-Razorpay-Signature": signature})
        assert r.status_code == 200

    assert (await Purchase.get(purchase.id)).payment_status == "completed"
    assert (await ledger.get_wallet(referrer.id)).balance == 50000


async def test_webhook_rejects_bad_signature(client):
    r = await client.post("/v1/payments/webhook", content=b"{}", headers={"X-Razorpay-Signature": "nope"})
    assert r.status_code == 400


async def test_notifications_after_payout_request(client, as_user, make_user, make_payout_method):
    user = await make_user()
    method = await make_payout_method(user)
    await ledger.credit(user.id, 5000, "Referral commission")
    as_user(client, user)
    await client.post("/v1/wallet/payout-requests", json={"amount_paise": 2000, "payout_method_id": str(method.id)})

    r = await client.get("/v1/notifications")

    assert r.status_code == 200
    assert [n["title"] for n in r.json()["notifications"]] == ["Payout Request Submitted"]


async def test_webhook_amount_mismatch_leaves_purchase_pending(client, make_user, make_course):
    from app.services.purchases import start_purchase

    buyer = await make_user()
    course = await make_course(price_paise=100000)
    purchase, _ = await start_purchase(buyer.id, course.id)
    await purchase.set({"gateway_order_id": "order_low"})
    payload = json.dumps(
        {
            "event": "payment.captured",
            "payload": {"payment": {"entity": {"id": "pay_low", "order_id": "order_low", "amount": 100}}},
        }
    ).encode()

    r = await client.post(
        "/v1/payments/webhook",
        content=payload,
        headers={"X-Razorpay-Signature": _sign(payload, get_settings().razorpay_webhook_secret)},
    )

    assert r.status_code == 400
    assert r.json()["error"]["code"] == "PURCHASE_MISMATCH"
    assert (await Purchase.get(purchase.id)).payment_status == "pending"
