"""Checkout race scenario — many buyers competing for the last unit.

Fifty users each start with their own random session id, add the same
variant to a cart and immediately order from it. With a single unit in
stock a correct server accepts exactly one order and rejects the rest
with 400 or 409; any 5xx points at broken inventory locking. Other
statuses (a 404 for an unknown variant, a 401 or 403) match none of the
order checks, so the single-winner thresholds fail. Run it with:

    loadrace run examples/checkout_race.py --base-url https://shop.example.com

Replace ``VARIANT_ID`` with a variant that exists in the target shop.
"""

from __future__ import annotations

from loadrace import (
    Extract,
    ScenarioDefinition,
    Step,
    fresh_uuid,
    single_winner,
    status_is,
)

BUYERS = 50
VARIANT_ID = "27d5a989-5c08-459d-af7d-a90b1ba28954"

checkout_race = ScenarioDefinition(
    name="Checkout Race",
    base_url="http://localhost:8080",
    variables={"session_id": fresh_uuid, "variant_id": VARIANT_ID},
    session_variable="session_id",
    session_header="X-Session-Id",
    vus=BUYERS,
    iterations=BUYERS,
    timeout="2m",
    steps=[
        Step(
            name="Add to cart",
            method="POST",
            path="/api/v1/cart/add",
            body={"variantId": "${variant_id}", "quantity": 1},
            checks={"Add to cart 200/201": status_is(200, 201)},
            critical="Add to cart 200/201",
            # The server may replace the client-generated session id.
            extract=[Extract("session_id", "data.sessionId")],
            delay_after=0.1,
        ),
        Step(
            name="Order from cart",
            method="POST",
            path="/api/v1/orders/from-cart",
            body={
                "customerName": "Stress Tester",
                "customerEmail": "tester${vu}@example.com",
                "customerPhone": "0735130901",
                "shippingAddress": "123 Street",
                "paymentMethod": "COD",
                "items": [{"variantId": "${variant_id}", "quantity": 1}],
            },
            checks={
                "Order Success (201)": status_is(201),
                "Order Conflict (400/409)": status_is(400, 409),
                "Server Error (500)": status_is(500),
            },
        ),
    ],
    thresholds=single_winner(
        "Order Success (201)",
        conflict_label="Order Conflict (400/409)",
        error_label="Server Error (500)",
        contenders=BUYERS,
    ),
)
