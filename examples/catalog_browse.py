"""Catalog browse scenario — product search under a ramping load.

Ramps to 50 users, holds a climb to 200, then ramps down. Every user
searches the catalog and pauses two seconds between searches. Run it with:

    loadrace run examples/catalog_browse.py --base-url https://shop.example.com
"""

from __future__ import annotations

from loadrace import MaxErrorRate, ScenarioDefinition, Step, latency_below, status_is

catalog_browse = ScenarioDefinition(
    name="Catalog Browse",
    base_url="http://localhost:8080",
    stages=[("30s", 50), ("1m", 200), ("30s", 0)],
    think_time=2.0,
    steps=[
        Step(
            name="Product search",
            method="POST",
            path="/api/v1/products/search",
            body={"keyword": "áo thun", "minPrice": 0, "maxPrice": 500000},
            checks={
                "Search status 200": status_is(200),
                "Search under 500ms": latency_below(500),
            },
        ),
    ],
    thresholds=[MaxErrorRate(0.01)],
)
