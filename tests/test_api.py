import uuid


async def _purchase(client, tenant, qty, item=None, store=None, **extra):
    payload = {
        "item_id": str((item or tenant.chicken).id),
        "store_id": str((store or tenant.store_a).id),
        "type": "PURCHASE",
        "quantity": qty,
        **extra,
    }
    resp = await client.post("/stock/movements", json=payload)
    assert resp.status_code == 201, resp.text
    return resp.json()


async def test_stock_levels_and_alerts(client, tenant):
    await _purchase(client, tenant, 4)

    resp = await client.get("/stock")
    assert resp.status_code == 200
    (row,) = resp.json()
    assert row["item_name"] == "Chicken breast"
    assert row["quantity"] == 4
    assert row["value"] == 34
    assert row["is_low_stock"] is True
    assert row["is_over_stock"] is False

    resp = await client.get("/stock/alerts")
    body = resp.json()
    assert body["summary"]["critical"] == 1
    assert body["alerts"][0]["severity"] == "critical"
    assert body["alerts"][0]["alert_type"] == "LOW_STOCK"

    resp = await client.get("/stock/value")
    assert resp.json()["total_value"] == 34
    assert resp.json()["currency"] == "EUR"


async def test_movement_errors_map_to_status_codes(client, tenant, other_tenant):
    resp = await client.post(
        "/stock/movements",
        json={"item_id": str(tenant.chicken.id), "store_id": str(tenant.store_a.id), "type": "PURCHASE", "quantity": 0},
    )
    assert resp.status_code == 400
    assert resp.json()["code"] == "validation_error"

    resp = await client.post(
        "/stock/movements",
        json={"item_id": str(tenant.chicken.id), "store_id": str(tenant.store_a.id), "type": "SALE", "quantity": 3},
    )
    assert resp.status_code == 400

    resp = await client.post(
        "/stock/movements",
        json={
            "item_id": str(other_tenant.chicken.id),
            "store_id": str(tenant.store_a.id),
            "type": "PURCHASE",
            "quantity": 3,
        },
    )
    assert resp.status_code == 404
    assert resp.json()["code"] == "not_found"

    resp = await client.post(
        "/stock/movements",
        json={"item_id": str(tenant.chicken.id), "store_id": str(tenant.store_a.id), "type": "TRANSFER_IN", "quantity": 3},
    )
    assert resp.status_code == 422
    assert resp.json()["code"] == "validation_error"
    assert resp.json()["errors"]


async def test_producers_can_send_magnitudes(client, tenant):
    await _purchase(client, tenant, 10)
    sale = await _purchase(client, tenant, 3, type="SALE", normalize_sign=True)
    assert sale["quantity"] == -3

    resp = await client.post(
        "/stock/movements/batch",
        json={
            "movements": [
                {"item_id": str(tenant.chicken.id), "store_id": str(tenant.store_a.id), "type": "SALE", "quantity": 1, "normalize_sign": True},
                {"item_id": str(tenant.flour.id), "store_id": str(tenant.store_a.id), "type": "PURCHASE", "quantity": 25},
            ]
        },
    )
    assert resp.status_code == 201
    assert resp.json()["count"] == 2

    resp = await client.post(
        "/stock/waste",
        json={"store_id": str(tenant.store_a.id), "items": [{"item_id": str(tenant.chicken.id), "quantity": 2, "reason": "Dropped"}]},
    )
    assert resp.status_code == 201
    assert resp.json()["movements"][0]["quantity"] == -2
    assert resp.json()["total_value"] == 17

    resp = await client.get("/stock/movements", params={"item_id": str(tenant.chicken.id)})
    body = resp.json()
    assert body["pagination"]["total"] == 4
    assert sum(m["quantity"] for m in body["movements"]) == 4


async def test_correction_endpoint(client, tenant):
    mv = await _purchase(client, tenant, 10)

    resp = await client.post(f"/stock/movements/{mv['id']}/corrections", json={"quantity": 7})
    assert resp.status_code == 201
    assert resp.json()["quantity"] == -3
    assert resp.json()["reference_type"] == "correction"

    resp = await client.get(f"/stock/movements/{mv['id']}")
    assert resp.json()["quantity"] == 10
    assert resp.json()["effective_quantity"] == 7


async def test_merge_endpoint(client, tenant):
    await _purchase(client, tenant, 5, item=tenant.oil)
    resp = await client.post(
        "/stock/items/merge",
        json={"item_to_remove_id": str(tenant.oil.id), "item_to_keep_id": str(tenant.chicken.id)},
    )
    assert resp.status_code == 200
    assert resp.json()["migrated_movements"] == 1

    resp = await client.post(
        "/stock/items/merge",
        json={"item_to_remove_id": str(tenant.chicken.id), "item_to_keep_id": str(tenant.chicken.id)},
    )
    assert resp.status_code == 400
    assert resp.json()["code"] == "validation_error"


async def test_transfer_lifecycle(client, tenant):
    await _purchase(client, tenant, 50)

    resp = await client.post(
        "/transfers",
        json={
            "from_store_id": str(tenant.store_a.id),
            "to_store_id": str(tenant.store_b.id),
            "items": [{"item_id": str(tenant.chicken.id), "quantity": 10}],
        },
    )
    assert resp.status_code == 201
    transfer = resp.json()
    assert transfer["status"] == "PENDING"

    resp = await client.post(f"/transfers/{transfer['id']}/in-transit")
    assert resp.json()["status"] == "IN_TRANSIT"

    resp = await client.post(f"/transfers/{transfer['id']}/cancel")
    assert resp.status_code == 409
    assert resp.json()["code"] == "invalid_state"

    resp = await client.post(f"/transfers/{transfer['id']}/complete")
    assert resp.status_code == 200
    body = resp.json()
    assert body["transfer"]["status"] == "COMPLETED"
    assert sorted((m["type"], m["quantity"]) for m in body["movements"]) == [("TRANSFER_IN", 10), ("TRANSFER_OUT", -10)]

    resp = await client.delete(f"/transfers/{transfer['id']}")
    assert resp.status_code == 409

    resp = await client.get("/stock", params={"store_id": str(tenant.store_b.id)})
    assert resp.json()[0]["quantity"] == 10


async def test_transfer_validation(client, tenant):
    resp = await client.post(
        "/transfers",
        json={
            "from_store_id": str(tenant.store_a.id),
            "to_store_id": str(tenant.store_a.id),
            "items": [{"item_id": str(tenant.chicken.id), "quantity": 1}],
        },
    )
    assert resp.status_code == 400
    assert resp.json()["code"] == "validation_error"

    resp = await client.post(
        "/transfers",
        json={"from_store_id": str(tenant.store_a.id), "to_store_id": str(tenant.store_b.id), "items": []},
    )
    assert resp.status_code == 400
    assert resp.json()["detail"] == "At least one item is required"

    resp = await client.get(f"/transfers/{uuid.uuid4()}")
    assert resp.status_code == 404


async def test_count_commands_and_approval(client, tenant):
    await _purchase(client, tenant, 45)

    resp = await client.post("/counts", json={"store_id": str(tenant.store_a.id), "name": "Sunday"})
    assert resp.status_code == 201
    count_id = resp.json()["id"]

    resp = await client.put(
        f"/counts/{count_id}",
        json={"action": "add_entry", "item_id": str(tenant.chicken.id), "quantity": 41},
    )
    assert resp.status_code == 200
    (entry,) = resp.json()["entries"]

    resp = await client.put(
        f"/counts/{count_id}",
        json={"action": "update_entry", "entry_id": entry["id"], "quantity": 40},
    )
    assert resp.json()["entries"][0]["quantity"] == 40

    resp = await client.put(
        f"/counts/{count_id}",
        json={"action": "add_entry", "item_id": str(tenant.flour.id), "quantity": 3},
    )
    flour_entry = next(e for e in resp.json()["entries"] if e["item_name"] == "Flour")
    resp = await client.put(f"/counts/{count_id}", json={"action": "delete_entry", "entry_id": flour_entry["id"]})
    assert resp.json()["items_counted"] == 1

    resp = await client.put(f"/counts/{count_id}", json={"action": "rename", "name": "x"})
    assert resp.status_code == 422

    resp = await client.put(f"/counts/{count_id}", json={"action": "complete", "notes": "done"})
    assert resp.json()["status"] == "completed"
    assert resp.json()["total_value"] == 340

    resp = await client.post(f"/counts/{count_id}/approve", json={"adjustment_notes": "Sunday shrinkage"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["stock_count"]["status"] == "approved"
    assert body["summary"]["adjustments_created"] == 1
    assert body["adjustments"][0]["quantity"] == -5
    assert body["stock_count"]["entries"][0]["expected_quantity"] == 45
    assert body["stock_count"]["entries"][0]["discrepancy"] == -5

    resp = await client.post(f"/counts/{count_id}/approve")
    assert resp.status_code == 409

    resp = await client.delete(f"/counts/{count_id}")
    assert resp.status_code == 409

    resp = await client.get("/counts/report")
    assert resp.json()["approved_counts"] == 1
    assert resp.json()["total_discrepancy"] == -42.5


async def test_count_entry_endpoints(client, tenant):
    resp = await client.post("/counts", json={"store_id": str(tenant.store_a.id)})
    count_id = resp.json()["id"]
    assert resp.json()["name"].startswith("Count - ")

    resp = await client.post(
        f"/counts/{count_id}/entries",
        json={"item_id": str(tenant.chicken.id), "quantity": 5, "unit_cost": 9},
    )
    assert resp.status_code == 201
    entry_id = resp.json()["id"]
    assert resp.json()["unit_cost"] == 9

    resp = await client.patch(f"/counts/{count_id}/entries/{entry_id}", json={"quantity": 6})
    assert resp.json()["quantity"] == 6

    resp = await client.post(f"/counts/{count_id}/entries", json={"item_id": str(tenant.chicken.id), "quantity": -1})
    assert resp.status_code == 422

    resp = await client.delete(f"/counts/{count_id}/entries/{entry_id}")
    assert resp.status_code == 204

    resp = await client.post(f"/counts/{count_id}/complete")
    assert resp.json()["status"] == "completed"

    resp = await client.get("/counts", params={"status": "completed"})
    assert [c["id"] for c in resp.json()] == [count_id]
