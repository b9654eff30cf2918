"""
End-to-end checks through the HTTP surface.

The database persists for the whole test session, so every test uses its
own tourist and zone ids and coordinates away from the other tests' zones.
"""

from datetime import datetime, timedelta, timezone

BASE_TIME = "2026-03-01T05:{minute:02d}:00Z"  # 10:30 IST, daytime


def at(minute):
    return BASE_TIME.format(minute=minute)


def register(client, tourist_id, **extra):
    response = client.post("/api/tourists", json={"id": tourist_id, "name": tourist_id, **extra})
    assert response.status_code == 200, response.text
    return response.json()


def send_fix(client, tourist_id, lat, lon, minute):
    return client.post("/api/location/update", json={
        "tourist_id": tourist_id,
        "latitude": lat,
        "longitude": lon,
        "timestamp": at(minute)
    })


def test_root_and_health(client):
    assert client.get("/").json()["status"] == "active"
    health = client.get("/health").json()
    assert health["status"] == "healthy"
    assert health["zone_index_ready"] is True
    assert "open_alerts" in health


def test_zone_crud(client):
    zone = {
        "id": "api-police-bazaar",
        "name": "Police Bazaar",
        "shape": "polygon",
        "category": "tourist_zone",
        "risk_level": 2,
        "vertices": [[91.87, 25.56], [91.89, 25.56], [91.89, 25.58], [91.87, 25.58]]
    }
    response = client.post("/api/zones", json=zone)
    assert response.status_code == 200, response.text
    assert response.json()["vertices"] == zone["vertices"]

    assert client.post("/api/zones", json=zone).status_code == 409
    assert client.get("/api/zones/api-police-bazaar").json()["risk_level"] == 2

    updated = client.put("/api/zones/api-police-bazaar", json={"risk_level": 4})
    assert updated.status_code == 200
    assert updated.json()["risk_level"] == 4

    assert client.delete("/api/zones/api-police-bazaar").status_code == 200
    active_ids = [z["id"] for z in client.get("/api/zones").json()]
    all_ids = [z["id"] for z in client.get("/api/zones", params={"include_inactive": True}).json()]
    assert "api-police-bazaar" not in active_ids
    assert "api-police-bazaar" in all_ids

    assert client.get("/api/zones/does-not-exist").status_code == 404


def test_invalid_zone_is_rejected(client):
    response = client.post("/api/zones", json={
        "id": "api-broken",
        "name": "Broken",
        "shape": "polygon",
        "category": "danger",
        "risk_level": 3,
        "vertices": [[91.0, 26.0], [91.1, 26.1]]
    })
    assert response.status_code == 422
    assert response.json()["detail"]["error"] == "invalid_geometry"

    response = client.post("/api/zones", json={
        "id": "api-no-radius",
        "name": "No radius",
        "shape": "circle",
        "category": "danger",
        "center_latitude": 26.0,
        "center_longitude": 91.0
    })
    assert response.status_code == 422


def test_zone_update_with_malformed_vertices_is_rejected(client):
    vertices = [[-3.72, 40.40], [-3.68, 40.40], [-3.68, 40.43], [-3.72, 40.43]]
    response = client.post("/api/zones", json={
        "id": "api-retiro",
        "name": "Retiro Park",
        "shape": "polygon",
        "category": "tourist_zone",
        "risk_level": 2,
        "vertices": vertices
    })
    assert response.status_code == 200, response.text

    single = client.put("/api/zones/api-retiro", json={"vertices": [[91.0], [91.1, 26.0], [91.1, 26.1]]})
    assert single.status_code == 422

    too_few = client.put("/api/zones/api-retiro", json={"vertices": [[-3.72, 40.40], [-3.68, 40.40]]})
    assert too_few.status_code == 422
    assert too_few.json()["detail"]["error"] == "invalid_geometry"

    assert client.get("/api/zones/api-retiro").json()["vertices"] == vertices

    seasonal = client.put("/api/zones/api-retiro", json={"active_from": "2026-06-01T00:00:00"})
    assert seasonal.status_code == 200, seasonal.text


def test_zone_permanent_delete(client):
    response = client.post("/api/zones", json={
        "id": "api-pop-up-fair",
        "name": "Pop-up fair",
        "shape": "circle",
        "category": "tourist_zone",
        "risk_level": 3,
        "center_latitude": 48.85,
        "center_longitude": 2.35,
        "radius_meters": 300
    })
    assert response.status_code == 200, response.text

    deleted = client.delete("/api/zones/api-pop-up-fair", params={"permanent": True})
    assert deleted.json()["message"] == "Zone deleted"
    assert client.get("/api/zones/api-pop-up-fair").status_code == 404
    all_ids = [z["id"] for z in client.get("/api/zones", params={"include_inactive": True}).json()]
    assert "api-pop-up-fair" not in all_ids
    assert client.delete("/api/zones/api-pop-up-fair", params={"permanent": True}).status_code == 404


def test_location_flow_with_alert_lifecycle(client):
    response = client.post("/api/zones", json={
        "id": "api-border",
        "name": "Border Outpost",
        "shape": "circle",
        "category": "restricted",
        "risk_level": 5,
        "center_latitude": 26.18,
        "center_longitude": 91.74,
        "radius_meters": 2000
    })
    assert response.status_code == 200, response.text
    register(client, "api-tourist-1")

    first = send_fix(client, "api-tourist-1", 26.30, 91.74, 0)
    assert first.status_code == 200, first.text
    assert first.json()["safety_score"] == 90

    second = send_fix(client, "api-tourist-1", 26.18, 91.75, 5).json()
    assert second["entered"] == ["api-border"]
    assert second["safety_score"] == 80
    assert len(second["alerts"]) == 1
    alert = second["alerts"][0]
    assert alert["severity"] == "critical"

    score = client.get("/api/tourists/api-tourist-1/safety-score").json()
    assert score == {
        "tourist_id": "api-tourist-1",
        "safety_score": 80,
        "risk_category": "low",
        "zones": ["api-border"]
    }
    assert client.get("/api/tourists/api-tourist-1").json()["safety_score"] == 80

    duplicate = send_fix(client, "api-tourist-1", 26.18, 91.75, 5).json()
    assert duplicate["status"] == "duplicate"

    stale = send_fix(client, "api-tourist-1", 26.30, 91.74, 1)
    assert stale.status_code == 409
    assert stale.json()["detail"]["error"] == "stale_fix"

    active = client.get("/api/alerts/active", params={"tourist_id": "api-tourist-1"}).json()
    assert [a["id"] for a in active] == [alert["id"]]

    acked = client.put(f"/api/alerts/{alert['id']}/acknowledge").json()
    assert acked["alert"]["status"] == "acknowledged"

    resolved = client.put(f"/api/alerts/{alert['id']}/resolve", json={"resolution_notes": "Escorted back"}).json()
    assert resolved["alert"]["status"] == "resolved"
    assert client.get("/api/alerts/active", params={"tourist_id": "api-tourist-1"}).json() == []

    history = client.get("/api/alerts/history", params={"tourist_id": "api-tourist-1"}).json()
    assert history[0]["id"] == alert["id"]
    assert history[0]["status"] == "resolved"
    assert history[0]["resolution_notes"] == "Escorted back"

    # resolved alerts are answered from the database
    again = client.put(f"/api/alerts/{alert['id']}/resolve")
    assert again.status_code == 200
    assert again.json()["alert"]["status"] == "resolved"
    assert client.put(f"/api/alerts/{alert['id']}/acknowledge").json()["alert"]["status"] == "resolved"

    assert client.put("/api/alerts/no-such-alert/acknowledge").status_code == 404
    assert client.get("/api/alerts/auto-resolve-candidates").status_code == 200


def test_location_history(client):
    register(client, "api-history")
    now = datetime.now(timezone.utc)
    for minutes_ago in (3, 2, 1):
        response = client.post("/api/location/update", json={
            "tourist_id": "api-history",
            "latitude": 10.0,
            "longitude": 76.0 + minutes_ago / 1000,
            "timestamp": (now - timedelta(minutes=minutes_ago)).isoformat()
        })
        assert response.status_code == 200, response.text

    history = client.get("/api/tourists/api-history/locations", params={"hours": 1}).json()
    assert len(history) == 3
    assert history[0]["longitude"] == 76.001
    assert client.get("/api/tourists/api-unknown/locations").status_code == 404


def test_unknown_tourist_fix(client):
    response = send_fix(client, "api-nobody", 26.0, 91.0, 0)
    assert response.status_code == 404
    assert response.json()["detail"]["error"] == "missing_tourist"


def test_invalid_coordinates(client):
    register(client, "api-bad-coords")
    assert send_fix(client, "api-bad-coords", 95.0, 91.0, 0).status_code == 422


def test_panic_endpoint(client):
    register(client, "api-panic")
    payload = {"tourist_id": "api-panic", "latitude": 11.0, "longitude": 77.0}

    first = client.post("/api/alerts/panic", json=payload).json()
    assert first["created"] is True
    assert first["alert"]["severity"] == "critical"

    again = client.post("/api/alerts/panic", json=payload).json()
    assert again["created"] is False
    assert again["alert"]["id"] == first["alert"]["id"]

    medical = client.post("/api/alerts/panic", json={**payload, "alert_type": "medical"}).json()
    assert medical["alert"]["type"] == "medical"

    assert client.post("/api/alerts/panic", json={**payload, "alert_type": "geofence"}).status_code == 422
    assert client.post("/api/alerts/panic", json={**payload, "tourist_id": "api-ghost"}).status_code == 404


def test_batch_upload(client):
    register(client, "api-batch")
    fixes = [
        {"tourist_id": "api-batch", "latitude": 12.0, "longitude": 78.0, "timestamp": at(0)},
        {"tourist_id": "api-batch", "latitude": 12.001, "longitude": 78.0, "timestamp": at(2)},
        {"tourist_id": "api-batch", "latitude": 12.002, "longitude": 78.0, "timestamp": at(1)},
    ]
    response = client.post("/api/location/batch", json={"fixes": fixes})
    assert response.status_code == 200, response.text
    body = response.json()
    assert body["accepted"] == 2
    assert body["results"][2]["status"] == "rejected"
    assert body["results"][2]["http_status"] == 409

    assert client.post("/api/location/batch", json={"fixes": []}).status_code == 422


def test_deactivated_tourist(client):
    register(client, "api-leaving", group_size=3)
    assert send_fix(client, "api-leaving", 13.0, 79.0, 0).status_code == 200

    assert client.delete("/api/tourists/api-leaving").status_code == 200
    assert send_fix(client, "api-leaving", 13.0, 79.0, 5).status_code == 404
    assert client.get("/api/tourists/api-leaving").json()["is_active"] is False
    assert client.delete("/api/tourists/api-leaving").status_code == 404

    # re-registering brings the tourist back with a fresh score
    tourist = register(client, "api-leaving")
    assert tourist["is_active"] is True
    assert tourist["safety_score"] == 100


def test_nearest_zone(client):
    response = client.post("/api/zones", json={
        "id": "api-table-mountain",
        "name": "Table Mountain",
        "shape": "circle",
        "category": "wildlife",
        "risk_level": 3,
        "center_latitude": -33.96,
        "center_longitude": 18.40,
        "radius_meters": 1000
    })
    assert response.status_code == 200, response.text

    nearest = client.get("/api/zones/nearest", params={"latitude": -33.99, "longitude": 18.40}).json()
    assert nearest["zone"]["id"] == "api-table-mountain"
    assert nearest["inside"] is False
    assert nearest["distance_meters"] > 0


def test_websocket_heartbeat(client):
    with client.websocket_connect("/ws/test-dashboard") as websocket:
        websocket.send_text("ping")
        message = websocket.receive_json()
        assert message["type"] == "heartbeat"
