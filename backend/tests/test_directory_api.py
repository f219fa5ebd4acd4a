def _registration_payload(email="nuevo@proveedor.mx"):
    return {
        "business_name": "Pasteles Rosita",
        "contact_name": "Rosa Méndez",
        "email": email,
        "phone": "4441112233",
        "whatsapp": "524441112233",
        "city": "San Luis Potosí",
        "category_id": "cat_reposteria",
        "description": "Pasteles personalizados para toda ocasión.",
        "services": [{"name": "Pastel de tres pisos", "description": "Fondant", "price": 2500}],
    }


def test_health_and_ready(client):
    assert client.get("/health").json() == {"status": "ok"}
    ready = client.get("/ready").json()
    assert ready["status"] == "ready"
    assert ready["llm_configured"] is False
    assert ready["llm_mode"] == "fallback"


def test_public_config_exposes_site_url(client):
    payload = client.get("/config/public").json()
    assert payload["site_url"] == "https://charlitron.test"
    assert payload["configured"] is True
    assert payload["payments_configured"] is False


def test_categories_listed_in_display_order(client):
    response = client.get("/categories")
    assert response.status_code == 200
    orders = [row["display_order"] for row in response.json()]
    assert orders == sorted(orders)
    assert "video-fotografia" in {row["slug"] for row in response.json()}


def test_category_providers_and_unknown_slug(client):
    response = client.get("/categories/banquetes/providers")
    assert response.status_code == 200
    payload = response.json()
    assert payload["category"]["slug"] == "banquetes"
    assert [p["name"] for p in payload["providers"]] == ["Snacks Charlitron"]

    empty = client.get("/categories/decoracion/providers").json()
    assert empty["providers"] == []
    assert empty["message"]

    assert client.get("/categories/no-existe/providers").status_code == 404


def test_provider_search_through_api(client):
    response = client.get("/providers", params={"q": "elotes"})
    assert response.status_code == 200
    payload = response.json()
    assert [p["name"] for p in payload["providers"]] == ["Snacks Charlitron"]
    assert payload["total"] == 1
    assert payload["providers"][0]["services"]

    none = client.get("/providers", params={"q": "zzz"}).json()
    assert none["providers"] == []
    assert none["total"] == 0
    assert none["message"]


def test_provider_filters(client):
    monterrey = client.get("/providers", params={"city": "Monterrey"}).json()
    assert [p["name"] for p in monterrey["providers"]] == ["DJ Norte Sonido"]

    premium = client.get("/providers", params={"premium": "true"}).json()
    assert {p["name"] for p in premium["providers"]} == {"Snacks Charlitron", "Charlie Production"}

    expensive = client.get("/providers", params={"price_range": "5000+"}).json()
    assert [p["name"] for p in expensive["providers"]] == ["Charlie Production"]

    assert client.get("/providers", params={"price_range": "cheap"}).status_code == 400


def test_featured_first_then_name_order(client):
    names = [p["name"] for p in client.get("/providers").json()["providers"]]
    assert names[0] == "Snacks Charlitron"
    assert names[1:] == sorted(names[1:])


def test_cities_and_featured_endpoints(client):
    assert client.get("/providers/cities").json() == ["Monterrey", "San Luis Potosí"]
    featured = client.get("/providers/featured").json()
    assert [p["name"] for p in featured] == ["Snacks Charlitron"]


def test_provider_detail_and_missing(client):
    detail = client.get("/providers/prov_charlie")
    assert detail.status_code == 200
    assert detail.json()["services"][0]["name"] == "Cobertura de boda"
    assert client.get("/providers/prov_missing").status_code == 404


def test_plans_expose_billing_period_and_features(client):
    plans = client.get("/plans").json()
    by_id = {plan["id"]: plan for plan in plans}
    assert by_id["basico_mensual"]["billing_period"] == "mensual"
    assert by_id["destacado_anual"]["billing_period"] == "anual"
    assert by_id["basico_mensual"]["features"][0] == "Ficha con datos de contacto"
    assert all(feature == feature.strip() and feature for feature in by_id["destacado_mensual"]["features"])


def test_registration_create_status_and_duplicate(client):
    created = client.post("/registrations", json=_registration_payload())
    assert created.status_code == 201
    registration = created.json()
    assert registration["status"] == "pending"
    assert registration["email"] == "nuevo@proveedor.mx"

    status = client.get(f"/registrations/{registration['id']}").json()
    assert status["status"] == "pending"
    assert status["payment_status"] is None

    duplicate = client.post("/registrations", json=_registration_payload(email="NUEVO@proveedor.mx"))
    assert duplicate.status_code == 409

    assert client.get("/registrations/unknown").status_code == 404


def test_registration_validation(client):
    bad_email = client.post("/registrations", json=_registration_payload(email="no-es-correo"))
    assert bad_email.status_code == 400

    payload = _registration_payload(email="otro@proveedor.mx")
    payload["business_name"] = "   "
    assert client.post("/registrations", json=payload).status_code == 400

    payload = _registration_payload(email="tercero@proveedor.mx")
    payload["services"][0]["price"] = -5
    assert client.post("/registrations", json=payload).status_code == 422


def test_favorites_roundtrip(client):
    assert client.get("/favorites", params={"visitor_id": "v1"}).json() == []

    added = client.post("/favorites", json={"visitor_id": "v1", "provider_id": "prov_snacks"})
    assert added.status_code == 201
    client.post("/favorites", json={"visitor_id": "v1", "provider_id": "prov_charlie"})
    client.post("/favorites", json={"visitor_id": "v1", "provider_id": "prov_snacks"})

    listed = client.get("/favorites", params={"visitor_id": "v1"}).json()
    assert [row["id"] for row in listed] == ["prov_charlie", "prov_snacks"]
    assert client.get("/favorites", params={"visitor_id": "v2"}).json() == []

    removed = client.delete("/favorites", params={"visitor_id": "v1", "provider_id": "prov_charlie"})
    assert removed.status_code == 200
    assert removed.json()["favorites"] == ["prov_snacks"]
    assert client.delete("/favorites", params={"visitor_id": "v1", "provider_id": "prov_charlie"}).status_code == 404

    assert client.post("/favorites", json={"visitor_id": "v1", "provider_id": "nope"}).status_code == 404


def test_favorites_hide_deactivated_providers(client, stores):
    client.post("/favorites", json={"visitor_id": "v9", "provider_id": "prov_dj_norte"})
    stores.directory.set_provider_active("prov_dj_norte", active=False)
    assert client.get("/favorites", params={"visitor_id": "v9"}).json() == []


def test_blog_public_empty_state(client):
    payload = client.get("/blog").json()
    assert payload["posts"] == []
    assert payload["message"] == "No hay artículos publicados aún."


def test_legal_page(client):
    payload = client.get("/legal").json()
    assert payload["sections"]
