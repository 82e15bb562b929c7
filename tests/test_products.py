"""
Product catalog — service and /api/v1/products

Covers:
  1. Create spawns one planned production stage per route step
  2. Route validation: non-empty, unique orders starting at 1
  3. SKU unique per tenant (409), free across tenants
  4. Update of catalog fields, delete keeps spawned stages
  5. Categories / stats endpoints, tenant scoping
  6. Role checks: every role reads, only admins write
"""

import pytest

from shopfloor.core.exceptions import ConflictError, NotFoundError, ValidationError
from shopfloor.models import db
from shopfloor.models.product import Product, ProductProcessStage
from shopfloor.models.production import ProductionStage
from shopfloor.services import product_service as prs
from shopfloor.services import production_service as ps

BASE = "/api/v1/products"


def _payload(sku="BRK-100", category="Brackets", **extra):
    payload = {
        "name": "Steel bracket",
        "sku": sku,
        "category": category,
        "specifications": {"material": "S235", "thickness_mm": 4},
        "process_stages": [
            {"name": "Weld", "order": 2, "estimated_duration_min": 30,
             "quality_checks": [{"name": "Seam", "description": "No porosity"}]},
            {"name": "Cut", "order": 1, "estimated_duration_min": 15,
             "target_quantity": 50, "required_skills": ["laser", " "]},
        ],
    }
    payload.update(extra)
    return payload


@pytest.fixture()
def as_admin(admin, auth_headers):
    return auth_headers(admin)


# ═════════════════════════════════════════════════════════════════════════════
# Service
# ═════════════════════════════════════════════════════════════════════════════


class TestCreateProduct:

    def test_route_spawns_planned_stages(self, admin, ctx_for):
        product = prs.create_product(ctx_for(admin), _payload())

        assert [step.name for step in product.process_stages] == ["Cut", "Weld"]
        assert product.stage_count == 2
        assert product.total_estimated_duration_min == 45
        assert product.created_by_id == admin.id
        assert product.is_active

        cut, weld = product.process_stages
        assert cut.required_skills == ["laser"]
        assert weld.quality_checks == [
            {"name": "Seam", "description": "No porosity", "required": True},
        ]

        stage = db.session.get(ProductionStage, cut.stage_id)
        assert stage.tenant_id == admin.tenant_id
        assert stage.status == "planned"
        assert stage.target_quantity == 50
        assert stage.wip_quantity == 50
        assert db.session.get(ProductionStage, weld.stage_id).target_quantity == 1

    @pytest.mark.parametrize("process_stages", [
        [],
        None,
        [{"name": "Cut", "order": 1, "estimated_duration_min": 5},
         {"name": "Bend", "order": 1, "estimated_duration_min": 5}],
        [{"name": "Cut", "order": 2, "estimated_duration_min": 5}],
        [{"name": "Cut", "order": 1, "estimated_duration_min": 0}],
        ["Cut"],
    ])
    def test_invalid_route(self, admin, ctx_for, process_stages):
        with pytest.raises(ValidationError):
            prs.create_product(ctx_for(admin), _payload(process_stages=process_stages))
        assert ProductionStage.query.count() == 0

    def test_short_name_rejected(self, admin, ctx_for):
        with pytest.raises(ValidationError):
            prs.create_product(ctx_for(admin), _payload(name="X"))

    def test_specifications_must_be_object(self, admin, ctx_for):
        with pytest.raises(ValidationError):
            prs.create_product(ctx_for(admin), _payload(specifications=["S235"]))

    def test_sku_unique_per_tenant(self, admin, make_user, other_company, ctx_for):
        prs.create_product(ctx_for(admin), _payload())
        with pytest.raises(ConflictError):
            prs.create_product(ctx_for(admin), _payload())

        outsider = make_user("admin", tenant=other_company)
        other = prs.create_product(ctx_for(outsider), _payload())
        assert other.tenant_id == other_company.id


class TestUpdateDeleteProduct:

    def test_update_catalog_fields(self, admin, ctx_for):
        ctx = ctx_for(admin)
        product = prs.create_product(ctx, _payload())

        product = prs.update_product(ctx, product.id, {
            "name": "Steel bracket v2", "status": "discontinued",
            "specifications": {"material": "S355"},
        })
        assert product.name == "Steel bracket v2"
        assert product.status == "discontinued"
        assert product.specifications == {"material": "S355"}
        assert product.stage_count == 2

    def test_update_to_taken_sku(self, admin, ctx_for):
        ctx = ctx_for(admin)
        prs.create_product(ctx, _payload(sku="BRK-100"))
        second = prs.create_product(ctx, _payload(sku="BRK-200"))
        with pytest.raises(ConflictError):
            prs.update_product(ctx, second.id, {"sku": "BRK-100"})
        assert prs.update_product(ctx, second.id, {"sku": "BRK-200"}).sku == "BRK-200"

    def test_invalid_status(self, admin, ctx_for):
        ctx = ctx_for(admin)
        product = prs.create_product(ctx, _payload())
        with pytest.raises(ValidationError):
            prs.update_product(ctx, product.id, {"status": "retired"})

    def test_delete_keeps_spawned_stages(self, admin, ctx_for):
        ctx = ctx_for(admin)
        product = prs.create_product(ctx, _payload())
        product_id = product.id
        stage_ids = [step.stage_id for step in product.process_stages]

        prs.delete_product(ctx, product_id)

        with pytest.raises(NotFoundError):
            prs.get_product(ctx, product_id)
        assert ProductProcessStage.query.count() == 0
        assert ProductionStage.query.filter(ProductionStage.id.in_(stage_ids)).count() == 2

    def test_deleted_stage_unlinks_route_step(self, admin, ctx_for):
        ctx = ctx_for(admin)
        product = prs.create_product(ctx, _payload())
        cut = product.process_stages[0]
        step_id, stage_id = cut.id, cut.stage_id

        ps.delete_stage(ctx, stage_id)

        db.session.expire_all()
        assert db.session.get(ProductProcessStage, step_id).stage_id is None

    def test_cross_tenant_lookup(self, admin, make_user, other_company, ctx_for):
        product = prs.create_product(ctx_for(admin), _payload())
        outsider = make_user("admin", tenant=other_company)
        with pytest.raises(NotFoundError):
            prs.get_product(ctx_for(outsider), product.id)


class TestCatalogFigures:

    def test_categories_distinct_and_scoped(self, admin, make_user, other_company, ctx_for):
        ctx = ctx_for(admin)
        prs.create_product(ctx, _payload(sku="A-1", category="Brackets"))
        prs.create_product(ctx, _payload(sku="A-2", category="Brackets"))
        prs.create_product(ctx, _payload(sku="A-3", category="Axles"))
        outsider = make_user("admin", tenant=other_company)
        prs.create_product(ctx_for(outsider), _payload(sku="B-1", category="Bolts"))

        assert prs.product_categories(ctx) == ["Axles", "Brackets"]

    def test_stats(self, admin, ctx_for):
        ctx = ctx_for(admin)
        prs.create_product(ctx, _payload(sku="A-1"))
        prs.create_product(ctx, _payload(sku="A-2", status="inactive"))
        prs.create_product(ctx, _payload(sku="A-3", status="discontinued"))

        stats = prs.product_stats(ctx)
        assert stats["summary"] == {
            "total_products": 3, "active_products": 1, "inactive_products": 2,
        }
        assert {s["status"]: s["count"] for s in stats["stats"]} == {
            "active": 1, "inactive": 1, "discontinued": 1,
        }


# ═════════════════════════════════════════════════════════════════════════════
# API
# ═════════════════════════════════════════════════════════════════════════════


class TestProductEndpoints:

    def test_create_get_list(self, client, as_admin):
        rv = client.post(BASE, json=_payload(), headers=as_admin)
        assert rv.status_code == 201, rv.get_json()
        product = rv.get_json()
        assert product["sku"] == "BRK-100"
        assert [s["order"] for s in product["process_stages"]] == [1, 2]
        assert product["process_stages"][0]["stage"]["status"] == "planned"

        rv = client.get(f"{BASE}/{product['id']}", headers=as_admin)
        assert rv.status_code == 200
        assert rv.get_json()["specifications"]["material"] == "S235"

        client.post(BASE, json=_payload(sku="AX-1", category="Axles"), headers=as_admin)
        rv = client.get(f"{BASE}?category=Axles&limit=5", headers=as_admin)
        body = rv.get_json()
        assert [p["sku"] for p in body["items"]] == ["AX-1"]
        assert body["pagination"]["total"] == 1
        assert body["pagination"]["limit"] == 5

    def test_duplicate_sku_409(self, client, as_admin):
        client.post(BASE, json=_payload(), headers=as_admin)
        rv = client.post(BASE, json=_payload(), headers=as_admin)
        assert rv.status_code == 409
        assert rv.get_json()["code"] == "ERR_CONFLICT_DUPLICATE"

    def test_invalid_route_422(self, client, as_admin):
        rv = client.post(BASE, json=_payload(process_stages=[]), headers=as_admin)
        assert rv.status_code == 422
        assert rv.get_json()["details"] == {"process_stages": "required"}

    def test_update_and_delete(self, client, as_admin):
        product = client.post(BASE, json=_payload(), headers=as_admin).get_json()

        rv = client.put(f"{BASE}/{product['id']}", json={"category": "Mounts"}, headers=as_admin)
        assert rv.status_code == 200
        assert rv.get_json()["category"] == "Mounts"

        rv = client.delete(f"{BASE}/{product['id']}", headers=as_admin)
        assert rv.status_code == 200
        assert client.get(f"{BASE}/{product['id']}", headers=as_admin).status_code == 404

    def test_categories_and_stats(self, client, as_admin):
        client.post(BASE, json=_payload(), headers=as_admin)
        rv = client.get(f"{BASE}/categories", headers=as_admin)
        assert rv.get_json() == {"categories": ["Brackets"]}

        rv = client.get(f"{BASE}/stats", headers=as_admin)
        assert rv.get_json()["summary"]["total_products"] == 1

    @pytest.mark.parametrize("role", ["supervisor", "employee"])
    def test_non_admin_reads_only(self, client, as_admin, make_user, auth_headers, role):
        product = client.post(BASE, json=_payload(), headers=as_admin).get_json()
        headers = auth_headers(make_user(role))

        assert client.get(BASE, headers=headers).status_code == 200
        assert client.get(f"{BASE}/{product['id']}", headers=headers).status_code == 200
        assert client.post(BASE, json=_payload(sku="X-9"), headers=headers).status_code == 403
        rv = client.put(f"{BASE}/{product['id']}", json={"name": "Renamed"}, headers=headers)
        assert rv.status_code == 403
        assert client.delete(f"{BASE}/{product['id']}", headers=headers).status_code == 403
        assert Product.query.count() == 1

    def test_cross_tenant_404(self, client, as_admin, make_user, other_company, auth_headers):
        product = client.post(BASE, json=_payload(), headers=as_admin).get_json()
        outsider = auth_headers(make_user("admin", tenant=other_company))
        assert client.get(f"{BASE}/{product['id']}", headers=outsider).status_code == 404
        assert client.get(BASE, headers=outsider).get_json()["pagination"]["total"] == 0
