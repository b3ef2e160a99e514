from corolla.main import app
from corolla.auth import get_current_user

PUBLIC_PATHS = {
    "/metrics",
    "/api/access-grants/bulk/template",
}


def test_all_routes_protected():
    for route in app.routes:
        path = getattr(route, 'path', '')
        if not path.startswith('/api'):
            continue
        if path in PUBLIC_PATHS:
            continue
        if not hasattr(route, 'dependant'):
            continue
        deps = [d.call for d in route.dependant.dependencies]
        assert get_current_user in deps, f"{path} missing authentication"


def test_metrics_endpoint(client):
    client.get("/api/access-grants/bulk/template")
    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert "request_count" in resp.text


def test_error_responses_are_documented(client):
    spec = client.get("/openapi.json").json()
    conflict = spec["paths"]["/api/access-grants"]["post"]["responses"]["409"]
    ref = conflict["content"]["application/json"]["schema"]["$ref"]
    assert ref.endswith("/ErrorResponse")
    detail = spec["components"]["schemas"]["ErrorResponse"]["properties"]["detail"]
    assert detail["$ref"].endswith("/ErrorOut")
