"""
Benefit Service Routes Registry

Defines service metadata and routes exposed by the HTTP API.
"""

SERVICE_METADATA = {
    "service_name": "benefit_service",
    "version": "1.0.0",
    "tags": ["v1", "benefit", "redemption", "microservice"],
    "capabilities": [
        "benefit_catalog",
        "eligibility",
        "redemption",
        "redemption_history",
        "statistics",
        "benefit_management",
        "counter_maintenance",
    ],
}

BASE_PATH = "/api/v1/benefits"

# Route definitions for API documentation
ROUTES = [
    # Health endpoints
    {"path": "/health", "methods": ["GET"], "description": "Health check"},
    {"path": f"{BASE_PATH}/health", "methods": ["GET"], "description": "Service health check (API v1)"},

    # Service info
    {"path": f"{BASE_PATH}/info", "methods": ["GET"], "description": "Service information"},

    # Member-facing
    {"path": f"{BASE_PATH}/available", "methods": ["GET"], "description": "Benefits available to a member"},
    {"path": f"{BASE_PATH}/catalog", "methods": ["GET"], "description": "Available benefits tagged with their origin"},
    {"path": f"{BASE_PATH}/{{benefit_id}}/redeem", "methods": ["POST"], "description": "Redeem benefit"},
    {"path": f"{BASE_PATH}/members/{{member_id}}/history", "methods": ["GET"], "description": "Redemption history"},

    # Discovery
    {"path": f"{BASE_PATH}/search", "methods": ["GET"], "description": "Search benefits"},
    {"path": f"{BASE_PATH}/categories", "methods": ["GET"], "description": "Categories in use"},
    {"path": f"{BASE_PATH}/stats", "methods": ["GET"], "description": "Benefit statistics"},

    # Management
    {"path": BASE_PATH, "methods": ["POST"], "description": "Create benefit"},
    {"path": f"{BASE_PATH}/{{benefit_id}}", "methods": ["GET"], "description": "Get benefit"},
    {"path": f"{BASE_PATH}/{{benefit_id}}", "methods": ["PATCH"], "description": "Update benefit"},
    {"path": f"{BASE_PATH}/{{benefit_id}}/state", "methods": ["PUT"], "description": "Set benefit state"},
    {"path": f"{BASE_PATH}/{{benefit_id}}/deactivate", "methods": ["POST"], "description": "Deactivate benefit"},
    {"path": f"{BASE_PATH}/businesses/{{business_id}}", "methods": ["GET"], "description": "Business benefits"},
    {"path": f"{BASE_PATH}/businesses/{{business_id}}/associations", "methods": ["GET"], "description": "Associations available to a business"},
    {"path": f"{BASE_PATH}/associations/{{association_id}}", "methods": ["GET"], "description": "Association benefits"},

    # Maintenance
    {"path": f"{BASE_PATH}/maintenance/expire", "methods": ["POST"], "description": "Expire ended benefits"},
    {"path": f"{BASE_PATH}/maintenance/counters", "methods": ["POST"], "description": "Resynchronize business counters"},
]


def get_route_summary():
    """Get route metadata for service info"""
    route_paths = [r["path"] for r in ROUTES]
    return {
        "route_count": str(len(ROUTES)),
        "routes": ",".join(route_paths[:10]),
        "api_version": "v1",
        "base_path": BASE_PATH,
    }


__all__ = ["SERVICE_METADATA", "ROUTES", "BASE_PATH", "get_route_summary"]
