from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session
from cadogy.core.database import get_db
from cadogy.services.settings_service import settings_service

router = APIRouter(prefix="/public", tags=["public"])

# Lives under /api/protected, which the route guard only lets through with an API key
protected_router = APIRouter(prefix="/protected", tags=["protected"])


def _site_settings_payload(values: dict) -> dict:
    return {
        "registrationEnabled": values["registration_enabled"],
        "maintenanceMode": values["maintenance_mode"],
        "siteName": values["site_name"],
        "siteSlogan": values["site_slogan"],
        "siteDescription": values["site_description"],
        "footerDescription": values["footer_description"],
        "contactEmail": values["contact_email"],
        "contactAddress": values["contact_address"],
        "socialLinks": {
            "instagram": values["social_instagram"],
            "github": values["social_github"],
            "linkedin": values["social_linkedin"],
        },
    }


@router.get("/info")
async def api_info():
    """Public description of the API"""
    return {
        "name": "Cadogy API",
        "version": "1.0.0",
        "description": "Public information about the Cadogy API",
        "documentation": "/dashboard/docs",
        "authentication": "Send your API key in the x-api-key header or the api_key query parameter",
        "endpoints": [
            {"path": "/api/public/info", "method": "GET", "description": "API information"},
            {"path": "/api/protected", "method": "GET", "description": "Example resource that requires an API key"},
        ],
    }


@router.get("/settings")
async def public_settings(db: Session = Depends(get_db)):
    return {"settings": _site_settings_payload(settings_service.public_settings(db))}


@protected_router.get("")
async def protected_resource(request: Request):
    return {
        "message": "You have access to this protected resource",
        "userId": getattr(request.state, "api_key_user_id", None),
    }


@protected_router.post("")
async def protected_echo(request: Request):
    try:
        body = await request.json()
    except ValueError:
        body = None
    return {
        "message": "Protected data received",
        "data": body,
        "userId": getattr(request.state, "api_key_user_id", None),
    }
