from sqlalchemy import Column, Integer, String, DateTime, Boolean, Float
from sqlalchemy.sql import func
from cadogy.core.database import Base

DEFAULT_FOOTER_DESCRIPTION = (
    "Crafting exceptional digital experiences through innovative web development, "
    "secure infrastructure, and custom solutions for businesses in South Florida and beyond."
)


class SiteSettings(Base):
    """Single-row table of site-wide switches and marketing copy"""
    __tablename__ = "site_settings"

    id = Column(Integer, primary_key=True, index=True)
    registration_enabled = Column(Boolean, nullable=False, default=True)
    maintenance_mode = Column(Boolean, nullable=False, default=False)
    dashboard_background_image = Column(String, nullable=False, default="")
    dashboard_background_opacity = Column(Float, nullable=False, default=0.1)
    site_name = Column(String, nullable=False, default="Cadogy")
    site_slogan = Column(String, nullable=False, default="")
    site_description = Column(String, nullable=False, default="")
    footer_description = Column(String, nullable=False, default=DEFAULT_FOOTER_DESCRIPTION)
    contact_email = Column(String, nullable=False, default="hello@cadogy.com")
    contact_address = Column(String, nullable=False, default="Pompano Beach, FL")
    social_instagram = Column(String, nullable=False, default="https://www.instagram.com/cadogyweb")
    social_github = Column(String, nullable=False, default="https://www.github.com/cadogy")
    social_linkedin = Column(String, nullable=False, default="https://www.linkedin.com/company/cadogy")
    # Starting token balance granted at registration
    default_token_balance = Column(Integer, nullable=False, default=0)
    max_file_upload_size = Column(Integer, nullable=False, default=10 * 1024 * 1024)
    updated_by = Column(Integer, nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
