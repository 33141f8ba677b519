"""Configuration management for the invoice dashboard."""

import logging

from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Workflow-automation webhooks (the system of record lives behind these)
    invoices_webhook_url: str = "http://localhost:5678/webhook/invoice-retrieval"
    update_webhook_url: str = "http://localhost:5678/webhook/update-invoice"
    upload_form_url: str = "http://localhost:5678/form/upload-document"
    save_webhook_url: str = "http://localhost:5678/webhook/save_invoice"

    # None means no client-side timeout; the webhook host may impose its own
    webhook_timeout: float | None = None

    # Display defaults
    default_currency: str = "CHF"

    # How long a successful category sync stays visible before it is cleared
    sync_success_display_seconds: float = 3.0

    # Development mode
    dev_mode: bool = True
    log_level: str = "INFO"

    # API settings
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    cors_origins: list[str] = ["http://localhost:3000"]

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    def log_config(self) -> None:
        """Log current configuration."""
        logger.info("=" * 60)
        logger.info("CONFIGURATION LOADED")
        logger.info("=" * 60)
        logger.info(f"Invoices webhook:    {self.invoices_webhook_url}")
        logger.info(f"Update webhook:      {self.update_webhook_url}")
        logger.info(f"Upload form:         {self.upload_form_url}")
        logger.info(f"Save webhook:        {self.save_webhook_url}")
        logger.info(f"Webhook timeout:     {self.webhook_timeout or 'none'}")
        logger.info(f"Default currency:    {self.default_currency}")
        logger.info(f"Sync display window: {self.sync_success_display_seconds}s")
        logger.info(f"Dev Mode:            {self.dev_mode}")
        logger.info(f"API Host:            {self.api_host}:{self.api_port}")
        logger.info("=" * 60)


# Global settings instance
settings = Settings()
