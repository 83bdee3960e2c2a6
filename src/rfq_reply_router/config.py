"""Application configuration and settings.

Objective:
    Provide a single source of truth for runtime configuration used across the
    application (Graph auth, the classification backend, polling, sent-item
    lookup, and the per-material folder taxonomy).

Responsibilities:
    - Define the fixed folder taxonomy created under every material code
      (:class:`FolderName`).
    - Define the folder -> mailbox category table (:data:`FOLDER_CATEGORY_MAP`).
    - Define the classification labels returned by the backend
      (:class:`Classification`).
    - Load environment-driven settings via :class:`Settings` (Pydantic
      BaseSettings).

High-level call tree:
    - :func:`get_settings` -> returns :class:`Settings`
    - :class:`Settings`
        - :attr:`Settings.noise_sender_pattern_list`
        - :attr:`Settings.classifier_base_url`

Operational notes:
    - ``Settings`` loads from ``.env`` by default via ``pydantic-settings``.
    - Most modules accept a ``Settings`` object explicitly to enable testing;
      the pipeline falls back to :func:`get_settings` when not provided.
"""

from enum import Enum
from pathlib import Path
from typing import NamedTuple, Optional
import logging

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# Material codes look like MAT-12345
MATERIAL_CODE_PATTERN = r"MAT-\d+"

# Category applied to outbound RFQs; replies are matched against it
SENT_RFQ_CATEGORY = "Sent RFQ"


class FolderName(str, Enum):
    """The six subfolders created directly under each material code folder.

    The Enum values are the user-facing folder display names.
    """

    SENT_RFQS = "Sent RFQs"
    QUOTES = "Quotes"
    CLARIFICATION_REQUESTS = "Clarification Requests"
    AWAITING_CLARIFICATION = "Awaiting Clarification Response"
    AWAITING_ENGINEER = "Awaiting Engineer Response"
    ENGINEER_RESPONSE = "Engineer Response"


class Classification(str, Enum):
    """Labels returned by the classification backend."""

    QUOTE = "quote"
    CLARIFICATION_REQUEST = "clarification_request"
    ENGINEER_RESPONSE = "engineer_response"
    SENT_RFQ = "sent_rfq"
    OTHER = "other"


class CategorySpec(NamedTuple):
    """Master category display name and Outlook color preset."""

    name: str
    color: str


# Outlook presets: preset1=Orange, preset3=Yellow, preset4=Green,
# preset5=Teal, preset7=Blue, preset8=Purple
FOLDER_CATEGORY_MAP: dict[str, CategorySpec] = {
    FolderName.SENT_RFQS.value: CategorySpec(SENT_RFQ_CATEGORY, "preset7"),
    FolderName.QUOTES.value: CategorySpec("Quote", "preset4"),
    FolderName.CLARIFICATION_REQUESTS.value: CategorySpec("Clarification Request", "preset3"),
    FolderName.AWAITING_CLARIFICATION.value: CategorySpec("Awaiting Clarification", "preset1"),
    FolderName.AWAITING_ENGINEER.value: CategorySpec("Awaiting Engineer", "preset8"),
    FolderName.ENGINEER_RESPONSE.value: CategorySpec("Engineer Response", "preset5"),
}


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    The settings model is intentionally flat and human-editable via `.env`.
    Most fields map directly to environment variables.

    Attributes:
        azure_client_id: Azure AD application client ID.
        azure_client_secret: Azure AD application client secret.
        azure_tenant_id: Azure AD tenant ID.
        classifier_api_url: Base URL of the procurement backend.
        poll_interval_seconds: Seconds between two inbox polls.
        inbox_page_size: Number of recent inbox messages inspected per poll.
        noise_sender_patterns: Comma-separated automated sender fragments.
        max_processing_attempts: Failures before a message is quarantined.
        log_level: Logging level.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Azure AD Configuration
    azure_client_id: str = Field(..., description="Azure AD application client ID")
    azure_client_secret: Optional[str] = Field(
        default=None, description="Azure AD application client secret (for client credentials flow)"
    )
    azure_tenant_id: str = Field(
        default="consumers", description="Azure AD tenant ID (consumers for personal accounts)"
    )

    outlook_account_username: Optional[str] = Field(
        default=None,
        description=(
            "Preferred Outlook account username to select from the MSAL token cache. "
            "If omitted, the first cached account is used."
        ),
    )

    device_code_prompt_mode: str = Field(
        default="console",
        description=(
            "How to surface device-code authentication instructions. "
            "Use 'console' to print to stdout. Use 'web' to raise a structured exception so the web API can return it."
        ),
    )

    use_client_credentials: bool = Field(
        default=False,
        description=(
            "Use client credentials flow instead of device code flow. "
            "Requires an organizational tenant (not 'consumers')."
        ),
    )

    target_user_principal_name: Optional[str] = Field(
        default=None,
        description=(
            "User principal name (email) for the mailbox to access when using "
            "client credentials flow. Required when using application permissions."
        ),
    )

    token_cache_path: Path = Field(
        default=Path.home() / ".rfq_reply_router_token_cache.json",
        description="File used to persist the MSAL token cache",
    )

    # Classification backend
    classifier_api_url: str = Field(
        default="http://localhost:8000", description="Procurement backend base URL"
    )
    classifier_api_prefix: str = Field(default="/api", description="Backend API prefix")
    classifier_timeout_seconds: float = Field(default=30.0, gt=0)

    # Polling
    poll_interval_seconds: float = Field(default=30.0, gt=0)
    inbox_page_size: int = Field(
        default=20, ge=1, le=100, description="Recent inbox messages per poll"
    )
    noise_sender_patterns: str = Field(
        default="postmaster,mailer-daemon",
        description="Comma-separated sender address/name fragments that are deleted on sight",
    )
    max_processing_attempts: int = Field(
        default=5,
        ge=0,
        description="Failed attempts before a message is quarantined (0 disables)",
    )
    folder_ancestry_max_depth: int = Field(default=5, ge=1)

    # Sent-item lookup after a send
    sent_item_max_attempts: int = Field(default=5, ge=1)
    sent_item_initial_delay_seconds: float = Field(default=2.0, ge=0)
    sent_item_delay_step_seconds: float = Field(default=1.0, ge=0)
    sent_item_recent_window: int = Field(default=20, ge=1, le=100)

    # External mapping stores
    rfq_mapping_path: Path = Field(
        default=Path.home() / ".rfq_reply_router_rfq_mapping.json",
        description="RFQ to supplier mapping keyed by message threading metadata",
    )
    email_id_mapping_path: Path = Field(
        default=Path.home() / ".rfq_reply_router_email_ids.json",
        description="Mailbox message id to backend email id mapping",
    )

    log_level: str = Field(default="INFO", description="Logging level")

    @property
    def noise_sender_pattern_list(self) -> list[str]:
        """Parse noise sender patterns from comma-separated string.

        Returns:
            list[str]: Lowercased, non-empty patterns.
        """
        if not self.noise_sender_patterns:
            return []
        return [
            pattern.strip().lower()
            for pattern in self.noise_sender_patterns.split(",")
            if pattern.strip()
        ]

    @property
    def classifier_base_url(self) -> str:
        """Backend URL including the API prefix, without a trailing slash."""
        return self.classifier_api_url.rstrip("/") + self.classifier_api_prefix.rstrip("/")


def get_settings() -> Settings:
    """
    Load and return application settings.

    This helper is a convenience for production code. For tests, you typically
    construct a :class:`Settings` instance directly or pass a mocked settings
    object.

    Returns:
        Settings: Application settings instance.

    Raises:
        ValidationError: If required environment variables are missing.
    """
    return Settings()
