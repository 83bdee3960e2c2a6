"""Utility script to re-apply location categories to already filed messages.

Useful after the folder to category table changed, or after messages were
moved by hand between the subfolders of a material. Every message found in
a material subfolder gets the category of that subfolder; categories the
user applied by hand are kept.

Usage:
    python scripts/resync_folder_categories.py MAT-12345 [MAT-67890 ...]
"""

import argparse
import logging

import requests

from rfq_reply_router.auth import GraphAuthenticator
from rfq_reply_router.category_sync import CategorySynchronizer
from rfq_reply_router.config import get_settings
from rfq_reply_router.email_client import EmailClient
from rfq_reply_router.folder_manager import FolderManager

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def resync_folder(
    email_client: EmailClient,
    category_sync: CategorySynchronizer,
    folder_id: str,
    folder_name: str,
    limit: int = 50,
) -> tuple[int, int]:
    """Apply the folder's category to every message in it.

    Args:
        email_client: Email client instance
        category_sync: Category synchronizer
        folder_id: Folder ID to process
        folder_name: Folder display name (selects the category)
        limit: Maximum messages inspected

    Returns:
        tuple[int, int]: (updated, failed) message counts
    """
    if category_sync.category_for_folder(folder_name) is None:
        logger.info(f"  Skipping {folder_name}: no category mapped")
        return 0, 0

    emails = email_client.list_messages(folder=folder_id, top=limit, select="id,subject,categories")
    updated = 0
    failed = 0
    for email in emails:
        try:
            if category_sync.set_folder_category(email.id, folder_name):
                updated += 1
        except requests.RequestException as e:
            failed += 1
            logger.warning(f"  Failed to tag {email.subject[:50]}: {e}")

    logger.info(f"  {folder_name}: {len(emails)} message(s), {updated} updated, {failed} failed")
    return updated, failed


def main():
    """Re-apply location categories for the given material codes."""
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("materials", nargs="+", help="Material codes, e.g. MAT-12345")
    parser.add_argument("--limit", type=int, default=50, help="Messages per folder")
    args = parser.parse_args()

    settings = get_settings()
    auth = GraphAuthenticator(settings)
    email_client = EmailClient(settings, auth)
    folder_manager = FolderManager(email_client, max_depth=settings.folder_ancestry_max_depth)
    category_sync = CategorySynchronizer(email_client)

    total_updated = 0
    total_failed = 0
    for material in args.materials:
        material = material.upper()
        folders = folder_manager.list_material_folders(material)
        if not folders:
            logger.warning(f"No folders found for {material}")
            continue

        logger.info(f"Processing {material} ({len(folders)} subfolder(s))")
        for folder in folders:
            updated, failed = resync_folder(
                email_client, category_sync, folder.id, folder.display_name, args.limit
            )
            total_updated += updated
            total_failed += failed

    logger.info("=" * 60)
    logger.info(f"Resync complete: {total_updated} updated, {total_failed} failed")
    logger.info("=" * 60)


if __name__ == "__main__":
    main()
