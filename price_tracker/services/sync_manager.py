import logging

import aiohttp

from price_tracker.aliexpress.client import AliExpressClient
from price_tracker.config import Settings, load_settings
from price_tracker.database.mongo import get_client, get_database
from price_tracker.database.products import ProductRepository
from price_tracker.services.ingest_service import IngestService

logger = logging.getLogger(__name__)


async def full_sync(settings: Settings | None = None, category_ids: list | None = None) -> dict:
    """
    Wire the collaborators for one run (HTTP session, Mongo client, config)
    and return the run report as a dict.
    """
    settings = settings or load_settings()
    config = settings.ingest_config()

    mongo = get_client(settings)
    try:
        repository = ProductRepository(get_database(mongo, settings))
        connector = aiohttp.TCPConnector(limit=config.concurrency)
        async with aiohttp.ClientSession(connector=connector) as session:
            client = AliExpressClient(
                session,
                app_key=settings.AE_APP_KEY,
                app_secret=settings.AE_APP_SECRET,
                tracking_id=settings.AE_TRACKING_ID,
                policy=config.fetch_policy,
                api_url=settings.AE_API_URL,
            )
            report = await IngestService(client, repository, config).run(category_ids=category_ids)
    finally:
        mongo.close()

    return report.to_dict()
