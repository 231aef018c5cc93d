import asyncio, sys, os, json, logging

ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.append(ROOT)

from price_tracker.services.sync_manager import full_sync

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)


async def main():
    # optional category ids on the command line; otherwise every configured partition
    category_ids = sys.argv[1:] or None
    report = await full_sync(category_ids=category_ids)
    print(json.dumps({k: v for k, v in report.items() if k != "diagnostics"}, indent=2, default=str))

if __name__ == "__main__":
    asyncio.run(main())
