"""
Script to reprocess Razorpay webhook deliveries that failed.
Run: python -m scripts.replay_failed_webhooks [limit]
"""
import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.db.session import SessionLocal
from app.services.razorpay_webhook_service import replay_failed_webhooks
import logging

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def main(limit: int = 100) -> int:
    db = SessionLocal()
    try:
        results = replay_failed_webhooks(db, limit=limit)
    finally:
        db.close()

    logger.info(
        f"Replay finished: succeeded={results['succeeded']}, skipped={results['skipped']}, "
        f"failed={results['failed']}"
    )
    return 0 if results["failed"] == 0 else 1


if __name__ == "__main__":
    limit = int(sys.argv[1]) if len(sys.argv) > 1 else 100
    sys.exit(main(limit))
