from motor.motor_asyncio import AsyncIOMotorClient
from dotenv import load_dotenv
import os
import logging
from pathlib import Path

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

logger = logging.getLogger(__name__)

class Database:
    client: AsyncIOMotorClient = None
    db = None
    
    async def connect(self):
        try:
            mongo_url = os.environ['MONGO_URL']
            # tz_aware so stored timestamps compare cleanly with datetime.now(timezone.utc)
            self.client = AsyncIOMotorClient(mongo_url, tz_aware=True)
            self.db = self.client[os.environ['DB_NAME']]
            # Verify connection
            await self.db.command("ping")
            logger.info(f"Connected to MongoDB: {os.environ['DB_NAME']}")
            
            await self._create_indexes()
        except Exception as e:
            logger.error(f"Failed to connect to MongoDB: {e}")
            raise
    
    async def close(self):
        if self.client:
            self.client.close()
            logger.info("MongoDB connection closed")
    
    def get_db(self):
        return self.db
    
    async def _create_indexes(self):
        """Create MongoDB indexes for lookups and uniqueness rules."""
        try:
            # Accounts
            try:
                await self.db.accounts.create_index("email", unique=True)
            except Exception:
                pass  # Index may already exist with different options
            await self.db.accounts.create_index("account_id", unique=True)
            await self.db.accounts.create_index("stripe_customer_id", sparse=True)
            # Expiry sweep
            await self.db.accounts.create_index([("subscription_status", 1), ("subscription_end_date", 1)])
            
            # Plans - catalog loads active plans by level
            await self.db.plans.create_index("plan_id", unique=True)
            await self.db.plans.create_index([("is_active", 1), ("level", 1)])
            
            # Stores - slug is unique across all accounts
            await self.db.stores.create_index("store_id", unique=True)
            try:
                await self.db.stores.create_index("slug", unique=True)
            except Exception:
                pass
            await self.db.stores.create_index([("account_id", 1), ("status", 1), ("created_at", 1)])
            
            # Catalog children - enforcement reads per store in creation order
            await self.db.categories.create_index("category_id", unique=True)
            await self.db.categories.create_index([("store_id", 1), ("is_active", 1), ("created_at", 1)])
            await self.db.products.create_index("product_id", unique=True)
            await self.db.products.create_index([("store_id", 1), ("is_active", 1), ("created_at", 1)])
            await self.db.products.create_index("category_id", sparse=True)
            
            # Stripe webhook idempotency - duplicate event_id must not process twice
            try:
                await self.db.stripe_events.create_index("event_id", unique=True)
            except Exception:
                pass
            
            # Audit logs
            await self.db.audit_logs.create_index("log_id", unique=True)
            await self.db.audit_logs.create_index([("account_id", 1), ("created_at", -1)])
            await self.db.audit_logs.create_index("action")
            logger.info("MongoDB indexes created/verified")
        except Exception as e:
            # Indexes may already exist, log but don't fail
            logger.warning(f"Index creation note: {e}")

# Global database instance
database = Database()
