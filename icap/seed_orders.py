"""
Database seeding script for demo orders.

Creates a few orders the driver app can scan during development.
Run this script after the database is reachable.
"""

import asyncio
import sys
from datetime import date, timedelta
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from icap.app.db.session import AsyncSessionLocal, init_models
from icap.app.models.order import Order
from icap.app.models.order_enums import OrderStatus
from sqlalchemy import select

DEMO_ORDERS = [
    {
        "order_id": "CAP2505260002",
        "status": OrderStatus.EM_ROTA.value,
        "work_location": "Obra Curitiba Centro",
        "quantity": 12,
        "product_name": "Concreto usinado FCK 30",
        "supplier_name": "Concreteira Paraná",
    },
    {
        "order_id": "CAP2505260003",
        "status": OrderStatus.CARREGADO.value,
        "work_location": "Obra São José dos Pinhais",
        "quantity": 8,
        "product_name": "Brita 1",
        "supplier_name": "Pedreira Sul",
    },
]


async def seed_orders():
    """Create the demo orders that do not exist yet."""
    await init_models()

    async with AsyncSessionLocal() as db:
        print("🌱 Starting order seeding...")
        created = 0

        for data in DEMO_ORDERS:
            result = await db.execute(
                select(Order).where(Order.order_id == data["order_id"])
            )
            if result.scalar_one_or_none():
                print(f"ℹ️  Order {data['order_id']} already exists, skipping")
                continue

            db.add(Order(delivery_date=date.today() + timedelta(days=1), **data))
            created += 1
            print(f"✅ Created order {data['order_id']} ({data['status']})")

        await db.commit()
        print(f"\n🎉 Order seeding completed: {created} created")


if __name__ == "__main__":
    asyncio.run(seed_orders())
