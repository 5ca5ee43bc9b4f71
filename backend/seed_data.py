"""Seed the ledger with demo users, catalog products, prices and stock."""
from fgflow.database import SessionLocal
from fgflow.ledger import SqlLedgerStore, ledger_path
from fgflow.services.inventory_keys import InventoryKey
from fgflow.time_utils import now_ms


def seed():
    """Seed ledger documents with demo data."""
    db = SessionLocal()
    ledger = SqlLedgerStore(db)
    now = now_ms()

    try:
        # One user per workflow role; X-Actor-Id takes these ids.
        users_data = [
            {'id': 'md-001', 'displayName': 'Main Director', 'role': 'MainDirector'},
            {'id': 'ho-001', 'displayName': 'Head of Operations', 'role': 'HeadOfOperations'},
            {'id': 'fg-001', 'displayName': 'FG Store Manager', 'role': 'FinishedGoodsStoreManager'},
            {'id': 'shop-001', 'displayName': 'Galle Road Pharmacy', 'role': 'DirectShop'},
            {'id': 'dist-001', 'displayName': 'Southern Distributors', 'role': 'Distributor'},
            {'id': 'dr-001', 'displayName': 'Field Representative', 'role': 'DirectRepresentative'},
        ]
        for user in users_data:
            user_id = user.pop('id')
            ledger.set(ledger_path('users', user_id), {**user, 'isActive': True, 'createdAt': now})

        # Catalog and live prices
        products_data = [
            {'id': 'prod-cough-syrup', 'name': 'Cough Syrup', 'price': 450},
            {'id': 'prod-herbal-balm', 'name': 'Herbal Balm', 'price': 320},
        ]
        for product in products_data:
            ledger.set(ledger_path('productionProducts', product['id']), {'name': product['name'], 'createdAt': now})
            ledger.set(
                ledger_path('productPricing', product['id']),
                {
                    'productId': product['id'],
                    'productName': product['name'],
                    'currentPrice': product['price'],
                    'currency': 'LKR',
                    'priceType': 'retail',
                    'effectiveDate': now,
                    'createdAt': now,
                    'createdBy': 'fg-001',
                    'status': 'active',
                },
            )

        # Opening stock: one bulk batch and one packaged batch per product
        for product in products_data:
            bulk = InventoryKey(product['id'], 'B-001')
            packaged = InventoryKey(product['id'], 'B-001', '100ml')
            ledger.set(
                bulk.ledger_path(),
                {'productId': product['id'], 'productName': product['name'], 'batchNumber': 'B-001',
                 'quantity': 500, 'createdAt': now},
            )
            ledger.set(
                packaged.ledger_path(),
                {'productId': product['id'], 'productName': product['name'], 'batchNumber': 'B-001',
                 'variantName': '100ml', 'unitsInStock': 1200, 'createdAt': now},
            )

        print("✅ Ledger seeded successfully!")
        print("\nDemo actors (send as X-Actor-Id):")
        for user_id in ('md-001', 'ho-001', 'fg-001', 'shop-001', 'dist-001', 'dr-001'):
            print(f"  {user_id}")

    except Exception as e:
        db.rollback()
        print(f"❌ Error seeding ledger: {e}")
        raise
    finally:
        db.close()


if __name__ == "__main__":
    seed()
