import os
import sys
from decimal import Decimal

from dotenv import load_dotenv
from sqlmodel import Session, select

# --- PATH SETUP ---
current_dir = os.path.dirname(os.path.abspath(__file__))
project_root = os.path.dirname(current_dir)
sys.path.append(project_root)

from storefront.models import Category, Product, UserAccount
from storefront.utils.db import engine, init_db

# 1. Setup
load_dotenv()

CATEGORIES = [
    {"slug": "electronics", "name": "Electronics", "description": "Phones, audio and accessories"},
    {"slug": "home", "name": "Home", "description": "Kitchen and living"},
    {"slug": "outdoor", "name": "Outdoor", "description": "Camping and hiking gear"},
]

PRODUCTS = [
    {"name": "Wireless Headphones", "company": "Sonique", "category": "electronics",
     "price_regular": Decimal("99.99"), "price_sale": Decimal("79.99"), "stock_quantity": 10, "sku": "SNQ-WH-01"},
    {"name": "USB-C Charger 65W", "company": "Voltix", "category": "electronics",
     "price_regular": Decimal("39.00"), "stock_quantity": 40, "sku": "VTX-CH-65"},
    {"name": "Pour-Over Coffee Set", "company": "Brewhaus", "category": "home",
     "price_regular": Decimal("54.50"), "stock_quantity": 6, "sku": "BRH-PO-02"},
    {"name": "Ultralight Tent", "company": "Ridgeline", "category": "outdoor",
     "price_regular": Decimal("249.00"), "price_sale": Decimal("219.00"), "stock_quantity": 3, "sku": "RDG-TN-1P"},
    {"name": "Gift Card", "company": "ShopSmart", "category": "home",
     "price_regular": Decimal("25.00"), "stock_quantity": 0, "track_inventory": False, "sku": "GIFT-25"},
]

ACCOUNTS = [
    {"id": "admin-1", "primary_email": "admin@shopsmart.example", "display_name": "Store Admin",
     "client_metadata": {"role": "admin"}},
    {"id": "customer-1", "primary_email": "jane@example.com", "display_name": "Jane Doe",
     "client_metadata": "customer"},
]


def main():
    print("--- 🛒 Seeding ShopSmart catalog ---")
    init_db()

    with Session(engine) as session:
        for data in CATEGORIES:
            if session.exec(select(Category).where(Category.slug == data["slug"])).first():
                continue
            session.add(Category(**data))
            print(f"   🔹 Category: {data['name']}")

        for data in PRODUCTS:
            if session.exec(select(Product).where(Product.sku == data["sku"])).first():
                continue
            session.add(Product(**data))
            print(f"   🔹 Product: {data['name']} ({data['stock_quantity']} in stock)")

        for data in ACCOUNTS:
            if session.get(UserAccount, data["id"]):
                continue
            session.add(UserAccount(**data))
            print(f"   👤 Account: {data['id']} <{data['primary_email']}>")

        session.commit()

    print("✅ Seed complete.")


if __name__ == "__main__":
    main()
