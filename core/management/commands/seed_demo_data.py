from decimal import Decimal

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand

from inventory.models import Category, Product, StockEntry, Store, Subcategory
from inventory.services import record_stock_entry

DEMO_CATALOG = [
    ("Dairy", "Milk", "L", Decimal("10"), Decimal("4.20")),
    ("Dairy", "Mozzarella", "KG", Decimal("3"), Decimal("32.50")),
    ("Bakery", "Burger bun", "UN", Decimal("60"), Decimal("0.85")),
    ("Produce", "Tomato", "KG", Decimal("5"), Decimal("6.90")),
    ("Beverages", "Cola 350ml", "UN", Decimal("48"), Decimal("2.10")),
]


class Command(BaseCommand):
    help = "Seed demo stores, catalog, users and opening stock for local development."

    def handle(self, *args, **options):
        User = get_user_model()

        admin_user, admin_created = User.objects.get_or_create(
            username="admin",
            defaults={
                "email": "admin@example.com",
                "role": User.Role.ADMIN,
                "is_staff": True,
                "is_superuser": True,
                "is_active": True,
            },
        )
        if admin_created:
            admin_user.set_password("admin1234")
            admin_user.save(update_fields=["password"])

        employee_user, employee_created = User.objects.get_or_create(
            username="employee",
            defaults={
                "email": "employee@example.com",
                "role": User.Role.EMPLOYEE,
                "is_active": True,
            },
        )
        if employee_created:
            employee_user.set_password("employee1234")
            employee_user.save(update_fields=["password"])

        kitchen, _ = Store.objects.get_or_create(code="KIT", defaults={"name": "Kitchen"})
        Store.objects.get_or_create(code="BAR", defaults={"name": "Bar"})

        for category_name, product_name, unit, min_stock, cost in DEMO_CATALOG:
            category, _ = Category.objects.get_or_create(name=category_name)
            subcategory, _ = Subcategory.objects.get_or_create(category=category, name="General")
            product, _ = Product.objects.get_or_create(
                name=product_name,
                defaults={
                    "category": category,
                    "subcategory": subcategory,
                    "unit": unit,
                    "min_stock": min_stock,
                },
            )
            if not StockEntry.objects.filter(product=product).exists():
                record_stock_entry(
                    product_id=product.id,
                    store_id=kitchen.id,
                    quantity=min_stock * 2,
                    cost_price=cost,
                    user=admin_user,
                )

        self.stdout.write(self.style.SUCCESS("Demo data seeded successfully."))
        self.stdout.write("Admin login: admin / admin1234")
        self.stdout.write("Employee login: employee / employee1234")
