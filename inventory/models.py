import uuid

from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models

QUANTITY_FIELD = {"max_digits": 14, "decimal_places": 3}
COST_FIELD = {"max_digits": 14, "decimal_places": 4}


class Category(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=255, unique=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]

    def __str__(self):
        return self.name


class Subcategory(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    category = models.ForeignKey(Category, on_delete=models.PROTECT, related_name="subcategories")
    name = models.CharField(max_length=255)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]
        unique_together = ("category", "name")

    def __str__(self):
        return self.name


class Store(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=255)
    code = models.CharField(max_length=32, unique=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]

    def __str__(self):
        return f"{self.name} ({self.code})"


class Product(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=255)
    barcode = models.CharField(max_length=128, null=True, blank=True)
    category = models.ForeignKey(Category, on_delete=models.PROTECT, null=True, blank=True, related_name="products")
    subcategory = models.ForeignKey(Subcategory, on_delete=models.PROTECT, null=True, blank=True, related_name="products")
    unit = models.CharField(max_length=16, default="UN")
    min_stock = models.DecimalField(**QUANTITY_FIELD, default=0, validators=[MinValueValidator(0)])
    # Cache of the sum of this product's InventoryLevel rows; written only by the ledger.
    current_stock = models.DecimalField(**QUANTITY_FIELD, default=0)
    average_cost = models.DecimalField(**COST_FIELD, default=0)
    last_cost = models.DecimalField(**COST_FIELD, null=True, blank=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]
        indexes = [
            models.Index(fields=["barcode"], name="product_barcode_idx"),
            models.Index(fields=["is_active", "name"], name="product_active_name_idx"),
        ]

    def __str__(self):
        return self.name


class InventoryLevel(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    product = models.ForeignKey(Product, on_delete=models.CASCADE, related_name="inventory_levels")
    store = models.ForeignKey(Store, on_delete=models.PROTECT, related_name="inventory_levels")
    quantity = models.DecimalField(**QUANTITY_FIELD, default=0, validators=[MinValueValidator(0)])
    is_active = models.BooleanField(default=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["product", "store"], name="uniq_inventory_level_product_store"),
            models.CheckConstraint(condition=models.Q(quantity__gte=0), name="inventory_level_quantity_non_negative"),
        ]
        indexes = [
            models.Index(fields=["store", "product"], name="invlevel_store_product_idx"),
        ]


class StockEntry(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    product = models.ForeignKey(Product, on_delete=models.PROTECT, related_name="stock_entries")
    store = models.ForeignKey(Store, on_delete=models.PROTECT, related_name="stock_entries")
    quantity = models.DecimalField(**QUANTITY_FIELD)
    cost_price = models.DecimalField(**COST_FIELD)
    total_cost = models.DecimalField(max_digits=18, decimal_places=4)
    created_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name="+")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["product", "created_at"], name="stockentry_product_created_idx"),
            models.Index(fields=["store", "created_at"], name="stockentry_store_created_idx"),
            models.Index(fields=["created_at"], name="stockentry_created_idx"),
        ]
        constraints = [
            models.CheckConstraint(condition=models.Q(quantity__gt=0), name="stock_entry_quantity_positive"),
            models.CheckConstraint(condition=models.Q(cost_price__gte=0), name="stock_entry_cost_non_negative"),
        ]
