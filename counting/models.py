import uuid

from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models

from inventory.models import QUANTITY_FIELD, Product, Store


class StockCount(models.Model):
    class Status(models.TextChoices):
        DRAFT = "draft", "Draft"
        PENDING_REVIEW = "pending_review", "Pending review"
        APPROVED = "approved", "Approved"
        # Legacy rows only; rejecting a count sends it back to draft.
        REJECTED = "rejected", "Rejected"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    # Nullable for counts recorded before stores existed.
    store = models.ForeignKey(Store, on_delete=models.PROTECT, null=True, blank=True, related_name="stock_counts")
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.DRAFT)
    period = models.CharField(max_length=8, help_text="ISO week of creation, e.g. 2026-W07.")
    completed_categories = models.JSONField(default=list, blank=True)
    created_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name="+")
    approved_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name="+")
    submitted_at = models.DateTimeField(null=True, blank=True)
    approved_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["store", "status", "period"], name="stockcount_store_status_idx"),
            models.Index(fields=["status", "created_at"], name="stockcount_status_created_idx"),
        ]


class StockCountItem(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    count = models.ForeignKey(StockCount, on_delete=models.CASCADE, related_name="items")
    product = models.ForeignKey(Product, on_delete=models.PROTECT, related_name="stock_count_items")
    position = models.PositiveIntegerField(default=0)
    quantity_counted = models.DecimalField(**QUANTITY_FIELD, default=0, validators=[MinValueValidator(0)])
    # Snapshot of Product.current_stock when the count was created.
    quantity_system = models.DecimalField(**QUANTITY_FIELD, default=0)

    class Meta:
        ordering = ["position"]
        constraints = [
            models.UniqueConstraint(fields=["count", "product"], name="uniq_stock_count_item_product"),
        ]

    @property
    def variance(self):
        return self.quantity_counted - self.quantity_system
