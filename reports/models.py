import uuid

from django.conf import settings
from django.db import models

from inventory.models import QUANTITY_FIELD, Product

MONEY_FIELD = {"max_digits": 16, "decimal_places": 2}


class WeeklyReport(models.Model):
    class Status(models.TextChoices):
        OPEN = "open", "Open"
        CLOSED = "closed", "Closed"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    start_date = models.DateTimeField()
    end_date = models.DateTimeField()
    status = models.CharField(max_length=8, choices=Status.choices, default=Status.CLOSED)
    total_consumption_value = models.DecimalField(**MONEY_FIELD, default=0)
    closed_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name="+")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-end_date"]
        indexes = [
            models.Index(fields=["status", "end_date"], name="weeklyreport_status_end_idx"),
        ]
        constraints = [
            models.CheckConstraint(condition=models.Q(start_date__lt=models.F("end_date")), name="weekly_report_period_ordered"),
        ]


class WeeklyReportItem(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    report = models.ForeignKey(WeeklyReport, on_delete=models.CASCADE, related_name="items")
    product = models.ForeignKey(Product, on_delete=models.PROTECT, related_name="weekly_report_items")
    # Copied at close time so renamed or recategorized products keep their history.
    product_name = models.CharField(max_length=255)
    category_name = models.CharField(max_length=255, blank=True, default="")
    unit = models.CharField(max_length=16, default="UN")
    initial_stock = models.DecimalField(**QUANTITY_FIELD, default=0)
    entries_quantity = models.DecimalField(**QUANTITY_FIELD, default=0)
    final_stock = models.DecimalField(**QUANTITY_FIELD, default=0)
    consumption_quantity = models.DecimalField(**QUANTITY_FIELD, default=0)
    consumption_value = models.DecimalField(**MONEY_FIELD, default=0)

    class Meta:
        ordering = ["category_name", "product_name"]
        constraints = [
            models.UniqueConstraint(fields=["report", "product"], name="uniq_weekly_report_item_product"),
        ]
