import uuid

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        ("inventory", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="WeeklyReport",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("start_date", models.DateTimeField()),
                ("end_date", models.DateTimeField()),
                (
                    "status",
                    models.CharField(
                        choices=[("open", "Open"), ("closed", "Closed")],
                        default="closed",
                        max_length=8,
                    ),
                ),
                ("total_consumption_value", models.DecimalField(decimal_places=2, default=0, max_digits=16)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "closed_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-end_date"],
                "indexes": [
                    models.Index(fields=["status", "end_date"], name="weeklyreport_status_end_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(start_date__lt=models.F("end_date")),
                        name="weekly_report_period_ordered",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="WeeklyReportItem",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("product_name", models.CharField(max_length=255)),
                ("category_name", models.CharField(blank=True, default="", max_length=255)),
                ("unit", models.CharField(default="UN", max_length=16)),
                ("initial_stock", models.DecimalField(decimal_places=3, default=0, max_digits=14)),
                ("entries_quantity", models.DecimalField(decimal_places=3, default=0, max_digits=14)),
                ("final_stock", models.DecimalField(decimal_places=3, default=0, max_digits=14)),
                ("consumption_quantity", models.DecimalField(decimal_places=3, default=0, max_digits=14)),
                ("consumption_value", models.DecimalField(decimal_places=2, default=0, max_digits=16)),
                (
                    "product",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="weekly_report_items",
                        to="inventory.product",
                    ),
                ),
                (
                    "report",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="items",
                        to="reports.weeklyreport",
                    ),
                ),
            ],
            options={
                "ordering": ["category_name", "product_name"],
                "constraints": [
                    models.UniqueConstraint(fields=["report", "product"], name="uniq_weekly_report_item_product"),
                ],
            },
        ),
    ]
