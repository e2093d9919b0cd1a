import logging
import math
from collections import OrderedDict, defaultdict
from datetime import timedelta
from decimal import Decimal, ROUND_HALF_UP

from django.conf import settings
from django.db import transaction
from django.db.models import F, Max, Q, Sum
from django.db.models.functions import Coalesce
from django.utils import timezone

from common.exceptions import InvalidPeriod, PeriodOverlap, ReportNotFound
from counting.models import StockCount, StockCountItem
from inventory.models import InventoryLevel, Product, StockEntry, Store
from inventory.services import get_store, lookup, to_quantity
from reports.models import WeeklyReport, WeeklyReportItem

logger = logging.getLogger(__name__)

MONEY_QUANT = Decimal("0.01")
PURCHASE_TARGET_FACTOR = Decimal("1.5")
ZERO = Decimal("0")


def to_money(value):
    return Decimal(value).quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def latest_closed_report(before=None):
    qs = WeeklyReport.objects.filter(status=WeeklyReport.Status.CLOSED)
    if before is not None:
        qs = qs.filter(end_date__lte=before)
    return qs.order_by("-end_date", "-created_at").first()


def current_period(now=None):
    """The open period: from the last close (or the default window) up to now."""
    now = now or timezone.now()
    latest = latest_closed_report()
    if latest is not None:
        return latest.end_date, now
    return now - timedelta(days=settings.WEEKLY_REPORT_DEFAULT_DAYS), now


def _entries_by_product(start, end):
    rows = (
        StockEntry.objects.filter(created_at__gte=start, created_at__lte=end)
        .values("product_id")
        .annotate(total=Coalesce(Sum("quantity"), ZERO))
    )
    return {row["product_id"]: row["total"] for row in rows}


def _latest_approved_counts(start, end):
    """Most recent approved count per store created inside the period."""
    latest = {}
    counts = (
        StockCount.objects.filter(
            status=StockCount.Status.APPROVED,
            store__isnull=False,
            created_at__gte=start,
            created_at__lte=end,
        )
        .order_by("store_id", "-created_at")
        .values_list("store_id", "id")
    )
    for store_id, count_id in counts:
        latest.setdefault(store_id, count_id)
    return latest


def _final_stock_by_product(start, end):
    """Per-product final stock, or ``None`` when no approved count covers the period.

    Counted stores contribute their counted quantity; every other store
    contributes its live level.
    """
    counts = _latest_approved_counts(start, end)
    if not counts:
        return None

    store_by_count = {count_id: store_id for store_id, count_id in counts.items()}
    per_store = defaultdict(dict)
    for product_id, store_id, quantity in InventoryLevel.objects.values_list("product_id", "store_id", "quantity"):
        per_store[product_id][store_id] = quantity
    for count_id, product_id, quantity in StockCountItem.objects.filter(count_id__in=store_by_count).values_list(
        "count_id", "product_id", "quantity_counted"
    ):
        per_store[product_id][store_by_count[count_id]] = quantity

    return {product_id: sum(levels.values(), ZERO) for product_id, levels in per_store.items()}


def build_weekly_report(start, end):
    """Compute an unsaved report header and its item rows for ``[start, end]``."""
    if start >= end:
        raise InvalidPeriod(errors={"start_date": start.isoformat(), "end_date": end.isoformat()})

    previous = latest_closed_report(before=start)
    initial = {}
    if previous is not None:
        initial = dict(previous.items.values_list("product_id", "final_stock"))

    entries = _entries_by_product(start, end)
    counted_final = _final_stock_by_product(start, end)

    report = WeeklyReport(start_date=start, end_date=end, status=WeeklyReport.Status.OPEN)
    items = []
    total = ZERO
    products = Product.objects.filter(is_active=True).select_related("category").order_by("category__name", "name")
    for product in products:
        initial_stock = initial.get(product.id, ZERO)
        entries_quantity = entries.get(product.id, ZERO)
        if counted_final is None:
            final_stock = product.current_stock
        else:
            final_stock = counted_final.get(product.id, ZERO)
        # Negative consumption is a stock gain.
        consumption = to_quantity(initial_stock + entries_quantity - final_stock)
        value = to_money(consumption * product.average_cost)
        total += value
        items.append(
            WeeklyReportItem(
                report=report,
                product=product,
                product_name=product.name,
                category_name=product.category.name if product.category else "",
                unit=product.unit,
                initial_stock=to_quantity(initial_stock),
                entries_quantity=to_quantity(entries_quantity),
                final_stock=to_quantity(final_stock),
                consumption_quantity=consumption,
                consumption_value=value,
            )
        )
    report.total_consumption_value = to_money(total)
    return report, items


def close_weekly_report(start=None, end=None, user=None):
    default_start, default_end = current_period()
    start = start or default_start
    end = end or default_end

    with transaction.atomic():
        latest = (
            WeeklyReport.objects.select_for_update()
            .filter(status=WeeklyReport.Status.CLOSED)
            .order_by("-end_date", "-created_at")
            .first()
        )
        if latest is not None and start < latest.end_date:
            raise PeriodOverlap(
                errors={
                    "start_date": start.isoformat(),
                    "latest_end_date": latest.end_date.isoformat(),
                    "report_id": str(latest.pk),
                }
            )

        report, items = build_weekly_report(start, end)
        report.status = WeeklyReport.Status.CLOSED
        report.closed_by = user if getattr(user, "is_authenticated", False) else None
        report.save()
        WeeklyReportItem.objects.bulk_create(items)

    logger.info(
        "weekly_report_closed",
        extra={"report_id": report.pk, "status": report.status, "quantity": len(items)},
    )
    return report


def list_reports():
    return WeeklyReport.objects.filter(status=WeeklyReport.Status.CLOSED).order_by("-end_date")


def get_report(report_id):
    report = lookup(WeeklyReport, report_id)
    if report is None:
        raise ReportNotFound(errors={"report_id": str(report_id)})
    return report


def suggested_purchase(min_stock, level):
    shortfall = min_stock * PURCHASE_TARGET_FACTOR - level
    return Decimal(math.ceil(shortfall)) if shortfall > 0 else ZERO


def shopping_list(store_id=None, search=None):
    """Products at or below minimum stock, grouped by store then category.

    A product missing a level row at a store counts as zero there; products
    deactivated at a store are skipped for that store.
    """
    stores = Store.objects.filter(is_active=True)
    if store_id:
        stores = [get_store(store_id)]

    products = Product.objects.filter(is_active=True).select_related("category")
    if search:
        products = products.filter(Q(name__icontains=search) | Q(category__name__icontains=search))
    products = list(products.order_by("category__name", "name"))

    levels = {
        (row.product_id, row.store_id): row
        for row in InventoryLevel.objects.filter(product__in=[product.pk for product in products])
    }

    result = []
    for store in stores:
        categories = OrderedDict()
        for product in products:
            level = levels.get((product.pk, store.pk))
            if level is not None and not level.is_active:
                continue
            quantity = level.quantity if level is not None else ZERO
            if quantity > product.min_stock:
                continue
            category = product.category.name if product.category else ""
            categories.setdefault(category, []).append(
                {
                    "product_id": str(product.pk),
                    "name": product.name,
                    "unit": product.unit,
                    "current_stock": quantity,
                    "min_stock": product.min_stock,
                    "suggested_quantity": suggested_purchase(product.min_stock, quantity),
                }
            )
        if categories:
            result.append(
                {
                    "store_id": str(store.pk),
                    "store_name": store.name,
                    "categories": [{"category": name, "products": rows} for name, rows in categories.items()],
                }
            )
    return result


def dashboard_stats():
    active = Product.objects.filter(is_active=True)
    return {
        "total_products": active.count(),
        "low_stock": active.filter(current_stock__lte=F("min_stock")).count(),
        "pending_counts": StockCount.objects.filter(status=StockCount.Status.PENDING_REVIEW).count(),
        "last_entry_at": StockEntry.objects.aggregate(last=Max("created_at"))["last"],
    }
