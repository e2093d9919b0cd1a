import logging
from collections import Counter
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import DatabaseError, transaction
from django.db.models import ProtectedError, Sum
from django.utils import timezone

from common.exceptions import (
    EntryRecordingFailed,
    InvalidQuantity,
    MissingStore,
    ProductInUse,
    ProductNotFound,
    StoreNotFound,
)
from inventory.models import COST_FIELD, QUANTITY_FIELD, InventoryLevel, Product, StockEntry, Store

logger = logging.getLogger(__name__)

QUANTITY_QUANT = Decimal("0.001")
COST_QUANT = Decimal("0.0001")
QUANTITY_LIMIT = Decimal(10) ** (QUANTITY_FIELD["max_digits"] - QUANTITY_FIELD["decimal_places"])
COST_LIMIT = Decimal(10) ** (COST_FIELD["max_digits"] - COST_FIELD["decimal_places"])


def to_quantity(value):
    return Decimal(value).quantize(QUANTITY_QUANT, rounding=ROUND_HALF_UP)


def to_cost(value):
    return Decimal(value).quantize(COST_QUANT, rounding=ROUND_HALF_UP)


def parse_decimal(value, field, limit=QUANTITY_LIMIT):
    """Coerce API/service input to a finite Decimal below ``limit`` in magnitude or raise InvalidQuantity."""
    if value is None or isinstance(value, bool) or value == "":
        raise InvalidQuantity(f"{field} must be a number.", errors={field: value})
    try:
        number = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidQuantity(f"{field} must be a number.", errors={field: str(value)})
    if not number.is_finite():
        raise InvalidQuantity(f"{field} must be a finite number.", errors={field: str(value)})
    if abs(number) >= limit:
        raise InvalidQuantity(f"{field} must be smaller than {limit:,f}.", errors={field: str(value)})
    return number


def lookup(queryset, pk):
    if isinstance(queryset, type):
        queryset = queryset._default_manager
    if pk in (None, ""):
        return None
    try:
        return queryset.filter(pk=pk).first()
    except (DjangoValidationError, ValueError, TypeError):
        return None


def get_product(product_id):
    product = lookup(Product, product_id)
    if product is None:
        raise ProductNotFound(errors={"product_id": str(product_id)})
    return product


def get_store(store_id):
    store = lookup(Store, store_id)
    if store is None:
        raise StoreNotFound(errors={"store_id": str(store_id)})
    return store


# Inventory ledger


def get_level(product, store):
    """Quantity on hand for (product, store); a missing row is a valid zero."""
    quantity = (
        InventoryLevel.objects.filter(product=product, store=store).values_list("quantity", flat=True).first()
    )
    return quantity if quantity is not None else Decimal("0")


def total_for(product):
    total = InventoryLevel.objects.filter(product=product).aggregate(total=Sum("quantity"))["total"]
    return total if total is not None else Decimal("0")


def levels_for(product):
    return {
        str(store_id): quantity
        for store_id, quantity in InventoryLevel.objects.filter(product=product).values_list("store_id", "quantity")
    }


def refresh_product_stock(product):
    """Write the ledger total back into ``Product.current_stock``."""
    total = total_for(product)
    now = timezone.now()
    Product.objects.filter(pk=product.pk).update(current_stock=total, updated_at=now)
    product.current_stock = total
    product.updated_at = now
    return total


def set_level(product, store, quantity):
    """Overwrite the level for (product, store) and refresh the product cache.

    The level write and the ``current_stock`` refresh share one transaction, so
    no reader can observe the ledger and the cache disagreeing.
    """
    quantity = parse_decimal(quantity, "quantity")
    if quantity < 0:
        raise InvalidQuantity("Inventory quantity cannot be negative.", errors={"quantity": str(quantity)})
    quantity = to_quantity(quantity)

    with transaction.atomic():
        Product.objects.select_for_update().filter(pk=product.pk).first()
        InventoryLevel.objects.update_or_create(product=product, store=store, defaults={"quantity": quantity})
        total = refresh_product_stock(product)

    logger.info(
        "inventory_level_set",
        extra={"product_id": product.pk, "store_id": store.pk, "quantity": quantity},
    )
    return total


def set_active(product, store, is_active):
    level, _ = InventoryLevel.objects.update_or_create(
        product=product,
        store=store,
        defaults={"is_active": bool(is_active)},
    )
    logger.info(
        "inventory_level_activation_changed",
        extra={"product_id": product.pk, "store_id": store.pk, "status": "active" if level.is_active else "inactive"},
    )
    return level


def inactive_product_ids(store):
    return set(InventoryLevel.objects.filter(store=store, is_active=False).values_list("product_id", flat=True))


# Cost accounting


def compute_average_cost(current_stock, current_average_cost, quantity, cost_price):
    """Weighted moving average over global (all-store) stock.

    With no prior stock the result collapses to ``cost_price``.
    """
    current_stock = Decimal(current_stock or 0)
    current_average_cost = Decimal(current_average_cost or 0)
    quantity = Decimal(quantity)
    cost_price = Decimal(cost_price)

    new_total_value = current_stock * current_average_cost + quantity * cost_price
    new_stock = current_stock + quantity
    if new_stock > 0:
        return to_cost(new_total_value / new_stock)
    return to_cost(cost_price)


# Stock entries


def record_stock_entry(*, product_id, store_id, quantity, cost_price, user=None):
    if store_id in (None, ""):
        raise MissingStore()

    quantity = parse_decimal(quantity, "quantity")
    if quantity <= 0:
        raise InvalidQuantity("Entry quantity must be greater than zero.", errors={"quantity": str(quantity)})
    cost_price = parse_decimal(cost_price, "cost_price", limit=COST_LIMIT)
    if cost_price < 0:
        raise InvalidQuantity("Cost price cannot be negative.", errors={"cost_price": str(cost_price)})
    quantity = to_quantity(quantity)
    cost_price = to_cost(cost_price)

    store = get_store(store_id)
    try:
        with transaction.atomic():
            product = lookup(Product.objects.select_for_update(), product_id)
            if product is None:
                raise ProductNotFound(errors={"product_id": str(product_id)})

            product.average_cost = compute_average_cost(product.current_stock, product.average_cost, quantity, cost_price)
            product.last_cost = cost_price
            product.save(update_fields=["average_cost", "last_cost", "updated_at"])

            entry = StockEntry.objects.create(
                product=product,
                store=store,
                quantity=quantity,
                cost_price=cost_price,
                total_cost=quantity * cost_price,
                created_by=user if getattr(user, "is_authenticated", False) else None,
            )

            set_level(product, store, get_level(product, store) + quantity)
    except DatabaseError as exc:
        logger.exception(
            "stock_entry_failed",
            extra={"product_id": product_id, "store_id": store_id},
        )
        raise EntryRecordingFailed(errors={"product_id": str(product_id), "store_id": str(store_id)}) from exc

    logger.info(
        "stock_entry_recorded",
        extra={"product_id": product.pk, "store_id": store.pk, "quantity": quantity},
    )
    return entry


def list_stock_entries(*, product_id=None, store_id=None, start=None, end=None):
    qs = StockEntry.objects.select_related("product", "store")
    if product_id:
        qs = qs.filter(product_id=product_id)
    if store_id:
        qs = qs.filter(store_id=store_id)
    if start:
        qs = qs.filter(created_at__gte=start)
    if end:
        qs = qs.filter(created_at__lte=end)
    return qs.order_by("-created_at")


# Product directory


def delete_product(product):
    """Hard-delete a product unless stock history still references it."""
    product_id = product.pk
    try:
        with transaction.atomic():
            product.delete()
    except ProtectedError as exc:
        references = Counter(obj._meta.model_name for obj in exc.protected_objects)
        raise ProductInUse(errors={"product_id": str(product_id), "references": dict(references)}) from exc
    logger.info("product_deleted", extra={"product_id": product_id})
