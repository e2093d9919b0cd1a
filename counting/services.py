"""Stock count workflow.

A count moves ``draft -> pending_review -> approved`` and may be sent back
from ``pending_review`` to ``draft`` by a reviewer. Approval overwrites each
(product, store) inventory level with the counted quantity; the physical count
is ground truth.
"""
import logging
import uuid

from django.conf import settings
from django.db import DatabaseError, transaction
from django.db.models import Count, Q
from django.utils import timezone

from common.exceptions import (
    CannotDeleteApproved,
    CountNotFound,
    DraftCountExists,
    IllegalTransition,
    InvalidQuantity,
    MissingStore,
    PersistenceFailure,
    UnknownProduct,
)
from counting.models import StockCount, StockCountItem
from inventory.models import Product, Store
from inventory.services import get_store, inactive_product_ids, lookup, parse_decimal, set_level, to_quantity

logger = logging.getLogger(__name__)


def iso_period(moment=None):
    year, week, _ = timezone.localtime(moment or timezone.now()).isocalendar()
    return f"{year}-W{week:02d}"


def _actor(user):
    return user if getattr(user, "is_authenticated", False) else None


def _normalize_product_id(raw):
    try:
        return str(uuid.UUID(str(raw)))
    except (TypeError, ValueError, AttributeError):
        return str(raw)


def _normalize_categories(categories):
    seen = []
    for category in categories or []:
        label = str(category).strip()
        if label and label not in seen:
            seen.append(label)
    return seen


def _lock(count):
    return StockCount.objects.select_for_update().select_related("store").get(pk=count.pk)


def _require_status(count, allowed, action):
    if count.status not in allowed:
        raise IllegalTransition(
            f"Cannot {action} a count in status '{count.status}'.",
            errors={"count_id": str(count.pk), "status": count.status, "action": action},
        )


def get_count(count_id):
    count = lookup(StockCount.objects.select_related("store"), count_id)
    if count is None:
        raise CountNotFound(errors={"count_id": str(count_id)})
    return count


def list_counts(*, status=None, store_id=None):
    qs = StockCount.objects.select_related("store").annotate(
        item_count=Count("items"),
        counted_items=Count("items", filter=Q(items__quantity_counted__gt=0)),
    )
    if status:
        qs = qs.filter(status=status)
    if store_id:
        qs = qs.filter(store_id=store_id)
    return qs.order_by("-created_at")


def create_count(*, store_id, user=None, force=False):
    """Open a draft count for a store, snapshotting current stock per product.

    Raises ``DraftCountExists`` when the store already has a draft in the same
    ISO week, unless ``force`` is set.
    """
    if store_id in (None, ""):
        raise MissingStore("A store is required to start a count.")
    store = get_store(store_id)
    period = iso_period()

    with transaction.atomic():
        # Serializes count creation per store so the draft guard cannot race.
        Store.objects.select_for_update().filter(pk=store.pk).first()

        if settings.STOCK_COUNT_DRAFT_GUARD and not force:
            existing = (
                StockCount.objects.filter(store=store, status=StockCount.Status.DRAFT, period=period)
                .order_by("-created_at")
                .first()
            )
            if existing is not None:
                raise DraftCountExists(
                    errors={"count_id": str(existing.pk), "store_id": str(store.pk), "period": period},
                )

        count = StockCount.objects.create(
            store=store,
            status=StockCount.Status.DRAFT,
            period=period,
            created_by=_actor(user),
        )

        products = (
            Product.objects.filter(is_active=True)
            .exclude(id__in=inactive_product_ids(store))
            .select_related("category")
            .order_by("category__name", "name")
        )
        StockCountItem.objects.bulk_create(
            [
                StockCountItem(
                    count=count,
                    product=product,
                    position=position,
                    quantity_counted=0,
                    quantity_system=product.current_stock,
                )
                for position, product in enumerate(products)
            ]
        )

    logger.info("stock_count_created", extra={"count_id": count.pk, "store_id": store.pk, "status": count.status})
    return count


def _apply_items(count, items):
    """Write counted quantities; the whole batch is validated before any write."""
    counted = {}
    invalid = {}
    for row in items or []:
        product_id = _normalize_product_id(row.get("product_id", row.get("product")))
        try:
            quantity = parse_decimal(row.get("quantity_counted"), "quantity_counted")
        except InvalidQuantity:
            invalid[product_id] = str(row.get("quantity_counted"))
            continue
        if quantity < 0:
            invalid[product_id] = str(quantity)
            continue
        counted[product_id] = to_quantity(quantity)

    if invalid:
        raise InvalidQuantity("Counted quantities must be non-negative numbers.", errors={"items": invalid})

    snapshot = {str(item.product_id): item for item in StockCountItem.objects.filter(count=count)}
    unknown = sorted(product_id for product_id in counted if product_id not in snapshot)
    if unknown:
        raise UnknownProduct(
            "Some products are not part of this count.",
            errors={"count_id": str(count.pk), "product_ids": unknown},
        )

    changed = []
    for product_id, quantity in counted.items():
        item = snapshot[product_id]
        if item.quantity_counted != quantity:
            item.quantity_counted = quantity
            changed.append(item)
    if changed:
        StockCountItem.objects.bulk_update(changed, ["quantity_counted"])
    return len(changed)


def update_items(count, items, completed_categories=None):
    with transaction.atomic():
        count = _lock(count)
        _require_status(count, {StockCount.Status.DRAFT}, "update")
        changed = _apply_items(count, items)
        update_fields = ["updated_at"]
        if completed_categories is not None:
            count.completed_categories = _normalize_categories(completed_categories)
            update_fields.append("completed_categories")
        count.save(update_fields=update_fields)

    logger.info("stock_count_items_updated", extra={"count_id": count.pk, "quantity": changed})
    return count


def uncounted_product_ids(count):
    return [
        str(product_id)
        for product_id in count.items.filter(quantity_counted=0).values_list("product_id", flat=True)
    ]


def finalize_count(count, items=None, completed_categories=None):
    """Submit a draft for review, flushing any pending item edits first.

    Returns ``(count, uncounted_product_ids)``. Items left at zero do not
    block submission; zero is a legal count.
    """
    with transaction.atomic():
        count = _lock(count)
        _require_status(count, {StockCount.Status.DRAFT}, "finalize")
        if items:
            _apply_items(count, items)
        if completed_categories is not None:
            count.completed_categories = _normalize_categories(completed_categories)
        count.status = StockCount.Status.PENDING_REVIEW
        count.submitted_at = timezone.now()
        count.save(update_fields=["status", "submitted_at", "completed_categories", "updated_at"])

    uncounted = uncounted_product_ids(count)
    if uncounted:
        logger.warning(
            "stock_count_finalized_with_uncounted_items",
            extra={"count_id": count.pk, "quantity": len(uncounted)},
        )
    logger.info("stock_count_finalized", extra={"count_id": count.pk, "status": count.status})
    return count, uncounted


def approve_count(count, user=None):
    """Commit counted quantities into the ledger and mark the count approved.

    All level writes and the status change share one transaction; if any write
    fails nothing is committed and the count stays in ``pending_review``.
    """
    attempted = []
    current_product_id = None
    try:
        with transaction.atomic():
            count = _lock(count)
            _require_status(count, {StockCount.Status.PENDING_REVIEW}, "approve")
            if count.store_id is None:
                raise MissingStore("Counts without a store cannot be committed to the inventory ledger.")

            for item in count.items.select_related("product").order_by("position"):
                current_product_id = str(item.product_id)
                set_level(item.product, count.store, item.quantity_counted)
                attempted.append(current_product_id)
            current_product_id = None

            count.status = StockCount.Status.APPROVED
            count.approved_at = timezone.now()
            count.approved_by = _actor(user)
            count.save(update_fields=["status", "approved_at", "approved_by", "updated_at"])
    except DatabaseError as exc:
        logger.exception("stock_count_approval_failed", extra={"count_id": count.pk})
        raise PersistenceFailure(
            "Approval failed and was rolled back; no inventory levels were changed.",
            errors={
                "count_id": str(count.pk),
                "committed_items": [],
                "rolled_back_items": attempted,
                "failed_product_id": current_product_id,
            },
        ) from exc

    logger.info(
        "stock_count_approved",
        extra={"count_id": count.pk, "store_id": count.store_id, "quantity": len(attempted), "status": count.status},
    )
    return count


def reject_count(count):
    with transaction.atomic():
        count = _lock(count)
        _require_status(count, {StockCount.Status.PENDING_REVIEW}, "reject")
        count.status = StockCount.Status.DRAFT
        count.submitted_at = None
        count.save(update_fields=["status", "submitted_at", "updated_at"])

    logger.info("stock_count_rejected", extra={"count_id": count.pk, "status": count.status})
    return count


def delete_count(count):
    with transaction.atomic():
        count = _lock(count)
        if count.status == StockCount.Status.APPROVED:
            raise CannotDeleteApproved(errors={"count_id": str(count.pk)})
        count_id = count.pk
        count.delete()

    logger.info("stock_count_deleted", extra={"count_id": count_id})
