from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from common.params import uuid_param
from common.permissions import RoleCapabilityPermission
from counting.serializers import (
    StockCountCreateSerializer,
    StockCountFinalizeSerializer,
    StockCountItemsSerializer,
    StockCountListSerializer,
    StockCountSerializer,
)
from counting.services import (
    approve_count,
    create_count,
    delete_count,
    finalize_count,
    get_count,
    list_counts,
    reject_count,
    update_items,
)


class StockCountViewSet(
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    viewsets.GenericViewSet,
):
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "counting.perform",
        "retrieve": "counting.perform",
        "create": "counting.perform",
        "destroy": "counting.perform",
        "items": "counting.perform",
        "finalize": "counting.perform",
        "approve": "counting.approve",
        "reject": "counting.approve",
    }

    def get_queryset(self):
        return list_counts(
            status=self.request.query_params.get("status"),
            store_id=uuid_param(self.request, "store"),
        )

    def get_serializer_class(self):
        if self.action == "list":
            return StockCountListSerializer
        return StockCountSerializer

    def get_object(self):
        return get_count(self.kwargs["pk"])

    def create(self, request, *args, **kwargs):
        serializer = StockCountCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        count = create_count(
            store_id=serializer.validated_data.get("store"),
            user=request.user,
            force=serializer.validated_data["force"],
        )
        return Response(StockCountSerializer(count).data, status=status.HTTP_201_CREATED)

    def destroy(self, request, *args, **kwargs):
        delete_count(self.get_object())
        return Response(status=status.HTTP_204_NO_CONTENT)

    @action(detail=True, methods=["post"], url_path="items")
    def items(self, request, pk=None):
        serializer = StockCountItemsSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        count = update_items(
            self.get_object(),
            serializer.validated_data["items"],
            completed_categories=serializer.validated_data.get("completed_categories"),
        )
        return Response(StockCountSerializer(count).data)

    @action(detail=True, methods=["post"], url_path="finalize")
    def finalize(self, request, pk=None):
        serializer = StockCountFinalizeSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        count, uncounted = finalize_count(
            self.get_object(),
            items=serializer.validated_data["items"],
            completed_categories=serializer.validated_data.get("completed_categories"),
        )
        payload = StockCountSerializer(count).data
        payload["uncounted_items"] = uncounted
        return Response(payload)

    @action(detail=True, methods=["post"], url_path="approve")
    def approve(self, request, pk=None):
        count = approve_count(self.get_object(), user=request.user)
        return Response(StockCountSerializer(count).data)

    @action(detail=True, methods=["post"], url_path="reject")
    def reject(self, request, pk=None):
        count = reject_count(self.get_object())
        return Response(StockCountSerializer(count).data)
