from django.db import transaction
from django.db.models import ProtectedError, Q, Sum, Value
from django.db.models.functions import Coalesce
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import ValidationError
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from common.audit import create_audit_log_from_request
from inventory import documents, reports, services, stock
from inventory.exceptions import InvalidStateError
from inventory.models import Category, LedgerEntry, Product, StockLevel, Transfer, Warehouse
from inventory.serializers import (
    AdjustmentSerializer,
    AdjustmentWriteSerializer,
    CategorySerializer,
    DeliverySerializer,
    DeliveryWriteSerializer,
    LedgerEntrySerializer,
    ProductDetailSerializer,
    ProductSerializer,
    ReceiptSerializer,
    ReceiptWriteSerializer,
    StockLevelSerializer,
    TransferSerializer,
    TransferWriteSerializer,
    WarehouseSerializer,
)


class AuditedMutationMixin:
    audit_entity = None

    def _audit(self, *, action, instance, before_snapshot=None, after_snapshot=None, entity_id=None):
        create_audit_log_from_request(
            self.request,
            action=f"{self.audit_entity}.{action}",
            entity=self.audit_entity,
            entity_id=entity_id or instance.id,
            before_snapshot=before_snapshot,
            after_snapshot=after_snapshot,
        )

    def perform_create(self, serializer):
        instance = serializer.save()
        self._audit(action="create", instance=instance, after_snapshot=self.get_serializer(instance).data)

    def perform_update(self, serializer):
        before_snapshot = self.get_serializer(serializer.instance).data
        instance = serializer.save()
        self._audit(action="update", instance=instance, before_snapshot=before_snapshot, after_snapshot=self.get_serializer(instance).data)

    def perform_destroy(self, instance):
        before_snapshot = self.get_serializer(instance).data
        entity_id = instance.id
        try:
            with transaction.atomic():
                instance.delete()
        except ProtectedError:
            raise InvalidStateError(
                f"{instance._meta.verbose_name.capitalize()} {instance} is still referenced by stock, documents or ledger rows.",
                entity=self.audit_entity,
                entity_id=entity_id,
            )
        self._audit(action="delete", instance=instance, before_snapshot=before_snapshot, entity_id=entity_id)


class CategoryViewSet(AuditedMutationMixin, viewsets.ModelViewSet):
    queryset = Category.objects.all()
    serializer_class = CategorySerializer
    permission_classes = [IsAuthenticated]
    audit_entity = "category"


class WarehouseViewSet(AuditedMutationMixin, viewsets.ModelViewSet):
    queryset = Warehouse.objects.all().order_by("code")
    serializer_class = WarehouseSerializer
    permission_classes = [IsAuthenticated]
    audit_entity = "warehouse"

    def perform_destroy(self, instance):
        has_documents = (
            instance.receipts.exists()
            or instance.deliveries.exists()
            or instance.adjustments.exists()
            or Transfer.objects.filter(Q(from_warehouse=instance) | Q(to_warehouse=instance)).exists()
        )
        if has_documents or instance.stock_levels.filter(quantity__gt=0).exists():
            raise InvalidStateError(
                f"Warehouse {instance.code} still holds stock or documents.",
                entity=self.audit_entity,
                entity_id=instance.id,
            )
        with transaction.atomic():
            stock.discard_empty_levels(instance.id)
            super().perform_destroy(instance)


class ProductViewSet(AuditedMutationMixin, viewsets.ModelViewSet):
    queryset = Product.objects.select_related("category")
    serializer_class = ProductSerializer
    permission_classes = [IsAuthenticated]
    audit_entity = "product"

    def get_serializer_class(self):
        if self.action == "retrieve":
            return ProductDetailSerializer
        return super().get_serializer_class()

    def get_queryset(self):
        qs = self.queryset
        search = self.request.query_params.get("search")
        category = self.request.query_params.get("category")
        warehouse = self.request.query_params.get("warehouse")

        if search:
            qs = qs.filter(Q(name__icontains=search) | Q(sku__icontains=search))
        if category:
            qs = qs.filter(category_id=reports.uuid_param("category", category))

        stock_filter = None
        if warehouse:
            stock_filter = Q(stock_levels__warehouse_id=reports.uuid_param("warehouse", warehouse))
        qs = qs.annotate(on_hand=Coalesce(Sum("stock_levels__quantity", filter=stock_filter), Value(0)))
        if self.action == "retrieve":
            qs = qs.prefetch_related("stock_levels__warehouse")
        return qs.order_by("name")

    def perform_create(self, serializer):
        initial_stock = serializer.validated_data.get("initial_stock") or 0
        warehouse = serializer.validated_data.get("warehouse")
        with transaction.atomic():
            instance = serializer.save()
            if initial_stock > 0:
                services.book_initial_stock(instance, warehouse, initial_stock, user=self.request.user)
        self._audit(action="create", instance=instance, after_snapshot=self.get_serializer(instance).data)


class MovementDocumentViewSet(
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    viewsets.GenericViewSet,
):
    """Shared create / edit / transition / delete flow for the four document kinds.

    Every mutation goes through ``inventory.documents`` or ``inventory.services``;
    this class only translates HTTP payloads and writes audit rows.
    """

    permission_classes = [IsAuthenticated]
    document_type = None
    write_serializer_class = None

    def get_queryset(self):
        doc_type = documents.get_document_type(self.document_type)
        qs = doc_type.model.objects.select_related(*doc_type.model.warehouse_fields, "user").prefetch_related("lines__product")

        status_filter = self.request.query_params.get("status")
        warehouse = self.request.query_params.get("warehouse")
        if status_filter:
            qs = qs.filter(status=status_filter)
        if warehouse:
            warehouse_id = reports.uuid_param("warehouse", warehouse)
            if doc_type.model is Transfer:
                qs = qs.filter(Q(from_warehouse_id=warehouse_id) | Q(to_warehouse_id=warehouse_id))
            else:
                qs = qs.filter(warehouse_id=warehouse_id)
        return qs.order_by("-created_at")

    def get_object(self):
        document = documents.get_document(self.document_type, self.kwargs["pk"])
        self.check_object_permissions(self.request, document)
        return document

    def _respond(self, document, status_code=status.HTTP_200_OK):
        model = documents.get_document_type(self.document_type).model
        document = model.objects.prefetch_related("lines__product").get(pk=document.pk)
        return Response(self.get_serializer(document).data, status=status_code)

    def _audit(self, action, document_id, *, before_snapshot=None, after_snapshot=None):
        create_audit_log_from_request(
            self.request,
            action=f"{self.document_type}.{action}",
            entity=self.document_type,
            entity_id=document_id,
            before_snapshot=before_snapshot,
            after_snapshot=after_snapshot,
        )

    def create(self, request, *args, **kwargs):
        serializer = self.write_serializer_class(data=request.data)
        serializer.is_valid(raise_exception=True)
        fields = dict(serializer.validated_data)
        items = fields.pop("items")

        with transaction.atomic():
            document = documents.create_document(self.document_type, user=request.user, items=items, **fields)
            self._audit("create", document.id, after_snapshot=documents.document_snapshot(document))
        return self._respond(document, status.HTTP_201_CREATED)

    def update(self, request, *args, **kwargs):
        document = self.get_object()
        serializer = self.write_serializer_class(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        fields = dict(serializer.validated_data)
        items = fields.pop("items", None)
        target_status = fields.pop("status", None)

        before_snapshot = documents.document_snapshot(document)
        with transaction.atomic():
            if fields:
                document = documents.update_fields(document, fields)
            if items is not None:
                document = documents.replace_items(document, items)
            if target_status is not None:
                document = services.transition_document(document, target_status, user=request.user)
            self._audit(
                "update",
                document.id,
                before_snapshot=before_snapshot,
                after_snapshot=documents.document_snapshot(document),
            )
        return self._respond(document)

    def partial_update(self, request, *args, **kwargs):
        return self.update(request, *args, **kwargs)

    def destroy(self, request, *args, **kwargs):
        document = self.get_object()
        before_snapshot = documents.document_snapshot(document)
        with transaction.atomic():
            documents.delete_document(document)
            self._audit("delete", before_snapshot["id"], before_snapshot=before_snapshot)
        return Response(status=status.HTTP_204_NO_CONTENT)

    @action(detail=True, methods=["post"])
    def validate(self, request, pk=None):
        document = self.get_object()
        before_snapshot = documents.document_snapshot(document)
        document = services.validate_document(document, user=request.user)
        self._audit(
            "validate",
            document.id,
            before_snapshot=before_snapshot,
            after_snapshot=documents.document_snapshot(document),
        )
        return self._respond(document)


class ReceiptViewSet(MovementDocumentViewSet):
    document_type = "receipt"
    serializer_class = ReceiptSerializer
    write_serializer_class = ReceiptWriteSerializer


class DeliveryViewSet(MovementDocumentViewSet):
    document_type = "delivery"
    serializer_class = DeliverySerializer
    write_serializer_class = DeliveryWriteSerializer


class TransferViewSet(MovementDocumentViewSet):
    document_type = "transfer"
    serializer_class = TransferSerializer
    write_serializer_class = TransferWriteSerializer


class AdjustmentViewSet(MovementDocumentViewSet):
    document_type = "adjustment"
    serializer_class = AdjustmentSerializer
    write_serializer_class = AdjustmentWriteSerializer


class StockLevelViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = StockLevel.objects.select_related("product", "warehouse")
    serializer_class = StockLevelSerializer
    permission_classes = [IsAuthenticated]

    def get_queryset(self):
        qs = self.queryset
        product = self.request.query_params.get("product")
        warehouse = self.request.query_params.get("warehouse")
        if product:
            qs = qs.filter(product_id=reports.uuid_param("product", product))
        if warehouse:
            qs = qs.filter(warehouse_id=reports.uuid_param("warehouse", warehouse))
        return qs.order_by("product__name", "warehouse__code")

    @action(detail=False, methods=["get"])
    def quantity(self, request):
        params = request.query_params
        errors = {name: "This query parameter is required." for name in ("product", "warehouse") if not params.get(name)}
        if errors:
            raise ValidationError(errors)
        product_id = reports.uuid_param("product", params["product"])
        warehouse_id = reports.uuid_param("warehouse", params["warehouse"])
        return Response(
            {
                "product": str(product_id),
                "warehouse": str(warehouse_id),
                "quantity": stock.get_quantity(product_id, warehouse_id),
            }
        )


class LedgerEntryViewSet(viewsets.ReadOnlyModelViewSet):
    """Read-only ledger. Lists are capped by ``limit`` instead of paginated."""

    queryset = LedgerEntry.objects.select_related("product", "warehouse", "user")
    serializer_class = LedgerEntrySerializer
    permission_classes = [IsAuthenticated]
    pagination_class = None

    def list(self, request, *args, **kwargs):
        limit = reports.parse_limit(request.query_params.get("limit"))
        rows = list(reports.ledger_queryset(request.query_params)[:limit])
        return Response({"limit": limit, "count": len(rows), "results": self.get_serializer(rows, many=True).data})


class BaseDashboardView(APIView):
    permission_classes = [IsAuthenticated]

    def _warehouse_id(self, request):
        warehouse = request.query_params.get("warehouse")
        return reports.uuid_param("warehouse", warehouse) if warehouse else None


class DashboardKpiView(BaseDashboardView):
    def get(self, request):
        return Response(reports.dashboard_kpis(self._warehouse_id(request)))


class RecentActivityView(BaseDashboardView):
    def get(self, request):
        limit = reports.parse_limit(request.query_params.get("limit"), default=10, maximum=100)
        rows = reports.recent_activity(limit, self._warehouse_id(request))
        return Response({"results": LedgerEntrySerializer(rows, many=True).data})


class LowStockView(BaseDashboardView):
    def get(self, request):
        rows = reports.low_stock_queryset(self._warehouse_id(request))
        return Response({"results": StockLevelSerializer(rows, many=True).data})
