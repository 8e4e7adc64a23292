from rest_framework import serializers

from inventory.models import (
    Adjustment,
    AdjustmentLine,
    Category,
    Delivery,
    DeliveryLine,
    DocumentStatus,
    LedgerEntry,
    Product,
    Receipt,
    ReceiptLine,
    StockLevel,
    Transfer,
    TransferLine,
    Warehouse,
)


class CategorySerializer(serializers.ModelSerializer):
    class Meta:
        model = Category
        fields = ["id", "name", "description", "created_at", "updated_at"]
        read_only_fields = ["id", "created_at", "updated_at"]


class WarehouseSerializer(serializers.ModelSerializer):
    class Meta:
        model = Warehouse
        fields = ["id", "code", "name", "location", "description", "created_at", "updated_at"]
        read_only_fields = ["id", "created_at", "updated_at"]


class ProductSerializer(serializers.ModelSerializer):
    category_name = serializers.CharField(source="category.name", read_only=True, default=None)
    on_hand = serializers.IntegerField(read_only=True, required=False)
    initial_stock = serializers.IntegerField(write_only=True, required=False, min_value=0)
    warehouse = serializers.PrimaryKeyRelatedField(queryset=Warehouse.objects.all(), write_only=True, required=False)

    class Meta:
        model = Product
        fields = [
            "id",
            "sku",
            "name",
            "category",
            "category_name",
            "unit_of_measure",
            "reorder_level",
            "description",
            "on_hand",
            "initial_stock",
            "warehouse",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "created_at", "updated_at"]

    def validate(self, attrs):
        # An empty category from a form means "no category".
        if self.initial_data.get("category", None) == "":
            attrs["category"] = None
        if attrs.get("initial_stock") and not attrs.get("warehouse"):
            raise serializers.ValidationError({"warehouse": "A warehouse is required to book initial stock."})
        if self.instance is not None and ("initial_stock" in attrs or "warehouse" in attrs):
            raise serializers.ValidationError({"initial_stock": "Initial stock can only be set when creating a product."})
        return attrs

    def create(self, validated_data):
        validated_data.pop("initial_stock", None)
        validated_data.pop("warehouse", None)
        return super().create(validated_data)


class ProductStockSerializer(serializers.ModelSerializer):
    warehouse_code = serializers.CharField(source="warehouse.code", read_only=True)
    warehouse_name = serializers.CharField(source="warehouse.name", read_only=True)

    class Meta:
        model = StockLevel
        fields = ["warehouse", "warehouse_code", "warehouse_name", "quantity", "updated_at"]


class ProductDetailSerializer(ProductSerializer):
    stock = ProductStockSerializer(source="stock_levels", many=True, read_only=True)

    class Meta(ProductSerializer.Meta):
        fields = ProductSerializer.Meta.fields + ["stock"]


class StockLevelSerializer(serializers.ModelSerializer):
    product_sku = serializers.CharField(source="product.sku", read_only=True)
    product_name = serializers.CharField(source="product.name", read_only=True)
    reorder_level = serializers.IntegerField(source="product.reorder_level", read_only=True)
    warehouse_code = serializers.CharField(source="warehouse.code", read_only=True)

    class Meta:
        model = StockLevel
        fields = [
            "id",
            "product",
            "product_sku",
            "product_name",
            "warehouse",
            "warehouse_code",
            "quantity",
            "reorder_level",
            "updated_at",
        ]
        read_only_fields = fields


class LedgerEntrySerializer(serializers.ModelSerializer):
    product_sku = serializers.CharField(source="product.sku", read_only=True)
    product_name = serializers.CharField(source="product.name", read_only=True)
    warehouse_code = serializers.CharField(source="warehouse.code", read_only=True)
    username = serializers.CharField(source="user.username", read_only=True)

    class Meta:
        model = LedgerEntry
        fields = [
            "id",
            "product",
            "product_sku",
            "product_name",
            "warehouse",
            "warehouse_code",
            "movement_type",
            "reference_type",
            "reference_id",
            "reference_number",
            "quantity_change",
            "quantity_after",
            "user",
            "username",
            "notes",
            "created_at",
        ]
        read_only_fields = fields


class _LineSerializer(serializers.ModelSerializer):
    product_sku = serializers.CharField(source="product.sku", read_only=True)
    product_name = serializers.CharField(source="product.name", read_only=True)


class ReceiptLineSerializer(_LineSerializer):
    class Meta:
        model = ReceiptLine
        fields = ["id", "position", "product", "product_sku", "product_name", "quantity", "unit_price"]


class DeliveryLineSerializer(_LineSerializer):
    class Meta:
        model = DeliveryLine
        fields = ["id", "position", "product", "product_sku", "product_name", "quantity", "unit_price"]


class TransferLineSerializer(_LineSerializer):
    class Meta:
        model = TransferLine
        fields = ["id", "position", "product", "product_sku", "product_name", "quantity"]


class AdjustmentLineSerializer(_LineSerializer):
    class Meta:
        model = AdjustmentLine
        fields = [
            "id",
            "position",
            "product",
            "product_sku",
            "product_name",
            "recorded_quantity",
            "physical_quantity",
            "difference",
        ]


DOCUMENT_FIELDS = ["id", "number", "status", "user", "notes", "created_at", "updated_at", "items"]


class ReceiptSerializer(serializers.ModelSerializer):
    items = ReceiptLineSerializer(source="lines", many=True, read_only=True)

    class Meta:
        model = Receipt
        fields = DOCUMENT_FIELDS + ["warehouse", "supplier"]
        read_only_fields = fields


class DeliverySerializer(serializers.ModelSerializer):
    items = DeliveryLineSerializer(source="lines", many=True, read_only=True)

    class Meta:
        model = Delivery
        fields = DOCUMENT_FIELDS + ["warehouse", "customer"]
        read_only_fields = fields


class TransferSerializer(serializers.ModelSerializer):
    items = TransferLineSerializer(source="lines", many=True, read_only=True)

    class Meta:
        model = Transfer
        fields = DOCUMENT_FIELDS + ["from_warehouse", "to_warehouse"]
        read_only_fields = fields


class AdjustmentSerializer(serializers.ModelSerializer):
    items = AdjustmentLineSerializer(source="lines", many=True, read_only=True)

    class Meta:
        model = Adjustment
        fields = DOCUMENT_FIELDS + ["warehouse", "reason"]
        read_only_fields = fields


class QuantityItemSerializer(serializers.Serializer):
    product = serializers.UUIDField()
    quantity = serializers.IntegerField(min_value=1)


class PricedItemSerializer(QuantityItemSerializer):
    unit_price = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, allow_null=True)


class CountedItemSerializer(serializers.Serializer):
    product = serializers.UUIDField()
    physical_quantity = serializers.IntegerField(min_value=0)


class DocumentWriteSerializer(serializers.Serializer):
    """Input for document create and partial update.

    ``status`` is only accepted on update; the view hands it to the ledger engine.
    """

    notes = serializers.CharField(required=False, allow_blank=True)
    status = serializers.ChoiceField(choices=DocumentStatus.choices, required=False)

    def validate_items(self, value):
        if not value:
            raise serializers.ValidationError("At least one item is required.")
        return value

    def validate(self, attrs):
        if self.instance is None and not self.partial:
            if "status" in attrs:
                raise serializers.ValidationError({"status": "New documents always start as draft."})
            if "items" not in attrs:
                raise serializers.ValidationError({"items": "This field is required."})
        return attrs


class ReceiptWriteSerializer(DocumentWriteSerializer):
    warehouse = serializers.UUIDField(required=False)
    supplier = serializers.CharField(required=False, allow_blank=True)
    items = PricedItemSerializer(many=True, required=False)


class DeliveryWriteSerializer(DocumentWriteSerializer):
    warehouse = serializers.UUIDField(required=False)
    customer = serializers.CharField(required=False, allow_blank=True)
    items = PricedItemSerializer(many=True, required=False)


class TransferWriteSerializer(DocumentWriteSerializer):
    from_warehouse = serializers.UUIDField(required=False)
    to_warehouse = serializers.UUIDField(required=False)
    items = QuantityItemSerializer(many=True, required=False)


class AdjustmentWriteSerializer(DocumentWriteSerializer):
    warehouse = serializers.UUIDField(required=False)
    reason = serializers.CharField(required=False, allow_blank=True)
    items = CountedItemSerializer(many=True, required=False)
