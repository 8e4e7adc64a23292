from django.urls import path
from rest_framework.routers import DefaultRouter

from inventory.views import (
    AdjustmentViewSet,
    CategoryViewSet,
    DashboardKpiView,
    DeliveryViewSet,
    LedgerEntryViewSet,
    LowStockView,
    ProductViewSet,
    ReceiptViewSet,
    RecentActivityView,
    StockLevelViewSet,
    TransferViewSet,
    WarehouseViewSet,
)

router = DefaultRouter()
router.register(r"categories", CategoryViewSet, basename="category")
router.register(r"products", ProductViewSet, basename="product")
router.register(r"warehouses", WarehouseViewSet, basename="warehouse")
router.register(r"receipts", ReceiptViewSet, basename="receipt")
router.register(r"deliveries", DeliveryViewSet, basename="delivery")
router.register(r"transfers", TransferViewSet, basename="transfer")
router.register(r"adjustments", AdjustmentViewSet, basename="adjustment")
router.register(r"stock", StockLevelViewSet, basename="stock")
router.register(r"ledger", LedgerEntryViewSet, basename="ledger")

urlpatterns = router.urls + [
    path("dashboard/kpis/", DashboardKpiView.as_view(), name="dashboard-kpis"),
    path("dashboard/recent-activity/", RecentActivityView.as_view(), name="dashboard-recent-activity"),
    path("dashboard/low-stock/", LowStockView.as_view(), name="dashboard-low-stock"),
]
