from django.urls import path
from .views import (
    OrdersCollectionView,
    OrderPaymentSessionView,
    OrderStatusView,
    PaymentSucceededView,
    RetrieveOrderView,
)
app_name = "orders"

urlpatterns = [
    path("", OrdersCollectionView.as_view(), name="orders-collection"),  # GET list / POST create
    path("events/payment-succeeded/", PaymentSucceededView.as_view(), name="payment-succeeded"),
    path("<uuid:oid>/", RetrieveOrderView.as_view(), name="orders-detail"),
    path("<uuid:oid>/status/", OrderStatusView.as_view(), name="orders-status"),
    path("<uuid:oid>/payment-session/", OrderPaymentSessionView.as_view(), name="orders-payment-session"),
]
