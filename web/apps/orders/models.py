import uuid
from django.db import models

from .domain import OrderStatus

STATUS_CHOICES = [(s.value, s.value) for s in OrderStatus]


class OrderModel(models.Model):
    # UUID PK exposed in the API
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    total_amount = models.DecimalField(max_digits=12, decimal_places=2)
    total_items = models.PositiveIntegerField()
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=OrderStatus.PENDING.value)
    paid = models.BooleanField(default=False)
    paid_at = models.DateTimeField(null=True, blank=True)
    # External charge id from the payment provider
    payment_reference = models.CharField(max_length=255, null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "orders"
        ordering = ["-created_at"]


class OrderItemModel(models.Model):
    order = models.ForeignKey(OrderModel, related_name="items", on_delete=models.CASCADE)
    product_id = models.PositiveIntegerField()
    quantity = models.PositiveIntegerField()
    # Price snapshot at creation; the product name is never stored
    price = models.DecimalField(max_digits=12, decimal_places=2)

    class Meta:
        db_table = "order_items"
        ordering = ["id"]


class OrderReceiptModel(models.Model):
    order = models.OneToOneField(OrderModel, related_name="receipt", on_delete=models.CASCADE)
    receipt_url = models.URLField(max_length=500)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "order_receipts"
