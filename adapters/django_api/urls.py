"""
ROS Django adapter URL routing.
"""

from django.urls import path

from adapters.django_api import views


urlpatterns = [
    path("orders", views.orders_create_view),
    path("orders/<str:order_id>", views.order_detail_view),
    path("orders/<str:order_id>/transition", views.order_transition_view),
    path("orders/<str:order_id>/cancel", views.order_cancel_view),
    path("orders/<str:order_id>/payment", views.order_payment_view),
    path("orders/<str:order_id>/confirm", views.order_confirm_view),
    path("pricing/quote", views.pricing_quote_view),
    path("webhooks/<str:system_id>", views.webhook_view),
]
