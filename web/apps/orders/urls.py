from django.urls import path

from .views import (
    CartValidateView,
    CheckoutVerifyView,
    MobileMoneyCheckoutView,
    MobileMoneyWebhookView,
    OrdersCollectionView,
    OrderStatusView,
    PaystackCheckoutView,
    PaystackWebhookView,
    PromoValidateView,
    RetrieveOrderView,
    SendOrderEmailView,
    StripeCheckoutView,
    StripeWebhookView,
    VerifyPaymentView,
)

app_name = "orders"

urlpatterns = [
    path("checkout/card/", StripeCheckoutView.as_view(), name="checkout-card"),
    path("checkout/paystack/", PaystackCheckoutView.as_view(), name="checkout-paystack"),
    path("checkout/mobile-money/", MobileMoneyCheckoutView.as_view(), name="checkout-mobile-money"),
    path("checkout/verify/", CheckoutVerifyView.as_view(), name="checkout-verify"),
    path("webhooks/stripe/", StripeWebhookView.as_view(), name="webhook-stripe"),
    path("webhooks/paystack/", PaystackWebhookView.as_view(), name="webhook-paystack"),
    path("webhooks/mobile-money/", MobileMoneyWebhookView.as_view(), name="webhook-mobile-money"),
    path("orders/", OrdersCollectionView.as_view(), name="orders-collection"),
    path("orders/<uuid:oid>/", RetrieveOrderView.as_view(), name="orders-detail"),
    path("orders/<uuid:oid>/verify-payment/", VerifyPaymentView.as_view(), name="orders-verify-payment"),
    path("orders/<uuid:oid>/send-email/", SendOrderEmailView.as_view(), name="orders-send-email"),
    path("orders/<uuid:oid>/status/", OrderStatusView.as_view(), name="orders-status"),
    path("cart/validate/", CartValidateView.as_view(), name="cart-validate"),
    path("promo/validate/", PromoValidateView.as_view(), name="promo-validate"),
]
