from django.urls import path

from .views import PaymentIntentView, StripeWebhookView

urlpatterns = [
    path('intent/', PaymentIntentView.as_view(), name='payment-intent'),
    path('webhook/', StripeWebhookView.as_view(), name='payment-webhook'),
]
