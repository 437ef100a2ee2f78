"""URL routes for the donations app (v1)."""

from django.urls import path

from .views import DonationCheckoutView, DonationCompleteView, DonationDetailView

app_name = "donations"

urlpatterns = [
    path("checkout/", DonationCheckoutView.as_view(), name="donation-checkout"),
    path("<str:reference>/", DonationDetailView.as_view(), name="donation-detail"),
    path("<str:reference>/complete/", DonationCompleteView.as_view(), name="donation-complete"),
]
