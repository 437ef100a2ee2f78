import uuid

import factory
from common.choices import BillingFrequency, Currency, DonationKind, SubscriptionStatus
from donations.models import Donation, Subscription
from payments.models import PaymentPlan


class PaymentPlanFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = PaymentPlan
        django_get_or_create = ("amount", "currency", "frequency")

    amount = 2000
    currency = Currency.USD
    frequency = BillingFrequency.MONTHLY
    gateway_plan_id = factory.Sequence(lambda n: f"{9000 + n}")
    idempotency_key = factory.LazyFunction(lambda: str(uuid.uuid4()))


class DonationFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Donation

    kind = DonationKind.ONE_TIME
    amount = 5000
    currency = Currency.USD
    checkout_token = factory.Sequence(lambda n: f"chk_{n:06d}")
    secret_token = factory.Sequence(lambda n: f"sec_{n:06d}")
    donor_name = factory.Faker("name")
    donor_email = factory.Sequence(lambda n: f"donor{n}@example.com")


class SubscriptionFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Subscription

    donation = factory.SubFactory(DonationFactory, kind=DonationKind.RECURRING, amount=2000)
    plan = factory.SubFactory(PaymentPlanFactory)
    idempotency_key = factory.LazyFunction(lambda: str(uuid.uuid4()))
    amount = factory.SelfAttribute("donation.amount")
    currency = factory.SelfAttribute("donation.currency")
    frequency = BillingFrequency.MONTHLY
    status = SubscriptionStatus.PENDING
