"""Subscription model.

One row per user, mirrored from Stripe webhooks. user_id is the upsert
conflict target; rows are overwritten, never deleted.
"""

import uuid

from billing_relay.extensions import db


class Subscription(db.Model):
    __tablename__ = "subscriptions"
    __table_args__ = (
        db.UniqueConstraint("user_id", name="uq_subscriptions_user_id"),
    )

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id = db.Column(db.String(255), nullable=False)
    stripe_customer_id = db.Column(db.String(255), nullable=True)
    stripe_subscription_id = db.Column(db.String(255), nullable=True, index=True)
    stripe_price_id = db.Column(db.String(255), nullable=True)
    status = db.Column(
        db.String(50), nullable=True
    )  # trialing | active | past_due | canceled | unpaid | incomplete | ...
    current_period_start = db.Column(db.DateTime(timezone=True), nullable=True)
    current_period_end = db.Column(db.DateTime(timezone=True), nullable=True)
    trial_start = db.Column(db.DateTime(timezone=True), nullable=True)
    trial_end = db.Column(db.DateTime(timezone=True), nullable=True)
    cancel_at = db.Column(db.DateTime(timezone=True), nullable=True)
    canceled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False)

    def __repr__(self):
        return f"<Subscription user={self.user_id} ({self.status})>"
