"""Ticket and course checkout with Stripe-driven fulfillment for Django projects."""

__version__ = "0.1.0"
