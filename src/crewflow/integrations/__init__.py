"""Interfaces to external collaborators: job queue, payment gateway, carrier, currency rates."""
