"""Appointments application for the clinic booking backend.

This package contains the models, serializers, services, views and
route registrations behind the mobile client's booking screens.
"""
