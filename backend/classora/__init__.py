"""Classora classroom-management API package."""
