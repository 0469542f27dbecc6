"""Tenant analytics query gateway service."""
