"""Execution services for the backend.

Services take their collaborators through the constructor and raise the
``execrelay.backend.errors`` taxonomy, never HTTP exceptions -- that
translation is the router's responsibility.
"""
