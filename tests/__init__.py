"""
Test suite for the Careslot Scheduling Service.

Covers the scheduling models, services and the application shell.
"""
import os

# Set environment for testing
os.environ["TESTING"] = "1"
os.environ.setdefault("TEST_DATABASE_URL", "sqlite:///./careslot_test.db")
