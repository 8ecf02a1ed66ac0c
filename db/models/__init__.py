"""
Model package exports.

Import all SQLAlchemy models here so metadata registration and Alembic
autogeneration work without extra imports.
"""

from db.models.activity import Activity
from db.models.advisor import Advisor
from db.models.appointment import Appointment
from db.models.client import Client, ClientEmail, ClientPhone
from db.models.import_job import ImportJob
from db.models.notification import Notification
from db.models.task import Task

__all__ = [
    "Activity",
    "Advisor",
    "Appointment",
    "Client",
    "ClientEmail",
    "ClientPhone",
    "ImportJob",
    "Notification",
    "Task",
]
